from fastapi import FastAPI
from .routes import maintenance, sync
from backend.app.core.logging_config import configure_logging

configure_logging()

app = FastAPI(title="Inventory Sync API", version="0.1.0")

app.include_router(sync.router, prefix="/sync", tags=["sync"])
app.include_router(maintenance.router, prefix="/listings", tags=["listings"])
