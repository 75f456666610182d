from sqlalchemy import (
    JSON, Column, Integer, BigInteger, Numeric, Boolean, Text, DateTime, ForeignKey, UniqueConstraint, Index, func
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB

Base = declarative_base()

# BIGSERIAL on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigId = BigInteger().with_variant(Integer, "sqlite")
JsonList = JSON().with_variant(JSONB, "postgresql")

class Dealer(Base):
    __tablename__ = "dealers"
    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    feed_url = Column(Text)
    inventory_url = Column(Text)
    sitemap_url = Column(Text)
    scrape_url = Column(Text)
    website_url = Column(Text)
    is_active = Column(Boolean, default=True)
    last_synced_at = Column(DateTime(timezone=True))

class Listing(Base):
    __tablename__ = "listings"
    id = Column(BigId, primary_key=True, autoincrement=True)
    dealer_id = Column(Integer, ForeignKey("dealers.id", ondelete="CASCADE"), nullable=False)
    stock_id = Column(Text, nullable=False)
    source = Column(Text, nullable=False)  # dealer_feed|dealer_scrape
    type = Column(Text, nullable=False, default="used")  # new|used
    status = Column(Text, nullable=False, default="available")  # available|sold|expired
    make = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    variant = Column(Text)
    year = Column(Integer)
    km = Column(Integer)
    fuel = Column(Text)
    transmission = Column(Text)
    price = Column(Numeric(14, 2))
    location = Column(Text)
    description = Column(Text)
    photo_urls = Column(JsonList, nullable=False, default=list)
    last_seen_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True))
    __table_args__ = (
        UniqueConstraint("dealer_id", "stock_id", name="uq_listings_dealer_stock"),
        Index("idx_listings_status", "status"),
        Index("idx_listings_dealer_last", "dealer_id", "last_seen_at"),
    )

class SyncRun(Base):
    __tablename__ = "sync_runs"
    id = Column(BigId, primary_key=True, autoincrement=True)
    dealer_id = Column(Integer, nullable=False)
    mode = Column(Text)  # feed|scrape
    ok = Column(Boolean, nullable=False)
    rows = Column(Integer)
    scanned = Column(Integer)
    error = Column(Text)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    __table_args__ = (
        Index("idx_sync_runs_dealer_started", "dealer_id", "started_at"),
    )
