import asyncio, time
from typing import Callable, Optional

class RequestPacer:
    """Enforces a minimum interval between successive requests to one site."""
    def __init__(self, delay_seconds: float, clock: Optional[Callable[[], float]] = None):
        self.delay = max(0.0, delay_seconds)
        self.clock = clock or time.monotonic
        self.last: Optional[float] = None
        self.lock = asyncio.Lock()

    async def acquire(self):
        async with self.lock:
            if self.last is not None and self.delay > 0:
                wait = self.last + self.delay - self.clock()
                if wait > 0:
                    await asyncio.sleep(wait)
            self.last = self.clock()
