from contextlib import asynccontextmanager
from typing import AsyncIterator

from replybot.errors import AdmissionRejected
from replybot.logging_config import get_logger

logger = get_logger("governor")


class ConcurrencyGovernor:
    """Caps how many AI reply jobs run at once.

    Admission never waits: a full governor means the job is dropped.
    """

    def __init__(self, max_concurrent_jobs: int = 50):
        self.capacity = max_concurrent_jobs
        self.active = 0
        self.rejected_total = 0

    @property
    def has_capacity(self) -> bool:
        return self.active < self.capacity

    def try_acquire(self) -> bool:
        if self.active >= self.capacity:
            self.rejected_total += 1
            return False
        self.active += 1
        return True

    def release(self) -> None:
        if self.active <= 0:
            logger.error("Governor release without matching acquire")
            return
        self.active -= 1

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        if not self.try_acquire():
            raise AdmissionRejected(self.active, self.capacity)
        try:
            yield
        finally:
            self.release()

    def get_stats(self) -> dict:
        return {
            "active_jobs": self.active,
            "max_concurrent_jobs": self.capacity,
            "rejected_total": self.rejected_total,
        }
