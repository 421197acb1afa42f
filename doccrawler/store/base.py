"""
Persistent Job Store: abstract interface
========================================
Durable job, progress, screen and screenshot records.

Every write targets a unique record (one job row, one screen row, one
screenshot file), so concurrent screen analyses never contend.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from ..errors import StoreError
from ..models import Job, ProgressEntry, ProgressType, ScreenRecord, ScreenStatus

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Async persistence for one or more jobs."""

    # ── Jobs ──────────────────────────────────────────────────────────

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Job:
        """Raises ``StoreError`` when the job does not exist."""

    @abstractmethod
    async def save_job(self, job: Job) -> None:
        ...

    async def update_job(self, job_id: str, **fields) -> Job:
        """Read-modify-write a subset of job fields."""
        job = await self.get_job(job_id)
        for name, value in fields.items():
            if not hasattr(job, name):
                raise StoreError(f"Unknown job field: {name}")
            setattr(job, name, value)
        await self.save_job(job)
        return job

    async def clear_credentials(self, job_id: str) -> None:
        await self.update_job(job_id, credentials=None)
        logger.info(f"[STORE] Credentials cleared for job {job_id}")

    # ── Progress log ──────────────────────────────────────────────────

    @abstractmethod
    async def append_progress(self, job_id: str, type: ProgressType, message: str,
                              screenshot_ref: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def list_progress(self, job_id: str) -> List[ProgressEntry]:
        ...

    # ── Screens ───────────────────────────────────────────────────────

    @abstractmethod
    async def insert_screen(self, record: ScreenRecord) -> ScreenRecord:
        ...

    @abstractmethod
    async def update_screen(self, job_id: str, screen_id: str, **fields) -> None:
        ...

    @abstractmethod
    async def list_screens(self, job_id: str,
                           status: Optional[ScreenStatus] = None) -> List[ScreenRecord]:
        """Screens for ``job_id`` in ``order_index`` order."""

    async def count_screens(self, job_id: str, status: Optional[ScreenStatus] = None) -> int:
        return len(await self.list_screens(job_id, status))

    # ── Screenshots ───────────────────────────────────────────────────

    @abstractmethod
    async def upload_screenshot(self, job_id: str, filename: str, data: bytes) -> str:
        """Persist PNG bytes and return a reference usable by ``load_screenshot``."""

    @abstractmethod
    async def load_screenshot(self, ref: str) -> bytes:
        ...
