"""In-process ``JobStore`` for tests and dry runs."""

from __future__ import annotations

import copy
from typing import Dict, List, Optional

from ..errors import StoreError
from ..models import Job, ProgressEntry, ProgressType, ScreenRecord, ScreenStatus
from .base import JobStore


class MemoryJobStore(JobStore):
    """Keeps every record in dicts.  Returned objects are copies, like a real store."""

    def __init__(self):
        self.jobs: Dict[str, Job] = {}
        self.progress: Dict[str, List[ProgressEntry]] = {}
        self.screens: Dict[str, Dict[str, ScreenRecord]] = {}
        self.files: Dict[str, bytes] = {}

    async def create_job(self, job: Job) -> Job:
        self.jobs[job.id] = copy.deepcopy(job)
        return job

    async def get_job(self, job_id: str) -> Job:
        if job_id not in self.jobs:
            raise StoreError(f"Job not found: {job_id}")
        return copy.deepcopy(self.jobs[job_id])

    async def save_job(self, job: Job) -> None:
        self.jobs[job.id] = copy.deepcopy(job)

    async def append_progress(self, job_id: str, type: ProgressType, message: str,
                              screenshot_ref: Optional[str] = None) -> None:
        self.progress.setdefault(job_id, []).append(
            ProgressEntry(type=type, message=message, screenshot_ref=screenshot_ref)
        )

    async def list_progress(self, job_id: str) -> List[ProgressEntry]:
        return list(self.progress.get(job_id, []))

    async def insert_screen(self, record: ScreenRecord) -> ScreenRecord:
        self.screens.setdefault(record.job_id, {})[record.id] = copy.deepcopy(record)
        return record

    async def update_screen(self, job_id: str, screen_id: str, **fields) -> None:
        try:
            record = self.screens[job_id][screen_id]
        except KeyError:
            raise StoreError(f"Screen not found: {job_id}/{screen_id}")
        for name, value in fields.items():
            setattr(record, name, value)

    async def list_screens(self, job_id: str,
                           status: Optional[ScreenStatus] = None) -> List[ScreenRecord]:
        records = [copy.deepcopy(r) for r in self.screens.get(job_id, {}).values()
                   if status is None or r.status == status]
        return sorted(records, key=lambda r: r.order_index)

    async def upload_screenshot(self, job_id: str, filename: str, data: bytes) -> str:
        ref = f"memory://{job_id}/{filename}"
        self.files[ref] = data
        return ref

    async def load_screenshot(self, ref: str) -> bytes:
        if ref not in self.files:
            raise StoreError(f"Screenshot not found: {ref}")
        return self.files[ref]
