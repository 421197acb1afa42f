"""
JSON Directory Store
====================
``JobStore`` backed by plain files under one root directory::

    <root>/jobs/<job_id>.json
    <root>/progress/<job_id>.jsonl
    <root>/screens/<job_id>/<screen_id>.json
    <root>/screenshots/<job_id>/<filename>

File I/O runs in a worker thread so the crawl task never blocks on disk.
When ``public_base_url`` is set, screenshot references are HTTP URLs
(``<base>/<job_id>/<filename>``) that ``load_screenshot`` fetches with
``requests``; otherwise they are local file paths.

Security:
    - Job files hold credentials until the pipeline clears them; keep the
      store root out of version control.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import requests

from ..errors import StoreError
from ..models import Job, ProgressEntry, ProgressType, ScreenRecord, ScreenStatus
from .base import JobStore

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT_S = 30


class JsonJobStore(JobStore):
    """Directory-backed store.  One JSON document per job and per screen."""

    def __init__(self, root: str = "doccrawler_data", public_base_url: Optional[str] = None):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        for sub in ("jobs", "progress", "screens", "screenshots"):
            (self.root / sub).mkdir(parents=True, exist_ok=True)

    # -----------------------------------------------------------------------
    # File helpers (run in worker threads)
    # -----------------------------------------------------------------------

    @staticmethod
    def _write_json(path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    @staticmethod
    def _read_json(path: Path) -> dict:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise StoreError(f"Record not found: {path}")
        except (json.JSONDecodeError, OSError) as exc:
            raise StoreError(f"Unreadable record {path}: {exc}") from exc

    def _job_path(self, job_id: str) -> Path:
        return self.root / "jobs" / f"{job_id}.json"

    def _screen_path(self, job_id: str, screen_id: str) -> Path:
        return self.root / "screens" / job_id / f"{screen_id}.json"

    # -----------------------------------------------------------------------
    # Jobs
    # -----------------------------------------------------------------------

    async def create_job(self, job: Job) -> Job:
        await self.save_job(job)
        logger.info(f"[STORE] Created job {job.id} in {self.root}")
        return job

    async def get_job(self, job_id: str) -> Job:
        data = await asyncio.to_thread(self._read_json, self._job_path(job_id))
        return Job.from_dict(data)

    async def save_job(self, job: Job) -> None:
        await asyncio.to_thread(self._write_json, self._job_path(job.id), job.to_dict())

    # -----------------------------------------------------------------------
    # Progress
    # -----------------------------------------------------------------------

    async def append_progress(self, job_id: str, type: ProgressType, message: str,
                              screenshot_ref: Optional[str] = None) -> None:
        entry = ProgressEntry(type=type, message=message, screenshot_ref=screenshot_ref)
        path = self.root / "progress" / f"{job_id}.jsonl"

        def _append() -> None:
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

        await asyncio.to_thread(_append)

    async def list_progress(self, job_id: str) -> List[ProgressEntry]:
        path = self.root / "progress" / f"{job_id}.jsonl"

        def _read() -> List[ProgressEntry]:
            if not path.exists():
                return []
            lines = path.read_text(encoding="utf-8").splitlines()
            return [ProgressEntry.from_dict(json.loads(line)) for line in lines if line.strip()]

        return await asyncio.to_thread(_read)

    # -----------------------------------------------------------------------
    # Screens
    # -----------------------------------------------------------------------

    async def insert_screen(self, record: ScreenRecord) -> ScreenRecord:
        await asyncio.to_thread(
            self._write_json, self._screen_path(record.job_id, record.id), record.to_dict(),
        )
        return record

    async def update_screen(self, job_id: str, screen_id: str, **fields) -> None:
        path = self._screen_path(job_id, screen_id)
        record = ScreenRecord.from_dict(await asyncio.to_thread(self._read_json, path))
        for name, value in fields.items():
            setattr(record, name, value)
        await asyncio.to_thread(self._write_json, path, record.to_dict())

    async def list_screens(self, job_id: str,
                           status: Optional[ScreenStatus] = None) -> List[ScreenRecord]:
        folder = self.root / "screens" / job_id

        def _read_all() -> List[ScreenRecord]:
            if not folder.exists():
                return []
            return [ScreenRecord.from_dict(self._read_json(p)) for p in folder.glob("*.json")]

        records = await asyncio.to_thread(_read_all)
        if status is not None:
            records = [r for r in records if r.status == status]
        return sorted(records, key=lambda r: r.order_index)

    # -----------------------------------------------------------------------
    # Screenshots
    # -----------------------------------------------------------------------

    async def upload_screenshot(self, job_id: str, filename: str, data: bytes) -> str:
        path = self.root / "screenshots" / job_id / filename

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StoreError(f"Screenshot upload failed: {exc}") from exc
        if self.public_base_url:
            return f"{self.public_base_url}/{job_id}/{filename}"
        return str(path)

    async def load_screenshot(self, ref: str) -> bytes:
        if ref.startswith(("http://", "https://")):
            return await asyncio.to_thread(self._fetch_remote, ref)
        try:
            return await asyncio.to_thread(Path(ref).read_bytes)
        except OSError as exc:
            raise StoreError(f"Screenshot not readable: {ref}: {exc}") from exc

    @staticmethod
    def _fetch_remote(url: str) -> bytes:
        try:
            resp = requests.get(url, timeout=_FETCH_TIMEOUT_S)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise StoreError(f"Screenshot fetch failed: {url}: {exc}") from exc
        return resp.content
