"""
Job persistence.

Usage::

    from doccrawler.store import JsonJobStore
    store = JsonJobStore("data/")
    job = await store.create_job(Job(app_url="https://app.example.com"))
"""

from .base import JobStore
from .json_store import JsonJobStore
from .memory import MemoryJobStore

__all__ = ["JobStore", "JsonJobStore", "MemoryJobStore"]
