"""Tests for the in-memory and JSON-directory job stores."""

import asyncio

import pytest
import requests

from doccrawler.errors import StoreError
from doccrawler.models import (
    Credentials,
    DiscoveryResult,
    Feature,
    Job,
    JobStatus,
    ProgressType,
    ScreenRecord,
    ScreenStatus,
    SubPage,
)
from doccrawler.store.json_store import JsonJobStore
from doccrawler.store.memory import MemoryJobStore


def screen(job_id, order, **kw):
    return ScreenRecord(job_id=job_id, url=f"https://app.example.com/p{order}", route_path=f"/p{order}",
                        nav_label=f"Page {order}", screenshot_ref="", dom_snapshot="<p></p>",
                        feature_id="feature-1", label="hero", order_index=order, **kw)


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryJobStore()
    return JsonJobStore(str(tmp_path / "data"))


class TestJobs:

    def test_update_and_clear_credentials(self, any_store):
        job = Job(app_url="https://app.example.com", budget_cents=300,
                  credentials=Credentials("ana@example.com", "pw"))
        asyncio.run(any_store.create_job(job))

        asyncio.run(any_store.update_job(job.id, status=JobStatus.DISCOVERING, app_name="Acme"))
        asyncio.run(any_store.clear_credentials(job.id))

        saved = asyncio.run(any_store.get_job(job.id))
        assert saved.status == JobStatus.DISCOVERING
        assert saved.app_name == "Acme"
        assert saved.credentials is None

    def test_unknown_field_rejected(self, any_store):
        job = Job(app_url="https://app.example.com")
        asyncio.run(any_store.create_job(job))
        with pytest.raises(StoreError):
            asyncio.run(any_store.update_job(job.id, colour="blue"))

    def test_missing_job(self, any_store):
        with pytest.raises(StoreError):
            asyncio.run(any_store.get_job("nope"))

    def test_nested_records_survive(self, any_store):
        feature = Feature(id="feature-group-settings", name="Settings", slug="settings",
                          description="Settings", route="/settings/profile",
                          sub_pages=[SubPage("Profile", "/settings/profile")])
        job = Job(app_url="https://app.example.com", selected_features=[feature],
                  discovered_routes=[DiscoveryResult(route="/settings/profile", nav_elements=("Home",))])
        asyncio.run(any_store.create_job(job))
        saved = asyncio.run(any_store.get_job(job.id))
        assert saved.selected_features[0].sub_pages[0].route == "/settings/profile"
        assert saved.discovered_routes[0].nav_elements == ("Home",)


class TestProgressAndScreens:

    def test_progress_is_append_only_and_ordered(self, any_store):
        for i in range(3):
            asyncio.run(any_store.append_progress("job-1", ProgressType.INFO, f"step {i}"))
        asyncio.run(any_store.append_progress("job-1", ProgressType.COMPLETE, "done", screenshot_ref="ref"))
        entries = asyncio.run(any_store.list_progress("job-1"))
        assert [e.message for e in entries] == ["step 0", "step 1", "step 2", "done"]
        assert entries[-1].type == ProgressType.COMPLETE

    def test_screens_listed_in_order_and_filtered(self, any_store):
        records = [screen("job-1", i) for i in (2, 0, 1)]
        for r in records:
            asyncio.run(any_store.insert_screen(r))
        asyncio.run(any_store.update_screen("job-1", records[0].id, status=ScreenStatus.ANALYZED,
                                            analysis={"title": "P2"}))

        listed = asyncio.run(any_store.list_screens("job-1"))
        assert [s.order_index for s in listed] == [0, 1, 2]
        assert asyncio.run(any_store.count_screens("job-1", ScreenStatus.CRAWLED)) == 2
        analyzed = asyncio.run(any_store.list_screens("job-1", ScreenStatus.ANALYZED))
        assert analyzed[0].analysis == {"title": "P2"}

    def test_screenshot_round_trip(self, any_store):
        ref = asyncio.run(any_store.upload_screenshot("job-1", "projects-hero.png", b"\x89PNG data"))
        assert asyncio.run(any_store.load_screenshot(ref)) == b"\x89PNG data"

    def test_missing_screenshot(self, any_store, tmp_path):
        with pytest.raises(StoreError):
            asyncio.run(any_store.load_screenshot(str(tmp_path / "missing.png")))


class TestJsonStore:

    def test_public_refs(self, tmp_path):
        store = JsonJobStore(str(tmp_path), public_base_url="https://cdn.example.com/shots/")
        ref = asyncio.run(store.upload_screenshot("job-1", "a.png", b"x"))
        assert ref == "https://cdn.example.com/shots/job-1/a.png"

    def test_remote_fetch_failure(self, tmp_path, monkeypatch):
        def refuse(url, timeout):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", refuse)
        store = JsonJobStore(str(tmp_path))
        with pytest.raises(StoreError):
            asyncio.run(store.load_screenshot("https://cdn.example.com/shots/job-1/a.png"))

    def test_update_unknown_screen(self, tmp_path):
        store = JsonJobStore(str(tmp_path))
        with pytest.raises(StoreError):
            asyncio.run(store.update_screen("job-1", "nope", status=ScreenStatus.FAILED))
