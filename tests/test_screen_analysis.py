"""Tests for batched screen analysis."""

import asyncio
import json
import re

from doccrawler.models import ScreenRecord, ScreenStatus
from doccrawler.screen_analysis import analyze_screens

from conftest import ANALYZE, FakeGenerator


def seed_screens(store, job_id, count, with_ref=True):
    ids = []
    for i in range(count):
        ref = asyncio.run(store.upload_screenshot(job_id, f"s{i}.png", b"png")) if with_ref else ""
        record = ScreenRecord(job_id=job_id, url=f"https://app.example.com/p{i}", route_path=f"/p{i}",
                              nav_label=f"Page {i}", screenshot_ref=ref, dom_snapshot="<p>x</p>",
                              feature_id=f"feature-{i}", label="hero", order_index=i,
                              code_context={"component": f"Page{i}"} if i == 0 else None)
        asyncio.run(store.insert_screen(record))
        ids.append(record.id)
    return ids


def by_page(prompt):
    """Confidence 5 for even pages, 2 for odd ones."""
    n = int(re.search(r'Screen: "Page (\d+)"', prompt).group(1))
    return json.dumps({"title": f"Page {n}", "summary": "Shows things.", "confidence": 5 if n % 2 == 0 else 2})


class TestAnalyzeScreens:

    def test_all_screens_analyzed_in_batches(self, store):
        seed_screens(store, "job-1", 7)
        gen = FakeGenerator({ANALYZE: by_page})
        report = asyncio.run(analyze_screens(store, gen, "job-1", batch_size=3))

        assert report.analyzed == 7 and report.failed == 0
        assert len(gen.calls) == 7
        screens = asyncio.run(store.list_screens("job-1"))
        assert {s.status for s in screens} == {ScreenStatus.ANALYZED}
        assert screens[0].analysis["code_context"] == {"component": "Page0"}
        assert "code_context" not in screens[1].analysis

    def test_quality_score(self, store):
        seed_screens(store, "job-1", 4)
        report = asyncio.run(analyze_screens(store, FakeGenerator({ANALYZE: by_page}), "job-1"))
        assert report.high_confidence == 2
        assert report.quality_score == 50.0

    def test_failures_marked_not_raised(self, store, failing_generator):
        seed_screens(store, "job-1", 2)
        report = asyncio.run(analyze_screens(store, failing_generator, "job-1"))
        assert report.failed == 2 and report.analyzed == 0
        assert report.quality_score == 0.0
        statuses = {s.status for s in asyncio.run(store.list_screens("job-1"))}
        assert statuses == {ScreenStatus.FAILED}

    def test_screen_without_screenshot_fails(self, store, generator):
        seed_screens(store, "job-1", 1, with_ref=False)
        report = asyncio.run(analyze_screens(store, generator, "job-1"))
        assert report.failed == 1
        assert generator.calls == []

    def test_only_crawled_screens_considered(self, store):
        ids = seed_screens(store, "job-1", 2)
        asyncio.run(store.update_screen("job-1", ids[0], status=ScreenStatus.ANALYZED))
        gen = FakeGenerator({ANALYZE: by_page})
        report = asyncio.run(analyze_screens(store, gen, "job-1"))
        assert report.analyzed == 1
