"""
Tests for the two-phase crawl engine.

Every scenario runs against ``FakeBrowser`` / ``FakeGenerator``; no real
browser or model is involved.
"""

import asyncio

from doccrawler.browser.base import Observation
from doccrawler.crawl import CrawlConfig, CrawlEngine, FeatureStage, code_context_for
from doccrawler.errors import StoreError
from doccrawler.feature_selection import slugify
from doccrawler.models import Credentials, Feature, Job, ProgressType, ScreenType, SubPage
from doccrawler.store.memory import MemoryJobStore

from conftest import APP, CHANGED, PLAN, UNDERSTAND, FakeBrowser, FakeGenerator, FakePage, png

INTERACTIVE = {
    "purpose": "Manage projects",
    "userGoals": ["Create a project"],
    "interactiveElements": [{"description": "New project button", "type": "modal_trigger",
                             "probeInstruction": "Click the New project button"}],
    "isEmptyState": False,
    "complexity": "moderate",
}
SIMPLE = {"purpose": "Static information", "interactiveElements": [], "complexity": "simple"}
DIALOG_PLAN = [{"description": "Create project dialog", "actions": ["Click the New project button"],
                "value": "Shows the fields for a new project"}]


def feature(name, route, idx=1, **kw):
    return Feature(id=f"feature-{idx}", name=name, slug=slugify(name),
                   description=f"{name} feature page", route=route, priority=idx, **kw)


def open_dialog(browser):
    browser.screen_override[browser.url] = png("dialog", 30000)


def crawl(browser, generator, store, features, config=None, credentials=None, **kw):
    job = Job(app_url=APP, credentials=credentials, budget_cents=300)
    asyncio.run(store.create_job(job))
    engine = CrawlEngine(browser, generator, store, config or CrawlConfig())
    result = asyncio.run(engine.run(job.id, APP, features, credentials=credentials, **kw))
    return job.id, result


def labels(result):
    return [s.label for s in result.screens]


class TestExploreAndDocument:

    def test_hero_then_action_shot(self):
        """A moderate page with a control gets a hero and one changed action shot."""
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.act_effects["New project"] = open_dialog
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: DIALOG_PLAN})
        store = MemoryJobStore()

        job_id, result = crawl(browser, gen, store, [feature("Projects", "/projects")])

        assert labels(result) == ["hero", "action-1"]
        assert [s.screen_type for s in result.screens] == [ScreenType.HERO, ScreenType.ACTION]
        assert [s.order_index for s in result.screens] == [0, 1]
        assert asyncio.run(store.count_screens(job_id)) == 2
        assert result.understandings["feature-1"].purpose == "Manage projects"

    def test_probe_notes_feed_the_plan(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.observations["appeared or changed"] = [Observation("A New project dialog with Name field")]
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: []})
        crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])

        plan_prompt = gen.calls_matching(PLAN)[0]
        assert "New project dialog with Name field" in plan_prompt
        # Probing returns to the clean URL
        assert browser.navigations.count(f"{APP}/projects") >= 2

    def test_simple_page_never_plans(self):
        """Simple + no interactive elements: hero only, no planning call."""
        browser = FakeBrowser({f"{APP}/about": FakePage(title="About")})
        gen = FakeGenerator({UNDERSTAND: SIMPLE, PLAN: DIALOG_PLAN})
        _, result = crawl(browser, gen, MemoryJobStore(), [feature("About", "/about")])

        assert labels(result) == ["hero"]
        assert gen.calls_matching(PLAN) == []

    def test_failed_understanding_still_documents(self):
        """Malformed hero analysis falls back to a moderate page and still plans."""
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.act_effects["New project"] = open_dialog
        gen = FakeGenerator({UNDERSTAND: "I cannot see the image", PLAN: DIALOG_PLAN})
        _, result = crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])

        assert len(gen.calls_matching(PLAN)) == 1
        assert labels(result) == ["hero", "action-1"]

    def test_unchanged_action_discarded(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: DIALOG_PLAN,
                             CHANGED: {"changed": False, "reason": "nothing happened"}})
        _, result = crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])

        assert labels(result) == ["hero"]
        assert result.metrics.shots_discarded == 1
        assert result.metrics.vision_checks == 1

    def test_unsafe_plan_never_executed(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: [
            {"description": "Remove dialog", "actions": ["Click the Delete project button"]},
        ]})
        crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])
        assert not any("Delete" in a for a in browser.acts)

    def test_submit_and_result_shot(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.act_effects["New project"] = open_dialog
        browser.act_effects['"Save" button'] = lambda b: b.screen_override.__setitem__(b.url, png("saved", 40000))
        browser.observations["submit/save/apply"] = [Observation('Button "Delete"'), Observation('Button "Save"')]
        plan = [dict(DIALOG_PLAN[0], submitAfter=True, captureResult=True)]
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: plan})

        _, result = crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])

        assert labels(result) == ["hero", "action-1", "result-1"]
        assert result.screens[-1].screen_type == ScreenType.RESULT
        assert 'Click the "Save" button' in browser.acts

    def test_second_plan_resets_to_clean_url(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.act_effects["New project"] = open_dialog
        browser.act_effects["Board tab"] = lambda b: b.screen_override.__setitem__(b.url, png("board", 36000))
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: DIALOG_PLAN + [
            {"description": "Board view", "actions": ["Click the Board tab"]},
        ]})
        _, result = crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])
        assert labels(result) == ["hero", "action-1", "action-2"]

    def test_empty_state_cta_followed(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        understanding = dict(INTERACTIVE, isEmptyState=True, emptyStateCta="Create your first project")
        gen = FakeGenerator({UNDERSTAND: understanding, PLAN: []})
        crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])
        assert 'Click the "Create your first project" button' in browser.acts

    def test_failed_plan_action_moves_on(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.act_failures.append("Click the Archive")
        browser.act_effects["New project"] = open_dialog
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: [
            {"description": "Archive", "actions": ["Click the Archive toggle"]},
            DIALOG_PLAN[0],
        ]})
        _, result = crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])
        assert labels(result) == ["hero", "action-1"]

    def test_merged_group_captures_sections(self):
        browser = FakeBrowser({
            f"{APP}/settings/profile": FakePage(title="Profile"),
            f"{APP}/settings/security": FakePage(title="Security"),
        })
        gen = FakeGenerator({UNDERSTAND: SIMPLE})
        group = feature("Settings", "/settings/profile", sub_pages=[
            SubPage("Profile", "/settings/profile"), SubPage("Security", "/settings/security"),
        ])
        _, result = crawl(browser, gen, MemoryJobStore(), [group])
        assert labels(result) == ["hero", "section-2"]
        assert result.screens[1].route_path == "/settings/security"


class TestGuards:

    def test_dom_hash_dedup_across_features(self):
        """[A@/one, A@/two, B@/three]: first stored, second skipped, third stored."""
        same = FakePage(title="Overview", body="<p>Same content</p>")
        browser = FakeBrowser({
            f"{APP}/one": same,
            f"{APP}/two": same,
            f"{APP}/three": FakePage(title="Other", body="<p>Different</p>"),
        })
        gen = FakeGenerator({UNDERSTAND: SIMPLE})
        features = [feature("One", "/one", 1), feature("Two", "/two", 2), feature("Three", "/three", 3)]
        store = MemoryJobStore()

        job_id, result = crawl(browser, gen, store, features)

        assert [s.route_path for s in result.screens] == ["/one", "/three"]
        assert result.metrics.duplicates_skipped == 1
        assert result.errors == []
        assert not any(p.type == ProgressType.ERROR for p in asyncio.run(store.list_progress(job_id)))

    def test_unhealthy_page_skipped_silently(self):
        blocked = FakePage(title="Just a moment", text="Attention Required! Cloudflare. You have been blocked.")
        browser = FakeBrowser({f"{APP}/blocked": blocked, f"{APP}/ok": FakePage(title="Ok")})
        gen = FakeGenerator({UNDERSTAND: SIMPLE})
        _, result = crawl(browser, gen, MemoryJobStore(),
                          [feature("Blocked", "/blocked", 1), feature("Ok", "/ok", 2)])
        assert [s.route_path for s in result.screens] == ["/ok"]
        assert result.errors == []
        assert result.metrics.unhealthy_skipped == 1

    def test_navigation_fallback_to_sidebar(self):
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.navigation_failures.append(f"{APP}/projects")
        gen = FakeGenerator({UNDERSTAND: SIMPLE})
        crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])
        assert 'Click the sidebar or navigation link labeled "Projects"' in browser.acts

    def test_global_screen_cap(self):
        browser = FakeBrowser({f"{APP}/a": FakePage(title="A"), f"{APP}/b": FakePage(title="B")})
        gen = FakeGenerator({UNDERSTAND: SIMPLE})
        store = MemoryJobStore()
        job_id, result = crawl(browser, gen, store, [feature("A", "/a", 1), feature("B", "/b", 2)],
                               max_screens=1)
        assert len(result.screens) == 1
        assert result.metrics.stop_reason == "max screens reached"
        messages = [p.message for p in asyncio.run(store.list_progress(job_id))]
        assert any("1-screen limit" in m for m in messages)


class TestSession:

    def login_page(self):
        return FakePage(title="Sign in", text="Sign in", password_fields=1, login_fields=2)

    def test_reauthenticates_and_continues(self):
        browser = FakeBrowser({f"{APP}/login": self.login_page(), f"{APP}/projects": FakePage(title="Projects")})
        browser.redirects[f"{APP}/projects"] = f"{APP}/login"

        def sign_in(b):
            b.redirects.clear()
            b.url = f"{APP}/home"

        browser.act_effects["sign in, log in"] = sign_in
        gen = FakeGenerator({UNDERSTAND: SIMPLE})
        creds = Credentials("ana@example.com", "hunter2")

        _, result = crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")],
                          credentials=creds, login_url=f"{APP}/login")

        assert labels(result) == ["hero"]
        assert result.metrics.reauthentications == 1
        assert {"username": "ana@example.com", "password": "hunter2"} in browser.act_variables
        assert not any("hunter2" in a for a in browser.acts)

    def test_reauth_cap_is_shared_across_features(self):
        browser = FakeBrowser({f"{APP}/login": self.login_page()})
        browser.redirects[f"{APP}/a"] = f"{APP}/login"
        browser.redirects[f"{APP}/b"] = f"{APP}/login"
        browser.act_effects["sign in, log in"] = lambda b: setattr(b, "url", f"{APP}/home")
        gen = FakeGenerator({UNDERSTAND: SIMPLE})

        _, result = crawl(browser, gen, MemoryJobStore(), [feature("A", "/a", 1), feature("B", "/b", 2)],
                          credentials=Credentials("ana@example.com", "pw"), login_url=f"{APP}/login")

        assert result.metrics.reauthentications == 2
        assert sum(1 for a in browser.acts if "%password%" in a) == 2
        assert [e.feature_id for e in result.errors] == ["feature-1", "feature-2"]
        assert result.screens == []

    def test_expired_without_credentials_fails_feature(self):
        browser = FakeBrowser({f"{APP}/login": self.login_page()})
        browser.redirects[f"{APP}/a"] = f"{APP}/login"
        _, result = crawl(browser, FakeGenerator(), MemoryJobStore(), [feature("A", "/a")])
        assert len(result.errors) == 1
        assert result.metrics.features_failed == 1

    def test_credentials_cleared_when_crawl_ends(self):
        store = MemoryJobStore()
        browser = FakeBrowser({f"{APP}/a": FakePage(title="A")})
        job_id, _ = crawl(browser, FakeGenerator({UNDERSTAND: SIMPLE}), store, [feature("A", "/a")],
                          credentials=Credentials("ana@example.com", "pw"))
        assert asyncio.run(store.get_job(job_id)).credentials is None


class ExplodingBrowser(FakeBrowser):
    async def screenshot(self) -> bytes:
        if "/boom" in self.url:
            raise RuntimeError("renderer crashed")
        return await super().screenshot()


class FlakyStore(MemoryJobStore):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    async def upload_screenshot(self, job_id, filename, data):
        if self.failures > 0:
            self.failures -= 1
            raise StoreError("bucket unavailable")
        return await super().upload_screenshot(job_id, filename, data)


class TestFailures:

    def test_feature_exception_recorded_and_crawl_continues(self):
        browser = ExplodingBrowser({f"{APP}/boom": FakePage(title="Boom"), f"{APP}/ok": FakePage(title="Ok")})
        store = MemoryJobStore()
        job_id, result = crawl(browser, FakeGenerator({UNDERSTAND: SIMPLE}), store,
                               [feature("Boom", "/boom", 1), feature("Ok", "/ok", 2)])

        assert [s.route_path for s in result.screens] == ["/ok"]
        assert result.errors[0].feature_id == "feature-1"
        assert "renderer crashed" in result.errors[0].error
        errors = [p.message for p in asyncio.run(store.list_progress(job_id)) if p.type == ProgressType.ERROR]
        assert any("Boom" in m for m in errors)

    def test_upload_retried_once(self):
        store = FlakyStore(failures=1)
        browser = FakeBrowser({f"{APP}/a": FakePage(title="A")})
        _, result = crawl(browser, FakeGenerator({UNDERSTAND: SIMPLE}), store, [feature("A", "/a")])

        assert result.screens[0].screenshot_ref.startswith("memory://")
        assert result.metrics.upload_retries == 1
        assert 3.0 in browser.waits

    def test_upload_failure_after_retry_is_degraded(self):
        store = FlakyStore(failures=2)
        browser = FakeBrowser({f"{APP}/a": FakePage(title="A")})
        job_id, result = crawl(browser, FakeGenerator({UNDERSTAND: SIMPLE}), store, [feature("A", "/a")])

        assert len(result.screens) == 1
        assert result.screens[0].screenshot_ref == ""
        errors = [p.message for p in asyncio.run(store.list_progress(job_id)) if p.type == ProgressType.ERROR]
        assert any("upload failed" in m for m in errors)


class TestStateMachine:

    def test_simple_feature_stage_history(self):
        from doccrawler.crawl.capture import CrawlSession
        from doccrawler.crawl.feature import FeatureCrawler, FeatureRun
        from doccrawler.monitor import CrawlMonitor

        browser = FakeBrowser({f"{APP}/about": FakePage(title="About")})
        store = MemoryJobStore()
        session = CrawlSession(job_id="j1", app_url=APP, max_screens=10)
        crawler = FeatureCrawler(browser, FakeGenerator({UNDERSTAND: SIMPLE}), store, session,
                                 CrawlMonitor(), CrawlConfig())
        run = asyncio.run(crawler.run(FeatureRun(feature=feature("About", "/about"), url=f"{APP}/about")))

        assert run.stage == FeatureStage.DONE
        assert FeatureStage.PLAN not in run.history
        assert run.history[:5] == [FeatureStage.NAVIGATE, FeatureStage.HEALTH, FeatureStage.SESSION,
                                   FeatureStage.PREPARE, FeatureStage.HERO]

    def test_code_context_lookup(self):
        plan = {"routes": [{"path": "/orders/", "component": "OrdersPage", "fields": ["status"],
                            "modals": [], "apiCalls": ["GET /api/orders"]}]}
        assert code_context_for("/orders", plan) == {
            "component": "OrdersPage", "fields": ["status"], "apiCalls": ["GET /api/orders"],
        }
        assert code_context_for("/other", plan) is None
        assert code_context_for("/orders", None) is None


class FirstShotFailsBrowser(FakeBrowser):
    def __init__(self, pages):
        super().__init__(pages)
        self.shots = 0

    async def screenshot(self) -> bytes:
        self.shots += 1
        if self.shots == 1:
            raise RuntimeError("renderer crashed")
        return await super().screenshot()


class TestFollowUpDedup:

    def test_action_landing_on_another_feature_blocks_its_hero(self):
        """An action that navigates to /tasks is stored once; the Tasks hero is then a duplicate."""
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects"),
                               f"{APP}/tasks": FakePage(title="Tasks")})
        browser.act_effects["Tasks link"] = lambda b: setattr(b, "url", f"{APP}/tasks")
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE,
                             PLAN: [{"description": "Task list", "actions": ["Click the Tasks link"]}],
                             CHANGED: {"changed": True}})

        _, result = crawl(browser, gen, MemoryJobStore(),
                          [feature("Projects", "/projects", 1), feature("Tasks", "/tasks", 2)])

        assert [(s.route_path, s.label) for s in result.screens] == [("/projects", "hero"), ("/tasks", "action-1")]
        assert len({(s.url, s.dom_hash) for s in result.screens}) == len(result.screens)
        assert result.metrics.duplicates_skipped == 1

    def test_same_url_follow_up_is_exempt(self):
        """A dialog on the feature's own URL is stored even though the URL was captured."""
        browser = FakeBrowser({f"{APP}/projects": FakePage(title="Projects")})
        browser.act_effects["New project"] = open_dialog
        gen = FakeGenerator({UNDERSTAND: INTERACTIVE, PLAN: DIALOG_PLAN})

        _, result = crawl(browser, gen, MemoryJobStore(), [feature("Projects", "/projects")])

        assert [s.url for s in result.screens] == [f"{APP}/projects", f"{APP}/projects"]
        assert result.metrics.duplicates_skipped == 0

    def test_failed_screenshot_does_not_mark_page_captured(self):
        browser = FirstShotFailsBrowser({f"{APP}/one": FakePage(title="One")})
        gen = FakeGenerator({UNDERSTAND: SIMPLE})

        _, result = crawl(browser, gen, MemoryJobStore(),
                          [feature("One", "/one", 1), feature("One again", "/one", 2)])

        assert [(s.feature_id, s.route_path) for s in result.screens] == [("feature-2", "/one")]
        assert len(result.errors) == 1
