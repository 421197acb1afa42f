"""Tests for the feature selection engine."""

import pytest

from doccrawler.feature_selection import (
    clean_page_title,
    derive_name_from_route,
    detect_app_name_from_titles,
    get_prescan_candidates,
    score_feature,
    select_features,
    should_exclude_route,
    slugify,
)
from doccrawler.models import DiscoveryResult, PageScanResult


def page(route, title=None, **kw):
    return DiscoveryResult(route=route, page_title=title if title is not None else route.strip("/").title(), **kw)


TEN_PAGES = [
    page("/projects", "Projects | Acme"),
    page("/tasks", "Tasks | Acme", has_table=True),
    page("/team", "Team | Acme"),
    page("/billing", "Billing | Acme", has_form=True),
    page("/calendar", "Calendar | Acme"),
    page("/reports", "Reports | Acme"),
    page("/contacts", "Contacts | Acme"),
    page("/inbox", "Inbox | Acme"),
    page("/files", "Files | Acme"),
    page("/integrations", "Integrations | Acme"),
]


class TestRouteFilters:

    @pytest.mark.parametrize("route", ["/login", "/sign-in", "/auth/callback", "/pricing",
                                       "/terms", "/404", "/", "/reset-password"])
    def test_excluded(self, route):
        assert should_exclude_route(route)

    @pytest.mark.parametrize("route", ["/projects", "/settings/team", "/dashboard"])
    def test_kept(self, route):
        assert not should_exclude_route(route)


class TestScoring:

    def test_core_keywords_beat_demos(self):
        assert score_feature("/settings", "Settings", False, False) > score_feature("/demo/buttons", "Buttons", False, False)

    def test_forms_and_tables_add(self):
        base = score_feature("/projects", "", False, False)
        assert score_feature("/projects", "", True, True) == base + 50

    def test_empty_pages_sink(self):
        assert score_feature("/blank-page", "Blank", False, False) < 0

    def test_shallow_routes_preferred(self):
        assert score_feature("/reports", "", False, False) > score_feature("/a/b/reports", "", False, False)


class TestNaming:

    def test_clean_title(self):
        assert clean_page_title("Next.js Orders Page | Acme", "Acme") == "Orders"

    def test_strips_app_name(self):
        assert clean_page_title("Acme Contacts", "Acme") == "Contacts"

    def test_detect_app_name(self):
        assert detect_app_name_from_titles(TEN_PAGES[:3]) == "Acme"

    def test_derive_from_route(self):
        assert derive_name_from_route("/dashboard/user-settings/profile") == "User Settings"
        assert derive_name_from_route("/dashboard") == "Dashboard"

    def test_slug_length(self):
        assert len(slugify("x" * 200)) == 60
        assert slugify("Team & Roles!") == "team-roles"


class TestSelectFeatures:

    def test_deterministic(self):
        """Identical inputs give identical selected/additional lists and priorities."""
        a = select_features(TEN_PAGES, 4)
        b = select_features(list(TEN_PAGES), 4)
        assert [(f.id, f.name, f.priority) for f in a.selected] == \
               [(f.id, f.name, f.priority) for f in b.selected]
        assert a.additional == b.additional

    def test_budget_split(self):
        """3 of 10 selected, the other 7 become additional features."""
        result = select_features(TEN_PAGES, 3)
        assert len(result.selected) == 3
        assert len(result.additional) == 7
        assert [f.priority for f in result.selected] == [1, 2, 3]

    def test_additional_has_title_and_description_only(self):
        result = select_features(TEN_PAGES, 3)
        for extra in result.additional:
            assert set(vars(extra)) == {"title", "description"}

    def test_colliding_titles_get_unique_slugs(self):
        """Titles that clean to the same name never yield two selected features with one slug."""
        pages = [
            page("/settings", "Settings | Acme"),
            page("/admin/settings", "Settings - Admin"),
            page("/team", "Team | Acme"),
        ]
        result = select_features(pages, 6)
        slugs = [f.slug for f in result.selected]
        assert len(slugs) == len(set(slugs))

    def test_login_routes_never_selected(self):
        pages = TEN_PAGES + [page("/login", "Log in"), page("/auth/sso", "SSO")]
        result = select_features(pages, 20)
        routes = {f.route for f in result.selected}
        assert "/login" not in routes and "/auth/sso" not in routes
        assert all(e.title not in ("Log in", "SSO") for e in result.additional)

    def test_post_login_route_kept_and_boosted(self):
        """The landing route survives exclusion and ranks first."""
        pages = TEN_PAGES + [page("/", "Home | Acme")]
        result = select_features(pages, 3, post_login_route="/")
        assert result.selected[0].route == "/"

    def test_inaccessible_pages_dropped(self):
        pages = [page("/projects"), page("/broken", is_accessible=False, has_error=True)]
        result = select_features(pages, 5)
        assert [f.route for f in result.selected] == ["/projects"]

    def test_prescan_excludes_low_value(self):
        scans = [
            PageScanResult(route="/projects", documentation_value=9, suggested_name="Project Board"),
            PageScanResult(route="/tasks", documentation_value=2, reason="empty"),
        ]
        result = select_features(TEN_PAGES[:3], 5, prescan_results=scans)
        names = [f.name for f in result.selected]
        assert "Project Board" in names
        assert all(f.route != "/tasks" for f in result.selected)
        assert result.selected[0].name == "Project Board"

    def test_parent_category_merge(self):
        """Two or more pages under one section become one feature with sub-pages."""
        pages = [
            page("/settings/profile", "Profile", parent_category="Settings"),
            page("/settings/security", "Security", parent_category="Settings"),
            page("/projects", "Projects"),
        ]
        result = select_features(pages, 5)
        group = next(f for f in result.selected if f.slug == "settings")
        assert group.id == "feature-group-settings"
        assert {s.route for s in group.sub_pages} == {"/settings/profile", "/settings/security"}
        assert len(result.selected) == 2

    def test_single_child_not_merged(self):
        pages = [page("/settings/profile", "Profile", parent_category="Settings"), page("/projects")]
        result = select_features(pages, 5)
        assert all(not f.sub_pages for f in result.selected)

    def test_explicit_parent_hints(self):
        pages = [page("/reports/sales", "Sales"), page("/reports/usage", "Usage")]
        result = select_features(pages, 5, parent_categories={"/reports/sales": "Reports",
                                                              "/reports/usage": "Reports"})
        assert [f.name for f in result.selected] == ["Reports"]


class TestPrescanCandidates:

    def test_capped_by_heuristic(self):
        candidates = get_prescan_candidates(TEN_PAGES, max_candidates=4)
        assert len(candidates) == 4

    def test_excludes_auth(self):
        candidates = get_prescan_candidates([page("/login"), page("/projects")])
        assert [c.route for c in candidates] == ["/projects"]
