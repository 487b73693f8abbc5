"""Tests for the visibility rules and team-target parsing."""

import pytest

from app.auth_utils import build_principal
from app.models.query import QueryApplication, Team
from app.services.query_errors import AuthorizationError, ValidationError
from app.services.query_routing import (
    can_view_application,
    can_view_requests,
    filter_visible,
    marked_for_team,
    parse_team_targets,
    require_visibility,
)


def _application(sales=True, credit=False, branch_code="DEL"):
    return QueryApplication(
        id="app-x",
        app_no="APP-X",
        customer_name="C",
        branch="B",
        branch_code=branch_code,
        send_to_sales=sales,
        send_to_credit=credit,
        marked_for_team=marked_for_team(
            frozenset(t for t, on in ((Team.SALES, sales), (Team.CREDIT, credit)) if on)
        ).value,
        submitted_by="Ops",
    )


class TestParseTeamTargets:

    def test_comma_separated_string(self):
        assert parse_team_targets("Sales, Credit") == {Team.SALES, Team.CREDIT}

    def test_list_is_case_insensitive(self):
        assert parse_team_targets(["CREDIT"]) == {Team.CREDIT}

    def test_both_expands(self):
        assert parse_team_targets(["both"]) == {Team.SALES, Team.CREDIT}

    def test_unknown_team_rejected(self):
        with pytest.raises(ValidationError):
            parse_team_targets(["Legal"])

    def test_empty_rejected(self):
        with pytest.raises(ValidationError):
            parse_team_targets([" ", ""])

    def test_marked_for_team(self):
        assert marked_for_team(frozenset({Team.SALES})).value == "sales"
        assert marked_for_team(frozenset({Team.CREDIT})).value == "credit"
        assert marked_for_team(frozenset({Team.SALES, Team.CREDIT})).value == "both"


class TestTeamVisibility:

    def test_sales_branch_mismatch_hidden(self, sales_mum):
        assert not can_view_application(_application(), sales_mum)

    def test_sales_matching_branch_visible(self, sales_del):
        assert can_view_application(_application(), sales_del)

    def test_branch_match_is_case_insensitive(self):
        caller = build_principal("u", "sales", branches=["del"])
        assert can_view_application(_application(branch_code="DEL"), caller)

    def test_credit_not_targeted_hidden(self, credit_del):
        assert not can_view_application(_application(sales=True, credit=False), credit_del)

    def test_credit_targeted_visible(self, credit_del):
        assert can_view_application(_application(sales=False, credit=True), credit_del)

    def test_operations_sees_every_branch(self, ops):
        assert can_view_application(_application(branch_code="BLR"), ops)

    def test_require_visibility_raises(self, sales_mum):
        with pytest.raises(AuthorizationError):
            require_visibility(_application(), sales_mum)

    def test_filter_visible(self, sales_del):
        apps = [_application(branch_code="DEL"), _application(branch_code="MUM")]
        assert [a.branch_code for a in filter_visible(apps, sales_del)] == ["DEL"]


class TestManagementVisibility:

    def test_no_preferences_sees_all(self, manager):
        assert can_view_application(_application(sales=False, credit=True), manager)

    def test_sales_preference(self):
        mgr = build_principal("m", "management", team_preferences=["sales"])
        assert can_view_application(_application(sales=True, credit=True), mgr)
        assert not can_view_application(_application(sales=False, credit=True), mgr)

    def test_both_preference_needs_both_targets(self):
        mgr = build_principal("m", "management", team_preferences=["both"])
        assert can_view_application(_application(sales=True, credit=True), mgr)
        assert not can_view_application(_application(sales=True, credit=False), mgr)

    def test_assigned_branches_restrict(self):
        mgr = build_principal("m", "management", branches=["MUM"])
        assert not can_view_application(_application(branch_code="DEL"), mgr)
        assert can_view_application(_application(branch_code="MUM"), mgr)

    def test_request_queue_access(self, manager, ops, sales_del):
        assert can_view_requests(manager)
        assert can_view_requests(ops)
        assert not can_view_requests(sales_del)
