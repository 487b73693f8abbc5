"""Visibility rules: which callers may see which query applications.

Pure functions of (application, principal).  Branch assignments come from the
principal resolved for the current call and are never cached here.
"""

from typing import Iterable

from app.auth_utils import Principal
from app.models.query import MarkedForTeam, QueryApplication, Role, Team
from app.services.query_errors import AuthorizationError, ValidationError

_ROLE_TEAM = {Role.SALES: Team.SALES, Role.CREDIT: Team.CREDIT}


def parse_team_targets(send_to: Iterable[str] | str) -> frozenset[Team]:
    """Parse caller input such as ``"Sales, Credit"`` or ``["sales"]``."""
    if isinstance(send_to, str):
        send_to = send_to.split(",")
    teams = set()
    for raw in send_to:
        name = (raw or "").strip().lower()
        if not name:
            continue
        if name == MarkedForTeam.BOTH.value:
            teams.update((Team.SALES, Team.CREDIT))
            continue
        try:
            teams.add(Team(name))
        except ValueError:
            raise ValidationError(f"Unknown team '{raw.strip()}'", field="send_to")
    if not teams:
        raise ValidationError("At least one target team is required", field="send_to")
    return frozenset(teams)


def marked_for_team(teams: frozenset[Team]) -> MarkedForTeam:
    if teams == {Team.SALES}:
        return MarkedForTeam.SALES
    if teams == {Team.CREDIT}:
        return MarkedForTeam.CREDIT
    return MarkedForTeam.BOTH


def team_targets(application: QueryApplication) -> frozenset[Team]:
    teams = set()
    if application.send_to_sales:
        teams.add(Team.SALES)
    if application.send_to_credit:
        teams.add(Team.CREDIT)
    return frozenset(teams)


def _branch_allowed(application: QueryApplication, branches: frozenset[str]) -> bool:
    return (application.branch_code or "").upper() in branches


def _management_team_match(application: QueryApplication, preferences: frozenset[str]) -> bool:
    if not preferences:
        return True
    targets = team_targets(application)
    for pref in preferences:
        if pref == MarkedForTeam.BOTH.value and targets == {Team.SALES, Team.CREDIT}:
            return True
        if pref in (Team.SALES.value, Team.CREDIT.value) and Team(pref) in targets:
            return True
    return False


def can_view_application(application: QueryApplication, principal: Principal) -> bool:
    if principal.role == Role.OPERATIONS:
        return True

    if principal.role == Role.MANAGEMENT:
        if not _management_team_match(application, principal.team_preferences):
            return False
        # Managers without branch assignments oversee every branch
        if principal.assigned_branches:
            return _branch_allowed(application, principal.assigned_branches)
        return True

    team = _ROLE_TEAM.get(principal.role)
    if team is None or team not in team_targets(application):
        return False
    return _branch_allowed(application, principal.assigned_branches)


def require_visibility(application: QueryApplication, principal: Principal) -> None:
    if not can_view_application(application, principal):
        raise AuthorizationError(
            f"{principal.team_label} caller cannot access application {application.app_no}",
        )


def can_view_requests(principal: Principal) -> bool:
    """Management sees every approval request; Operations sees its own queue."""
    return principal.role in (Role.MANAGEMENT, Role.OPERATIONS)


def filter_visible(
    applications: Iterable[QueryApplication], principal: Principal,
) -> list[QueryApplication]:
    return [a for a in applications if can_view_application(a, principal)]
