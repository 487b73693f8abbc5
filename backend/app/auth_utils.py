"""Calling-principal resolution and access-control dependencies.

Authentication happens upstream; the gateway forwards the verified identity in
``X-User-*`` headers and this module treats them as ground truth.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from app.models.query import Role, QueryAction

# ── Approval permissions ─────────────────────────────────────

APPROVE_QUERIES = "approve_queries"
APPROVE_DEFERRAL_QUERIES = "approve_deferral_queries"
APPROVE_OTC_QUERIES = "approve_otc_queries"

ALL_APPROVAL_PERMISSIONS = frozenset({
    APPROVE_QUERIES, APPROVE_DEFERRAL_QUERIES, APPROVE_OTC_QUERIES,
})

ACTION_PERMISSIONS = {
    QueryAction.APPROVE: APPROVE_QUERIES,
    QueryAction.DEFERRAL: APPROVE_DEFERRAL_QUERIES,
    QueryAction.OTC: APPROVE_OTC_QUERIES,
}

TEAM_PREFERENCES = ("sales", "credit", "both")


class Principal(BaseModel):
    """The acting user for one command."""

    id: str
    name: str
    role: Role
    assigned_branches: frozenset[str] = Field(default_factory=frozenset)
    permissions: frozenset[str] = Field(default_factory=frozenset)
    team_preferences: frozenset[str] = Field(default_factory=frozenset)

    model_config = {"frozen": True}

    @property
    def display_name(self) -> str:
        return self.name or f"{self.role.value.title()} Team"

    @property
    def team_label(self) -> str:
        return self.role.value.title()

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def can_take_action(self, action: QueryAction) -> bool:
        return self.role == Role.MANAGEMENT and self.has_permission(ACTION_PERMISSIONS[action])


def build_principal(
    user_id: str,
    role: Role | str,
    *,
    name: Optional[str] = None,
    branches=None,
    permissions=None,
    team_preferences=None,
) -> Principal:
    """Normalise raw identity fields into a Principal.

    Branch codes are upper-cased.  A Management principal without an explicit
    permission list holds every approval permission.
    """
    role = Role(role)
    if permissions is None:
        permissions = ALL_APPROVAL_PERMISSIONS if role == Role.MANAGEMENT else frozenset()
    prefs = {p.strip().lower() for p in (team_preferences or []) if p and p.strip()}
    unknown = prefs - set(TEAM_PREFERENCES)
    if unknown:
        raise ValueError(f"Unknown team preference(s): {', '.join(sorted(unknown))}")
    return Principal(
        id=user_id,
        name=name or f"{role.value.title()} Team",
        role=role,
        assigned_branches=frozenset(b.strip().upper() for b in (branches or []) if b and b.strip()),
        permissions=frozenset(p.strip() for p in permissions if p and p.strip()),
        team_preferences=frozenset(prefs),
    )


def _split(value: Optional[str]) -> list[str] | None:
    if value is None:
        return None
    return [part for part in value.split(",") if part.strip()]


# ── Dependencies ─────────────────────────────────────────────

async def get_current_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_branches: Optional[str] = Header(None),
    x_user_permissions: Optional[str] = Header(None),
    x_user_team_preferences: Optional[str] = Header(None),
) -> Principal:
    """Resolve the caller from the gateway headers."""
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    try:
        return build_principal(
            x_user_id,
            x_user_role.strip().lower(),
            name=x_user_name,
            branches=_split(x_user_branches),
            permissions=_split(x_user_permissions),
            team_preferences=_split(x_user_team_preferences),
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid caller identity",
        )


def require_roles(*roles: Role):
    """Dependency factory that restricts an endpoint to specific roles."""

    async def role_checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return role_checker
