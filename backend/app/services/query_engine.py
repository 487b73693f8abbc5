"""Transition engine for query applications.

Raises new queries, applies Management actions, reverts and records chat
messages.  Every mutation runs inside the owning application's lock: the
application is re-read for update, the queries are changed, the aggregate
status is recomputed and the event is appended, then everything commits
together.  Any failure after the first change rolls the whole unit back.

A ``query_id`` may also name an application; actions and reverts then apply to
every query of that application.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import Principal
from app.models.query import (
    ACTION_TO_RESOLUTION_TYPE, ACTION_TO_STATUS,
    ApplicationStatus, Query, QueryAction, QueryApplication, QueryStatus,
    Role, Team,
)
from app.models.query_event import QueryEvent
from app.services.app_locks import application_lock
from app.services.event_log import (
    DirectActionPayload, MessagePayload, QueryRaisedPayload, RevertPayload,
    append_event, render_direct_action, render_query_raised, render_revert,
)
from app.services.query_errors import (
    AuthorizationError, MissingReason, QueryNotFound, StorageError, ValidationError,
)
from app.services.query_repository import QueryRepository
from app.services.query_routing import (
    filter_visible, marked_for_team, parse_team_targets, require_visibility,
)
from app.services.query_status import (
    compute_statistics, empty_statistics, recompute_application, utcnow,
)

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def parse_action(action: QueryAction | str) -> QueryAction:
    try:
        return QueryAction(action)
    except ValueError:
        raise ValidationError(f"Unknown action '{action}'", field="action")


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@asynccontextmanager
async def mutation(repo: QueryRepository, lock_key: str):
    """Critical section for one application; rolls back on any failure."""
    async with application_lock(lock_key):
        try:
            yield
        except Exception:
            await repo.rollback()
            raise


async def resolve_target(repo: QueryRepository, query_id: str) -> str:
    if not query_id:
        raise ValidationError("Query id is required", field="query_id")
    application_id = await repo.resolve_application_id(query_id)
    if application_id is None:
        raise QueryNotFound(f"Query {query_id} not found", query_id=query_id)
    return application_id


async def load_target(
    repo: QueryRepository, query_id: str, *, for_update: bool = True,
) -> tuple[QueryApplication, Optional[Query], list[Query]]:
    """Load ``(application, query, targets)`` for a query or application id."""
    application, query = await repo.find_query(query_id, for_update=for_update)
    if application is None or (query is None and application.id != query_id):
        raise QueryNotFound(f"Query {query_id} not found", query_id=query_id)
    targets = [query] if query is not None else list(application.queries)
    return application, query, targets


# ── raiseQuery ───────────────────────────────────────────────

async def raise_query(
    db: AsyncSession,
    principal: Principal,
    *,
    app_no: str,
    queries: Iterable[str],
    send_to,
    branch_code: str,
    customer_name: str = "",
    branch: Optional[str] = None,
    loan_amount: Optional[Decimal] = None,
    loan_type: Optional[str] = None,
) -> QueryApplication:
    if principal.role != Role.OPERATIONS:
        raise AuthorizationError("Only Operations can raise queries")

    app_no = (app_no or "").strip()
    if not app_no:
        raise ValidationError("Application number is required", field="app_no")
    texts = [t.strip() for t in (queries or []) if t and t.strip()]
    if not texts:
        raise ValidationError("At least one query is required", field="queries")
    teams = parse_team_targets(send_to)
    branch_code = (branch_code or "").strip().upper()
    if not branch_code:
        raise ValidationError("Branch code is required", field="branch_code")
    if loan_amount is not None and loan_amount < 0:
        raise ValidationError("Loan amount cannot be negative", field="loan_amount")

    repo = QueryRepository(db)
    actor = principal.display_name
    async with mutation(repo, f"app_no:{app_no}"):
        if await repo.get_application_by_app_no(app_no) is not None:
            raise ValidationError(f"Application {app_no} already exists", field="app_no")

        now = utcnow()
        application = QueryApplication(
            id=new_id("app"),
            app_no=app_no,
            customer_name=(customer_name or "").strip(),
            branch=(branch or "").strip() or branch_code,
            branch_code=branch_code,
            send_to_sales=Team.SALES in teams,
            send_to_credit=Team.CREDIT in teams,
            marked_for_team=marked_for_team(teams).value,
            loan_amount=loan_amount,
            loan_type=clean_text(loan_type),
            status=ApplicationStatus.PENDING.value,
            is_resolved=False,
            submitted_by=actor,
            submitted_at=now,
            last_updated=now,
            queries=[
                Query(
                    id=new_id("qry"),
                    position=position,
                    text=text,
                    status=QueryStatus.PENDING.value,
                    sender=actor,
                    sender_role=principal.role.value,
                    timestamp=now,
                    is_resolved=False,
                    last_updated=now,
                )
                for position, text in enumerate(texts)
            ],
        )
        await repo.add_application(application)

        send_to_names = sorted(t.value.title() for t in teams)
        for query in application.queries:
            await append_event(
                repo,
                query_id=query.id,
                application_id=application.id,
                actor=actor,
                actor_role=principal.role.value,
                team=principal.team_label,
                message=render_query_raised(app_no, query.text, actor, send_to_names),
                payload=QueryRaisedPayload(app_no=app_no, text=query.text, send_to=send_to_names),
                timestamp=now,
            )
        await repo.commit()

    logger.info(
        "Query raised on %s by %s: %d item(s) for %s",
        app_no, actor, len(texts), application.marked_for_team,
    )
    return application


# ── applyDirectAction ────────────────────────────────────────

async def apply_action(
    repo: QueryRepository,
    application: QueryApplication,
    targets: list[Query],
    action: QueryAction,
    *,
    actor: str,
    actor_role: str,
    team: Optional[str] = None,
    assigned_to: Optional[str] = None,
    remarks: Optional[str] = None,
    request_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """Move ``targets`` to the action's terminal status and log it.

    Callers must hold the application lock and have checked authority.
    """
    now = now or utcnow()
    status = ACTION_TO_STATUS[action]
    for query in targets:
        query.status = status.value
        query.is_resolved = True
        query.resolved_by = actor
        query.resolved_at = now
        query.resolution_reason = action.value
        query.resolution_type = ACTION_TO_RESOLUTION_TYPE[action]
        query.assigned_to = assigned_to
        query.remarks = remarks
        query.last_updated = now
    recompute_application(application, actor, now)

    message = render_direct_action(actor, action, now, assigned_to, remarks)
    for query in targets:
        await append_event(
            repo,
            query_id=query.id,
            application_id=application.id,
            actor=actor,
            actor_role=actor_role,
            team=team,
            message=message,
            payload=DirectActionPayload(
                action_type=action,
                assigned_to=assigned_to,
                remarks=remarks or "",
                request_id=request_id,
            ),
            timestamp=now,
        )


async def apply_direct_action(
    db: AsyncSession,
    principal: Principal,
    query_id: str,
    action: QueryAction | str,
    *,
    assigned_to: Optional[str] = None,
    remarks: Optional[str] = None,
) -> Query | QueryApplication:
    action = parse_action(action)
    if not principal.can_take_action(action):
        if principal.role == Role.OPERATIONS:
            raise AuthorizationError(
                f"Operations must submit an approval request to {action.value} a query",
            )
        raise AuthorizationError(f"{principal.team_label} caller cannot {action.value} queries")

    repo = QueryRepository(db)
    application_id = await resolve_target(repo, query_id)
    async with mutation(repo, application_id):
        application, query, targets = await load_target(repo, query_id)
        require_visibility(application, principal)
        await apply_action(
            repo, application, targets, action,
            actor=principal.display_name,
            actor_role=principal.role.value,
            team=principal.team_label,
            assigned_to=clean_text(assigned_to),
            remarks=clean_text(remarks),
        )
        await repo.commit()

    logger.info(
        "%s applied %s to %s (%s now %s)",
        principal.display_name, action.value, query_id, application.app_no, application.status,
    )
    return query if query is not None else application


# ── revert ───────────────────────────────────────────────────

async def revert(
    db: AsyncSession,
    principal: Principal,
    query_id: str,
    remarks: Optional[str],
    *,
    team: Optional[str] = None,
) -> Query | QueryApplication:
    reason = (remarks or "").strip()
    if not reason:
        raise MissingReason("A reason is required to revert a query", field="remarks")

    repo = QueryRepository(db)
    application_id = await resolve_target(repo, query_id)
    async with mutation(repo, application_id):
        application, query, targets = await load_target(repo, query_id)
        require_visibility(application, principal)

        now = utcnow()
        actor = principal.display_name
        previous = {}
        for item in targets:
            previous[item.id] = item.status
            item.status = QueryStatus.PENDING.value
            item.is_resolved = False
            item.resolved_by = None
            item.resolved_at = None
            item.resolution_reason = None
            item.resolution_type = None
            item.assigned_to = None
            item.remarks = None
            item.reverted_at = now
            item.reverted_by = actor
            item.revert_reason = reason
            item.last_updated = now
        recompute_application(application, actor, now)

        team_name = clean_text(team) or principal.team_label
        message = render_revert(team_name, actor, reason, now)
        for item in targets:
            await append_event(
                repo,
                query_id=item.id,
                application_id=application.id,
                actor=actor,
                actor_role=principal.role.value,
                team=team_name,
                message=message,
                payload=RevertPayload(
                    revert_reason=reason,
                    reverted_by=actor,
                    previous_status=previous[item.id],
                ),
                timestamp=now,
            )
        await repo.commit()

    logger.info("%s reverted %s on %s: %s", actor, query_id, application.app_no, reason)
    return query if query is not None else application


# ── postMessage ──────────────────────────────────────────────

async def post_message(
    db: AsyncSession,
    principal: Principal,
    query_id: str,
    text: Optional[str],
) -> QueryEvent:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message text is required", field="text")

    repo = QueryRepository(db)
    application_id = await resolve_target(repo, query_id)
    # Locked so the message takes its place in the per-query event order
    async with mutation(repo, application_id):
        application, _query, _targets = await load_target(repo, query_id, for_update=False)
        require_visibility(application, principal)
        event = await append_event(
            repo,
            query_id=query_id,
            application_id=application.id,
            actor=principal.display_name,
            actor_role=principal.role.value,
            team=principal.team_label,
            payload=MessagePayload(text=text),
        )
        await repo.commit()
    return event


# ── Reads ────────────────────────────────────────────────────

async def list_applications(
    db: AsyncSession,
    principal: Principal,
    *,
    team: Optional[str] = None,
    branch: Optional[str] = None,
    status: Optional[str] = None,
    app_no: Optional[str] = None,
) -> list[QueryApplication]:
    """Applications matching the filters that the caller is allowed to see."""
    try:
        team_filter = Team(team.strip().lower()) if team else None
    except ValueError:
        raise ValidationError(f"Unknown team '{team}'", field="team")
    try:
        status_filter = ApplicationStatus(status.strip().lower()) if status else None
    except ValueError:
        raise ValidationError(f"Unknown status '{status}'", field="status")

    repo = QueryRepository(db)
    applications = await repo.list_applications(
        status=status_filter.value if status_filter else None,
        app_no=(app_no or "").strip() or None,
        branch_code=(branch or "").strip() or None,
        team=team_filter,
    )
    return filter_visible(applications, principal)


async def get_application_for(
    db: AsyncSession, principal: Principal, query_id: str,
) -> QueryApplication:
    application, _query, _targets = await load_target(
        QueryRepository(db), query_id, for_update=False,
    )
    require_visibility(application, principal)
    return application


async def application_statistics(db: AsyncSession, principal: Principal) -> dict:
    """Dashboard counts over the caller's visible applications.

    A storage failure yields zeroed counts flagged ``degraded``.
    """
    try:
        applications = filter_visible(await QueryRepository(db).list_applications(), principal)
    except StorageError as e:
        logger.warning("Statistics unavailable, returning degraded view: %s", e)
        stats = empty_statistics()
        stats["degraded"] = True
        return stats
    stats = compute_statistics(applications)
    stats["degraded"] = False
    return stats


# ── Serialization ────────────────────────────────────────────

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def query_to_dict(query: Query) -> dict:
    return {
        "id": query.id,
        "application_id": query.application_id,
        "position": query.position,
        "text": query.text,
        "status": query.status,
        "sender": query.sender,
        "sender_role": query.sender_role,
        "timestamp": _iso(query.timestamp),
        "is_resolved": query.is_resolved,
        "resolved_by": query.resolved_by,
        "resolved_at": _iso(query.resolved_at),
        "resolution_reason": query.resolution_reason,
        "resolution_type": query.resolution_type,
        "assigned_to": query.assigned_to,
        "remarks": query.remarks,
        "reverted_at": _iso(query.reverted_at),
        "reverted_by": query.reverted_by,
        "revert_reason": query.revert_reason,
        "last_updated": _iso(query.last_updated),
    }


def application_to_dict(application: QueryApplication) -> dict:
    return {
        "id": application.id,
        "app_no": application.app_no,
        "customer_name": application.customer_name,
        "branch": application.branch,
        "branch_code": application.branch_code,
        "send_to_sales": application.send_to_sales,
        "send_to_credit": application.send_to_credit,
        "marked_for_team": application.marked_for_team,
        "loan_amount": float(application.loan_amount) if application.loan_amount is not None else None,
        "loan_type": application.loan_type,
        "status": application.status,
        "is_resolved": application.is_resolved,
        "resolved_at": _iso(application.resolved_at),
        "resolved_by": application.resolved_by,
        "resolution_reason": application.resolution_reason,
        "submitted_by": application.submitted_by,
        "submitted_at": _iso(application.submitted_at),
        "last_updated": _iso(application.last_updated),
        "queries": [query_to_dict(q) for q in application.queries],
    }
