"""Append-only event log for queries.

The log is the only record of what happened to a query: resolution and revert
overwrite the query's own fields, so chat history and the audit trail are read
from here.  Entries are never updated or deleted.

Each entry carries a rendered, human-readable ``message`` (shown verbatim in
chat views) and a structured ``payload`` drawn from the tagged union below.
"""

import logging
from datetime import datetime, timedelta
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import Principal
from app.config import settings
from app.models.approval import ApprovalRequest, Decision, RequestType
from app.models.query import QueryAction, QueryApplication
from app.models.query_event import EventKind, QueryEvent
from app.services.query_errors import QueryNotFound, ValidationError
from app.services.query_repository import QueryRepository
from app.services.query_routing import filter_visible, require_visibility
from app.services.query_status import utcnow

logger = logging.getLogger(__name__)


# ── Payloads ─────────────────────────────────────────────────

class QueryRaisedPayload(BaseModel):
    type: Literal["query_raised"] = "query_raised"
    app_no: str
    text: str
    send_to: list[str]


class DirectActionPayload(BaseModel):
    type: Literal["direct_action"] = "direct_action"
    action_type: QueryAction
    assigned_to: Optional[str] = None
    remarks: str = ""
    request_id: Optional[str] = None


class RevertPayload(BaseModel):
    type: Literal["revert"] = "revert"
    revert_reason: str = Field(min_length=1)
    reverted_by: str
    previous_status: str


class MessagePayload(BaseModel):
    type: Literal["message"] = "message"
    text: str = Field(min_length=1)


class RequestSubmissionPayload(BaseModel):
    type: Literal["request_submission"] = "request_submission"
    request_id: str
    request_type: RequestType
    priority: str
    assigned_to: Optional[str] = None
    remarks: str = ""


class RequestDecisionPayload(BaseModel):
    type: Literal["request_decision"] = "request_decision"
    request_id: str
    request_type: RequestType
    decision: Decision
    requested_by: str
    remarks: Optional[str] = None


EventPayload = Annotated[
    Union[
        QueryRaisedPayload,
        DirectActionPayload,
        RevertPayload,
        MessagePayload,
        RequestSubmissionPayload,
        RequestDecisionPayload,
    ],
    Field(discriminator="type"),
]

_payload_adapter = TypeAdapter(EventPayload)

KIND_FOR_PAYLOAD = {
    "query_raised": EventKind.MESSAGE,
    "direct_action": EventKind.ACTION,
    "revert": EventKind.REVERT,
    "message": EventKind.MESSAGE,
    "request_submission": EventKind.REQUEST,
    "request_decision": EventKind.REQUEST,
}


def parse_payload(data: dict) -> EventPayload:
    return _payload_adapter.validate_python(data)


# ── Rendering ────────────────────────────────────────────────

def format_timestamp(value: datetime) -> str:
    return value.strftime("%B %d, %Y at %I:%M %p")


def _truncate(text: str, limit: int = 100) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _format_amount(amount) -> str:
    if amount is None:
        return "Amount: Not specified"
    return f"Loan Amount: {float(amount):,.2f}"


def render_query_raised(app_no: str, text: str, sender: str, send_to: list[str]) -> str:
    return (
        f"Query raised by {sender} on application {app_no}\n\n"
        f"Sent to: {', '.join(send_to)}\n"
        f"Query: {text}"
    )


def render_direct_action(
    actor: str,
    action: QueryAction,
    at: datetime,
    assigned_to: Optional[str] = None,
    remarks: Optional[str] = None,
) -> str:
    remarks_line = f"Remarks: {remarks or 'No additional remarks'}"
    when = format_timestamp(at)
    if action == QueryAction.APPROVE:
        return (
            f"Query APPROVED by {actor}\n\n{remarks_line}\n\n"
            f"Approved on: {when}\n\n"
            "Query has been moved to Query Resolved section."
        )
    assigned_line = f"Assigned to: {assigned_to or 'Not specified'}"
    if action == QueryAction.DEFERRAL:
        return (
            f"Query DEFERRED by {actor}\n\n{assigned_line}\n{remarks_line}\n\n"
            f"Deferred on: {when}\n\n"
            "Query has been moved to Query Resolved section with Deferral status."
        )
    return (
        f"Query marked as OTC by {actor}\n\n{assigned_line}\n{remarks_line}\n\n"
        f"OTC assigned on: {when}\n\n"
        "Query has been moved to Query Resolved section with OTC status."
    )


_REQUEST_REMARK_LABELS = {
    RequestType.APPROVE.value: ("Remarks", "No additional remarks"),
    RequestType.DEFERRAL.value: ("Deferral Reason", "No specific reason provided"),
    RequestType.OTC.value: ("OTC Justification", "High-value transaction requiring OTC approval"),
}


def render_request(request: ApprovalRequest, at: datetime) -> str:
    label, fallback = _REQUEST_REMARK_LABELS[request.request_type]
    lines = [
        f"{request.request_type.upper().replace('APPROVE', 'APPROVAL')} REQUEST "
        f"sent to Management by {request.requested_by}",
        "",
        f"Application: {request.app_no}",
        f"Customer: {request.customer_name}",
        f"Branch: {request.branch} ({request.branch_code})",
        _format_amount(request.loan_amount),
        f"Loan Type: {request.loan_type}" if request.loan_type else "Type: Standard Loan",
    ]
    if request.request_type == RequestType.OTC.value:
        lines.append(f"Priority: {request.priority.upper()}")
        default_assignee = "Senior Manager"
    else:
        default_assignee = "Not specified"
    lines += [
        f"Proposed assignment: {request.assigned_to or default_assignee}",
        f"{label}: {request.remarks or fallback}",
        f"Query: {_truncate(request.query_text)}",
        "",
        f"Requested on: {format_timestamp(at)}",
        "",
        "Waiting for Management approval...",
    ]
    return "\n".join(lines)


def render_decision(
    request: ApprovalRequest,
    decision: Decision,
    processed_by: str,
    at: datetime,
    remarks: Optional[str] = None,
) -> str:
    kind = request.request_type.upper()
    if decision == Decision.APPROVE:
        return (
            f"MANAGEMENT APPROVED the {kind} request by {processed_by}\n\n"
            f"Management Remarks: {remarks or 'No additional remarks'}\n\n"
            f"Approved on: {format_timestamp(at)}\n\n"
            f"Original request by: {request.requested_by}"
        )
    return (
        f"MANAGEMENT REJECTED the {kind} request by {processed_by}\n\n"
        f"Rejection Reason: {remarks or 'No reason provided'}\n\n"
        f"Rejected on: {format_timestamp(at)}\n\n"
        f"Original request by: {request.requested_by}\n\n"
        "Query remains in pending status."
    )


def render_revert(team_name: str, actor: str, reason: str, at: datetime) -> str:
    return (
        f"Query Reverted by {team_name}\n\n"
        f"Reverted by: {actor}\n"
        f"Reverted on: {format_timestamp(at)}\n"
        f"Reason: {reason}\n\n"
        "This query has been reverted back to pending status and will need to be "
        "processed again by the appropriate team."
    )


# ── Append / list ────────────────────────────────────────────

async def append_event(
    repo: QueryRepository,
    *,
    query_id: str,
    application_id: str,
    actor: str,
    actor_role: str,
    payload: EventPayload,
    message: Optional[str] = None,
    team: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> QueryEvent:
    """Append one entry.  Never consults workflow state."""
    if not query_id:
        raise ValidationError("Event requires a query id", field="query_id")
    if not actor or not actor.strip():
        raise ValidationError("Event requires an actor", field="actor")

    kind = KIND_FOR_PAYLOAD[payload.type]
    if message is None:
        message = payload.text if isinstance(payload, MessagePayload) else ""
    event = QueryEvent(
        query_id=query_id,
        application_id=application_id,
        kind=kind.value,
        actor=actor,
        actor_role=actor_role,
        team=team,
        message=message,
        is_system=not isinstance(payload, MessagePayload),
        payload=payload.model_dump(mode="json"),
        timestamp=timestamp or utcnow(),
    )
    return await repo.append_event(event)


def event_to_dict(event: QueryEvent, application: Optional[QueryApplication] = None) -> dict:
    out = {
        "id": event.id,
        "query_id": event.query_id,
        "application_id": event.application_id,
        "kind": event.kind,
        "actor": event.actor,
        "actor_role": event.actor_role,
        "team": event.team,
        "message": event.message,
        "is_system": event.is_system,
        "payload": event.payload,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
    }
    if application is not None:
        out["app_no"] = application.app_no
        out["customer_name"] = application.customer_name
        out["branch"] = application.branch
    return out


async def list_events(
    db: AsyncSession,
    principal: Principal,
    query_id: str,
    *,
    newest_first: bool = False,
) -> list[QueryEvent]:
    """Events for one query, or for every query when given an application id."""
    repo = QueryRepository(db)
    application, query = await repo.find_query(query_id)
    if application is None or (query is None and application.id != query_id):
        raise QueryNotFound(f"Query {query_id} not found", query_id=query_id)
    require_visibility(application, principal)

    if query is None:
        return await repo.list_events(application_ids=[application.id], newest_first=newest_first)
    return await repo.list_events(query_id=query.id, newest_first=newest_first)


async def recent_activity(
    db: AsyncSession,
    principal: Principal,
    *,
    since: Optional[datetime] = None,
    limit: Optional[int] = None,
    exclude_system: bool = False,
) -> list[dict]:
    """Newest-first activity feed across the applications the caller can see."""
    repo = QueryRepository(db)
    if since is None:
        since = utcnow() - timedelta(hours=settings.notification_window_hours)
    visible = {a.id: a for a in filter_visible(await repo.list_applications(), principal)}
    if not visible:
        return []
    events = await repo.list_events(
        application_ids=list(visible),
        since=since,
        exclude_system=exclude_system,
        newest_first=True,
        limit=limit or settings.recent_activity_limit,
    )
    return [event_to_dict(e, visible.get(e.application_id)) for e in events]
