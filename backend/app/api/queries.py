"""Query workflow API: raise, list, act on, revert and discuss queries."""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query as QueryParam
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.common import ok
from app.auth_utils import Principal, get_current_principal
from app.database import get_db
from app.models.query import Query
from app.services import event_log, query_engine
from app.services.query_status import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Pydantic Schemas ─────────────────────────────────────────
# Fields are optional here so that missing input reaches the engine's own
# validation and comes back as a ValidationError envelope.

class RaiseQueryBody(BaseModel):
    app_no: Optional[str] = None
    customer_name: str = ""
    branch: Optional[str] = None
    branch_code: Optional[str] = None
    queries: list[str] = Field(default_factory=list)
    send_to: Union[list[str], str, None] = None
    loan_amount: Optional[Decimal] = None
    loan_type: Optional[str] = None


class ActionBody(BaseModel):
    action: Optional[str] = None
    assigned_to: Optional[str] = None
    remarks: Optional[str] = None


class RevertBody(BaseModel):
    remarks: Optional[str] = None
    team: Optional[str] = None


class MessageBody(BaseModel):
    text: Optional[str] = None


# ── Collection ───────────────────────────────────────────────

@router.post("", status_code=201)
async def raise_query(
    body: RaiseQueryBody,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    application = await query_engine.raise_query(
        db, principal,
        app_no=body.app_no,
        queries=body.queries,
        send_to=body.send_to or [],
        branch_code=body.branch_code,
        customer_name=body.customer_name,
        branch=body.branch,
        loan_amount=body.loan_amount,
        loan_type=body.loan_type,
    )
    return ok(query_engine.application_to_dict(application))


@router.get("")
async def list_applications(
    team: Optional[str] = QueryParam(None),
    branch: Optional[str] = QueryParam(None),
    status: Optional[str] = QueryParam(None),
    app_no: Optional[str] = QueryParam(None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    applications = await query_engine.list_applications(
        db, principal, team=team, branch=branch, status=status, app_no=app_no,
    )
    return ok([query_engine.application_to_dict(a) for a in applications])


@router.get("/stats")
async def statistics(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return ok(await query_engine.application_statistics(db, principal))


@router.get("/activity/recent")
async def recent_activity(
    hours: Optional[int] = QueryParam(None, ge=1, le=24 * 30),
    limit: Optional[int] = QueryParam(None, ge=1, le=500),
    exclude_system: bool = QueryParam(False),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Newest-first activity across visible applications."""
    since = utcnow() - timedelta(hours=hours) if hours else None
    return ok(await event_log.recent_activity(
        db, principal, since=since, limit=limit, exclude_system=exclude_system,
    ))


# ── Single query / application ───────────────────────────────

@router.get("/{query_id}")
async def get_query(
    query_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    application = await query_engine.get_application_for(db, principal, query_id)
    return ok(query_engine.application_to_dict(application))


async def _result(db: AsyncSession, principal: Principal, query_id: str, result) -> dict:
    application = await query_engine.get_application_for(db, principal, query_id)
    return ok({
        "query": query_engine.query_to_dict(result) if isinstance(result, Query) else None,
        "application": query_engine.application_to_dict(application),
    })


@router.post("/{query_id}/actions")
async def apply_action(
    query_id: str,
    body: ActionBody,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    result = await query_engine.apply_direct_action(
        db, principal, query_id, body.action or "",
        assigned_to=body.assigned_to, remarks=body.remarks,
    )
    return await _result(db, principal, query_id, result)


@router.post("/{query_id}/revert")
async def revert_query(
    query_id: str,
    body: RevertBody,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    result = await query_engine.revert(db, principal, query_id, body.remarks, team=body.team)
    return await _result(db, principal, query_id, result)


@router.post("/{query_id}/messages", status_code=201)
async def post_message(
    query_id: str,
    body: MessageBody,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    event = await query_engine.post_message(db, principal, query_id, body.text)
    return ok(event_log.event_to_dict(event))


@router.get("/{query_id}/events")
async def list_events(
    query_id: str,
    order: str = QueryParam("asc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Chat history and audit trail; ``asc`` for display, ``desc`` for feeds."""
    events = await event_log.list_events(
        db, principal, query_id, newest_first=order == "desc",
    )
    return ok([event_log.event_to_dict(e) for e in events])
