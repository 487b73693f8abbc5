"""Approval request API: Operations submits, Management decides."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query as QueryParam
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.common import ok
from app.auth_utils import Principal, get_current_principal, require_roles
from app.database import get_db
from app.models.query import Role
from app.services import approval_workflow

logger = logging.getLogger(__name__)

router = APIRouter()

QUEUE_ROLES = (Role.MANAGEMENT, Role.OPERATIONS)


class SubmitRequestBody(BaseModel):
    query_id: Optional[str] = None
    request_type: Optional[str] = None
    assigned_to: Optional[str] = None
    remarks: Optional[str] = None


class DecisionBody(BaseModel):
    decision: Optional[str] = None
    remarks: Optional[str] = None
    assigned_to: Optional[str] = None


@router.post("", status_code=201)
async def submit_request(
    body: SubmitRequestBody,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    request = await approval_workflow.submit_request(
        db, principal, body.query_id or "", body.request_type or "",
        assigned_to=body.assigned_to, remarks=body.remarks,
    )
    return ok(approval_workflow.request_to_dict(request))


@router.get("")
async def list_pending(
    query_id: Optional[str] = QueryParam(None),
    principal: Principal = Depends(require_roles(*QUEUE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Management dashboard queue: undecided requests, newest first."""
    return ok(await approval_workflow.list_pending_requests(db, principal, query_id))


@router.post("/{request_id}/decision")
async def decide_request(
    request_id: str,
    body: DecisionBody,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    request = await approval_workflow.decide(
        db, principal, request_id, body.decision or "",
        remarks=body.remarks, assigned_to=body.assigned_to,
    )
    return ok(approval_workflow.request_to_dict(request))
