"""Two-phase approval of query actions.

Operations submits a request (approve, deferral or OTC) which has no effect on
the query until Management decides it.  Approving applies the action through
the transition engine inside the same critical section; rejecting leaves the
query pending and records the reason.  A request is decided exactly once.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import ACTION_PERMISSIONS, Principal
from app.config import settings
from app.models.approval import (
    ApprovalRequest, Decision, RequestPriority, RequestStatus, RequestType,
)
from app.models.query import QueryAction, Role
from app.services.event_log import (
    RequestDecisionPayload, RequestSubmissionPayload, append_event,
    render_decision, render_request,
)
from app.services.query_engine import (
    apply_action, clean_text, load_target, mutation, new_id, resolve_target,
)
from app.services.query_errors import (
    AuthorizationError, RequestAlreadyProcessed, RequestNotFound,
    StorageError, ValidationError,
)
from app.services.query_repository import QueryRepository
from app.services.query_routing import can_view_requests, require_visibility
from app.services.query_status import utcnow

logger = logging.getLogger(__name__)

MANAGEMENT_APPROVAL_PREFIX = "[Management Approval]"
UNKNOWN_STATUS = "unknown"


def determine_request_priority(
    request_type: RequestType | str,
    loan_amount: Optional[Decimal | float],
    query_text: Optional[str],
) -> RequestPriority:
    """Ordered rules, first match wins."""
    request_type = RequestType(request_type)

    if request_type == RequestType.OTC:
        return RequestPriority.HIGH

    amount = float(loan_amount or 0)
    if amount > settings.priority_high_amount:
        return RequestPriority.HIGH
    if amount > settings.priority_medium_amount:
        return RequestPriority.MEDIUM

    text = (query_text or "").lower()
    if any(keyword in text for keyword in settings.urgent_keyword_list):
        return RequestPriority.URGENT

    if request_type == RequestType.APPROVE:
        return RequestPriority.MEDIUM
    if request_type == RequestType.DEFERRAL:
        return RequestPriority.LOW
    return RequestPriority.MEDIUM


def _parse_request_type(value) -> RequestType:
    try:
        return RequestType(value)
    except ValueError:
        raise ValidationError(f"Unknown request type '{value}'", field="request_type")


def _parse_decision(value) -> Decision:
    try:
        return Decision(value)
    except ValueError:
        raise ValidationError(f"Unknown decision '{value}'", field="decision")


def merge_approval_remarks(original: Optional[str], management_remarks: Optional[str]) -> str:
    note = f"{MANAGEMENT_APPROVAL_PREFIX} {management_remarks or 'Approved by Management'}"
    return f"{original}\n\n{note}" if original else note


# ── submitApprovalRequest ────────────────────────────────────

async def submit_request(
    db: AsyncSession,
    principal: Principal,
    query_id: str,
    request_type: RequestType | str,
    *,
    assigned_to: Optional[str] = None,
    remarks: Optional[str] = None,
) -> ApprovalRequest:
    if principal.role != Role.OPERATIONS:
        raise AuthorizationError("Only Operations can submit approval requests")
    request_type = _parse_request_type(request_type)

    repo = QueryRepository(db)
    application_id = await resolve_target(repo, query_id)
    async with mutation(repo, application_id):
        application, query, targets = await load_target(repo, query_id, for_update=False)
        require_visibility(application, principal)

        query_text = (query or application.queries[0]).text
        now = utcnow()
        request = ApprovalRequest(
            id=new_id("req"),
            query_id=query_id,
            application_id=application.id,
            request_type=request_type.value,
            assigned_to=clean_text(assigned_to),
            remarks=clean_text(remarks),
            requested_by=principal.display_name,
            request_date=now,
            status=RequestStatus.PENDING.value,
            priority=determine_request_priority(
                request_type, application.loan_amount, query_text,
            ).value,
            app_no=application.app_no,
            customer_name=application.customer_name,
            branch=application.branch,
            branch_code=application.branch_code,
            marked_for_team=application.marked_for_team,
            loan_amount=application.loan_amount,
            loan_type=application.loan_type,
            query_text=query_text,
        )
        await repo.add_request(request)
        message = render_request(request, now)
        # One entry per affected query so each chat shows the pending request
        for target in targets:
            await append_event(
                repo,
                query_id=target.id,
                application_id=application.id,
                actor=principal.display_name,
                actor_role=principal.role.value,
                team=principal.team_label,
                message=message,
                payload=RequestSubmissionPayload(
                    request_id=request.id,
                    request_type=request_type,
                    priority=request.priority,
                    assigned_to=request.assigned_to,
                    remarks=request.remarks or "",
                ),
                timestamp=now,
            )
        await repo.commit()

    logger.info(
        "Approval request %s (%s, %s priority) raised on %s by %s",
        request.id, request.request_type, request.priority, request.app_no, request.requested_by,
    )
    return request


# ── decideApprovalRequest ────────────────────────────────────

async def decide(
    db: AsyncSession,
    principal: Principal,
    request_id: str,
    decision: Decision | str,
    *,
    remarks: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> ApprovalRequest:
    decision = _parse_decision(decision)
    if principal.role != Role.MANAGEMENT:
        raise AuthorizationError("Only Management can decide approval requests")

    repo = QueryRepository(db)
    request = await repo.get_request(request_id)
    if request is None:
        raise RequestNotFound(f"Approval request {request_id} not found", request_id=request_id)
    action = QueryAction(request.request_type)
    if not principal.has_permission(ACTION_PERMISSIONS[action]):
        raise AuthorizationError(
            f"Missing permission to decide {request.request_type} requests",
        )

    remarks = clean_text(remarks)
    async with mutation(repo, request.application_id):
        request = await repo.get_request(request_id, for_update=True)
        if request is None:
            raise RequestNotFound(f"Approval request {request_id} not found", request_id=request_id)
        if request.status != RequestStatus.PENDING.value:
            raise RequestAlreadyProcessed(
                f"Approval request {request_id} was already {request.status}",
                request_id=request_id,
                status=request.status,
            )

        now = utcnow()
        processed_by = principal.display_name
        request.status = (
            RequestStatus.APPROVED if decision == Decision.APPROVE else RequestStatus.REJECTED
        ).value
        request.processed_by = processed_by
        request.process_date = now
        request.decision_remarks = remarks

        application, _query, targets = await load_target(repo, request.query_id)
        message = render_decision(request, decision, processed_by, now, remarks)
        for target in targets:
            await append_event(
                repo,
                query_id=target.id,
                application_id=application.id,
                actor=processed_by,
                actor_role=principal.role.value,
                team=principal.team_label,
                message=message,
                payload=RequestDecisionPayload(
                    request_id=request.id,
                    request_type=RequestType(request.request_type),
                    decision=decision,
                    requested_by=request.requested_by,
                    remarks=remarks,
                ),
                timestamp=now,
            )

        if decision == Decision.APPROVE:
            await apply_action(
                repo, application, targets, action,
                actor=f"{processed_by} (via {request.requested_by})",
                actor_role=principal.role.value,
                team=principal.team_label,
                assigned_to=clean_text(assigned_to) or request.assigned_to,
                remarks=merge_approval_remarks(request.remarks, remarks),
                request_id=request.id,
                now=now,
            )
        await repo.commit()

    logger.info("Approval request %s %s by %s", request.id, request.status, processed_by)
    return request


# ── listPendingRequests ──────────────────────────────────────

def request_to_dict(request: ApprovalRequest) -> dict:
    return {
        "id": request.id,
        "query_id": request.query_id,
        "application_id": request.application_id,
        "request_type": request.request_type,
        "assigned_to": request.assigned_to,
        "remarks": request.remarks,
        "requested_by": request.requested_by,
        "request_date": request.request_date.isoformat() if request.request_date else None,
        "status": request.status,
        "priority": request.priority,
        "app_no": request.app_no,
        "customer_name": request.customer_name,
        "branch": request.branch,
        "branch_code": request.branch_code,
        "marked_for_team": request.marked_for_team,
        "loan_amount": float(request.loan_amount) if request.loan_amount is not None else None,
        "loan_type": request.loan_type,
        "query_text": request.query_text,
        "processed_by": request.processed_by,
        "process_date": request.process_date.isoformat() if request.process_date else None,
        "decision_remarks": request.decision_remarks,
    }


async def list_pending_requests(
    db: AsyncSession,
    principal: Principal,
    query_id: Optional[str] = None,
) -> list[dict]:
    """Undecided requests, newest first, each with its application's current status.

    A failure to load the application context degrades the affected items to
    placeholder values; a failure to load the requests themselves propagates.
    """
    if not can_view_requests(principal):
        raise AuthorizationError(f"{principal.team_label} caller cannot view approval requests")

    repo = QueryRepository(db)
    requests = await repo.list_requests(status=RequestStatus.PENDING.value, query_id=query_id)

    try:
        applications = await repo.get_applications([r.application_id for r in requests])
    except StorageError as e:
        logger.warning("Could not enrich %d approval request(s): %s", len(requests), e)
        applications = {}

    items = []
    for request in requests:
        item = request_to_dict(request)
        application = applications.get(request.application_id)
        if application is None:
            logger.warning(
                "Application %s for request %s unavailable", request.application_id, request.id,
            )
            item["application_status"] = UNKNOWN_STATUS
            item["enriched"] = False
        else:
            item["application_status"] = application.status
            item["enriched"] = True
        items.append(item)
    return items
