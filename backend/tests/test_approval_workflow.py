"""Tests for the two-phase approval workflow."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from app.auth_utils import build_principal
from app.services.approval_workflow import decide, list_pending_requests, submit_request
from app.services.query_errors import (
    AuthorizationError,
    InvalidStateTransition,
    QueryNotFound,
    RequestAlreadyProcessed,
    RequestNotFound,
    StorageError,
    ValidationError,
)
from app.services.query_repository import QueryRepository


async def _events(db, query_id):
    return await QueryRepository(db).list_events(query_id=query_id)


class TestSubmit:

    @pytest.mark.asyncio
    async def test_pending_request_has_no_effect(self, db, make_application, ops):
        application = await make_application()
        q1 = application.queries[0]

        request = await submit_request(db, ops, q1.id, "otc", remarks="High value")

        assert request.status == "pending"
        assert request.priority == "high"
        assert q1.status == "pending"
        assert application.status == "pending"
        pending = await list_pending_requests(db, ops)
        assert [item["id"] for item in pending] == [request.id]

    @pytest.mark.asyncio
    async def test_snapshot_captured(self, db, make_application, ops):
        application = await make_application(loan_amount=Decimal("6000000"), loan_type="LAP")
        request = await submit_request(db, ops, application.queries[1].id, "approve")

        assert request.app_no == "APP-1"
        assert request.customer_name == "Asha Verma"
        assert request.branch_code == "DEL"
        assert request.loan_amount == Decimal("6000000")
        assert request.query_text == "Q2"
        assert request.priority == "high"
        assert request.requested_by == "Operations Team"

    @pytest.mark.asyncio
    async def test_request_event_logged(self, db, make_application, ops):
        application = await make_application()
        q1 = application.queries[0]
        request = await submit_request(db, ops, q1.id, "deferral", assigned_to="Branch Head")

        event = (await _events(db, q1.id))[-1]
        assert event.kind == "request"
        assert event.message.startswith("DEFERRAL REQUEST sent to Management by Operations Team")
        assert event.payload["request_id"] == request.id
        assert event.payload["type"] == "request_submission"

    @pytest.mark.asyncio
    async def test_application_id_uses_first_query_text(self, db, make_application, ops):
        application = await make_application(queries=["urgent: salary slip", "other"])
        request = await submit_request(db, ops, application.id, "deferral")
        assert request.priority == "urgent"
        assert request.query_id == application.id

    @pytest.mark.asyncio
    async def test_blank_remarks_and_assignee_stored_as_none(self, db, make_application, ops):
        application = await make_application()
        request = await submit_request(
            db, ops, application.queries[0].id, "approve", assigned_to="   ", remarks=" ok ",
        )
        assert request.assigned_to is None
        assert request.remarks == "ok"

    @pytest.mark.asyncio
    async def test_application_request_shows_in_every_chat(self, db, make_application, ops):
        application = await make_application()
        request = await submit_request(db, ops, application.id, "approve")

        for query in application.queries:
            last = (await _events(db, query.id))[-1]
            assert last.payload["type"] == "request_submission"
            assert last.payload["request_id"] == request.id
        assert await _events(db, application.id) == []

    @pytest.mark.asyncio
    async def test_only_operations_submit(self, db, make_application, manager):
        application = await make_application()
        with pytest.raises(AuthorizationError):
            await submit_request(db, manager, application.queries[0].id, "approve")

    @pytest.mark.asyncio
    async def test_invalid_type_and_missing_query(self, db, make_application, ops):
        application = await make_application()
        with pytest.raises(ValidationError):
            await submit_request(db, ops, application.queries[0].id, "resolve")
        with pytest.raises(QueryNotFound):
            await submit_request(db, ops, "qry-missing", "approve")


class TestDecide:

    @pytest.mark.asyncio
    async def test_approve_applies_action(self, db, make_application, ops, manager):
        application = await make_application(queries=["Only"])
        query = application.queries[0]
        request = await submit_request(
            db, ops, query.id, "otc", assigned_to="Senior Manager", remarks="Value above limit",
        )

        decided = await decide(db, manager, request.id, "approve", remarks="Fine")

        assert decided.status == "approved"
        assert decided.processed_by == "Priya Manager"
        assert decided.process_date is not None
        assert query.status == "otc"
        assert query.resolved_by == "Priya Manager (via Operations Team)"
        assert query.assigned_to == "Senior Manager"
        assert query.remarks == "Value above limit\n\n[Management Approval] Fine"
        assert application.status == "resolved"

    @pytest.mark.asyncio
    async def test_approve_logs_decision_then_action(self, db, make_application, ops, manager):
        application = await make_application()
        q1 = application.queries[0]
        request = await submit_request(db, ops, q1.id, "approve")
        await decide(db, manager, request.id, "approve")

        kinds = [e.kind for e in await _events(db, q1.id)]
        assert kinds[-3:] == ["request", "request", "action"]
        action = (await _events(db, q1.id))[-1]
        assert action.payload["request_id"] == request.id

    @pytest.mark.asyncio
    async def test_assignee_override(self, db, make_application, ops, manager):
        application = await make_application()
        q1 = application.queries[0]
        request = await submit_request(db, ops, q1.id, "deferral", assigned_to="A")
        await decide(db, manager, request.id, "approve", assigned_to="B")
        assert q1.assigned_to == "B"
        assert q1.status == "deferred"

    @pytest.mark.asyncio
    async def test_reject_leaves_query_pending(self, db, make_application, ops, manager):
        application = await make_application()
        q1 = application.queries[0]
        request = await submit_request(db, ops, q1.id, "approve")

        decided = await decide(db, manager, request.id, "reject", remarks="Docs missing")

        assert decided.status == "rejected"
        assert decided.decision_remarks == "Docs missing"
        assert q1.status == "pending"
        event = (await _events(db, q1.id))[-1]
        assert "Rejection Reason: Docs missing" in event.message
        assert event.payload["decision"] == "reject"
        assert await list_pending_requests(db, manager) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("second", ["approve", "reject"])
    async def test_second_decision_fails(self, db, make_application, ops, manager, second):
        application = await make_application(queries=["Only"])
        query_id = application.queries[0].id
        request = await submit_request(db, ops, query_id, "approve")
        request_id = request.id
        await decide(db, manager, request_id, "approve")
        events_before = len(await _events(db, query_id))

        with pytest.raises(RequestAlreadyProcessed) as exc_info:
            await decide(db, manager, request_id, second)

        assert isinstance(exc_info.value, InvalidStateTransition)
        _, reloaded = await QueryRepository(db).find_query(query_id, for_update=True)
        assert reloaded.status == "approved"
        assert len(await _events(db, query_id)) == events_before

    @pytest.mark.asyncio
    async def test_unknown_request(self, db, manager):
        with pytest.raises(RequestNotFound):
            await decide(db, manager, "req-missing", "approve")

    @pytest.mark.asyncio
    async def test_invalid_decision(self, db, manager):
        with pytest.raises(ValidationError):
            await decide(db, manager, "req-missing", "maybe")

    @pytest.mark.asyncio
    async def test_permission_per_request_type(self, db, make_application, ops):
        application = await make_application()
        request = await submit_request(db, ops, application.queries[0].id, "otc")
        limited = build_principal("m2", "management", permissions=["approve_queries"])

        with pytest.raises(AuthorizationError):
            await decide(db, limited, request.id, "approve")
        with pytest.raises(AuthorizationError):
            await decide(db, ops, request.id, "approve")


class TestPendingQueue:

    @pytest.mark.asyncio
    async def test_newest_first_and_filtered(self, db, make_application, ops, manager):
        first = await make_application(app_no="APP-1")
        second = await make_application(app_no="APP-2")
        r1 = await submit_request(db, ops, first.queries[0].id, "approve")
        r2 = await submit_request(db, ops, second.queries[0].id, "deferral")
        r3 = await submit_request(db, ops, first.queries[1].id, "otc")

        all_ids = [item["id"] for item in await list_pending_requests(db, manager)]
        assert all_ids == [r3.id, r2.id, r1.id]

        by_query = await list_pending_requests(db, manager, first.queries[0].id)
        assert [item["id"] for item in by_query] == [r1.id]

        by_application = await list_pending_requests(db, manager, first.id)
        assert {item["id"] for item in by_application} == {r1.id, r3.id}

    @pytest.mark.asyncio
    async def test_items_carry_application_status(self, db, make_application, ops, manager):
        application = await make_application()
        await submit_request(db, ops, application.queries[0].id, "approve")

        item = (await list_pending_requests(db, manager))[0]
        assert item["application_status"] == "pending"
        assert item["enriched"] is True

    @pytest.mark.asyncio
    async def test_enrichment_failure_uses_placeholders(self, db, make_application, ops, manager):
        application = await make_application()
        await submit_request(db, ops, application.queries[0].id, "approve")

        with patch.object(QueryRepository, "get_applications", side_effect=StorageError("down")):
            items = await list_pending_requests(db, manager)

        assert items[0]["application_status"] == "unknown"
        assert items[0]["enriched"] is False

    @pytest.mark.asyncio
    async def test_list_failure_propagates(self, db, manager):
        with patch.object(QueryRepository, "list_requests", side_effect=StorageError("down")):
            with pytest.raises(StorageError):
                await list_pending_requests(db, manager)

    @pytest.mark.asyncio
    async def test_team_callers_cannot_view_queue(self, db, sales_del):
        with pytest.raises(AuthorizationError):
            await list_pending_requests(db, sales_del)


class TestDecisionAtomicity:

    @pytest.mark.asyncio
    async def test_failed_action_rolls_back_decision(self, db, make_application, ops, manager):
        application = await make_application(queries=["Only"])
        query_id = application.queries[0].id
        request = await submit_request(db, ops, query_id, "otc")
        request_id = request.id
        original_append = QueryRepository.append_event

        async def fail_on_action(self, event):
            if event.payload["type"] == "direct_action":
                raise StorageError("event log unavailable")
            return await original_append(self, event)

        with patch.object(QueryRepository, "append_event", fail_on_action):
            with pytest.raises(StorageError):
                await decide(db, manager, request_id, "approve")

        repo = QueryRepository(db)
        stored = await repo.get_request(request_id, for_update=True)
        assert stored.status == "pending"
        assert stored.processed_by is None
        _, query = await repo.find_query(query_id, for_update=True)
        assert query.status == "pending"
        assert query.resolved_by is None
        payload_types = [e.payload["type"] for e in await _events(db, query_id)]
        assert payload_types == ["query_raised", "request_submission"]

        # The request is still open and can be decided once the log recovers
        decided = await decide(db, manager, request_id, "approve")
        assert decided.status == "approved"
        _, query = await repo.find_query(query_id, for_update=True)
        assert query.status == "otc"

    @pytest.mark.asyncio
    async def test_application_decision_logged_on_every_query(self, db, make_application, ops, manager):
        application = await make_application()
        query_ids = [q.id for q in application.queries]
        request = await submit_request(db, ops, application.id, "deferral")

        await decide(db, manager, request.id, "approve")

        for query_id in query_ids:
            types = [e.payload["type"] for e in await _events(db, query_id)]
            assert types[-3:] == ["request_submission", "request_decision", "direct_action"]
        assert application.status == "resolved"
