"""Tests for approval request priority rules (first match wins)."""

from decimal import Decimal

import pytest

from app.services.approval_workflow import determine_request_priority, merge_approval_remarks


class TestPriorityRules:

    @pytest.mark.parametrize("amount", [None, 0, 2_000_000, 9_000_000])
    def test_otc_always_high(self, amount):
        assert determine_request_priority("otc", amount, "nothing special").value == "high"

    def test_otc_beats_urgent_text(self):
        assert determine_request_priority("otc", None, "URGENT please").value == "high"

    def test_large_amount_is_high(self):
        assert determine_request_priority("approve", Decimal("6000000"), "").value == "high"

    def test_medium_amount_is_medium_even_if_urgent(self):
        assert determine_request_priority("deferral", 2_000_000, "urgent").value == "medium"

    def test_threshold_is_exclusive(self):
        assert determine_request_priority("deferral", 5_000_000, "").value == "medium"
        assert determine_request_priority("deferral", 1_000_000, "").value == "low"

    @pytest.mark.parametrize("text", [
        "Customer needs this ASAP",
        "Emergency medical expense",
        "critical document missing",
        "Immediate disbursal requested",
    ])
    def test_urgent_keywords(self, text):
        assert determine_request_priority("deferral", 100_000, text).value == "urgent"

    def test_fallback_by_type(self):
        assert determine_request_priority("approve", None, "routine").value == "medium"
        assert determine_request_priority("deferral", None, "routine").value == "low"


class TestApprovalRemarks:

    def test_appends_management_note(self):
        merged = merge_approval_remarks("Docs verified", "Looks fine")
        assert merged == "Docs verified\n\n[Management Approval] Looks fine"

    def test_default_note_without_original(self):
        assert merge_approval_remarks(None, None) == "[Management Approval] Approved by Management"
