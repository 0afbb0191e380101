"""Tests for the booking status transition guard."""

import pytest

from roomly.domain.transitions import DenyReason, can_transition


class TestConfirm:
    @pytest.mark.parametrize("current", ["pending", "paid"])
    def test_allowed_with_completed_payment_and_verified_identity(self, current):
        decision = can_transition(current, "completed", True, "confirmed")
        assert decision.allowed
        assert decision.reason is None

    def test_denied_when_identity_not_verified(self):
        decision = can_transition("paid", "completed", False, "confirmed")
        assert not decision.allowed
        assert decision.reason == DenyReason.IDENTITY_NOT_VERIFIED

    @pytest.mark.parametrize("payment_status", ["pending", "created", "failed", "refunded"])
    def test_denied_when_payment_not_completed(self, payment_status):
        decision = can_transition("paid", payment_status, True, "confirmed")
        assert not decision.allowed
        assert decision.reason == DenyReason.PAYMENT_NOT_COMPLETED

    def test_payment_checked_before_identity(self):
        decision = can_transition("pending", "pending", False, "confirmed")
        assert decision.reason == DenyReason.PAYMENT_NOT_COMPLETED

    def test_cancelled_cannot_be_confirmed(self):
        decision = can_transition("cancelled", "completed", True, "confirmed")
        assert decision.reason == DenyReason.INVALID_TRANSITION


class TestCancel:
    @pytest.mark.parametrize("current", ["pending", "paid", "confirmed"])
    def test_allowed_from_non_terminal(self, current):
        assert can_transition(current, "completed", False, "cancelled").allowed

    def test_pending_cancel_needs_no_payment(self):
        assert can_transition("pending", "pending", False, "cancelled").allowed


class TestInvalid:
    @pytest.mark.parametrize("status", ["pending", "paid", "confirmed", "cancelled"])
    def test_self_transitions_denied(self, status):
        decision = can_transition(status, "completed", True, status)
        assert decision.reason == DenyReason.INVALID_TRANSITION

    @pytest.mark.parametrize("current", ["paid", "confirmed", "cancelled"])
    def test_nothing_moves_into_pending(self, current):
        decision = can_transition(current, "completed", True, "pending")
        assert decision.reason == DenyReason.INVALID_TRANSITION

    def test_confirmed_does_not_regress_to_paid(self):
        decision = can_transition("confirmed", "completed", True, "paid")
        assert decision.reason == DenyReason.INVALID_TRANSITION

    def test_unknown_status_denied(self):
        decision = can_transition("pending", "completed", True, "verified")
        assert decision.reason == DenyReason.INVALID_TRANSITION


class TestPaid:
    def test_pending_to_paid_requires_completed_payment(self):
        assert can_transition("pending", "completed", False, "paid").allowed
        decision = can_transition("pending", "pending", False, "paid")
        assert decision.reason == DenyReason.PAYMENT_NOT_COMPLETED
