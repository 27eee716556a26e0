from django.test import SimpleTestCase

from .exceptions import PolicyViolation, StateConflict
from .models import WithdrawalRecord
from .services.state_machine import (
    WithdrawalState,
    apply_guardian_decision,
    apply_inspector_decision,
    awaits_guardian,
    awaits_inspector,
    initial_state,
)


Method = WithdrawalRecord.Method
Status = WithdrawalRecord.Status
Kind = WithdrawalRecord.RetrieverKind


class InitialStateTests(SimpleTestCase):
    def test_qr_approve_and_deny_are_terminal_and_verified(self):
        approved = initial_state(method=Method.QR, retriever_kind=Kind.USER, decision="APPROVE")
        denied = initial_state(method=Method.QR, retriever_kind=Kind.USER, decision="deny")

        self.assertEqual(approved.status, Status.APPROVED)
        self.assertEqual(denied.status, Status.DENIED)
        self.assertTrue(approved.contact_verified and denied.contact_verified)
        self.assertTrue(approved.is_terminal and denied.is_terminal)

    def test_manual_registered_delegate_is_approved(self):
        state = initial_state(method=Method.MANUAL, retriever_kind=Kind.REGISTERED_DELEGATE)

        self.assertEqual(state.status, Status.APPROVED)
        self.assertTrue(state.contact_verified)

    def test_manual_adhoc_starts_pending_unverified(self):
        state = initial_state(method=Method.MANUAL, retriever_kind=Kind.ADHOC_DELEGATE)

        self.assertEqual(state.status, Status.PENDING)
        self.assertFalse(state.contact_verified)
        self.assertTrue(awaits_guardian(state))
        self.assertFalse(awaits_inspector(state))

    def test_invalid_decision_is_rejected(self):
        with self.assertRaises(PolicyViolation):
            initial_state(method=Method.QR, retriever_kind=Kind.USER, decision="MAYBE")


class DecisionTransitionTests(SimpleTestCase):
    def setUp(self):
        self.pending = initial_state(method=Method.MANUAL, retriever_kind=Kind.ADHOC_DELEGATE)

    def test_guardian_approval_verifies_contact_and_keeps_pending(self):
        state = apply_guardian_decision(self.pending, "APPROVE")

        self.assertEqual(state.status, Status.PENDING)
        self.assertTrue(state.contact_verified)
        self.assertTrue(awaits_inspector(state))

    def test_guardian_denial_is_terminal(self):
        state = apply_guardian_decision(self.pending, "DENY")

        self.assertEqual(state.status, Status.DENIED)
        self.assertFalse(state.contact_verified)
        self.assertTrue(state.is_terminal)

    def test_guardian_cannot_decide_twice(self):
        verified = apply_guardian_decision(self.pending, "APPROVE")
        with self.assertRaises(StateConflict):
            apply_guardian_decision(verified, "APPROVE")

    def test_inspector_requires_guardian_confirmation_first(self):
        with self.assertRaises(StateConflict):
            apply_inspector_decision(self.pending, "APPROVE")

    def test_inspector_finalizes_after_guardian(self):
        verified = apply_guardian_decision(self.pending, "APPROVE")

        self.assertEqual(apply_inspector_decision(verified, "APPROVE").status, Status.APPROVED)
        self.assertEqual(apply_inspector_decision(verified, "DENY").status, Status.DENIED)

    def test_terminal_records_accept_no_decision(self):
        done = WithdrawalState(
            method=Method.MANUAL, status=Status.APPROVED, contact_verified=True, retriever_kind=Kind.ADHOC_DELEGATE
        )
        with self.assertRaises(StateConflict):
            apply_guardian_decision(done, "APPROVE")
        with self.assertRaises(StateConflict):
            apply_inspector_decision(done, "APPROVE")
