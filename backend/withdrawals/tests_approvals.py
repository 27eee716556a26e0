from unittest import mock

from django.db.models.query import QuerySet
from django.test import TestCase

from notifications.models import Notification

from .clock import FrozenClock
from .events import InMemoryEventChannel, ManualApprovalResolved, NotificationEventChannel
from .exceptions import NotFound, PolicyViolation, StateConflict, Unauthorized
from .models import AdHocDelegateCredential, WithdrawalRecord, WithdrawalTransition
from .services.approvals import ApprovalCoordinator
from .services.withdrawal import authorize_manually
from .factories import WithdrawalFixturesMixin


class ApprovalCoordinatorTests(WithdrawalFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.clock = FrozenClock()
        self.events = InMemoryEventChannel()
        self.coordinator = ApprovalCoordinator(events=self.events, clock=self.clock)
        result = authorize_manually(
            inspector=self.inspector,
            student_id=self.student.id,
            reason_id=self.reason.id,
            adhoc_delegate=self.adhoc(),
            unregistered_reason="Apoderado de viaje",
            clock=self.clock,
            events=InMemoryEventChannel(),
        )
        self.withdrawal = result.withdrawal

    def guardian_decides(self, action, guardian=None, comment=""):
        return self.coordinator.resolve_pending_guardian_approval(
            withdrawal_id=self.withdrawal.id,
            guardian=guardian or self.guardian,
            action=action,
            comment=comment,
        )

    def inspector_decides(self, action, inspector=None, comment=""):
        return self.coordinator.finalize_inspector_confirmation(
            withdrawal_id=self.withdrawal.id,
            inspector=inspector or self.inspector,
            action=action,
            comment=comment,
        )

    def test_pending_queues(self):
        self.assertEqual(list(self.coordinator.pending_guardian_decisions(self.guardian)), [self.withdrawal])
        self.assertEqual(list(self.coordinator.pending_guardian_decisions(self.other_guardian)), [])
        self.assertEqual(list(self.coordinator.pending_inspector_confirmations(self.inspector)), [])

    def test_guardian_approval_verifies_delegate(self):
        self.clock.advance(minutes=3)
        with self.captureOnCommitCallbacks(execute=True):
            withdrawal = self.guardian_decides("APPROVE", comment="Es mi vecino")

        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.PENDING)
        self.assertTrue(withdrawal.contact_verified)
        self.assertEqual(withdrawal.guardian_authorizer, self.guardian)
        self.assertIn("Comentario apoderado: Es mi vecino", withdrawal.notes)

        adhoc = AdHocDelegateCredential.objects.get()
        self.assertTrue(adhoc.is_verified)
        self.assertEqual(adhoc.consumed_at, self.clock.now())

        transition = withdrawal.transitions.get(stage=WithdrawalTransition.Stage.GUARDIAN)
        self.assertEqual(transition.from_status, WithdrawalRecord.Status.PENDING)
        self.assertEqual(transition.actor, self.guardian)

        [event] = self.events.of_type(ManualApprovalResolved)
        self.assertEqual(event.stage, "GUARDIAN")
        self.assertEqual(event.action, "APPROVE")
        self.assertTrue(event.contact_verified)
        self.assertEqual(event.comment, "Es mi vecino")

        self.assertEqual(list(self.coordinator.pending_guardian_decisions(self.guardian)), [])
        self.assertEqual(list(self.coordinator.pending_inspector_confirmations(self.inspector)), [withdrawal])

    def test_guardian_denial_deletes_adhoc_credential(self):
        with self.captureOnCommitCallbacks(execute=True):
            withdrawal = self.guardian_decides("DENY")

        withdrawal.refresh_from_db()
        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.DENIED)
        self.assertFalse(withdrawal.contact_verified)
        self.assertIsNone(withdrawal.retriever_adhoc)
        self.assertEqual(withdrawal.retriever_name, "Vecino Juan")
        self.assertEqual(withdrawal.decided_at, self.clock.now())
        self.assertFalse(AdHocDelegateCredential.objects.exists())
        self.assertEqual(self.events.of_type(ManualApprovalResolved)[0].status, WithdrawalRecord.Status.DENIED)

    def test_only_the_students_guardian_can_decide(self):
        with self.assertRaises(Unauthorized):
            self.guardian_decides("APPROVE", guardian=self.other_guardian)

    def test_guardian_cannot_decide_twice(self):
        self.guardian_decides("DENY")
        with self.assertRaises(StateConflict):
            self.guardian_decides("APPROVE")

    def test_invalid_action_is_rejected(self):
        with self.assertRaises(PolicyViolation):
            self.guardian_decides("MAYBE")
        self.withdrawal.refresh_from_db()
        self.assertFalse(self.withdrawal.contact_verified)

    def test_inspector_needs_guardian_confirmation_first(self):
        with self.assertRaises(StateConflict):
            self.inspector_decides("APPROVE")

    def test_inspector_finalizes_after_guardian_approval(self):
        self.guardian_decides("APPROVE")
        self.clock.advance(minutes=10)

        with self.captureOnCommitCallbacks(execute=True):
            withdrawal = self.inspector_decides("APPROVE", comment="Documento revisado")

        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.APPROVED)
        self.assertEqual(withdrawal.decided_at, self.clock.now())
        self.assertEqual(
            list(withdrawal.transitions.values_list("stage", flat=True)),
            ["CREATION", "GUARDIAN", "INSPECTOR"],
        )
        [event] = self.events.of_type(ManualApprovalResolved)
        self.assertEqual(event.stage, "INSPECTOR")
        self.assertEqual(event.status, WithdrawalRecord.Status.APPROVED)

        with self.assertRaises(StateConflict):
            self.inspector_decides("DENY")

    def test_inspector_can_still_deny_after_guardian_approval(self):
        self.guardian_decides("APPROVE")
        withdrawal = self.inspector_decides("DENY")
        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.DENIED)

    def test_inspector_cannot_finalize_after_guardian_denial(self):
        self.guardian_decides("DENY")
        with self.assertRaises(StateConflict):
            self.inspector_decides("APPROVE")
        self.withdrawal.refresh_from_db()
        self.assertEqual(self.withdrawal.status, WithdrawalRecord.Status.DENIED)

    def test_guardian_cannot_decide_after_inspector_finalized(self):
        self.guardian_decides("APPROVE")
        self.inspector_decides("APPROVE")
        with self.assertRaises(StateConflict):
            self.guardian_decides("DENY")

    def test_decisions_lock_the_withdrawal_row(self):
        with mock.patch.object(
            QuerySet, "select_for_update", autospec=True, side_effect=QuerySet.select_for_update
        ) as locked:
            self.guardian_decides("APPROVE")
            self.inspector_decides("APPROVE")

        self.assertEqual(locked.call_count, 2)
        for call in locked.call_args_list:
            self.assertIs(call.args[0].model, WithdrawalRecord)

    def test_only_the_originating_inspector_can_finalize(self):
        self.guardian_decides("APPROVE")
        with self.assertRaises(Unauthorized):
            self.inspector_decides("APPROVE", inspector=self.other_inspector)

    def test_unknown_withdrawal_is_not_found(self):
        with self.assertRaises(NotFound):
            self.coordinator.resolve_pending_guardian_approval(
                withdrawal_id=999999, guardian=self.guardian, action="APPROVE"
            )

    def test_events_wait_for_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            self.guardian_decides("APPROVE")
        self.assertEqual(len(callbacks), 1)
        self.assertEqual(self.events.events, [])


class NotificationEventChannelTests(WithdrawalFixturesMixin, TestCase):
    def test_manual_approval_flow_notifies_both_parties(self):
        channel = NotificationEventChannel()
        with self.captureOnCommitCallbacks(execute=True):
            result = authorize_manually(
                inspector=self.inspector,
                student_id=self.student.id,
                reason_id=self.reason.id,
                adhoc_delegate=self.adhoc(),
                unregistered_reason="Sin delegados",
                events=channel,
            )
        guardian_notice = Notification.objects.get(recipient=self.guardian)
        self.assertEqual(guardian_notice.type, "WITHDRAWAL")
        self.assertIn("Vecino Juan", guardian_notice.body)

        coordinator = ApprovalCoordinator(events=channel)
        with self.captureOnCommitCallbacks(execute=True):
            coordinator.resolve_pending_guardian_approval(
                withdrawal_id=result.withdrawal.id, guardian=self.guardian, action="APPROVE"
            )
        self.assertTrue(Notification.objects.filter(recipient=self.inspector).exists())

        with self.captureOnCommitCallbacks(execute=True):
            coordinator.finalize_inspector_confirmation(
                withdrawal_id=result.withdrawal.id, inspector=self.inspector, action="APPROVE"
            )
        self.assertEqual(Notification.objects.filter(recipient=self.guardian).count(), 2)
