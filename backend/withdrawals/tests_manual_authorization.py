from unittest import mock

from django.test import TestCase

from students.models import Student

from .clock import FrozenClock
from .events import InMemoryEventChannel, ManualApprovalRequested
from .exceptions import NotFound, PolicyViolation, StateConflict, Unauthorized
from .models import AdHocDelegateCredential, PickupCredential, WithdrawalRecord, WithdrawalTransition
from .services import credentials
from .services.delegate_policy import AllowsAdHoc, RequiresSelection
from .services.withdrawal import OVERRIDE_NOTE_PREFIX, authorize_manually
from .factories import WithdrawalFixturesMixin


class ManualAuthorizationTests(WithdrawalFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.clock = FrozenClock()
        self.events = InMemoryEventChannel()

    def authorize(self, **kwargs):
        params = {
            "inspector": self.inspector,
            "student_id": self.student.id,
            "reason_id": self.reason.id,
            "clock": self.clock,
            "events": self.events,
        }
        params.update(kwargs)
        return authorize_manually(**params)

    def test_without_choice_lists_registered_delegates(self):
        delegate = self.add_delegate()

        outcome = self.authorize()

        self.assertIsInstance(outcome, RequiresSelection)
        self.assertEqual([d.id for d in outcome.available_delegates], [delegate.id])
        self.assertFalse(WithdrawalRecord.objects.exists())

    def test_without_choice_and_no_delegates_allows_adhoc(self):
        self.assertIsInstance(self.authorize(), AllowsAdHoc)

    def test_registered_delegate_is_approved_immediately(self):
        delegate = self.add_delegate()

        with self.captureOnCommitCallbacks(execute=True):
            result = self.authorize(registered_delegate_id=delegate.id, custom_reason="Dentista")

        withdrawal = result.withdrawal
        self.assertFalse(result.pending_guardian_approval)
        self.assertEqual(withdrawal.method, WithdrawalRecord.Method.MANUAL)
        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.APPROVED)
        self.assertTrue(withdrawal.contact_verified)
        self.assertEqual(withdrawal.retriever_kind, WithdrawalRecord.RetrieverKind.REGISTERED_DELEGATE)
        self.assertEqual(withdrawal.retriever_ref, delegate.id)
        self.assertEqual(withdrawal.retriever_name, delegate.name)
        self.assertEqual(withdrawal.guardian_authorizer, self.guardian)
        self.assertIsNone(withdrawal.credential)
        self.assertEqual(withdrawal.transitions.get().stage, WithdrawalTransition.Stage.CREATION)
        self.assertEqual(self.events.events, [])

    def test_justification_next_to_registered_delegate_is_ignored(self):
        delegate = self.add_delegate()

        result = self.authorize(registered_delegate_id=delegate.id, override_justification="Padre no contesta")

        self.assertFalse(result.pending_guardian_approval)
        self.assertEqual(result.withdrawal.status, WithdrawalRecord.Status.APPROVED)
        self.assertEqual(result.withdrawal.retriever_ref, delegate.id)
        self.assertNotIn(OVERRIDE_NOTE_PREFIX, result.withdrawal.notes)

    def test_manual_pickup_consumes_the_active_credential(self):
        delegate = self.add_delegate()
        issued = credentials.issue_credential(
            guardian=self.guardian, student_id=self.student.id, reason_id=self.reason.id, clock=self.clock
        )

        result = self.authorize(registered_delegate_id=delegate.id)

        credential = PickupCredential.objects.get(pk=issued.credential.pk)
        self.assertTrue(result.had_active_credential)
        self.assertEqual(result.withdrawal.credential_id, credential.pk)
        self.assertTrue(credential.consumed)
        self.assertEqual(credential.assigned_delegate, delegate)
        self.assertIn("QR activo marcado como usado", result.withdrawal.notes)

    def test_adhoc_without_registered_delegates_waits_for_guardian(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = self.authorize(adhoc_delegate=self.adhoc(), unregistered_reason="Apoderado en el trabajo")

        withdrawal = result.withdrawal
        self.assertTrue(result.pending_guardian_approval)
        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.PENDING)
        self.assertFalse(withdrawal.contact_verified)
        self.assertEqual(withdrawal.retriever_kind, WithdrawalRecord.RetrieverKind.ADHOC_DELEGATE)
        self.assertIsNone(withdrawal.guardian_authorizer)
        self.assertIn("Razón delegado no registrado: Apoderado en el trabajo", withdrawal.notes)
        self.assertNotIn(OVERRIDE_NOTE_PREFIX, withdrawal.notes)

        adhoc = AdHocDelegateCredential.objects.get()
        self.assertEqual(withdrawal.retriever_adhoc, adhoc)
        self.assertFalse(adhoc.is_verified)
        self.assertTrue(adhoc.is_single_use)
        self.assertEqual(adhoc.guardian, self.guardian)

        [event] = self.events.of_type(ManualApprovalRequested)
        self.assertEqual(event.withdrawal_id, withdrawal.id)
        self.assertEqual(event.guardian_user_id, self.guardian.id)
        self.assertEqual(event.inspector_user_id, self.inspector.id)
        self.assertEqual(event.delegate_name, "Vecino Juan")

    def test_adhoc_override_with_registered_delegates_available(self):
        self.add_delegate()

        result = self.authorize(adhoc_delegate=self.adhoc(), override_justification="Abuela hospitalizada")

        self.assertTrue(result.pending_guardian_approval)
        self.assertIn(f"{OVERRIDE_NOTE_PREFIX} Abuela hospitalizada", result.withdrawal.notes)

    def test_adhoc_with_available_delegates_and_no_override_is_rejected(self):
        self.add_delegate()

        with self.assertRaises(PolicyViolation):
            self.authorize(adhoc_delegate=self.adhoc(), unregistered_reason="No sé")

        self.assertFalse(AdHocDelegateCredential.objects.exists())
        self.assertFalse(WithdrawalRecord.objects.exists())

    def test_discarding_all_delegates_enables_adhoc_without_override(self):
        first = self.add_delegate()
        second = self.add_delegate(name="Tío Luis")

        result = self.authorize(
            adhoc_delegate=self.adhoc(),
            discarded_delegate_ids=[first.id, second.id],
            unregistered_reason="No contestan",
        )

        self.assertIn("Delegados descartados: Abuela Rosa, Tío Luis", result.withdrawal.notes)
        self.assertNotIn(OVERRIDE_NOTE_PREFIX, result.withdrawal.notes)

    def test_both_registered_and_adhoc_is_rejected(self):
        delegate = self.add_delegate()
        with self.assertRaises(PolicyViolation):
            self.authorize(registered_delegate_id=delegate.id, adhoc_delegate=self.adhoc())

    def test_foreign_delegates_are_unauthorized(self):
        foreign = self.add_delegate(guardian=self.other_guardian)

        with self.assertRaises(Unauthorized):
            self.authorize(registered_delegate_id=foreign.id)
        with self.assertRaises(Unauthorized):
            self.authorize(discarded_delegate_ids=[foreign.id])

    def test_selecting_discarded_delegate_conflicts(self):
        delegate = self.add_delegate()
        with self.assertRaises(StateConflict):
            self.authorize(registered_delegate_id=delegate.id, discarded_delegate_ids=[delegate.id])

    def test_missing_student_guardian_or_reason(self):
        orphan = Student.objects.create(first_name="Sin", last_name="Apoderado", rut="27777777-7")

        with self.assertRaises(NotFound):
            self.authorize(student_id=999999)
        with self.assertRaises(NotFound):
            self.authorize(student_id=orphan.id)
        with self.assertRaises(NotFound):
            self.authorize(reason_id=self.inactive_reason.id)

    def test_failure_after_adhoc_creation_rolls_everything_back(self):
        with self.captureOnCommitCallbacks(execute=True):
            with mock.patch(
                "withdrawals.services.withdrawal.record_transition", side_effect=RuntimeError("boom")
            ):
                with self.assertRaises(RuntimeError):
                    self.authorize(adhoc_delegate=self.adhoc(), unregistered_reason="Sin delegados")

        self.assertFalse(AdHocDelegateCredential.objects.exists())
        self.assertFalse(WithdrawalRecord.objects.exists())
        self.assertEqual(self.events.events, [])
