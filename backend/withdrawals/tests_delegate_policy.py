from django.test import SimpleTestCase

from .exceptions import PolicyViolation, StateConflict, Unauthorized
from .services.delegate_policy import (
    KIND_ADHOC,
    KIND_REGISTERED,
    AdHocDelegateInput,
    AllowsAdHoc,
    DelegateRequest,
    DelegateSnapshot,
    RequiresSelection,
    Resolved,
    resolve_delegate,
)


ADHOC = AdHocDelegateInput(name="Vecino Juan", rut="15555555-5", phone="56933333333", relationship_to_student="Vecino")
DELEGATES = [
    DelegateSnapshot(id=1, name="Abuela Rosa", relationship_to_student="Abuela"),
    DelegateSnapshot(id=2, name="Tío Luis", relationship_to_student="Tío"),
]


class DelegateResolutionTests(SimpleTestCase):
    def test_without_selection_lists_available_delegates(self):
        outcome = resolve_delegate(DelegateRequest(discarded_delegate_ids=(2,)), DELEGATES)

        self.assertIsInstance(outcome, RequiresSelection)
        self.assertEqual([d.id for d in outcome.available_delegates], [1])
        self.assertEqual(outcome.discarded_delegate_ids, [2])

    def test_without_selection_and_no_delegates_allows_adhoc(self):
        outcome = resolve_delegate(DelegateRequest(), [])

        self.assertIsInstance(outcome, AllowsAdHoc)
        self.assertTrue(outcome.none_available)

    def test_all_delegates_discarded_allows_adhoc(self):
        outcome = resolve_delegate(DelegateRequest(discarded_delegate_ids=(1, 2, 2)), DELEGATES)

        self.assertIsInstance(outcome, AllowsAdHoc)
        self.assertEqual(outcome.discarded_delegate_ids, [1, 2])

    def test_registered_delegate_resolves(self):
        outcome = resolve_delegate(DelegateRequest(registered_delegate_id=2), DELEGATES)

        self.assertIsInstance(outcome, Resolved)
        self.assertEqual(outcome.kind, KIND_REGISTERED)
        self.assertEqual(outcome.ref, 2)
        self.assertFalse(outcome.pending_guardian_approval)

    def test_registered_and_adhoc_together_is_rejected(self):
        with self.assertRaises(PolicyViolation):
            resolve_delegate(DelegateRequest(registered_delegate_id=1, adhoc_delegate=ADHOC), DELEGATES)

    def test_override_without_adhoc_data_is_rejected(self):
        with self.assertRaises(PolicyViolation):
            resolve_delegate(DelegateRequest(override_requested=True, override_justification="x"), DELEGATES)

    def test_discarded_id_from_other_guardian_is_unauthorized(self):
        with self.assertRaises(Unauthorized):
            resolve_delegate(DelegateRequest(discarded_delegate_ids=(99,)), DELEGATES)

    def test_selecting_a_discarded_delegate_is_a_state_conflict(self):
        with self.assertRaises(StateConflict):
            resolve_delegate(DelegateRequest(registered_delegate_id=1, discarded_delegate_ids=(1,)), DELEGATES)

    def test_selecting_a_foreign_delegate_is_unauthorized(self):
        with self.assertRaises(Unauthorized):
            resolve_delegate(DelegateRequest(registered_delegate_id=42), DELEGATES)

    def test_adhoc_with_available_delegates_requires_override(self):
        with self.assertRaises(PolicyViolation):
            resolve_delegate(DelegateRequest(adhoc_delegate=ADHOC, unregistered_reason="No contesta"), DELEGATES)

    def test_override_requires_justification(self):
        with self.assertRaises(PolicyViolation):
            resolve_delegate(
                DelegateRequest(adhoc_delegate=ADHOC, override_requested=True, override_justification="   "),
                DELEGATES,
            )

    def test_override_with_justification_resolves_adhoc(self):
        outcome = resolve_delegate(
            DelegateRequest(adhoc_delegate=ADHOC, override_requested=True, override_justification="Emergencia"),
            DELEGATES,
        )

        self.assertEqual(outcome.kind, KIND_ADHOC)
        self.assertIs(outcome.ref, ADHOC)
        self.assertTrue(outcome.override_used)
        self.assertTrue(outcome.pending_guardian_approval)

    def test_adhoc_without_delegates_requires_unregistered_reason(self):
        with self.assertRaises(PolicyViolation):
            resolve_delegate(DelegateRequest(adhoc_delegate=ADHOC), [])

    def test_adhoc_after_discarding_all_resolves_without_override(self):
        outcome = resolve_delegate(
            DelegateRequest(adhoc_delegate=ADHOC, discarded_delegate_ids=(1, 2), unregistered_reason="No contestan"),
            DELEGATES,
        )

        self.assertEqual(outcome.kind, KIND_ADHOC)
        self.assertFalse(outcome.override_used)
        self.assertEqual(outcome.discarded_delegate_ids, [1, 2])
