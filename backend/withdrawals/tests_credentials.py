from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from django.utils import timezone

from .clock import FrozenClock
from .exceptions import (
    Conflict,
    ConflictActiveCredential,
    Expired,
    FormatInvalid,
    NotFound,
    StateConflict,
    Unauthorized,
)
from .models import PickupCredential, WithdrawalRecord
from .services import credentials
from .services.withdrawal import consume_credential
from .tasks import expire_withdrawal_credentials
from .factories import WithdrawalFixturesMixin


class CredentialIssuanceTests(WithdrawalFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.clock = FrozenClock()

    def issue(self, **kwargs):
        params = {"guardian": self.guardian, "student_id": self.student.id, "reason_id": self.reason.id, "clock": self.clock}
        params.update(kwargs)
        return credentials.issue_credential(**params)

    def test_issue_returns_six_digit_code_and_ttl(self):
        issued = self.issue(custom_reason="  Control anual  ")

        self.assertRegex(issued.code, r"^\d{6}$")
        self.assertEqual(issued.expires_at, self.clock.now() + timedelta(minutes=15))
        self.assertEqual(issued.credential.custom_reason, "Control anual")
        self.assertFalse(issued.credential.consumed)

    @override_settings(WITHDRAWAL_CREDENTIAL_TTL_MINUTES=5)
    def test_ttl_comes_from_settings(self):
        issued = self.issue()
        self.assertEqual(issued.expires_at - self.clock.now(), timedelta(minutes=5))

    def test_second_active_credential_is_rejected(self):
        self.issue()
        with self.assertRaises(ConflictActiveCredential):
            self.issue()
        self.assertEqual(PickupCredential.objects.filter(student=self.student).count(), 1)

    def test_expired_credential_does_not_block_a_new_one(self):
        first = self.issue()
        self.clock.advance(minutes=16)

        second = self.issue()

        self.assertNotEqual(first.credential.pk, second.credential.pk)
        self.assertFalse(PickupCredential.objects.filter(pk=first.credential.pk).exists())

    def test_unknown_student_or_inactive_reason_is_not_found(self):
        with self.assertRaises(NotFound):
            self.issue(student_id=999999)
        with self.assertRaises(NotFound):
            self.issue(reason_id=self.inactive_reason.id)

    def test_student_of_other_guardian_is_unauthorized(self):
        with self.assertRaises(Unauthorized):
            self.issue(student_id=self.foreign_student.id)

    def test_code_collision_is_retried(self):
        other = credentials.issue_credential(
            guardian=self.other_guardian, student_id=self.foreign_student.id, reason_id=self.reason.id, clock=self.clock
        )
        with mock.patch(
            "withdrawals.services.credentials.generate_code", side_effect=[other.code, "000042"]
        ):
            issued = self.issue()

        self.assertEqual(issued.code, "000042")

    @override_settings(WITHDRAWAL_CODE_MAX_ATTEMPTS=3)
    def test_gives_up_after_max_code_attempts(self):
        other = credentials.issue_credential(
            guardian=self.other_guardian, student_id=self.foreign_student.id, reason_id=self.reason.id, clock=self.clock
        )
        with mock.patch("withdrawals.services.credentials.generate_code", return_value=other.code):
            with self.assertRaises(Conflict):
                self.issue()

        self.assertFalse(PickupCredential.objects.filter(student=self.student).exists())

    def test_database_rejects_two_unconsumed_credentials_per_student(self):
        expires_at = timezone.now() + timedelta(minutes=15)
        PickupCredential.objects.create(
            code="123456", student=self.student, issued_by=self.guardian, reason=self.reason, expires_at=expires_at
        )
        with self.assertRaises(IntegrityError), transaction.atomic():
            PickupCredential.objects.create(
                code="654321", student=self.student, issued_by=self.guardian, reason=self.reason, expires_at=expires_at
            )


class CredentialLookupAndConsumeTests(WithdrawalFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.clock = FrozenClock()
        self.issued = credentials.issue_credential(
            guardian=self.guardian, student_id=self.student.id, reason_id=self.reason.id, clock=self.clock
        )

    def test_info_describes_student_guardian_and_reason(self):
        info = credentials.get_credential_info(f" {self.issued.code} ", clock=self.clock)

        self.assertEqual(info.student["rut"], self.student.rut)
        self.assertEqual(info.guardian["id"], self.guardian.id)
        self.assertEqual(info.reason["name"], self.reason.name)
        self.assertFalse(info.is_expired)

    def test_info_flags_expired_credentials(self):
        self.clock.advance(minutes=15)
        info = credentials.get_credential_info(self.issued.code, clock=self.clock)
        self.assertTrue(info.is_expired)

    def test_malformed_code_is_rejected_before_lookup(self):
        for code in ("12345", "1234567", "12a456", "", None):
            with self.assertRaises(FormatInvalid):
                credentials.get_credential_info(code)

    def test_unknown_code_is_not_found(self):
        unknown = "000000" if self.issued.code != "000000" else "000001"
        with self.assertRaises(NotFound):
            credentials.get_credential_info(unknown)

    def test_consume_is_exactly_once(self):
        withdrawal = consume_credential(
            self.issued.code, inspector=self.inspector, decision="APPROVE", notes="Retira la madre", clock=self.clock
        )

        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.APPROVED)
        self.assertEqual(withdrawal.method, WithdrawalRecord.Method.QR)
        self.assertEqual(withdrawal.retriever_user, self.guardian)
        self.assertEqual(withdrawal.guardian_authorizer, self.guardian)
        self.assertTrue(withdrawal.contact_verified)
        self.assertEqual(withdrawal.transitions.count(), 1)

        credential = PickupCredential.objects.get(pk=self.issued.credential.pk)
        self.assertTrue(credential.consumed)
        self.assertEqual(credential.consumed_at, self.clock.now())

        with self.assertRaises(StateConflict):
            consume_credential(self.issued.code, inspector=self.inspector, decision="APPROVE", clock=self.clock)
        self.assertEqual(WithdrawalRecord.objects.count(), 1)

    def test_denied_scan_still_consumes_the_credential(self):
        withdrawal = consume_credential(self.issued.code, inspector=self.inspector, decision="DENY", clock=self.clock)

        self.assertEqual(withdrawal.status, WithdrawalRecord.Status.DENIED)
        self.assertTrue(PickupCredential.objects.get(pk=self.issued.credential.pk).consumed)

    def test_expired_credential_cannot_be_consumed(self):
        self.clock.advance(minutes=20)
        with self.assertRaises(Expired):
            consume_credential(self.issued.code, inspector=self.inspector, decision="APPROVE", clock=self.clock)

        self.assertFalse(PickupCredential.objects.get(pk=self.issued.credential.pk).consumed)
        self.assertFalse(WithdrawalRecord.objects.exists())

    def test_consumed_credential_frees_the_student_slot(self):
        consume_credential(self.issued.code, inspector=self.inspector, decision="APPROVE", clock=self.clock)

        again = credentials.issue_credential(
            guardian=self.guardian, student_id=self.student.id, reason_id=self.reason.id, clock=self.clock
        )
        self.assertFalse(again.credential.consumed)


class CredentialCancelAndExpiryTests(WithdrawalFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.clock = FrozenClock()
        self.issued = credentials.issue_credential(
            guardian=self.guardian, student_id=self.student.id, reason_id=self.reason.id, clock=self.clock
        )

    def test_guardian_cancels_own_active_credential(self):
        credentials.cancel_credential(self.issued.code, guardian=self.guardian, clock=self.clock)
        self.assertFalse(PickupCredential.objects.exists())

    def test_other_guardian_cannot_cancel(self):
        with self.assertRaises(Unauthorized):
            credentials.cancel_credential(self.issued.code, guardian=self.other_guardian, clock=self.clock)
        self.assertTrue(PickupCredential.objects.exists())

    def test_expired_credential_cannot_be_cancelled(self):
        self.clock.advance(minutes=30)
        with self.assertRaises(NotFound):
            credentials.cancel_credential(self.issued.code, guardian=self.guardian, clock=self.clock)

    def test_sweep_removes_only_expired_unconsumed(self):
        consumed = PickupCredential.objects.create(
            code="777777" if self.issued.code != "777777" else "777778",
            student=self.foreign_student,
            issued_by=self.other_guardian,
            reason=self.reason,
            expires_at=self.clock.now() - timedelta(minutes=1),
            consumed=True,
            consumed_at=self.clock.now() - timedelta(minutes=5),
        )

        self.assertEqual(credentials.expire_sweep(clock=self.clock), 0)

        self.clock.advance(minutes=16)
        self.assertEqual(credentials.expire_sweep(clock=self.clock), 1)
        self.assertEqual(list(PickupCredential.objects.values_list("pk", flat=True)), [consumed.pk])

    def test_sweep_and_inspect_agree_on_the_expiry_instant(self):
        self.clock.current = self.issued.expires_at

        self.assertTrue(credentials.get_credential_info(self.issued.code, clock=self.clock).is_expired)
        self.assertEqual(credentials.expire_sweep(clock=self.clock), 1)
        self.assertFalse(PickupCredential.objects.exists())

    def test_active_credentials_report_minutes_remaining(self):
        self.clock.advance(minutes=5)
        active = credentials.active_credentials_for_guardian(self.guardian, clock=self.clock)

        self.assertEqual(len(active), 1)
        self.assertEqual(active[0]["code"], self.issued.code)
        self.assertEqual(active[0]["minutes_remaining"], 10)

    def test_management_command_dry_run_and_sweep(self):
        PickupCredential.objects.filter(pk=self.issued.credential.pk).update(
            expires_at=timezone.now() - timedelta(minutes=1)
        )

        out = StringIO()
        call_command("expire_withdrawal_credentials", "--dry-run", stdout=out)
        self.assertIn("[dry-run]", out.getvalue())
        self.assertTrue(PickupCredential.objects.exists())

        out = StringIO()
        call_command("expire_withdrawal_credentials", stdout=out)
        self.assertIn("1", out.getvalue())
        self.assertFalse(PickupCredential.objects.exists())

    def test_celery_task_runs_the_sweep(self):
        PickupCredential.objects.filter(pk=self.issued.credential.pk).update(
            expires_at=timezone.now() - timedelta(minutes=1)
        )
        self.assertEqual(expire_withdrawal_credentials.apply().get(), 1)
