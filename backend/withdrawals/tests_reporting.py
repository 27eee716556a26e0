from datetime import timedelta

from django.test import TestCase

from students.models import Student

from .clock import FrozenClock
from .models import PickupCredential
from .services import credentials
from .services.reporting import (
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_EXPIRED,
    guardian_credential_history,
    guardian_credential_stats,
)
from .services.withdrawal import consume_credential
from .factories import WithdrawalFixturesMixin


class GuardianReportingTests(WithdrawalFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.clock = FrozenClock()
        self.sibling = Student.objects.create(
            first_name="Sofía", last_name="González", rut="28888888-8", guardian=self.guardian
        )

        used = credentials.issue_credential(
            guardian=self.guardian, student_id=self.student.id, reason_id=self.reason.id, clock=self.clock
        )
        consume_credential(used.code, inspector=self.inspector, decision="APPROVE", clock=self.clock)
        self.used_code = used.code

        self.active = credentials.issue_credential(
            guardian=self.guardian, student_id=self.student.id, reason_id=self.reason.id, clock=self.clock
        )
        self.expired = PickupCredential.objects.create(
            code="000111" if "000111" not in {used.code, self.active.code} else "000112",
            student=self.sibling,
            issued_by=self.guardian,
            reason=self.reason,
            expires_at=self.clock.now() - timedelta(minutes=1),
        )

    def test_history_classifies_credentials(self):
        history = guardian_credential_history(self.guardian, clock=self.clock)

        self.assertEqual(history["total"], 3)
        self.assertFalse(history["has_more"])
        statuses = {item["code"]: item["status"] for item in history["credentials"]}
        self.assertEqual(statuses[self.used_code], STATUS_COMPLETED)
        self.assertEqual(statuses[self.active.code], STATUS_ACTIVE)
        self.assertEqual(statuses[self.expired.code], STATUS_EXPIRED)
        self.assertEqual(
            history["summary"], {"total_completed": 1, "total_active": 1, "total_expired": 1}
        )

    def test_history_filters_and_paginates(self):
        only_sibling = guardian_credential_history(self.guardian, student_id=self.sibling.id, clock=self.clock)
        self.assertEqual(only_sibling["total"], 1)

        without_pending = guardian_credential_history(self.guardian, include_pending=False, clock=self.clock)
        self.assertEqual(without_pending["total"], 2)

        page = guardian_credential_history(self.guardian, limit=2, offset=0, clock=self.clock)
        self.assertEqual(len(page["credentials"]), 2)
        self.assertTrue(page["has_more"])

    def test_history_is_scoped_to_the_guardian(self):
        history = guardian_credential_history(self.other_guardian, clock=self.clock)
        self.assertEqual(history["total"], 0)

    def test_stats(self):
        stats = guardian_credential_stats(self.guardian, clock=self.clock)

        self.assertEqual(stats["all_time"], {"generated": 3, "completed": 1, "success_rate": 33})
        self.assertEqual(stats["this_month"]["generated"], 3)
        self.assertEqual(stats["this_month"]["expired"], 1)
        per_student = {row["student_id"]: row for row in stats["student_stats"]}
        self.assertEqual(per_student[self.student.id]["total_withdrawals"], 2)
        self.assertIsNotNone(per_student[self.student.id]["last_withdrawal"])
        self.assertIsNone(per_student[self.sibling.id]["last_withdrawal"])
