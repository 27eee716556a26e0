from datetime import timedelta

from django.utils import timezone
from rest_framework.test import APITestCase

from audit.models import AuditLog
from users.models import User

from .models import AdHocDelegateCredential, PickupCredential, WithdrawalRecord
from .factories import WithdrawalFixturesMixin


BASE = "/api/withdrawals"


class GuardianCredentialApiTests(WithdrawalFixturesMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.client.force_authenticate(user=self.guardian)

    def issue(self, **extra):
        payload = {"student_id": self.student.id, "reason_id": self.reason.id}
        payload.update(extra)
        return self.client.post(f"{BASE}/guardian/credentials/", payload, format="json")

    def test_reasons_list_only_active(self):
        res = self.client.get(f"{BASE}/reasons/")
        self.assertEqual(res.status_code, 200)
        names = {r["name"] for r in res.data}
        self.assertIn(self.reason.name, names)
        self.assertNotIn(self.inactive_reason.name, names)

    def test_issue_and_list_active(self):
        res = self.issue(custom_reason="Control")
        self.assertEqual(res.status_code, 201)
        self.assertRegex(res.data["code"], r"^\d{6}$")
        self.assertTrue(
            AuditLog.objects.filter(event_type=AuditLog.EventType.CREDENTIAL_ISSUED, actor=self.guardian).exists()
        )

        res = self.client.get(f"{BASE}/guardian/credentials/active/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(len(res.data), 1)

    def test_second_issue_conflicts(self):
        self.issue()
        res = self.issue()
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.data["code"], "active_credential_exists")

    def test_issue_for_foreign_student_is_forbidden(self):
        res = self.issue(student_id=self.foreign_student.id)
        self.assertEqual(res.status_code, 403)

    def test_issue_validates_payload(self):
        res = self.client.post(f"{BASE}/guardian/credentials/", {"student_id": "x"}, format="json")
        self.assertEqual(res.status_code, 400)

    def test_cancel_credential(self):
        code = self.issue().data["code"]
        res = self.client.post(f"{BASE}/guardian/credentials/{code}/cancel/")
        self.assertEqual(res.status_code, 200)
        self.assertFalse(PickupCredential.objects.exists())

        res = self.client.post(f"{BASE}/guardian/credentials/{code}/cancel/")
        self.assertEqual(res.status_code, 404)

    def test_qr_image_for_own_credential(self):
        code = self.issue().data["code"]
        res = self.client.get(f"{BASE}/guardian/credentials/{code}/qr/")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.data["qr_png"].startswith("data:image/png;base64,"))

        self.client.force_authenticate(user=self.other_guardian)
        res = self.client.get(f"{BASE}/guardian/credentials/{code}/qr/")
        self.assertEqual(res.status_code, 403)

    def test_history_and_stats(self):
        self.issue()
        res = self.client.get(f"{BASE}/guardian/credentials/history/", {"limit": 5})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["total"], 1)

        res = self.client.get(f"{BASE}/guardian/credentials/stats/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["all_time"]["generated"], 1)

    def test_inspector_cannot_issue(self):
        self.client.force_authenticate(user=self.inspector)
        self.assertEqual(self.issue().status_code, 403)

    def test_guardian_cannot_scan(self):
        code = self.issue().data["code"]
        res = self.client.get(f"{BASE}/inspector/credentials/{code}/")
        self.assertEqual(res.status_code, 403)


class InspectorCredentialApiTests(WithdrawalFixturesMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.client.force_authenticate(user=self.guardian)
        self.code = self.client.post(
            f"{BASE}/guardian/credentials/",
            {"student_id": self.student.id, "reason_id": self.reason.id},
            format="json",
        ).data["code"]
        self.client.force_authenticate(user=self.inspector)

    def test_inspect_then_consume(self):
        res = self.client.get(f"{BASE}/inspector/credentials/{self.code}/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["student"]["id"], self.student.id)
        self.assertFalse(res.data["is_expired"])

        res = self.client.post(
            f"{BASE}/inspector/credentials/{self.code}/consume/", {"action": "APPROVE"}, format="json"
        )
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.data["status"], WithdrawalRecord.Status.APPROVED)
        self.assertEqual(res.data["credential_code"], self.code)

        res = self.client.post(
            f"{BASE}/inspector/credentials/{self.code}/consume/", {"action": "APPROVE"}, format="json"
        )
        self.assertEqual(res.status_code, 409)

    def test_malformed_code_is_bad_request(self):
        res = self.client.get(f"{BASE}/inspector/credentials/12ab56/")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.data["code"], "format_invalid")

    def test_expired_code_is_gone(self):
        PickupCredential.objects.update(expires_at=timezone.now() - timedelta(minutes=1))

        res = self.client.get(f"{BASE}/inspector/credentials/{self.code}/")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.data["is_expired"])

        res = self.client.post(
            f"{BASE}/inspector/credentials/{self.code}/consume/", {"action": "APPROVE"}, format="json"
        )
        self.assertEqual(res.status_code, 410)

    def test_consume_requires_valid_action(self):
        res = self.client.post(
            f"{BASE}/inspector/credentials/{self.code}/consume/", {"action": "LATER"}, format="json"
        )
        self.assertEqual(res.status_code, 400)


class ManualApprovalApiTests(WithdrawalFixturesMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.client.force_authenticate(user=self.inspector)

    def manual(self, **extra):
        payload = {"student_id": self.student.id, "reason_id": self.reason.id}
        payload.update(extra)
        return self.client.post(f"{BASE}/inspector/manual-authorizations/", payload, format="json")

    def adhoc_payload(self):
        return {
            "name": "Vecino Juan",
            "rut": "15555555-5",
            "phone": "56933333333",
            "relationship_to_student": "Vecino",
        }

    def test_selection_hint_when_no_delegate_chosen(self):
        delegate = self.add_delegate()
        res = self.manual()
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.data["requires_delegate_selection"])
        self.assertEqual(res.data["available_delegates"][0]["id"], delegate.id)

    def test_adhoc_hint_when_guardian_has_no_delegates(self):
        res = self.manual()
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.data["allows_manual_delegate"])

    def test_registered_delegate_flow(self):
        delegate = self.add_delegate()
        res = self.manual(delegate_id=delegate.id)
        self.assertEqual(res.status_code, 201)
        self.assertFalse(res.data["pending_guardian_approval"])
        self.assertEqual(res.data["withdrawal"]["status"], WithdrawalRecord.Status.APPROVED)

    def test_policy_violation_is_unprocessable(self):
        delegate = self.add_delegate()
        res = self.manual(delegate_id=delegate.id, manual_delegate=self.adhoc_payload())
        self.assertEqual(res.status_code, 422)
        self.assertEqual(res.data["code"], "policy_violation")

    def test_invalid_adhoc_rut_is_bad_request(self):
        payload = self.adhoc_payload()
        payload["rut"] = "abc"
        res = self.manual(manual_delegate=payload, unregistered_delegate_reason="Sin delegados")
        self.assertEqual(res.status_code, 400)

    def test_full_adhoc_round_trip(self):
        res = self.manual(manual_delegate=self.adhoc_payload(), unregistered_delegate_reason="Sin delegados")
        self.assertEqual(res.status_code, 201)
        self.assertTrue(res.data["pending_guardian_approval"])
        withdrawal_id = res.data["withdrawal"]["id"]

        res = self.client.post(
            f"{BASE}/records/{withdrawal_id}/inspector-confirmation/", {"action": "APPROVE"}, format="json"
        )
        self.assertEqual(res.status_code, 409)

        self.client.force_authenticate(user=self.guardian)
        res = self.client.get(f"{BASE}/records/pending-guardian/")
        self.assertEqual([r["id"] for r in res.data], [withdrawal_id])

        res = self.client.post(
            f"{BASE}/records/{withdrawal_id}/guardian-decision/",
            {"action": "APPROVE", "comment": "Lo conozco"},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.data["contact_verified"])
        self.assertTrue(AdHocDelegateCredential.objects.get().is_verified)

        self.client.force_authenticate(user=self.other_inspector)
        res = self.client.post(
            f"{BASE}/records/{withdrawal_id}/inspector-confirmation/", {"action": "APPROVE"}, format="json"
        )
        self.assertEqual(res.status_code, 403)

        self.client.force_authenticate(user=self.inspector)
        res = self.client.get(f"{BASE}/records/pending-inspector/")
        self.assertEqual([r["id"] for r in res.data], [withdrawal_id])

        res = self.client.post(
            f"{BASE}/records/{withdrawal_id}/inspector-confirmation/", {"action": "APPROVE"}, format="json"
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["status"], WithdrawalRecord.Status.APPROVED)

        res = self.client.get(f"{BASE}/records/{withdrawal_id}/")
        self.assertEqual(len(res.data["transitions"]), 3)

    def test_foreign_guardian_cannot_decide(self):
        withdrawal_id = self.manual(
            manual_delegate=self.adhoc_payload(), unregistered_delegate_reason="Sin delegados"
        ).data["withdrawal"]["id"]

        self.client.force_authenticate(user=self.other_guardian)
        res = self.client.post(
            f"{BASE}/records/{withdrawal_id}/guardian-decision/", {"action": "DENY"}, format="json"
        )
        self.assertEqual(res.status_code, 403)


class WithdrawalRecordApiTests(WithdrawalFixturesMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.admin = User.objects.create_user(
            username="admin", password="pass1234", role=User.ROLE_ADMIN
        )
        delegate = self.add_delegate()
        self.client.force_authenticate(user=self.inspector)
        self.record_id = self.client.post(
            f"{BASE}/inspector/manual-authorizations/",
            {"student_id": self.student.id, "reason_id": self.reason.id, "delegate_id": delegate.id},
            format="json",
        ).data["withdrawal"]["id"]

    def test_records_are_scoped_by_role(self):
        res = self.client.get(f"{BASE}/records/")
        self.assertEqual([r["id"] for r in res.data], [self.record_id])

        self.client.force_authenticate(user=self.other_inspector)
        self.assertEqual(self.client.get(f"{BASE}/records/").data, [])

        self.client.force_authenticate(user=self.guardian)
        self.assertEqual(len(self.client.get(f"{BASE}/records/").data), 1)

        self.client.force_authenticate(user=self.other_guardian)
        self.assertEqual(self.client.get(f"{BASE}/records/").data, [])

    def test_records_filter_by_status_and_method(self):
        self.client.force_authenticate(user=self.admin)
        self.assertEqual(len(self.client.get(f"{BASE}/records/", {"status": "APPROVED"}).data), 1)
        self.assertEqual(len(self.client.get(f"{BASE}/records/", {"method": "QR"}).data), 0)
        self.assertEqual(len(self.client.get(f"{BASE}/records/", {"q": "Tomás"}).data), 1)

    def test_admin_sees_audit_trail(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.get(f"{BASE}/records/{self.record_id}/audit-trail/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data[0]["event_type"], AuditLog.EventType.MANUAL_AUTHORIZATION)

        self.client.force_authenticate(user=self.inspector)
        res = self.client.get(f"{BASE}/records/{self.record_id}/audit-trail/")
        self.assertEqual(res.status_code, 403)
