from django.test import RequestFactory, TestCase
from rest_framework.test import APITestCase

from users.models import User

from .models import AuditLog
from .services import log_event, withdrawal_trail


class LogEventTests(TestCase):
	def setUp(self):
		self.factory = RequestFactory()
		self.user = User.objects.create_user(username="inspector", password="pass1234", role=User.ROLE_INSPECTOR)

	def test_records_actor_request_and_metadata(self):
		request = self.factory.post("/api/withdrawals/records/7/inspector-confirmation/", HTTP_X_FORWARDED_FOR="10.0.0.1, 10.0.0.2")
		request.user = self.user

		entry = log_event(
			request,
			event_type=AuditLog.EventType.INSPECTOR_DECISION,
			object_type="WithdrawalRecord",
			object_id=7,
			status_code=200,
			metadata={"action": "APPROVE"},
		)

		self.assertEqual(entry.actor, self.user)
		self.assertEqual(entry.ip_address, "10.0.0.1")
		self.assertEqual(entry.method, "POST")
		self.assertEqual(list(withdrawal_trail(7)), [entry])

	def test_anonymous_requests_are_not_logged(self):
		request = self.factory.get("/api/withdrawals/reasons/")
		request.user = None

		self.assertIsNone(log_event(request, event_type=AuditLog.EventType.CREDENTIAL_VIEWED))
		self.assertFalse(AuditLog.objects.exists())


class AuditLogApiTests(APITestCase):
	def setUp(self):
		self.admin = User.objects.create_user(username="admin", password="pass1234", role=User.ROLE_ADMIN)
		self.inspector = User.objects.create_user(username="inspector", password="pass1234", role=User.ROLE_INSPECTOR)
		AuditLog.objects.create(actor=self.inspector, event_type=AuditLog.EventType.CREDENTIAL_CONSUMED)

	def test_only_admins_can_read_the_log(self):
		self.client.force_authenticate(user=self.inspector)
		self.assertEqual(self.client.get("/api/audit-logs/").status_code, 403)

		self.client.force_authenticate(user=self.admin)
		res = self.client.get("/api/audit-logs/", {"event_type": AuditLog.EventType.CREDENTIAL_CONSUMED})
		self.assertEqual(res.status_code, 200)
		self.assertEqual(len(res.data), 1)
		self.assertEqual(res.data[0]["event_label"], "Código QR utilizado")
