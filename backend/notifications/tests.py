from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APITestCase

from .models import Notification
from .services import create_notification, mark_all_read_for_user


User = get_user_model()


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username="notif_user",
            email="notif@example.com",
            password="pass1234",
            role=User.ROLE_PARENT,
            first_name="Ana",
            last_name="Lopez",
        )

    def test_create_notification_persists_notification(self):
        notification = create_notification(
            recipient=self.user,
            title="Nueva notificación",
            body="Tienes una actualización importante.",
            url="/withdrawals/1",
            type="WITHDRAWAL",
        )

        self.assertEqual(Notification.objects.count(), 1)
        self.assertEqual(notification.title, "Nueva notificación")
        self.assertFalse(notification.is_read)

    def test_create_notification_is_idempotent_per_dedupe_key(self):
        first = create_notification(recipient=self.user, title="Aviso", dedupe_key="withdrawal:1:GUARDIAN")
        second = create_notification(recipient=self.user, title="Aviso", dedupe_key="withdrawal:1:GUARDIAN")

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Notification.objects.count(), 1)

    def test_mark_all_read_for_user(self):
        create_notification(recipient=self.user, title="Uno")
        create_notification(recipient=self.user, title="Dos")

        self.assertEqual(mark_all_read_for_user(self.user), 2)
        self.assertFalse(Notification.objects.filter(recipient=self.user, read_at__isnull=True).exists())


class NotificationApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="parent", password="pass1234", role=User.ROLE_PARENT)
        self.other = User.objects.create_user(username="other", password="pass1234", role=User.ROLE_PARENT)
        create_notification(recipient=self.user, title="Mía", type="WITHDRAWAL")
        create_notification(recipient=self.other, title="Ajena", type="WITHDRAWAL")
        self.client.force_authenticate(user=self.user)

    def test_list_only_returns_own_notifications(self):
        res = self.client.get("/api/notifications/")
        self.assertEqual(res.status_code, 200)
        titles = [n["title"] for n in res.data]
        self.assertEqual(titles, ["Mía"])

    def test_unread_count_and_mark_read(self):
        res = self.client.get("/api/notifications/unread-count/")
        self.assertEqual(res.data["unread"], 1)

        notification = Notification.objects.get(recipient=self.user)
        res = self.client.post(f"/api/notifications/{notification.id}/mark-read/")
        self.assertEqual(res.status_code, 200)

        res = self.client.get("/api/notifications/unread-count/")
        self.assertEqual(res.data["unread"], 0)

    def test_cannot_mark_other_users_notification(self):
        foreign = Notification.objects.get(recipient=self.other)
        res = self.client.post(f"/api/notifications/{foreign.id}/mark-read/")
        self.assertEqual(res.status_code, 404)
