from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from .models import User


class UserPermissionTests(TestCase):
    def setUp(self):
        self.client = APIClient()

        self.admin = User.objects.create_user(
            username="admin", password="password", role=User.ROLE_ADMIN
        )
        self.inspector = User.objects.create_user(
            username="inspector", password="password", role=User.ROLE_INSPECTOR
        )
        self.guardian = User.objects.create_user(
            username="apoderado", password="password", role=User.ROLE_PARENT, rut="12345678-5"
        )

    def get_token(self, user):
        response = self.client.post(
            "/api/token/", {"username": user.username, "password": "password"}
        )
        return response.data["access"]

    def test_admin_can_list_users(self):
        token = self.get_token(self.admin)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get("/api/users/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_inspector_cannot_list_users(self):
        token = self.get_token(self.inspector)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get("/api/users/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_guardian_cannot_list_users(self):
        token = self.get_token(self.guardian)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get("/api/users/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_anonymous_request_is_rejected(self):
        response = self.client.get("/api/users/me/")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_returns_role_and_rut(self):
        token = self.get_token(self.guardian)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get("/api/users/me/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["role"], User.ROLE_PARENT)
        self.assertEqual(response.data["rut"], "12345678-5")

    def test_user_can_view_own_profile(self):
        token = self.get_token(self.guardian)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get(f"/api/users/{self.guardian.id}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_user_cannot_view_other_profile(self):
        token = self.get_token(self.guardian)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get(f"/api/users/{self.inspector.id}/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_user_can_change_own_password(self):
        token = self.get_token(self.inspector)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)

        res = self.client.post(
            "/api/users/change_password/",
            {"current_password": "password", "new_password": "new-password-123"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_200_OK)

        # Can login with new password
        self.client.credentials()
        login_res = self.client.post(
            "/api/token/", {"username": self.inspector.username, "password": "new-password-123"}
        )
        self.assertEqual(login_res.status_code, status.HTTP_200_OK)

    def test_user_cannot_change_password_with_wrong_current(self):
        token = self.get_token(self.inspector)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)

        res = self.client.post(
            "/api/users/change_password/",
            {"current_password": "wrong", "new_password": "new-password-123"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
