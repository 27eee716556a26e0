from rest_framework import status
from rest_framework.test import APITestCase

from users.models import User

from .models import Student


class StudentApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="pass1234", role=User.ROLE_ADMIN)
        self.inspector = User.objects.create_user(username="inspector", password="pass1234", role=User.ROLE_INSPECTOR)
        self.guardian = User.objects.create_user(username="apoderado", password="pass1234", role=User.ROLE_PARENT)
        self.other_guardian = User.objects.create_user(username="otro", password="pass1234", role=User.ROLE_PARENT)

        self.own = Student.objects.create(
            first_name="Tomás", last_name="González", rut="25555555-5", course_name="3° Básico A", guardian=self.guardian
        )
        self.other = Student.objects.create(
            first_name="Lucía", last_name="Pérez", rut="26666666-6", guardian=self.other_guardian
        )

    def test_guardian_only_lists_own_students(self):
        self.client.force_authenticate(user=self.guardian)
        res = self.client.get("/api/students/")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual([s["id"] for s in res.data], [self.own.id])

        res = self.client.get(f"/api/students/{self.other.id}/")
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_inspector_searches_all_students(self):
        self.client.force_authenticate(user=self.inspector)
        res = self.client.get("/api/students/", {"q": "26666666"})
        self.assertEqual([s["id"] for s in res.data], [self.other.id])

    def test_only_admin_can_create(self):
        payload = {"first_name": "Sofía", "last_name": "Rojas", "rut": "28888888-k", "guardian": self.guardian.id}

        self.client.force_authenticate(user=self.inspector)
        res = self.client.post("/api/students/", payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.admin)
        res = self.client.post("/api/students/", payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["rut"], "28888888-K")
