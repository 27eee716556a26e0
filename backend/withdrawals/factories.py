from __future__ import annotations

from users.models import User
from students.models import Student

from .models import RegisteredDelegate, WithdrawalReason
from .services.delegate_policy import AdHocDelegateInput


class WithdrawalFixturesMixin:
    """Guardian with one student, two inspectors and a seeded reason."""

    def setUp(self):
        super().setUp()
        self.guardian = User.objects.create_user(
            username="apoderado",
            password="pass1234",
            role=User.ROLE_PARENT,
            first_name="María",
            last_name="González",
            rut="11111111-1",
            phone="56911111111",
        )
        self.other_guardian = User.objects.create_user(
            username="otro_apoderado",
            password="pass1234",
            role=User.ROLE_PARENT,
            rut="22222222-2",
        )
        self.inspector = User.objects.create_user(
            username="inspector",
            password="pass1234",
            role=User.ROLE_INSPECTOR,
            first_name="Pedro",
            last_name="Soto",
        )
        self.other_inspector = User.objects.create_user(
            username="inspector2",
            password="pass1234",
            role=User.ROLE_INSPECTOR,
        )
        self.student = Student.objects.create(
            first_name="Tomás",
            last_name="González",
            rut="25555555-5",
            course_name="3° Básico A",
            guardian=self.guardian,
        )
        self.foreign_student = Student.objects.create(
            first_name="Lucía",
            last_name="Pérez",
            rut="26666666-6",
            guardian=self.other_guardian,
        )
        self.reason = WithdrawalReason.objects.get(name="Atención médica")
        self.inactive_reason = WithdrawalReason.objects.create(name="Motivo obsoleto", is_active=False)

    def add_delegate(self, name="Abuela Rosa", guardian=None) -> RegisteredDelegate:
        return RegisteredDelegate.objects.create(
            guardian=guardian or self.guardian,
            name=name,
            rut="9876543-2",
            phone="56922222222",
            relationship_to_student="Abuela",
        )

    def adhoc(self, name="Vecino Juan") -> AdHocDelegateInput:
        return AdHocDelegateInput(
            name=name,
            rut="15555555-5",
            phone="56933333333",
            relationship_to_student="Vecino",
        )
