from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    ROLE_SUPERADMIN = "SUPERADMIN"
    ROLE_ADMIN = "ADMIN"
    ROLE_INSPECTOR = "INSPECTOR"
    ROLE_PARENT = "PARENT"

    ROLES = (
        (ROLE_SUPERADMIN, "Superadministrador"),
        (ROLE_ADMIN, "Administrador"),
        (ROLE_INSPECTOR, "Inspector"),
        (ROLE_PARENT, "Apoderado"),
    )

    role = models.CharField(max_length=20, choices=ROLES)
    email = models.EmailField(unique=True, blank=True, null=True, verbose_name="Correo electrónico")
    rut = models.CharField(max_length=12, blank=True, default="", verbose_name="RUT")
    phone = models.CharField(max_length=20, blank=True, default="", verbose_name="Teléfono")

    REQUIRED_FIELDS = ["email", "role"]

    def save(self, *args, **kwargs):
        # Blank emails are stored as NULL so the unique index ignores them.
        if not self.email:
            self.email = None
        super().save(*args, **kwargs)

    @property
    def is_guardian(self) -> bool:
        return self.role == self.ROLE_PARENT

    @property
    def is_inspector(self) -> bool:
        return self.role == self.ROLE_INSPECTOR

    def __str__(self) -> str:
        return f"{self.username} ({self.get_role_display()})"
