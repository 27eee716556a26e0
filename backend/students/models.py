from django.conf import settings
from django.db import models


class Student(models.Model):
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    rut = models.CharField(max_length=12, unique=True, verbose_name="RUT")
    course_name = models.CharField(max_length=100, blank=True, default="", verbose_name="Curso")

    # Main guardian (apoderado). Only this user may issue pickup credentials
    # and answer extraordinary-delegate approvals for the student.
    guardian = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="students",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        verbose_name="Apoderado",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["last_name", "first_name"]

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return f"{self.full_name} ({self.rut})"
