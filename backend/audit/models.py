from __future__ import annotations

from django.conf import settings
from django.db import models


class AuditLog(models.Model):
	"""Trail of sensitive withdrawal operations (issuance, scans, decisions).

	Keep the row small; anything event specific goes in `metadata`.
	"""

	class EventType(models.TextChoices):
		CREDENTIAL_ISSUED = "WITHDRAWAL_CREDENTIAL_ISSUED", "Código QR generado"
		CREDENTIAL_VIEWED = "WITHDRAWAL_CREDENTIAL_VIEWED", "Código QR consultado"
		CREDENTIAL_CONSUMED = "WITHDRAWAL_CREDENTIAL_CONSUMED", "Código QR utilizado"
		CREDENTIAL_CANCELLED = "WITHDRAWAL_CREDENTIAL_CANCELLED", "Código QR cancelado"
		MANUAL_AUTHORIZATION = "WITHDRAWAL_MANUAL_AUTHORIZATION", "Autorización manual"
		GUARDIAN_DECISION = "WITHDRAWAL_GUARDIAN_DECISION", "Decisión del apoderado"
		INSPECTOR_DECISION = "WITHDRAWAL_INSPECTOR_DECISION", "Confirmación del inspector"

	actor = models.ForeignKey(
		settings.AUTH_USER_MODEL,
		on_delete=models.SET_NULL,
		null=True,
		blank=True,
		related_name="audit_logs",
	)

	event_type = models.CharField(max_length=80, choices=EventType.choices)
	object_type = models.CharField(max_length=80, blank=True, default="")
	object_id = models.CharField(max_length=80, blank=True, default="")

	path = models.CharField(max_length=300, blank=True, default="")
	method = models.CharField(max_length=10, blank=True, default="")
	status_code = models.PositiveSmallIntegerField(null=True, blank=True)

	ip_address = models.CharField(max_length=64, blank=True, default="")
	user_agent = models.TextField(blank=True, default="")

	metadata = models.JSONField(default=dict, blank=True)

	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ["-created_at", "-id"]
		indexes = [
			models.Index(fields=["event_type", "created_at"], name="audit_event_created_idx"),
			models.Index(fields=["object_type", "object_id", "created_at"], name="audit_object_created_idx"),
			models.Index(fields=["actor", "created_at"], name="audit_actor_created_idx"),
		]

	def __str__(self) -> str:
		obj = f"{self.object_type}:{self.object_id}" if self.object_type or self.object_id else "-"
		return f"{self.created_at:%Y-%m-%d %H:%M:%S} {self.event_type} {obj}"
