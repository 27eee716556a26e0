from __future__ import annotations

from django.conf import settings
from django.core.validators import RegexValidator
from django.db import models
from django.db.models import Q


CREDENTIAL_CODE_LENGTH = 6

credential_code_validator = RegexValidator(
    regex=r"^\d{6}$",
    message="El código debe tener exactamente 6 dígitos numéricos",
)


class Decision(models.TextChoices):
    APPROVE = "APPROVE", "Aprobar"
    DENY = "DENY", "Rechazar"


class WithdrawalReason(models.Model):
    name = models.CharField(max_length=120, unique=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class RegisteredDelegate(models.Model):
    """Person pre-authorized by a guardian to pick up their students."""

    guardian = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="delegates",
    )
    name = models.CharField(max_length=150)
    rut = models.CharField(max_length=12, blank=True, default="", verbose_name="RUT")
    phone = models.CharField(max_length=20, blank=True, default="")
    relationship_to_student = models.CharField(max_length=100, verbose_name="Parentesco")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return f"{self.name} - {self.relationship_to_student}"


class AdHocDelegateCredential(models.Model):
    """Temporary identity assertion for an extraordinary delegate.

    Created inside a manual-authorization override; verified (and consumed)
    when the guardian approves, deleted when the guardian denies.
    """

    guardian = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="adhoc_delegate_credentials",
    )
    name = models.CharField(max_length=150)
    rut = models.CharField(max_length=12, blank=True, default="", verbose_name="RUT")
    phone = models.CharField(max_length=20, blank=True, default="")
    relationship = models.CharField(max_length=100)

    is_verified = models.BooleanField(default=False)
    is_single_use = models.BooleanField(default=True)
    consumed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        state = "verificado" if self.is_verified else "sin verificar"
        return f"{self.name} ({self.relationship}, {state})"


class PickupCredential(models.Model):
    """Single-use, time-boxed pickup authorization (QR code)."""

    code = models.CharField(max_length=CREDENTIAL_CODE_LENGTH, validators=[credential_code_validator])
    student = models.ForeignKey(
        "students.Student",
        on_delete=models.CASCADE,
        related_name="pickup_credentials",
    )
    issued_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="issued_pickup_credentials",
    )
    reason = models.ForeignKey(WithdrawalReason, on_delete=models.PROTECT, related_name="credentials")
    custom_reason = models.CharField(max_length=500, blank=True, default="")

    expires_at = models.DateTimeField(db_index=True)
    consumed = models.BooleanField(default=False)
    consumed_at = models.DateTimeField(null=True, blank=True)
    assigned_delegate = models.ForeignKey(
        RegisteredDelegate,
        on_delete=models.SET_NULL,
        related_name="assigned_credentials",
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["issued_by", "created_at"], name="withdrawals_cred_issuer_idx"),
            models.Index(fields=["consumed", "expires_at"], name="withdrawals_cred_expiry_idx"),
        ]
        constraints = [
            # Expired rows are purged before issuing, so "unconsumed" is the
            # storage-level stand-in for "active".
            models.UniqueConstraint(
                fields=["student"],
                condition=Q(consumed=False),
                name="uniq_unconsumed_credential_per_student",
            ),
            models.UniqueConstraint(
                fields=["code"],
                condition=Q(consumed=False),
                name="uniq_unconsumed_credential_code",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.code} - {self.student_id}"


class WithdrawalRecord(models.Model):
    class Method(models.TextChoices):
        QR = "QR", "Código QR"
        MANUAL = "MANUAL", "Manual"

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pendiente"
        APPROVED = "APPROVED", "Aprobado"
        DENIED = "DENIED", "Rechazado"

    class RetrieverKind(models.TextChoices):
        USER = "USER", "Apoderado"
        REGISTERED_DELEGATE = "REGISTERED_DELEGATE", "Delegado registrado"
        ADHOC_DELEGATE = "ADHOC_DELEGATE", "Delegado extraordinario"

    credential = models.ForeignKey(
        PickupCredential,
        on_delete=models.SET_NULL,
        related_name="withdrawals",
        null=True,
        blank=True,
    )
    student = models.ForeignKey("students.Student", on_delete=models.PROTECT, related_name="withdrawals")
    approver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="approved_withdrawals",
    )
    reason = models.ForeignKey(WithdrawalReason, on_delete=models.PROTECT, related_name="withdrawals")
    custom_reason = models.CharField(max_length=500, blank=True, default="")

    method = models.CharField(max_length=10, choices=Method.choices)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    contact_verified = models.BooleanField(default=False)

    retriever_kind = models.CharField(max_length=24, choices=RetrieverKind.choices)
    retriever_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="retrieved_withdrawals",
        null=True,
        blank=True,
    )
    retriever_delegate = models.ForeignKey(
        RegisteredDelegate,
        on_delete=models.PROTECT,
        related_name="withdrawals",
        null=True,
        blank=True,
    )
    retriever_adhoc = models.ForeignKey(
        AdHocDelegateCredential,
        on_delete=models.SET_NULL,
        related_name="withdrawals",
        null=True,
        blank=True,
    )
    # Snapshot of the retriever identity; survives deletion of a denied
    # ad-hoc credential.
    retriever_name = models.CharField(max_length=150, blank=True, default="")
    retriever_rut = models.CharField(max_length=12, blank=True, default="")
    retriever_relationship = models.CharField(max_length=100, blank=True, default="")

    guardian_authorizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="authorized_withdrawals",
        null=True,
        blank=True,
    )

    notes = models.TextField(blank=True, default="")
    decided_at = models.DateTimeField()

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-decided_at", "-id"]
        indexes = [
            models.Index(fields=["student", "decided_at"], name="withdrawals_rec_student_idx"),
            models.Index(fields=["method", "status", "contact_verified"], name="withdrawals_rec_pending_idx"),
            models.Index(fields=["approver", "status"], name="withdrawals_rec_approver_idx"),
        ]

    @property
    def retriever_ref(self) -> int | None:
        if self.retriever_kind == self.RetrieverKind.USER:
            return self.retriever_user_id
        if self.retriever_kind == self.RetrieverKind.REGISTERED_DELEGATE:
            return self.retriever_delegate_id
        return self.retriever_adhoc_id

    def __str__(self) -> str:
        return f"{self.pk} - {self.student_id} - {self.method}/{self.status}"


class WithdrawalTransition(models.Model):
    class Stage(models.TextChoices):
        CREATION = "CREATION", "Creación"
        GUARDIAN = "GUARDIAN", "Decisión del apoderado"
        INSPECTOR = "INSPECTOR", "Confirmación del inspector"

    withdrawal = models.ForeignKey(WithdrawalRecord, on_delete=models.CASCADE, related_name="transitions")

    stage = models.CharField(max_length=12, choices=Stage.choices)
    action = models.CharField(max_length=10, choices=Decision.choices, blank=True, default="")
    from_status = models.CharField(max_length=10, choices=WithdrawalRecord.Status.choices, blank=True, default="")
    to_status = models.CharField(max_length=10, choices=WithdrawalRecord.Status.choices)
    contact_verified = models.BooleanField(default=False)

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="withdrawal_transitions",
        null=True,
        blank=True,
    )
    actor_role = models.CharField(max_length=24, blank=True, default="")
    comment = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.withdrawal_id}: {self.from_status or '-'} -> {self.to_status}"
