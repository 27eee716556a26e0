from __future__ import annotations

import base64
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from io import BytesIO

import qrcode
from django.conf import settings
from django.db import IntegrityError, transaction

from students.models import Student

from ..clock import Clock, resolve_clock
from ..exceptions import (
    Conflict,
    ConflictActiveCredential,
    Expired,
    FormatInvalid,
    NotFound,
    StateConflict,
    Unauthorized,
)
from ..models import CREDENTIAL_CODE_LENGTH, PickupCredential, WithdrawalReason


logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"^\d{6}$")

DEFAULT_TTL_MINUTES = 15
DEFAULT_CODE_MAX_ATTEMPTS = 10


@dataclass
class IssuedCredential:
    code: str
    expires_at: datetime
    credential: PickupCredential


@dataclass
class CredentialInfo:
    code: str
    student: dict
    guardian: dict
    reason: dict
    custom_reason: str
    issued_at: datetime
    expires_at: datetime
    is_expired: bool


def credential_ttl() -> timedelta:
    minutes = int(getattr(settings, "WITHDRAWAL_CREDENTIAL_TTL_MINUTES", DEFAULT_TTL_MINUTES))
    return timedelta(minutes=max(1, minutes))


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CREDENTIAL_CODE_LENGTH):0{CREDENTIAL_CODE_LENGTH}d}"


def normalize_code(code) -> str:
    """Validates the 6-digit format; QR scanners sometimes add whitespace."""

    value = str(code or "").strip()
    if not _CODE_RE.match(value):
        raise FormatInvalid("El código QR debe tener exactamente 6 dígitos numéricos")
    return value


def is_expired(credential: PickupCredential, *, now: datetime) -> bool:
    return credential.expires_at <= now


def issue_credential(
    *,
    guardian,
    student_id: int,
    reason_id: int,
    custom_reason: str = "",
    clock: Clock | None = None,
) -> IssuedCredential:
    """Mint a single-use pickup credential for one of the guardian's students.

    At most one unconsumed, unexpired credential may exist per student. The
    read-then-write check gives a friendly error in the common case; the
    partial unique constraint on (student WHERE consumed = false) is what
    holds under concurrent callers.
    """

    now = resolve_clock(clock).now()
    max_attempts = int(getattr(settings, "WITHDRAWAL_CODE_MAX_ATTEMPTS", DEFAULT_CODE_MAX_ATTEMPTS))

    with transaction.atomic():
        student = Student.objects.filter(pk=student_id).first()
        if student is None:
            raise NotFound("Estudiante no encontrado")
        if student.guardian_id != getattr(guardian, "pk", None):
            raise Unauthorized("Estudiante no autorizado para este apoderado")

        reason = WithdrawalReason.objects.filter(pk=reason_id, is_active=True).first()
        if reason is None:
            raise NotFound("Motivo de retiro no válido")

        # Expired leftovers would otherwise still hold the unique slot.
        PickupCredential.objects.filter(student=student, consumed=False, expires_at__lte=now).delete()

        if PickupCredential.objects.filter(student=student, consumed=False).exists():
            raise ConflictActiveCredential()

        expires_at = now + credential_ttl()
        for _ in range(max(1, max_attempts)):
            code = generate_code()
            try:
                with transaction.atomic():
                    credential = PickupCredential.objects.create(
                        code=code,
                        student=student,
                        issued_by=guardian,
                        reason=reason,
                        custom_reason=(custom_reason or "").strip(),
                        expires_at=expires_at,
                    )
            except IntegrityError:
                if PickupCredential.objects.filter(student=student, consumed=False).exists():
                    raise ConflictActiveCredential()
                logger.info("Credential code collision for student %s, retrying", student.pk)
                continue

            logger.info(
                "Pickup credential %s issued for student %s by user %s (expires %s)",
                credential.pk,
                student.pk,
                guardian.pk,
                expires_at.isoformat(),
            )
            return IssuedCredential(code=code, expires_at=expires_at, credential=credential)

    raise Conflict("No se pudo generar un código QR único")


def get_credential_info(code, *, clock: Clock | None = None) -> CredentialInfo:
    code = normalize_code(code)
    now = resolve_clock(clock).now()

    credential = (
        PickupCredential.objects.select_related("student", "issued_by", "reason")
        .filter(code=code, consumed=False)
        .first()
    )
    if credential is None:
        raise NotFound("Código QR no encontrado o ya utilizado")

    student = credential.student
    issuer = credential.issued_by
    return CredentialInfo(
        code=credential.code,
        student={
            "id": student.pk,
            "rut": student.rut,
            "first_name": student.first_name,
            "last_name": student.last_name,
            "course_name": student.course_name or "Sin curso asignado",
        },
        guardian={
            "id": issuer.pk,
            "rut": issuer.rut,
            "first_name": issuer.first_name,
            "last_name": issuer.last_name,
            "phone": issuer.phone,
            "relationship": "Apoderado principal",
        },
        reason={"id": credential.reason_id, "name": credential.reason.name},
        custom_reason=credential.custom_reason,
        issued_at=credential.created_at,
        expires_at=credential.expires_at,
        is_expired=is_expired(credential, now=now),
    )


def consume(code, *, now: datetime, assigned_delegate=None) -> PickupCredential:
    """Flip a credential to consumed exactly once.

    Must run inside the caller's transaction so the consumption and whatever
    the caller records with it commit together.
    """

    code = normalize_code(code)

    credential = (
        PickupCredential.objects.select_for_update(of=("self",))
        .select_related("student", "issued_by", "reason")
        .filter(code=code, consumed=False)
        .first()
    )
    if credential is None:
        if PickupCredential.objects.filter(code=code, consumed=True).exists():
            raise StateConflict("El código QR ya fue utilizado")
        raise NotFound("Código QR no encontrado o ya utilizado")

    if is_expired(credential, now=now):
        raise Expired()

    credential.consumed = True
    credential.consumed_at = now
    update_fields = ["consumed", "consumed_at", "updated_at"]
    if assigned_delegate is not None:
        credential.assigned_delegate = assigned_delegate
        update_fields.append("assigned_delegate")
    credential.save(update_fields=update_fields)
    return credential


def consume_active_for_student(student, *, now: datetime, assigned_delegate=None) -> PickupCredential | None:
    """Consume the student's live credential, if any (manual pickup path)."""

    credential = (
        PickupCredential.objects.select_for_update(of=("self",))
        .filter(student=student, consumed=False, expires_at__gt=now)
        .first()
    )
    if credential is None:
        return None

    credential.consumed = True
    credential.consumed_at = now
    if assigned_delegate is not None:
        credential.assigned_delegate = assigned_delegate
    credential.save(update_fields=["consumed", "consumed_at", "assigned_delegate", "updated_at"])
    return credential


def cancel_credential(code, *, guardian, clock: Clock | None = None) -> None:
    """Guardian withdraws their own active credential before it is used."""

    code = normalize_code(code)
    now = resolve_clock(clock).now()

    with transaction.atomic():
        credential = (
            PickupCredential.objects.select_for_update(of=("self",))
            .filter(code=code, consumed=False, expires_at__gt=now)
            .first()
        )
        if credential is None:
            raise NotFound("No hay un código QR activo con ese identificador")
        if credential.issued_by_id != getattr(guardian, "pk", None):
            raise Unauthorized("El código QR no pertenece a este apoderado")

        credential_id = credential.pk
        credential.delete()

    logger.info("Pickup credential %s cancelled by user %s", credential_id, guardian.pk)


def expire_sweep(*, clock: Clock | None = None) -> int:
    """Delete unconsumed credentials whose expiration has passed.

    Consumed rows are never matched, so a concurrent consume that already
    flipped a row is left untouched.
    """

    now = resolve_clock(clock).now()
    deleted, _ = PickupCredential.objects.filter(consumed=False, expires_at__lte=now).delete()
    if deleted:
        logger.info("Expired pickup credentials removed: %s", deleted)
    return deleted


def active_credentials_for_guardian(guardian, *, clock: Clock | None = None) -> list[dict]:
    now = resolve_clock(clock).now()
    qs = (
        PickupCredential.objects.select_related("student", "reason")
        .filter(issued_by=guardian, consumed=False, expires_at__gt=now)
        .order_by("expires_at")
    )
    return [
        {
            "id": credential.pk,
            "code": credential.code,
            "student": {
                "id": credential.student_id,
                "first_name": credential.student.first_name,
                "last_name": credential.student.last_name,
            },
            "reason": {"id": credential.reason_id, "name": credential.reason.name},
            "custom_reason": credential.custom_reason,
            "expires_at": credential.expires_at,
            "minutes_remaining": max(0, int((credential.expires_at - now).total_seconds() // 60)),
            "created_at": credential.created_at,
        }
        for credential in qs
    ]


def qr_png_data_uri(code, *, guardian, clock: Clock | None = None) -> str:
    """PNG rendering of an active credential, embedded as a data URI."""

    code = normalize_code(code)
    now = resolve_clock(clock).now()
    credential = PickupCredential.objects.filter(code=code, consumed=False, expires_at__gt=now).first()
    if credential is None:
        raise NotFound("No hay un código QR activo con ese identificador")
    if credential.issued_by_id != getattr(guardian, "pk", None):
        raise Unauthorized("El código QR no pertenece a este apoderado")

    image = qrcode.make(credential.code)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
