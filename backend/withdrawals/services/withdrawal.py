from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Union

from django.db import transaction

from students.models import Student

from ..clock import Clock, resolve_clock
from ..events import EventChannel, ManualApprovalRequested, get_event_channel
from ..exceptions import NotFound, StateConflict
from ..models import (
    AdHocDelegateCredential,
    Decision,
    RegisteredDelegate,
    WithdrawalReason,
    WithdrawalRecord,
    WithdrawalTransition,
)
from . import credentials
from .delegate_policy import (
    KIND_ADHOC,
    AdHocDelegateInput,
    AllowsAdHoc,
    DelegateRequest,
    DelegateSnapshot,
    RequiresSelection,
    Resolved,
    resolve_delegate,
)
from .state_machine import WithdrawalState, initial_state


logger = logging.getLogger(__name__)

OVERRIDE_NOTE_PREFIX = "Delegado extraordinario autorizado por excepción:"


@dataclass
class ManualAuthorizationResult:
    withdrawal: WithdrawalRecord
    pending_guardian_approval: bool
    had_active_credential: bool

    @property
    def message(self) -> str:
        if self.pending_guardian_approval:
            return (
                "Autorización manual registrada y pendiente de aprobación del apoderado "
                "para el delegado no registrado"
            )
        return "Retiro manual registrado y autorizado"


ManualAuthorizationOutcome = Union[ManualAuthorizationResult, RequiresSelection, AllowsAdHoc]


def _actor_role(actor) -> str:
    return str(getattr(actor, "role", "") or "") if actor is not None else ""


def record_transition(
    *,
    withdrawal: WithdrawalRecord,
    stage: str,
    from_status: str,
    actor,
    action: str = "",
    comment: str = "",
) -> WithdrawalTransition:
    return WithdrawalTransition.objects.create(
        withdrawal=withdrawal,
        stage=stage,
        action=action or "",
        from_status=from_status or "",
        to_status=withdrawal.status,
        contact_verified=withdrawal.contact_verified,
        actor=actor,
        actor_role=_actor_role(actor),
        comment=comment or "",
    )


def apply_state(withdrawal: WithdrawalRecord, state: WithdrawalState) -> None:
    withdrawal.status = state.status
    withdrawal.contact_verified = state.contact_verified


def append_note(existing: str, *parts: str) -> str:
    lines = [existing] if existing else []
    lines.extend(p for p in parts if p)
    return "\n".join(lines)


def consume_credential(
    code,
    *,
    inspector,
    decision: str,
    notes: str = "",
    clock: Clock | None = None,
) -> WithdrawalRecord:
    """QR path: consume the credential and record the inspector's decision."""

    now = resolve_clock(clock).now()
    state = initial_state(
        method=WithdrawalRecord.Method.QR,
        retriever_kind=WithdrawalRecord.RetrieverKind.USER,
        decision=decision,
    )

    with transaction.atomic():
        credential = credentials.consume(code, now=now)
        guardian = credential.issued_by

        withdrawal = WithdrawalRecord(
            credential=credential,
            student=credential.student,
            approver=inspector,
            reason=credential.reason,
            custom_reason=credential.custom_reason,
            method=state.method,
            retriever_kind=state.retriever_kind,
            retriever_user=guardian,
            retriever_name=guardian.get_full_name(),
            retriever_rut=guardian.rut,
            retriever_relationship="Apoderado principal",
            guardian_authorizer=guardian,
            notes=(notes or "").strip(),
            decided_at=now,
        )
        apply_state(withdrawal, state)
        withdrawal.save()

        record_transition(
            withdrawal=withdrawal,
            stage=WithdrawalTransition.Stage.CREATION,
            from_status="",
            actor=inspector,
            action=str(decision).upper(),
            comment=notes,
        )

    logger.info(
        "QR withdrawal %s recorded for student %s: %s (credential %s, inspector %s)",
        withdrawal.pk,
        withdrawal.student_id,
        withdrawal.status,
        credential.pk,
        inspector.pk,
    )
    return withdrawal


def _compose_manual_notes(
    *,
    delegates: list[DelegateSnapshot],
    resolved: Resolved,
    unregistered_reason: str,
    override_justification: str,
) -> str:
    parts: list[str] = []
    if resolved.discarded_delegate_ids:
        discarded_names = ", ".join(d.name for d in delegates if d.id in resolved.discarded_delegate_ids)
        parts.append(f"Delegados descartados: {discarded_names}")

    if resolved.kind == KIND_ADHOC:
        adhoc: AdHocDelegateInput = resolved.ref
        if unregistered_reason:
            parts.append(f"Razón delegado no registrado: {unregistered_reason}")
        if resolved.override_used:
            parts.append(f"{OVERRIDE_NOTE_PREFIX} {override_justification or 'Sin motivo especificado'}")
        parts.append(f"Delegado extraordinario: {adhoc.name} ({adhoc.relationship_to_student})")
        parts.append(f"Teléfono delegado: {adhoc.phone}")
        parts.append(f"RUT delegado: {adhoc.rut}")
    return "\n".join(parts)


def authorize_manually(
    *,
    inspector,
    student_id: int,
    reason_id: int,
    custom_reason: str = "",
    registered_delegate_id: int | None = None,
    adhoc_delegate: AdHocDelegateInput | None = None,
    discarded_delegate_ids: Iterable[int] = (),
    override_requested: bool | None = None,
    override_justification: str = "",
    unregistered_reason: str = "",
    clock: Clock | None = None,
    events: EventChannel | None = None,
) -> ManualAuthorizationOutcome:
    """Inspector authorizes a pickup without a QR code.

    Returns a `RequiresSelection`/`AllowsAdHoc` hint when no delegate was
    chosen yet, otherwise persists the withdrawal (and, for an extraordinary
    delegate, its single-use credential) in one transaction.

    `override_requested=None` means "infer from the justification": sending
    a justification along with an extraordinary delegate is how callers ask
    for the override. A justification next to a registered delegate is ignored.
    """

    now = resolve_clock(clock).now()
    override_justification = (override_justification or "").strip()
    unregistered_reason = (unregistered_reason or "").strip()
    if override_requested is None:
        override_requested = bool(override_justification) and adhoc_delegate is not None

    with transaction.atomic():
        student = Student.objects.select_related("guardian").filter(pk=student_id).first()
        if student is None:
            raise NotFound("Estudiante no encontrado para autorización manual")
        guardian = student.guardian
        if guardian is None:
            raise NotFound("El estudiante no tiene un apoderado asociado para autorizaciones manuales")

        reason = WithdrawalReason.objects.filter(pk=reason_id, is_active=True).first()
        if reason is None:
            raise NotFound("Motivo de retiro no válido")

        delegate_models = {d.pk: d for d in RegisteredDelegate.objects.filter(guardian=guardian)}
        snapshots = [DelegateSnapshot.from_model(d) for d in delegate_models.values()]

        outcome = resolve_delegate(
            DelegateRequest(
                registered_delegate_id=registered_delegate_id,
                adhoc_delegate=adhoc_delegate,
                discarded_delegate_ids=tuple(discarded_delegate_ids or ()),
                override_requested=bool(override_requested),
                override_justification=override_justification,
                unregistered_reason=unregistered_reason,
            ),
            snapshots,
        )
        if not isinstance(outcome, Resolved):
            return outcome

        withdrawal = WithdrawalRecord(
            student=student,
            approver=inspector,
            reason=reason,
            custom_reason=(custom_reason or "").strip(),
            method=WithdrawalRecord.Method.MANUAL,
            notes=_compose_manual_notes(
                delegates=snapshots,
                resolved=outcome,
                unregistered_reason=unregistered_reason,
                override_justification=override_justification,
            ),
            decided_at=now,
        )

        assigned_delegate = None
        if outcome.kind == KIND_ADHOC:
            adhoc: AdHocDelegateInput = outcome.ref
            adhoc_credential = AdHocDelegateCredential.objects.create(
                guardian=guardian,
                name=adhoc.name,
                rut=adhoc.rut,
                phone=adhoc.phone,
                relationship=adhoc.relationship_to_student,
                is_verified=False,
                is_single_use=True,
            )
            withdrawal.retriever_kind = WithdrawalRecord.RetrieverKind.ADHOC_DELEGATE
            withdrawal.retriever_adhoc = adhoc_credential
            withdrawal.retriever_name = adhoc.name
            withdrawal.retriever_rut = adhoc.rut
            withdrawal.retriever_relationship = adhoc.relationship_to_student
        else:
            assigned_delegate = delegate_models[outcome.ref]
            withdrawal.retriever_kind = WithdrawalRecord.RetrieverKind.REGISTERED_DELEGATE
            withdrawal.retriever_delegate = assigned_delegate
            withdrawal.retriever_name = assigned_delegate.name
            withdrawal.retriever_rut = assigned_delegate.rut
            withdrawal.retriever_relationship = assigned_delegate.relationship_to_student
            withdrawal.guardian_authorizer = guardian

        apply_state(
            withdrawal,
            initial_state(method=withdrawal.method, retriever_kind=withdrawal.retriever_kind),
        )

        active_credential = credentials.consume_active_for_student(
            student, now=now, assigned_delegate=assigned_delegate
        )
        withdrawal.credential = active_credential
        if active_credential is not None:
            withdrawal.notes = append_note(withdrawal.notes, "QR activo marcado como usado por inspector")
        withdrawal.save()

        record_transition(
            withdrawal=withdrawal,
            stage=WithdrawalTransition.Stage.CREATION,
            from_status="",
            actor=inspector,
            action=Decision.APPROVE,
        )

        if outcome.pending_guardian_approval:
            channel = events if events is not None else get_event_channel()
            event = ManualApprovalRequested(
                withdrawal_id=withdrawal.pk,
                guardian_user_id=guardian.pk,
                inspector_user_id=inspector.pk,
                student_id=student.pk,
                delegate_name=withdrawal.retriever_name,
                requested_at=now,
            )
            transaction.on_commit(lambda: channel.publish(event))

    logger.info(
        "Manual withdrawal %s recorded for student %s: %s via %s (override=%s, inspector %s)",
        withdrawal.pk,
        student.pk,
        withdrawal.status,
        withdrawal.retriever_kind,
        outcome.override_used,
        inspector.pk,
    )
    return ManualAuthorizationResult(
        withdrawal=withdrawal,
        pending_guardian_approval=outcome.pending_guardian_approval,
        had_active_credential=active_credential is not None,
    )


def lock_withdrawal(withdrawal_id: int) -> WithdrawalRecord:
    """Row-locks a record for a decision; callers must hold a transaction."""

    withdrawal = (
        WithdrawalRecord.objects.select_for_update(of=("self",))
        .select_related("student", "retriever_adhoc")
        .filter(pk=withdrawal_id)
        .first()
    )
    if withdrawal is None:
        raise NotFound("Solicitud de retiro no encontrada")
    return withdrawal


def ensure_pending(withdrawal: WithdrawalRecord) -> None:
    if withdrawal.status != WithdrawalRecord.Status.PENDING:
        raise StateConflict("La solicitud de retiro ya fue resuelta")
