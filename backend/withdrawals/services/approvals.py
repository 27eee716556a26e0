from __future__ import annotations

import logging

from django.db import transaction

from ..clock import Clock, resolve_clock
from ..events import EventChannel, ManualApprovalResolved
from ..exceptions import Unauthorized
from ..models import Decision, WithdrawalRecord, WithdrawalTransition
from .state_machine import (
    WithdrawalState,
    apply_guardian_decision,
    apply_inspector_decision,
)
from .withdrawal import append_note, apply_state, ensure_pending, lock_withdrawal, record_transition


logger = logging.getLogger(__name__)


class ApprovalCoordinator:
    """Second-party approval loop for extraordinary (ad-hoc) delegates.

    The guardian confirms or rejects the delegate identity; after a
    confirmation the originating inspector finalizes the pickup. Each step
    is one locked, atomic transition followed by a `ManualApprovalResolved`
    event published on the injected channel once the transaction commits.
    """

    def __init__(self, *, events: EventChannel, clock: Clock | None = None):
        self.events = events
        self.clock = resolve_clock(clock)

    def pending_guardian_decisions(self, guardian):
        return (
            WithdrawalRecord.objects.select_related("student", "reason", "approver", "retriever_adhoc")
            .filter(
                student__guardian=guardian,
                method=WithdrawalRecord.Method.MANUAL,
                status=WithdrawalRecord.Status.PENDING,
                contact_verified=False,
                retriever_kind=WithdrawalRecord.RetrieverKind.ADHOC_DELEGATE,
            )
            .order_by("-created_at")
        )

    def pending_inspector_confirmations(self, inspector):
        return (
            WithdrawalRecord.objects.select_related("student", "reason", "guardian_authorizer", "retriever_adhoc")
            .filter(
                approver=inspector,
                method=WithdrawalRecord.Method.MANUAL,
                status=WithdrawalRecord.Status.PENDING,
                contact_verified=True,
                retriever_kind=WithdrawalRecord.RetrieverKind.ADHOC_DELEGATE,
            )
            .order_by("-updated_at")
        )

    def resolve_pending_guardian_approval(
        self,
        *,
        withdrawal_id: int,
        guardian,
        action: str,
        comment: str = "",
    ) -> WithdrawalRecord:
        now = self.clock.now()
        comment = (comment or "").strip()

        with transaction.atomic():
            withdrawal = lock_withdrawal(withdrawal_id)
            if withdrawal.student.guardian_id != getattr(guardian, "pk", None):
                raise Unauthorized("Solicitud no autorizada para este apoderado")
            ensure_pending(withdrawal)

            current = WithdrawalState.of(withdrawal)
            next_state = apply_guardian_decision(current, action)
            action = str(action).strip().upper()

            adhoc = withdrawal.retriever_adhoc
            withdrawal.guardian_authorizer = guardian
            apply_state(withdrawal, next_state)

            if action == Decision.APPROVE:
                note = "Apoderado aprobó al delegado extraordinario."
                if adhoc is not None:
                    adhoc.is_verified = True
                    adhoc.is_single_use = True
                    adhoc.consumed_at = adhoc.consumed_at or now
                    adhoc.save(update_fields=["is_verified", "is_single_use", "consumed_at"])
            else:
                note = "Apoderado rechazó al delegado extraordinario."
                withdrawal.retriever_adhoc = None
                withdrawal.decided_at = now

            withdrawal.notes = append_note(
                withdrawal.notes,
                note,
                f"Comentario apoderado: {comment}" if comment else "",
            )
            withdrawal.save()

            if action == Decision.DENY and adhoc is not None:
                adhoc.delete()

            record_transition(
                withdrawal=withdrawal,
                stage=WithdrawalTransition.Stage.GUARDIAN,
                from_status=current.status,
                actor=guardian,
                action=action,
                comment=comment,
            )
            self._publish_on_commit(withdrawal, stage=WithdrawalTransition.Stage.GUARDIAN, action=action, comment=comment, now=now)

        logger.info(
            "Guardian %s resolved withdrawal %s with %s (status=%s, contact_verified=%s)",
            guardian.pk,
            withdrawal.pk,
            action,
            withdrawal.status,
            withdrawal.contact_verified,
        )
        return withdrawal

    def finalize_inspector_confirmation(
        self,
        *,
        withdrawal_id: int,
        inspector,
        action: str,
        comment: str = "",
    ) -> WithdrawalRecord:
        now = self.clock.now()
        comment = (comment or "").strip()

        with transaction.atomic():
            withdrawal = lock_withdrawal(withdrawal_id)
            if withdrawal.approver_id != getattr(inspector, "pk", None):
                raise Unauthorized("Solo el inspector que registró el retiro puede confirmarlo")
            ensure_pending(withdrawal)

            current = WithdrawalState.of(withdrawal)
            next_state = apply_inspector_decision(current, action)
            action = str(action).strip().upper()

            apply_state(withdrawal, next_state)
            withdrawal.decided_at = now
            if action == Decision.APPROVE:
                note = "Inspector autorizó el retiro tras confirmación del apoderado."
            else:
                note = "Inspector rechazó el retiro tras la confirmación."
            withdrawal.notes = append_note(
                withdrawal.notes,
                note,
                f"Comentario inspector: {comment}" if comment else "",
            )
            withdrawal.save()

            record_transition(
                withdrawal=withdrawal,
                stage=WithdrawalTransition.Stage.INSPECTOR,
                from_status=current.status,
                actor=inspector,
                action=action,
                comment=comment,
            )
            self._publish_on_commit(withdrawal, stage=WithdrawalTransition.Stage.INSPECTOR, action=action, comment=comment, now=now)

        logger.info(
            "Inspector %s finalized withdrawal %s with %s (status=%s)",
            inspector.pk,
            withdrawal.pk,
            action,
            withdrawal.status,
        )
        return withdrawal

    def _publish_on_commit(self, withdrawal: WithdrawalRecord, *, stage: str, action: str, comment: str, now) -> None:
        event = ManualApprovalResolved(
            withdrawal_id=withdrawal.pk,
            inspector_user_id=withdrawal.approver_id,
            guardian_user_id=withdrawal.student.guardian_id,
            status=withdrawal.status,
            action=action,
            contact_verified=withdrawal.contact_verified,
            resolved_at=now,
            stage=str(stage),
            comment=comment or None,
        )
        transaction.on_commit(lambda: self.events.publish(event))
