"""Lifecycle rules of a withdrawal record.

PENDING is the only non-terminal status; `contact_verified` is an
orthogonal gate. Only ad-hoc manual pickups ever start in PENDING, and they
leave it in two steps: the guardian confirms (or rejects) the delegate, then
the inspector finalizes the pickup.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ..exceptions import PolicyViolation, StateConflict
from ..models import Decision, WithdrawalRecord


Method = WithdrawalRecord.Method
Status = WithdrawalRecord.Status
RetrieverKind = WithdrawalRecord.RetrieverKind

TERMINAL_STATUSES = frozenset({Status.APPROVED, Status.DENIED})


@dataclass(frozen=True)
class WithdrawalState:
    method: str
    status: str
    contact_verified: bool
    retriever_kind: str

    @classmethod
    def of(cls, record: WithdrawalRecord) -> "WithdrawalState":
        return cls(
            method=record.method,
            status=record.status,
            contact_verified=record.contact_verified,
            retriever_kind=record.retriever_kind,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _decision(action: str) -> str:
    value = str(action or "").strip().upper()
    if value not in Decision.values:
        raise PolicyViolation("Acción de aprobación inválida")
    return value


def initial_state(*, method: str, retriever_kind: str, decision: str = Decision.APPROVE) -> WithdrawalState:
    if method == Method.QR:
        # Guardian identity was established when the credential was issued.
        status = Status.APPROVED if _decision(decision) == Decision.APPROVE else Status.DENIED
        return WithdrawalState(method=method, status=status, contact_verified=True, retriever_kind=retriever_kind)

    if retriever_kind == RetrieverKind.REGISTERED_DELEGATE:
        return WithdrawalState(method=method, status=Status.APPROVED, contact_verified=True, retriever_kind=retriever_kind)
    if retriever_kind == RetrieverKind.ADHOC_DELEGATE:
        return WithdrawalState(method=method, status=Status.PENDING, contact_verified=False, retriever_kind=retriever_kind)

    raise StateConflict("Un retiro manual requiere un delegado registrado o extraordinario")


def awaits_guardian(state: WithdrawalState) -> bool:
    return (
        state.method == Method.MANUAL
        and state.status == Status.PENDING
        and not state.contact_verified
        and state.retriever_kind == RetrieverKind.ADHOC_DELEGATE
    )


def awaits_inspector(state: WithdrawalState) -> bool:
    return (
        state.method == Method.MANUAL
        and state.status == Status.PENDING
        and state.contact_verified
        and state.retriever_kind == RetrieverKind.ADHOC_DELEGATE
    )


def apply_guardian_decision(state: WithdrawalState, action: str) -> WithdrawalState:
    if not awaits_guardian(state):
        raise StateConflict("La solicitud no está pendiente de aprobación del apoderado")
    if _decision(action) == Decision.APPROVE:
        return replace(state, contact_verified=True)
    return replace(state, status=Status.DENIED, contact_verified=False)


def apply_inspector_decision(state: WithdrawalState, action: str) -> WithdrawalState:
    if not awaits_inspector(state):
        raise StateConflict("La solicitud no está pendiente de confirmación del inspector")
    if _decision(action) == Decision.APPROVE:
        return replace(state, status=Status.APPROVED)
    return replace(state, status=Status.DENIED)
