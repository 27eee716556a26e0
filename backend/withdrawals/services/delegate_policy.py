"""Decides who may pick up a student when no QR code is presented.

Pure module: it works on plain snapshots of the guardian's registered
delegates and never touches the database. Persisting the outcome (creating
the ad-hoc credential, the withdrawal record) is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Union

from ..exceptions import PolicyViolation, StateConflict, Unauthorized


logger = logging.getLogger(__name__)

KIND_REGISTERED = "REGISTERED"
KIND_ADHOC = "ADHOC"


@dataclass(frozen=True)
class DelegateSnapshot:
    id: int
    name: str
    phone: str = ""
    relationship_to_student: str = ""

    @classmethod
    def from_model(cls, delegate) -> "DelegateSnapshot":
        return cls(
            id=delegate.pk,
            name=delegate.name,
            phone=delegate.phone,
            relationship_to_student=delegate.relationship_to_student,
        )


@dataclass(frozen=True)
class AdHocDelegateInput:
    name: str
    rut: str
    phone: str
    relationship_to_student: str


@dataclass(frozen=True)
class DelegateRequest:
    registered_delegate_id: int | None = None
    adhoc_delegate: AdHocDelegateInput | None = None
    discarded_delegate_ids: tuple[int, ...] = ()
    override_requested: bool = False
    override_justification: str = ""
    unregistered_reason: str = ""


@dataclass(frozen=True)
class RequiresSelection:
    available_delegates: list[DelegateSnapshot]
    discarded_delegate_ids: list[int]
    message: str = "Selecciona un delegado registrado para continuar con la autorización manual."


@dataclass(frozen=True)
class AllowsAdHoc:
    discarded_delegate_ids: list[int]
    none_available: bool = True
    message: str = (
        "No hay delegados registrados disponibles. Debes ingresar un delegado extraordinario "
        "y registrar la razón correspondiente."
    )


@dataclass(frozen=True)
class Resolved:
    kind: str
    ref: Union[int, AdHocDelegateInput]
    discarded_delegate_ids: list[int] = field(default_factory=list)
    override_used: bool = False

    @property
    def pending_guardian_approval(self) -> bool:
        return self.kind == KIND_ADHOC


DelegateOutcome = Union[RequiresSelection, AllowsAdHoc, Resolved]


def _normalize_discarded(ids: Iterable) -> list[int]:
    seen: list[int] = []
    for raw in ids or ():
        try:
            value = int(raw)
        except (TypeError, ValueError):
            continue
        if value not in seen:
            seen.append(value)
    return seen


def resolve_delegate(request: DelegateRequest, delegates: Iterable[DelegateSnapshot]) -> DelegateOutcome:
    guardian_delegates = list(delegates)
    owned_ids = {d.id for d in guardian_delegates}

    if request.override_requested and request.adhoc_delegate is None:
        raise PolicyViolation("No se puede forzar un delegado extraordinario sin proporcionar sus datos.")

    if request.registered_delegate_id is not None and request.adhoc_delegate is not None:
        raise PolicyViolation("Debe usar un delegado registrado o ingresar uno manual, no ambos")

    discarded = _normalize_discarded(request.discarded_delegate_ids)
    if any(d not in owned_ids for d in discarded):
        raise Unauthorized("Uno de los delegados descartados no pertenece al apoderado del estudiante")

    available = [d for d in guardian_delegates if d.id not in discarded]

    if request.registered_delegate_id is None and request.adhoc_delegate is None:
        if available:
            return RequiresSelection(available_delegates=available, discarded_delegate_ids=discarded)
        return AllowsAdHoc(discarded_delegate_ids=discarded)

    if request.registered_delegate_id is not None:
        delegate_id = int(request.registered_delegate_id)
        if delegate_id in discarded:
            raise StateConflict(
                "El delegado seleccionado fue marcado como descartado. Actualiza la selección para continuar."
            )
        if delegate_id not in owned_ids:
            raise Unauthorized("El delegado seleccionado no pertenece al apoderado del estudiante")
        return Resolved(kind=KIND_REGISTERED, ref=delegate_id, discarded_delegate_ids=discarded)

    justification = (request.override_justification or "").strip()
    unregistered_reason = (request.unregistered_reason or "").strip()

    if available:
        if not request.override_requested:
            logger.warning("Ad-hoc delegate rejected: %s registered delegates still available", len(available))
            raise PolicyViolation(
                "Existen delegados registrados disponibles. Selecciona uno o descártalos explícitamente "
                "para habilitar un delegado extraordinario."
            )
        if not justification:
            raise PolicyViolation(
                "Debes registrar una justificación para autorizar a un delegado extraordinario "
                "cuando existen delegados registrados disponibles."
            )
        return Resolved(kind=KIND_ADHOC, ref=request.adhoc_delegate, discarded_delegate_ids=discarded, override_used=True)

    # No registered delegate left: either none exist or all were discarded.
    if not unregistered_reason:
        raise PolicyViolation("Debes indicar la razón por la que el delegado no está registrado.")
    return Resolved(kind=KIND_ADHOC, ref=request.adhoc_delegate, discarded_delegate_ids=discarded)
