"""Outbound events of the withdrawal engine.

The engine never delivers anything itself: services receive an
`EventChannel` and publish typed events on it after their transaction
commits. Which channel is used by default is controlled by the
`WITHDRAWALS_EVENT_CHANNEL` setting (dotted path to a zero-argument
callable returning a channel).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Protocol, Union

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils.module_loading import import_string


logger = logging.getLogger(__name__)

DEFAULT_EVENT_CHANNEL = "withdrawals.events.NotificationEventChannel"


@dataclass(frozen=True)
class ManualApprovalRequested:
    withdrawal_id: int
    guardian_user_id: int
    inspector_user_id: int
    student_id: int
    delegate_name: str
    requested_at: datetime

    name = "withdrawal.manual_approval.requested"

    def as_payload(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ManualApprovalResolved:
    withdrawal_id: int
    inspector_user_id: int
    guardian_user_id: int
    status: str
    action: str
    contact_verified: bool
    resolved_at: datetime
    stage: str
    comment: str | None = None

    name = "withdrawal.manual_approval.resolved"

    def as_payload(self) -> dict:
        return asdict(self)


WithdrawalEvent = Union[ManualApprovalRequested, ManualApprovalResolved]


class EventChannel(Protocol):
    def publish(self, event: WithdrawalEvent) -> None: ...


@dataclass
class InMemoryEventChannel:
    events: list = field(default_factory=list)

    def publish(self, event: WithdrawalEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


class NotificationEventChannel:
    """Turns engine events into in-app notifications."""

    def publish(self, event: WithdrawalEvent) -> None:
        from notifications.services import create_notification

        User = get_user_model()

        if isinstance(event, ManualApprovalRequested):
            recipient_id = event.guardian_user_id
            title = "Autorización de retiro pendiente"
            body = (
                f"El inspector registró a {event.delegate_name} como delegado extraordinario. "
                "Confirma o rechaza el retiro."
            )
            url = f"/withdrawals/pending/{event.withdrawal_id}"
            dedupe_key = f"withdrawal:{event.withdrawal_id}:requested"
        elif isinstance(event, ManualApprovalResolved):
            if event.stage == "GUARDIAN":
                recipient_id = event.inspector_user_id
                verb = "aprobó" if event.action == "APPROVE" else "rechazó"
                title = f"El apoderado {verb} al delegado extraordinario"
            else:
                recipient_id = event.guardian_user_id
                verb = "autorizó" if event.status == "APPROVED" else "rechazó"
                title = f"El inspector {verb} el retiro"
            body = event.comment or ""
            url = f"/withdrawals/{event.withdrawal_id}"
            dedupe_key = f"withdrawal:{event.withdrawal_id}:{event.stage}"
        else:
            raise TypeError(f"Evento no soportado: {type(event).__name__}")

        recipient = User.objects.filter(pk=recipient_id, is_active=True).first()
        if recipient is None:
            logger.warning("No recipient %s for event %s", recipient_id, event.name)
            return

        create_notification(
            recipient=recipient,
            title=title,
            body=body,
            url=url,
            type="WITHDRAWAL",
            dedupe_key=dedupe_key,
        )


def get_event_channel() -> EventChannel:
    path = str(getattr(settings, "WITHDRAWALS_EVENT_CHANNEL", "") or DEFAULT_EVENT_CHANNEL)
    return import_string(path)()
