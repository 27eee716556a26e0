from __future__ import annotations

from datetime import timedelta
from typing import Optional

from django.utils import timezone

from users.models import User

from .models import Notification


def create_notification(
    *,
    recipient: User,
    title: str,
    body: str = "",
    url: str = "",
    type: str = "",
    dedupe_key: str = "",
    dedupe_within_seconds: Optional[int] = None,
) -> Notification:
    if dedupe_key:
        existing_qs = Notification.objects.filter(recipient=recipient, dedupe_key=dedupe_key)
        if dedupe_within_seconds is not None:
            since = timezone.now() - timedelta(seconds=int(dedupe_within_seconds))
            existing_qs = existing_qs.filter(created_at__gte=since)
        existing = existing_qs.order_by("-created_at").first()
        if existing is not None:
            return existing

    return Notification.objects.create(
        recipient=recipient,
        type=type,
        title=title,
        body=body,
        url=url,
        dedupe_key=dedupe_key,
    )


def unread_for_user(user: User):
    return Notification.objects.filter(recipient=user, read_at__isnull=True)


def mark_all_read_for_user(user: User) -> int:
    now = timezone.now()
    return unread_for_user(user).update(read_at=now)
