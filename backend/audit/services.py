from __future__ import annotations

import logging
from typing import Any, Optional

from django.http import HttpRequest

from .models import AuditLog


logger = logging.getLogger(__name__)


def _client_ip(request: HttpRequest) -> str:
	forwarded = (request.META.get("HTTP_X_FORWARDED_FOR") or "").strip()
	if forwarded:
		# First entry is the client; the rest are proxies.
		return forwarded.split(",")[0].strip()
	return (request.META.get("REMOTE_ADDR") or "").strip()


def log_event(
	request: HttpRequest,
	*,
	event_type: str,
	object_type: str = "",
	object_id: str | int = "",
	status_code: Optional[int] = None,
	metadata: Optional[dict[str, Any]] = None,
) -> Optional[AuditLog]:
	user = getattr(request, "user", None)
	if not getattr(user, "is_authenticated", False):
		return None

	entry = AuditLog.objects.create(
		actor=user,
		event_type=str(event_type),
		object_type=object_type or "",
		object_id=str(object_id) if object_id is not None else "",
		path=(getattr(request, "path", "") or "")[:300],
		method=(getattr(request, "method", "") or ""),
		status_code=status_code,
		ip_address=_client_ip(request),
		user_agent=(request.META.get("HTTP_USER_AGENT") or "")[:4000],
		metadata=metadata or {},
	)
	logger.debug("Audit %s %s:%s by user %s", entry.event_type, entry.object_type, entry.object_id, user.pk)
	return entry


def withdrawal_trail(withdrawal_id: int):
	"""Every audited operation that touched one withdrawal record."""

	return AuditLog.objects.select_related("actor").filter(
		object_type="WithdrawalRecord", object_id=str(withdrawal_id)
	)
