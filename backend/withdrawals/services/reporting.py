from __future__ import annotations

from collections import OrderedDict

from ..clock import Clock, resolve_clock
from ..models import PickupCredential


STATUS_COMPLETED = "COMPLETED"
STATUS_ACTIVE = "ACTIVE"
STATUS_EXPIRED = "EXPIRED"


def credential_status(credential: PickupCredential, *, now) -> str:
    if credential.consumed:
        return STATUS_COMPLETED
    if credential.expires_at <= now:
        return STATUS_EXPIRED
    return STATUS_ACTIVE


def guardian_credential_history(
    guardian,
    *,
    student_id: int | None = None,
    include_pending: bool = True,
    limit: int = 20,
    offset: int = 0,
    clock: Clock | None = None,
) -> dict:
    now = resolve_clock(clock).now()

    qs = PickupCredential.objects.select_related("student", "reason").filter(issued_by=guardian)
    if student_id:
        qs = qs.filter(student_id=student_id)
    if not include_pending:
        qs = qs.exclude(consumed=False, expires_at__gt=now)

    total = qs.count()
    rows = list(qs.order_by("-created_at")[offset : offset + limit])

    items = []
    for credential in rows:
        items.append(
            {
                "id": credential.pk,
                "code": credential.code,
                "student": {
                    "id": credential.student_id,
                    "first_name": credential.student.first_name,
                    "last_name": credential.student.last_name,
                    "course_name": credential.student.course_name,
                },
                "reason": {"id": credential.reason_id, "name": credential.reason.name},
                "custom_reason": credential.custom_reason,
                "status": credential_status(credential, now=now),
                "created_at": credential.created_at,
                "used_at": credential.consumed_at,
                "expires_at": credential.expires_at,
            }
        )

    return {
        "credentials": items,
        "total": total,
        "has_more": offset + limit < total,
        "summary": {
            "total_completed": sum(1 for i in items if i["status"] == STATUS_COMPLETED),
            "total_active": sum(1 for i in items if i["status"] == STATUS_ACTIVE),
            "total_expired": sum(1 for i in items if i["status"] == STATUS_EXPIRED),
        },
    }


def guardian_credential_stats(guardian, *, clock: Clock | None = None) -> dict:
    now = resolve_clock(clock).now()
    first_day_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    all_time = list(
        PickupCredential.objects.select_related("student").filter(issued_by=guardian).order_by("-created_at")
    )
    this_month = [c for c in all_time if c.created_at >= first_day_of_month]

    generated = len(all_time)
    completed = sum(1 for c in all_time if c.consumed)

    per_student: "OrderedDict[int, dict]" = OrderedDict()
    for credential in all_time:
        stats = per_student.setdefault(
            credential.student_id,
            {
                "student_id": credential.student_id,
                "student_name": credential.student.full_name,
                "total_withdrawals": 0,
                "last_withdrawal": None,
            },
        )
        stats["total_withdrawals"] += 1
        if credential.consumed and credential.consumed_at:
            if stats["last_withdrawal"] is None or credential.consumed_at > stats["last_withdrawal"]:
                stats["last_withdrawal"] = credential.consumed_at

    return {
        "this_month": {
            "generated": len(this_month),
            "completed": sum(1 for c in this_month if c.consumed),
            "expired": sum(1 for c in this_month if not c.consumed and c.expires_at <= now),
        },
        "all_time": {
            "generated": generated,
            "completed": completed,
            "success_rate": round(completed * 100 / generated) if generated else 0,
        },
        "student_stats": list(per_student.values()),
    }
