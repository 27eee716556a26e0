from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from django.utils import timezone


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return timezone.now()


@dataclass
class FrozenClock:
    """Clock that only moves when told to. Used to simulate expiration."""

    current: datetime = field(default_factory=timezone.now)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


system_clock = SystemClock()


def resolve_clock(clock: Clock | None) -> Clock:
    return clock if clock is not None else system_clock
