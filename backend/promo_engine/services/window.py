"""Validity window and active-flag checks shared by validation and the ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from promo_engine.services.errors import Deactivated, Expired, NotYetStarted


class Scheduled(Protocol):
    @property
    def start_date(self) -> datetime: ...

    @property
    def end_date(self) -> datetime: ...

    @property
    def is_active(self) -> bool: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive; they were stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def check_window(promotion: Scheduled, now: datetime) -> None:
    """Half-open ``[start, end)``; expiry is reported before not-yet-started."""
    if now >= as_utc(promotion.end_date):
        raise Expired()
    if now < as_utc(promotion.start_date):
        raise NotYetStarted()


def check_active(promotion: Scheduled) -> None:
    if not promotion.is_active:
        raise Deactivated()
