"""Idempotency key helpers: UTC hour buckets and key format checks."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable

from deployguard.core.errors import ValidationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_clock: Clock = utc_now


def set_clock(clock: Clock | None) -> None:
    """Replace the wall clock used for hour buckets. ``None`` restores the real one."""
    global _clock
    _clock = clock or utc_now


def now() -> datetime:
    return _clock()


def utc_hour_bucket(moment: datetime | None = None) -> str:
    """``YYYY-MM-DD-HH`` in UTC. Naive datetimes are taken as UTC."""
    moment = moment or _clock()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d-%H")


MAX_KEY_LENGTH = 256
_KEY_RE = re.compile(r"^[A-Za-z0-9_:-]+$")


def validate_idempotency_key(key: str, max_length: int = MAX_KEY_LENGTH) -> str:
    """Reject run and step keys that are too long or carry characters outside ``[A-Za-z0-9_:-]``."""
    if len(key) > max_length:
        raise ValidationError(
            f"Idempotency key exceeds max length of {max_length} characters (actual: {len(key)})",
            details={"key": key[:64]},
        )
    if not _KEY_RE.match(key):
        raise ValidationError(
            "Idempotency key contains invalid characters "
            "(only alphanumeric, hyphen, underscore, colon allowed)",
            details={"key": key},
        )
    return key
