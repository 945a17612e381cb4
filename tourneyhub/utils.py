from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def generate_invite_code() -> str:
    """Six digit numeric code, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


def mask_secret(value: str) -> str:
    if len(value) > 10:
        return f"{value[:6]}...{value[-4:]}"
    return "******"
