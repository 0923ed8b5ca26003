from __future__ import annotations

from datetime import datetime, date, timedelta, timezone
from typing import Optional


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def iso_days_before(day: str, days: int) -> str:
    return (date.fromisoformat(str(day)) - timedelta(days=int(days))).isoformat()


def safe_div(n: float, d: float) -> float:
    return float(n) / float(d) if d else 0.0


def norm_name(name: Optional[str]) -> str:
    """Ledger identity for an item: lowercase, surrounding whitespace trimmed."""
    return str(name or "").strip().lower()


def resolve_today(today: Optional[str]) -> str:
    return str(today) if today else iso_today()
