from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from erp.services.ledger import IN, OUT, LedgerStore
from erp.utils import iso_days_before, resolve_today, safe_div

logger = logging.getLogger(__name__)

USAGE_WINDOW_DAYS = 30
NO_STOCKOUT_DAYS = 999.0
WARNING_DAYS = 7
OVERSTOCK_DAYS = 90

CRITICAL = "critical"
WARNING = "warning"
OVERSTOCK = "overstock"
NORMAL = "normal"

ALERT_PRIORITY = {CRITICAL: 0, WARNING: 1, OVERSTOCK: 2, NORMAL: 3}


@dataclass(frozen=True)
class StockPosition:
    item_name: str
    total_in: float
    total_out: float
    balance: float
    avg_daily_usage: float
    days_until_stockout: float
    status: str

    @property
    def is_dead(self) -> bool:
        return self.total_in == 0 and self.total_out == 0


def balance_of(store: LedgerStore, item_name: str, as_of: Optional[str] = None) -> float:
    """
    Sum of IN minus sum of OUT across every log for the normalized item name.
    ``as_of`` (ISO date) keeps only movements dated on or before it. Negative
    results are returned as-is.
    """
    total_in = store.sum_quantity(item_name, IN, until=as_of)
    total_out = store.sum_quantity(item_name, OUT, until=as_of)
    return total_in - total_out


def average_daily_usage(
    store: LedgerStore,
    item_name: str,
    window_days: int = USAGE_WINDOW_DAYS,
    today: Optional[str] = None,
) -> float:
    if int(window_days) <= 0:
        return 0.0
    today = resolve_today(today)
    used = store.sum_quantity(item_name, OUT, since=iso_days_before(today, window_days), until=today)
    return safe_div(used, window_days)


def days_until_stockout(store: LedgerStore, item_name: str, today: Optional[str] = None) -> float:
    usage = average_daily_usage(store, item_name, USAGE_WINDOW_DAYS, today=today)
    if usage <= 0:
        return NO_STOCKOUT_DAYS
    return balance_of(store, item_name) / usage


def _status(balance: float, usage: float, horizon: float) -> str:
    if balance <= 0:
        return CRITICAL
    if 0 < horizon < WARNING_DAYS:
        return WARNING
    if balance > OVERSTOCK_DAYS * usage:
        return OVERSTOCK
    return NORMAL


def classify(store: LedgerStore, item_name: str, today: Optional[str] = None) -> str:
    return stock_position(store, item_name, today=today).status


def stock_position(store: LedgerStore, item_name: str, today: Optional[str] = None) -> StockPosition:
    total_in = store.sum_quantity(item_name, IN)
    total_out = store.sum_quantity(item_name, OUT)
    balance = total_in - total_out
    usage = average_daily_usage(store, item_name, USAGE_WINDOW_DAYS, today=today)
    horizon = balance / usage if usage > 0 else NO_STOCKOUT_DAYS
    return StockPosition(
        item_name=item_name,
        total_in=total_in,
        total_out=total_out,
        balance=balance,
        avg_daily_usage=usage,
        days_until_stockout=horizon,
        status=_status(balance, usage, horizon),
    )


def prioritized_alerts(
    store: LedgerStore,
    item_names: Iterable[str],
    today: Optional[str] = None,
) -> list[StockPosition]:
    """Critical items first, then warning, then overstock. Normal items are left out."""
    positions = [stock_position(store, name, today=today) for name in item_names]
    alerts = [p for p in positions if p.status != NORMAL]
    alerts.sort(key=lambda p: (ALERT_PRIORITY[p.status], p.days_until_stockout, p.item_name.lower()))
    logger.debug("Computed %d stock alert(s) over %d item(s)", len(alerts), len(positions))
    return alerts
