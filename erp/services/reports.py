from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from datetime import date, timedelta
from typing import Optional

import pandas as pd

from erp.db import q, transaction, x
from erp.errors import ValidationError
from erp.services.catalog import list_items
from erp.services.ledger import FINISHED_GOODS, FINISHED_GOODS_OUTPUT, LedgerStore
from erp.services.planner import list_batches
from erp.services.production import batch_output_total
from erp.services.stock import prioritized_alerts, stock_position
from erp.utils import iso_days_before, iso_now, norm_name, resolve_today, safe_div

logger = logging.getLogger(__name__)

MOVEMENT_COLUMNS = [
    "display_rank", "move_date", "item_name", "kind", "role", "quantity", "unit",
    "customer", "supplier", "invoice_no", "bags", "qty_per_bag", "batch_code", "txn_group", "id",
]


def movements_frame(store: LedgerStore, log_name: Optional[str] = None, on_date: Optional[str] = None) -> pd.DataFrame:
    rows = [m.to_dict() for m in store.query(log_name, on_date=on_date)]
    if not rows:
        return pd.DataFrame(columns=MOVEMENT_COLUMNS)
    df = pd.DataFrame(rows)
    return df[[c for c in MOVEMENT_COLUMNS if c in df.columns]]


def inventory_summary(store: LedgerStore, today: Optional[str] = None) -> pd.DataFrame:
    """
    One row per item: total in, total out, current balance, dead-stock flag and
    alert status. Covers catalog items plus any name that only appears in the
    ledger.
    """
    catalog = list_items(store.conn)
    categories = {norm_name(i.name): i.category for i in catalog}
    names = {norm_name(i.name): i.name for i in catalog}
    for name in store.item_names():
        names.setdefault(norm_name(name), name)

    records = []
    for key, name in sorted(names.items()):
        p = stock_position(store, name, today=today)
        records.append(
            {
                "item": name,
                "category": categories.get(key, "Uncatalogued"),
                "total_in": round(p.total_in, 3),
                "total_out": round(p.total_out, 3),
                "current_stock": round(p.balance, 3),
                "avg_daily_usage": round(p.avg_daily_usage, 3),
                "days_until_stockout": round(p.days_until_stockout, 1),
                "status": p.status,
                "is_dead": p.is_dead,
            }
        )
    return pd.DataFrame(
        records,
        columns=[
            "item", "category", "total_in", "total_out", "current_stock",
            "avg_daily_usage", "days_until_stockout", "status", "is_dead",
        ],
    )


def stock_alerts(store: LedgerStore, today: Optional[str] = None) -> pd.DataFrame:
    """Non-normal items, most urgent first. Dead items (no movements at all) are skipped."""
    df = inventory_summary(store, today=today)
    live = df[~df["is_dead"].astype(bool)]
    ordered = [p.item_name for p in prioritized_alerts(store, live["item"].tolist(), today=today)]
    return df.set_index("item").loc[ordered].reset_index()


def daily_production(store: LedgerStore, days: int = 30, today: Optional[str] = None) -> pd.DataFrame:
    """Finished-goods output per day over the trailing window, zero-filled."""
    end = date.fromisoformat(resolve_today(today))
    start = end - timedelta(days=int(days) - 1)
    index = pd.date_range(start, end, freq="D")

    rows = [
        {"move_date": m.move_date, "quantity": m.quantity, "batch_code": m.batch_code}
        for m in store.query(FINISHED_GOODS, kind=FINISHED_GOODS_OUTPUT)
        if start.isoformat() <= m.move_date <= end.isoformat()
    ]
    if not rows:
        return pd.DataFrame({"total_kg": 0.0, "batches": 0}, index=index.rename("date"))

    df = pd.DataFrame(rows)
    df["move_date"] = pd.to_datetime(df["move_date"])
    grouped = df.groupby("move_date").agg(total_kg=("quantity", "sum"), batches=("batch_code", "nunique"))
    out = grouped.reindex(index, fill_value=0)
    out.index.name = "date"
    return out


def production_forecast(store: LedgerStore, days: int = 30, today: Optional[str] = None) -> dict:
    """
    Average daily output over the window, straight-line 7/30-day projection,
    and growth between the first and second half of the window (percent).
    """
    daily = daily_production(store, days=days, today=today)
    totals = daily["total_kg"].astype(float)
    avg_daily = safe_div(float(totals.sum()), int(days))

    half = len(totals) // 2
    first, second = totals.iloc[:half], totals.iloc[half:]
    first_avg = float(first.mean()) if len(first) else 0.0
    second_avg = float(second.mean()) if len(second) else 0.0
    growth = (second_avg - first_avg) / first_avg * 100.0 if first_avg > 0 else 0.0

    return {
        "avg_daily_production": avg_daily,
        "forecast_next_7_days": avg_daily * 7,
        "forecast_next_30_days": avg_daily * 30,
        "growth_rate_pct": growth,
    }


def batch_summary(store: LedgerStore) -> pd.DataFrame:
    """Batches with their recorded output and progress towards target."""
    records = []
    for b in list_batches(store.conn):
        produced = batch_output_total(store, b.batch_code)
        records.append(
            {
                "batch_code": b.batch_code,
                "formulation": b.formulation_name,
                "target_quantity": b.target_quantity,
                "produced_kg": round(produced, 3),
                "progress_pct": round(safe_div(produced, b.target_quantity) * 100.0, 1),
                "status": b.status,
                "actual_yield": b.actual_yield,
                "created_at": b.created_at,
            }
        )
    return pd.DataFrame(
        records,
        columns=[
            "batch_code", "formulation", "target_quantity", "produced_kg",
            "progress_pct", "status", "actual_yield", "created_at",
        ],
    )


# -------------------------
# Custom reports
# -------------------------

REPORT_FIELDS = MOVEMENT_COLUMNS + ["po_number", "handling_cost", "machine_no", "document", "notes"]
DATE_RANGES = ("last7days", "last30days", "custom", "all")


@dataclass(frozen=True)
class ReportDefinition:
    name: str
    log_name: Optional[str] = None
    date_range: str = "last30days"
    start: Optional[str] = None
    end: Optional[str] = None
    filters: tuple[tuple[str, str], ...] = ()
    columns: tuple[str, ...] = ()
    group_by: Optional[str] = None
    sort_by: Optional[str] = None


def _check_field(field: str) -> str:
    if field not in REPORT_FIELDS:
        raise ValidationError(f"Unknown report field: {field!r}.", field=field)
    return field


def report_window(
    date_range: str,
    today: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> tuple[Optional[str], Optional[str]]:
    """Inclusive (start, end) ISO dates for a named range; ``(None, None)`` means no bound."""
    today = resolve_today(today)
    if date_range == "last7days":
        return iso_days_before(today, 7), today
    if date_range == "last30days":
        return iso_days_before(today, 30), today
    if date_range == "all":
        return None, None
    if date_range == "custom":
        if not start or not end:
            raise ValidationError("A custom range needs both a start and an end date.")
        start, end = str(start), str(end)
        if start > end:
            raise ValidationError(f"Start date {start} is after end date {end}.")
        return start, end
    raise ValidationError(f"Unknown date range: {date_range!r}.", date_range=date_range)


def custom_report(
    store: LedgerStore,
    log_name: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    filters=None,
    columns=None,
    group_by: Optional[str] = None,
    sort_by: Optional[str] = None,
) -> pd.DataFrame:
    """
    Ad-hoc view over one log (or all logs).

    ``filters`` is a list of ``(field, text)`` pairs; a row is kept when the
    field contains the text, ignoring case. Blank filters are skipped. With
    ``group_by`` the result is one row per value with the entry count and
    total quantity. ``sort_by`` sorts descending.
    """
    rows = [m.to_dict() for m in store.query(log_name)]
    df = pd.DataFrame(rows, columns=REPORT_FIELDS)

    if start is not None:
        df = df[df["move_date"] >= str(start)]
    if end is not None:
        df = df[df["move_date"] <= str(end)]

    for field, text in filters or ():
        if not field or text is None or str(text).strip() == "":
            continue
        values = df[_check_field(field)].fillna("").astype(str).str.lower()
        df = df[values.str.contains(str(text).strip().lower(), regex=False)]

    if group_by:
        df = (
            df.groupby(_check_field(group_by), dropna=False)
            .agg(entries=("id", "count"), total_quantity=("quantity", "sum"))
            .reset_index()
        )
        if sort_by:
            if sort_by not in df.columns:
                raise ValidationError(f"Cannot sort grouped report by {sort_by!r}.", field=sort_by)
            df = df.sort_values(sort_by, ascending=False, kind="stable")
        return df.reset_index(drop=True)

    if sort_by:
        df = df.sort_values(_check_field(sort_by), ascending=False, kind="stable")
    if columns:
        df = df[[_check_field(c) for c in columns]]
    return df.reset_index(drop=True)


def run_report(store: LedgerStore, definition: ReportDefinition, today: Optional[str] = None) -> pd.DataFrame:
    start, end = report_window(definition.date_range, today=today, start=definition.start, end=definition.end)
    return custom_report(
        store,
        definition.log_name,
        start,
        end,
        filters=definition.filters,
        columns=definition.columns,
        group_by=definition.group_by,
        sort_by=definition.sort_by,
    )


def _definition_from_json(body: str) -> ReportDefinition:
    d = json.loads(body)
    d["filters"] = tuple(tuple(f) for f in d.get("filters") or ())
    d["columns"] = tuple(d.get("columns") or ())
    return ReportDefinition(**d)


def save_report_definition(conn, definition: ReportDefinition) -> ReportDefinition:
    """Insert or replace a saved report, keyed by name."""
    name = str(definition.name or "").strip()
    if not name:
        raise ValidationError("Report name is required.")
    report_window(definition.date_range, start=definition.start, end=definition.end)
    for field in [f for f, _ in definition.filters if f] + list(definition.columns):
        _check_field(field)
    if definition.group_by:
        _check_field(definition.group_by)

    definition = replace(definition, name=name)
    x(
        conn,
        """
        INSERT INTO report_definitions (name, definition, created_at) VALUES (?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET definition=excluded.definition
        """,
        (name, json.dumps(asdict(definition)), iso_now()),
    )
    logger.info("Saved report definition %s", name)
    return definition


def list_report_definitions(conn) -> list[ReportDefinition]:
    rows = q(conn, "SELECT definition FROM report_definitions ORDER BY name")
    return [_definition_from_json(str(r["definition"])) for r in rows]


def delete_report_definition(conn, name: str) -> bool:
    with transaction(conn):
        if not q(conn, "SELECT 1 FROM report_definitions WHERE name=?", (name,)):
            return False
        x(conn, "DELETE FROM report_definitions WHERE name=?", (name,))
    return True
