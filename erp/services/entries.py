from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from erp.errors import ImmutableRecordError, ValidationError
from erp.notices import RollbackIncompleteWarning
from erp.services.catalog import find_item
from erp.services.ledger import (
    DISPATCH,
    DISPATCHES,
    GOODS_RECEIVED,
    PRODUCTION_IN,
    RECEIPTS,
    SPARE_CONSUMPTION,
    SPARE_PURCHASE,
    SPARE_PURCHASES,
    SPARE_USAGE,
    STORE,
    STORE_CONSUMPTION,
    LedgerStore,
    Movement,
)
from erp.utils import resolve_today

logger = logging.getLogger(__name__)


@dataclass
class DeleteOutcome:
    removed: list[Movement] = field(default_factory=list)
    warning: Optional[RollbackIncompleteWarning] = None

    @property
    def found(self) -> bool:
        return bool(self.removed)


def new_txn_group() -> str:
    return uuid.uuid4().hex


def required_text(value: Any, label: str) -> str:
    s = str(value or "").strip()
    if not s:
        raise ValidationError(f"{label} is required.", field=label)
    return s


def optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s if s else None


def positive_number(value: Any, label: str) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number.", field=label)
    if v <= 0:
        raise ValidationError(f"{label} must be > 0.", field=label)
    return v


def _cost(value: Any) -> float:
    try:
        return max(0.0, float(value or 0))
    except (TypeError, ValueError):
        raise ValidationError("Cost must be a number.")


def check_entry_date(entry_date: Any, today: Optional[str] = None) -> str:
    """Entries may only be created for today's date; returns the ISO date."""
    today = resolve_today(today)
    try:
        d = date.fromisoformat(required_text(entry_date, "Date")).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date: {entry_date!r}.", field="Date")
    if d != today:
        raise ImmutableRecordError(d, today)
    return d


def item_id_for(conn, item_name: str) -> Optional[str]:
    item = find_item(conn, item_name)
    return item.id if item else None


# -------------------------
# Writers (one per log)
# -------------------------

def record_goods_receipt(
    store: LedgerStore,
    *,
    move_date: str,
    supplier: str,
    item: str,
    total_bags: float,
    qty_per_bag: float,
    po_number: Optional[str] = None,
    invoice_no: Optional[str] = None,
    unloading_cost: float = 0.0,
    document: Optional[str] = None,
    today: Optional[str] = None,
) -> Movement:
    d = check_entry_date(move_date, today)
    supplier = required_text(supplier, "Supplier")
    item = required_text(item, "Item")
    bags = positive_number(total_bags, "Total bags")
    per_bag = positive_number(qty_per_bag, "Qty per bag")

    return store.append(
        RECEIPTS,
        Movement(
            item_name=item,
            kind=GOODS_RECEIVED,
            quantity=bags * per_bag,
            move_date=d,
            txn_group=new_txn_group(),
            item_id=item_id_for(store.conn, item),
            supplier=supplier,
            po_number=optional_text(po_number),
            invoice_no=optional_text(invoice_no),
            bags=bags,
            qty_per_bag=per_bag,
            handling_cost=_cost(unloading_cost),
            document=optional_text(document),
        ),
    )


def record_store_update(
    store: LedgerStore,
    *,
    move_date: str,
    item: str,
    total_bags: float,
    qty_per_bag: float,
    production_in: bool = False,
    notes: Optional[str] = None,
    today: Optional[str] = None,
) -> Movement:
    """Daily store update: material issued to the floor, or intermediate output brought back in."""
    d = check_entry_date(move_date, today)
    item = required_text(item, "Item")
    bags = positive_number(total_bags, "Total bags")
    per_bag = positive_number(qty_per_bag, "Qty per bag")

    return store.append(
        STORE,
        Movement(
            item_name=item,
            kind=PRODUCTION_IN if production_in else STORE_CONSUMPTION,
            quantity=bags * per_bag,
            move_date=d,
            item_id=item_id_for(store.conn, item),
            bags=bags,
            qty_per_bag=per_bag,
            notes=optional_text(notes),
        ),
    )


def record_dispatch(
    store: LedgerStore,
    *,
    move_date: str,
    invoice_no: str,
    customer: str,
    item: str,
    total_bags: float,
    kg_per_bag: float,
    loading_cost: float = 0.0,
    document: Optional[str] = None,
    today: Optional[str] = None,
) -> Movement:
    d = check_entry_date(move_date, today)
    invoice_no = required_text(invoice_no, "Invoice number")
    customer = required_text(customer, "Customer")
    item = required_text(item, "Item")
    bags = positive_number(total_bags, "Total bags")
    per_bag = positive_number(kg_per_bag, "Kg per bag")

    return store.append(
        DISPATCHES,
        Movement(
            item_name=item,
            kind=DISPATCH,
            quantity=bags * per_bag,
            move_date=d,
            item_id=item_id_for(store.conn, item),
            customer=customer,
            invoice_no=invoice_no,
            bags=bags,
            qty_per_bag=per_bag,
            handling_cost=_cost(loading_cost),
            document=optional_text(document),
        ),
    )


def record_spare_purchase(
    store: LedgerStore,
    *,
    move_date: str,
    supplier: str,
    item: str,
    quantity: float,
    today: Optional[str] = None,
) -> Movement:
    d = check_entry_date(move_date, today)
    supplier = required_text(supplier, "Supplier")
    item = required_text(item, "Item")
    qty = positive_number(quantity, "Quantity")
    return store.append(
        SPARE_PURCHASES,
        Movement(
            item_name=item,
            kind=SPARE_PURCHASE,
            quantity=qty,
            unit="pcs",
            move_date=d,
            item_id=item_id_for(store.conn, item),
            supplier=supplier,
        ),
    )


def record_spare_usage(
    store: LedgerStore,
    *,
    move_date: str,
    item: str,
    quantity: float,
    machine_no: str,
    today: Optional[str] = None,
) -> Movement:
    d = check_entry_date(move_date, today)
    item = required_text(item, "Item")
    machine_no = required_text(machine_no, "Machine number")
    qty = positive_number(quantity, "Quantity")
    return store.append(
        SPARE_USAGE,
        Movement(
            item_name=item,
            kind=SPARE_CONSUMPTION,
            quantity=qty,
            unit="pcs",
            move_date=d,
            item_id=item_id_for(store.conn, item),
            machine_no=machine_no,
        ),
    )


# -------------------------
# Deletion
# -------------------------

def delete_entry(
    store: LedgerStore,
    log_name: str,
    movement_id: int,
    *,
    today: Optional[str] = None,
    warn_if_unlinked: bool = False,
) -> DeleteOutcome:
    """
    Delete one of today's entries and everything sharing its transaction
    group. Unknown ids are a no-op, so repeating a delete is safe.
    """
    today = resolve_today(today)
    with store.atomic():
        target = store.get(int(movement_id))
        if target is None or target.log_name != log_name:
            logger.info("Delete of %s #%s: not found, nothing to do", log_name, movement_id)
            return DeleteOutcome()
        if target.move_date != today:
            raise ImmutableRecordError(target.move_date, today, movement_id=int(movement_id))

        if target.txn_group:
            return DeleteOutcome(removed=store.remove_by_transaction_group([target.txn_group]))

        removed = store.remove(log_name, int(movement_id))

    outcome = DeleteOutcome(removed=[removed] if removed else [])
    if warn_if_unlinked:
        outcome.warning = RollbackIncompleteWarning(
            message=(
                f"Entry #{target.seq} has no transaction group; linked stock movements "
                "(if any) were not rolled back and must be corrected by hand."
            ),
            data={"movement_id": target.id, "log_name": log_name, "batch_code": target.batch_code},
        )
        logger.warning("Deleted legacy entry %s #%s without automatic rollback", log_name, target.seq)
    return outcome
