"""
Finished-goods output and the batch auto-deduction protocol.

Recording an output entry against a batch writes the output movement and one
AUTO_DEDUCTED consumption movement per frozen batch requirement, scaled by
``packed / target``, all under one transaction group. Deleting the output
entry removes the whole group again.

Two points need a person to decide, and both come back as notices rather
than exceptions:

* quantity mismatch: ``|packed - target| > 0.01`` kg. Nothing is written
  until the notice is confirmed.
* completion: cumulative batch output >= 98% of target. The batch moves to
  COMPLETED only when the notice is confirmed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from erp.errors import BatchClosedError, ValidationError
from erp.notices import CompletionEligibleNotice, QuantityMismatchWarning
from erp.services.entries import (
    DeleteOutcome,
    optional_text,
    positive_number,
    required_text,
    check_entry_date,
    delete_entry,
    item_id_for,
    new_txn_group,
)
from erp.services.ledger import (
    AUTO_DEDUCTED,
    FINISHED_GOODS,
    FINISHED_GOODS_OUTPUT,
    IN,
    STORE,
    LedgerStore,
    Movement,
)
from erp.services.planner import (
    COMPLETED,
    IN_PRODUCTION,
    PLANNED,
    ProductionBatch,
    get_batch,
    set_batch_status,
)
from erp.utils import resolve_today, safe_div

logger = logging.getLogger(__name__)

MISMATCH_TOLERANCE_KG = 0.01
COMPLETION_THRESHOLD = 0.98
# Float slack for the two comparisons above; far below any quantity users enter.
_EPS = 1e-9


@dataclass(frozen=True)
class FinishedGoodsEntry:
    move_date: str
    customer_name: str
    item: str
    total_bags: float
    kg_per_bag: float
    document: Optional[str] = None

    @property
    def total_packed_kg(self) -> float:
        return float(self.total_bags) * float(self.kg_per_bag)


@dataclass
class OutputOutcome:
    output: Optional[Movement] = None
    deductions: list[Movement] = field(default_factory=list)
    batch: Optional[ProductionBatch] = None
    mismatch: Optional[QuantityMismatchWarning] = None
    completion: Optional[CompletionEligibleNotice] = None

    @property
    def recorded(self) -> bool:
        return self.output is not None

    @property
    def needs_confirmation(self) -> bool:
        return self.mismatch is not None and not self.recorded


def _validated_entry(entry: Optional[FinishedGoodsEntry], today: str) -> FinishedGoodsEntry:
    if entry is None:
        raise ValidationError("Output entry is required.")
    return replace(
        entry,
        move_date=check_entry_date(entry.move_date, today),
        customer_name=required_text(entry.customer_name, "Customer name"),
        item=required_text(entry.item, "Item"),
        total_bags=positive_number(entry.total_bags, "Total bags"),
        kg_per_bag=positive_number(entry.kg_per_bag, "Kg per bag"),
        document=optional_text(entry.document),
    )


def batch_output_total(store: LedgerStore, batch_code: str) -> float:
    return store.sum_quantity(None, IN, kinds=[FINISHED_GOODS_OUTPUT], batch_code=batch_code)


def complete_batch(conn, batch_code: str, yield_pct: float) -> ProductionBatch:
    set_batch_status(conn, batch_code, COMPLETED, actual_yield=f"{float(yield_pct):.1f}")
    return get_batch(conn, batch_code)


def _reaches_completion(total: float, target: float) -> bool:
    return target > 0 and total + _EPS >= COMPLETION_THRESHOLD * target


def confirm_completion(store: LedgerStore, batch_code: str) -> ProductionBatch:
    """
    Close a batch from a completion notice. Output is re-totalled here, so a
    notice confirmed after its output was rolled back is refused and the
    stored yield reflects what is in the ledger now.
    """
    with store.atomic():
        batch = get_batch(store.conn, batch_code)
        if batch.status == COMPLETED:
            raise BatchClosedError(batch_code)
        total = batch_output_total(store, batch_code)
        if not _reaches_completion(total, batch.target_quantity):
            raise ValidationError(
                f"Batch {batch_code} is no longer eligible for completion: "
                f"{total:.3f} of {batch.target_quantity:.3f} kg recorded.",
                batch_code=batch_code,
                total_output=total,
            )
        return complete_batch(store.conn, batch_code, total / batch.target_quantity * 100.0)


def _mismatch_notice(store, entry, batch, today) -> Optional[QuantityMismatchWarning]:
    planned = batch.target_quantity
    actual = entry.total_packed_kg
    diff = abs(actual - planned)
    if diff - MISMATCH_TOLERANCE_KG <= _EPS:
        return None
    return QuantityMismatchWarning(
        message=(
            f"Packed quantity {actual:.3f} kg differs from batch {batch.batch_code} "
            f"target {planned:.3f} kg by {diff:.3f} kg. Record anyway?"
        ),
        data={
            "batch_code": batch.batch_code,
            "planned_qty": planned,
            "actual_qty": actual,
            "difference": diff,
        },
        proceed=lambda: record_finished_goods_output(
            store, entry, batch.batch_code, accept_mismatch=True, today=today
        ),
    )


def _completion_notice(store, batch: ProductionBatch) -> Optional[CompletionEligibleNotice]:
    target = batch.target_quantity
    total = batch_output_total(store, batch.batch_code)
    if not _reaches_completion(total, target):
        return None
    pct = total / target * 100.0
    return CompletionEligibleNotice(
        message=f"Batch {batch.batch_code} has reached {pct:.1f}% of its target. Close it as completed?",
        data={
            "batch_code": batch.batch_code,
            "total_output": total,
            "target_quantity": target,
            "yield_pct": pct,
        },
        proceed=lambda: confirm_completion(store, batch.batch_code),
    )


def record_finished_goods_output(
    store: LedgerStore,
    entry: FinishedGoodsEntry,
    batch_code: Optional[str] = None,
    *,
    accept_mismatch: bool = False,
    today: Optional[str] = None,
) -> OutputOutcome:
    """
    Record packed finished goods, optionally against a production batch.

    Raises ValidationError for missing fields, ImmutableRecordError for a
    date other than today, ReferenceNotFoundError for an unknown batch and
    BatchClosedError for a completed one.
    """
    today = resolve_today(today)
    entry = _validated_entry(entry, today)
    packed = entry.total_packed_kg

    batch: Optional[ProductionBatch] = None
    code = (batch_code or "").strip() or None
    if code:
        batch = get_batch(store.conn, code)
        if batch.status == COMPLETED:
            raise BatchClosedError(code)
        if not accept_mismatch:
            warning = _mismatch_notice(store, entry, batch, today)
            if warning is not None:
                logger.info("Output for %s held for confirmation: %s", code, warning.message)
                return OutputOutcome(batch=batch, mismatch=warning)

    group = new_txn_group()
    writes = [
        (
            FINISHED_GOODS,
            Movement(
                item_name=entry.item,
                kind=FINISHED_GOODS_OUTPUT,
                quantity=packed,
                move_date=entry.move_date,
                txn_group=group,
                batch_code=code,
                item_id=item_id_for(store.conn, entry.item),
                customer=entry.customer_name,
                bags=entry.total_bags,
                qty_per_bag=entry.kg_per_bag,
                document=entry.document,
            ),
        )
    ]
    if batch is not None and batch.requirements:
        ratio = safe_div(packed, batch.target_quantity)
        for req in batch.requirements:
            writes.append(
                (
                    STORE,
                    Movement(
                        item_name=req.ingredient,
                        kind=AUTO_DEDUCTED,
                        quantity=req.required_qty * ratio,
                        move_date=entry.move_date,
                        txn_group=group,
                        batch_code=code,
                        item_id=item_id_for(store.conn, req.ingredient),
                        notes=f"Auto deduction for batch {code}",
                    ),
                )
            )

    with store.atomic():
        stored = store.append_many(writes)
        if batch is not None and batch.status == PLANNED:
            set_batch_status(store.conn, code, IN_PRODUCTION)

    outcome = OutputOutcome(output=stored[0], deductions=stored[1:])
    if batch is not None:
        outcome.batch = get_batch(store.conn, code)
        outcome.completion = _completion_notice(store, outcome.batch)
        logger.info(
            "Recorded %.3f kg for batch %s with %d auto deduction(s) (group=%s)",
            packed, code, len(outcome.deductions), group,
        )
        if outcome.completion is not None:
            logger.info(outcome.completion.message)
    else:
        logger.info("Recorded %.3f kg of %s as general stock (group=%s)", packed, entry.item, group)
    return outcome


def delete_output_entry(store: LedgerStore, entry_id: int, today: Optional[str] = None) -> DeleteOutcome:
    """
    Remove a finished-goods entry together with its auto-deducted consumption.
    Entries without a transaction group are removed alone and the outcome
    carries a RollbackIncompleteWarning.
    """
    return delete_entry(store, FINISHED_GOODS, entry_id, today=today, warn_if_unlinked=True)
