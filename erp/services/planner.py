from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from erp.db import q, transaction, x
from erp.errors import ReferenceNotFoundError, ValidationError
from erp.services.catalog import Formulation, next_code
from erp.services.ledger import LedgerStore
from erp.services.stock import balance_of
from erp.utils import iso_now, resolve_today

logger = logging.getLogger(__name__)

PLANNED = "PLANNED"
IN_PRODUCTION = "IN_PRODUCTION"
COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class IngredientRequirement:
    ingredient: str
    quantity_per_unit: float
    required_qty: float
    current_stock: float
    shortage: float
    sufficient: bool
    is_zero_requirement: bool


@dataclass(frozen=True)
class MaterialPlan:
    formulation_id: str
    formulation_name: str
    output_item: str
    target_quantity: float
    requirements: tuple[IngredientRequirement, ...]

    @property
    def feasible(self) -> bool:
        return all(r.sufficient for r in self.requirements)

    @property
    def shortages(self) -> list[IngredientRequirement]:
        return [r for r in self.requirements if not r.sufficient]


@dataclass(frozen=True)
class RequirementSnapshot:
    ingredient: str
    required_qty: float


@dataclass(frozen=True)
class ProductionBatch:
    batch_code: str
    formulation_id: Optional[str]
    formulation_name: str
    output_item: Optional[str]
    target_quantity: float
    status: str
    requirements: tuple[RequirementSnapshot, ...]
    actual_yield: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


def _target(target_quantity) -> float:
    try:
        target = float(target_quantity)
    except (TypeError, ValueError):
        raise ValidationError("Target quantity must be a number.", target_quantity=target_quantity)
    if target < 0:
        raise ValidationError("Target quantity must be >= 0.", target_quantity=target)
    return target


def calculate_plan(
    formulation: Formulation,
    target_quantity: float,
    balance_lookup: Callable[[str], float],
) -> MaterialPlan:
    """
    Material requirements for ``target_quantity`` units of output.

    Pure apart from ``balance_lookup``; call it again whenever the target or
    stock changes. A zero target gives zero requirements, each flagged
    ``is_zero_requirement`` (informational, not a pass/fail).
    """
    if formulation is None:
        raise ValidationError("Formulation is required.")
    target = _target(target_quantity)

    reqs = []
    for ing in formulation.ingredients:
        per_unit = float(ing.quantity_per_unit)
        required = per_unit * target
        current = float(balance_lookup(ing.item_name))
        reqs.append(
            IngredientRequirement(
                ingredient=ing.item_name,
                quantity_per_unit=per_unit,
                required_qty=required,
                current_stock=current,
                shortage=max(0.0, required - current),
                sufficient=current >= required,
                is_zero_requirement=required == 0,
            )
        )

    return MaterialPlan(
        formulation_id=formulation.id,
        formulation_name=formulation.name,
        output_item=formulation.output_item,
        target_quantity=target,
        requirements=tuple(reqs),
    )


def plan_for(store: LedgerStore, formulation: Formulation, target_quantity: float) -> MaterialPlan:
    return calculate_plan(formulation, target_quantity, lambda name: balance_of(store, name))


def _generate_batch_code(conn, day: str) -> str:
    """
    Human-readable code: PB-{YYYYMMDD}-{NNN}

    Example:
      PB-20261019-001
    """
    return next_code(conn, "production_batches", "batch_code", f"PB-{str(day).replace('-', '')}-")


def commit_batch(
    conn,
    plan: Optional[MaterialPlan],
    batch_code: Optional[str] = None,
    today: Optional[str] = None,
) -> ProductionBatch:
    """
    Turn a plan into a PLANNED batch. The requirement list is copied into the
    batch's own rows; later edits to the formulation do not reach it.
    Shortages do not block the commit.
    """
    if plan is None:
        raise ValidationError("A calculated plan is required to create a batch.")
    if float(plan.target_quantity) <= 0:
        raise ValidationError("Target quantity must be > 0.", target_quantity=plan.target_quantity)

    with transaction(conn):
        code = (batch_code or "").strip() or _generate_batch_code(conn, resolve_today(today))
        if q(conn, "SELECT 1 FROM production_batches WHERE batch_code=?", (code,)):
            raise ValidationError(f"Batch already exists: {code}.", batch_code=code)

        x(
            conn,
            """
            INSERT INTO production_batches (
                batch_code, formulation_id, formulation_name, output_item,
                target_quantity, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                code,
                plan.formulation_id,
                plan.formulation_name,
                plan.output_item,
                float(plan.target_quantity),
                PLANNED,
                iso_now(),
            ),
        )
        for pos, req in enumerate(plan.requirements, start=1):
            x(
                conn,
                """
                INSERT INTO batch_requirements (batch_code, position, ingredient, required_qty)
                VALUES (?, ?, ?, ?)
                """,
                (code, pos, str(req.ingredient), float(req.required_qty)),
            )

    if not plan.feasible:
        logger.warning(
            "Batch %s committed with shortages: %s",
            code,
            ", ".join(f"{r.ingredient} ({r.shortage:.3f})" for r in plan.shortages),
        )
    logger.info("Committed batch %s: %s x %.3f", code, plan.formulation_name, plan.target_quantity)
    return get_batch(conn, code)


def _batch_from_row(conn, r) -> ProductionBatch:
    reqs = q(
        conn,
        "SELECT ingredient, required_qty FROM batch_requirements WHERE batch_code=? ORDER BY position",
        (r["batch_code"],),
    )
    return ProductionBatch(
        batch_code=str(r["batch_code"]),
        formulation_id=r["formulation_id"],
        formulation_name=str(r["formulation_name"]),
        output_item=r["output_item"],
        target_quantity=float(r["target_quantity"]),
        status=str(r["status"]),
        requirements=tuple(RequirementSnapshot(str(s["ingredient"]), float(s["required_qty"])) for s in reqs),
        actual_yield=r["actual_yield"],
        created_at=r["created_at"],
        completed_at=r["completed_at"],
    )


def get_batch(conn, batch_code: str) -> ProductionBatch:
    rows = q(conn, "SELECT * FROM production_batches WHERE batch_code=?", (batch_code,))
    if not rows:
        raise ReferenceNotFoundError("batch", batch_code)
    return _batch_from_row(conn, rows[0])


def list_batches(conn, status: Optional[str] = None) -> list[ProductionBatch]:
    if status:
        rows = q(conn, "SELECT * FROM production_batches WHERE status=? ORDER BY created_at DESC, batch_code DESC", (status,))
    else:
        rows = q(conn, "SELECT * FROM production_batches ORDER BY created_at DESC, batch_code DESC")
    return [_batch_from_row(conn, r) for r in rows]


def set_batch_status(conn, batch_code: str, status: str, *, actual_yield: Optional[str] = None) -> None:
    allowed = {PLANNED: {IN_PRODUCTION}, IN_PRODUCTION: {COMPLETED}, COMPLETED: set()}
    with transaction(conn):
        current = get_batch(conn, batch_code).status
        if status == current:
            return
        if status not in allowed.get(current, set()):
            raise ValidationError(f"Batch {batch_code} cannot move from {current} to {status}.", batch_code=batch_code)
        if status == COMPLETED:
            x(
                conn,
                "UPDATE production_batches SET status=?, actual_yield=?, completed_at=? WHERE batch_code=?",
                (status, actual_yield, iso_now(), batch_code),
            )
        else:
            x(conn, "UPDATE production_batches SET status=? WHERE batch_code=?", (status, batch_code))
    logger.info("Batch %s: %s -> %s", batch_code, current, status)
