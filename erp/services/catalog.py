from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from erp.db import q, transaction, x
from erp.errors import ReferenceNotFoundError, ValidationError
from erp.utils import norm_name

logger = logging.getLogger(__name__)

RAW_MATERIAL = "Raw Material"
FINISHED_GOOD = "Finished Good"
SPARE_PART = "Spare Part"


@dataclass(frozen=True)
class Item:
    id: str
    name: str
    category: str
    unit: str = "kg"


@dataclass(frozen=True)
class Ingredient:
    item_name: str
    quantity_per_unit: float


@dataclass(frozen=True)
class Formulation:
    id: str
    name: str
    output_item: str
    output_unit: str = "kg"
    ingredients: tuple[Ingredient, ...] = field(default_factory=tuple)


def _item_from_row(r) -> Item:
    return Item(id=str(r["id"]), name=str(r["name"]), category=str(r["category"]), unit=str(r["unit"]))


def list_items(conn, category: Optional[str] = None) -> list[Item]:
    if category:
        rows = q(conn, "SELECT * FROM items WHERE category=? ORDER BY name", (category,))
    else:
        rows = q(conn, "SELECT * FROM items ORDER BY category, name")
    return [_item_from_row(r) for r in rows]


def find_item(conn, name: str) -> Optional[Item]:
    rows = q(conn, "SELECT * FROM items WHERE item_key=?", (norm_name(name),))
    return _item_from_row(rows[0]) if rows else None


def next_code(conn, table: str, column: str, prefix: str, width: int = 3) -> str:
    """Next ``{prefix}{NNN}`` after the highest numeric suffix in use; gaps are not refilled."""
    rows = q(conn, f"SELECT {column} AS code FROM {table} WHERE {column} LIKE ?", (prefix + "%",))
    suffixes = [str(r["code"])[len(prefix):] for r in rows]
    n = max((int(s) for s in suffixes if s.isdigit()), default=0)
    return f"{prefix}{n + 1:0{width}d}"


def _next_item_id(conn, category: str) -> str:
    prefix = {RAW_MATERIAL: "RM", FINISHED_GOOD: "FG", SPARE_PART: "SP"}.get(category, "IT")
    return next_code(conn, "items", "id", prefix)


def add_item(conn, *, name: str, category: str, unit: str = "kg", item_id: Optional[str] = None) -> Item:
    name = str(name or "").strip()
    if not name:
        raise ValidationError("Item name is required.")
    if not str(category or "").strip():
        raise ValidationError("Item category is required.")
    with transaction(conn):
        if find_item(conn, name) is not None:
            raise ValidationError(f"Item already exists: {name}.", name=name)
        if item_id and q(conn, "SELECT 1 FROM items WHERE id=?", (item_id,)):
            raise ValidationError(f"Item id already in use: {item_id}.", item_id=item_id)

        item = Item(id=item_id or _next_item_id(conn, category), name=name, category=category, unit=unit or "kg")
        x(
            conn,
            "INSERT INTO items (id, name, item_key, category, unit) VALUES (?, ?, ?, ?, ?)",
            (item.id, item.name, norm_name(item.name), item.category, item.unit),
        )
    logger.info("Added item %s (%s)", item.name, item.id)
    return item


def delete_item(conn, item_id: str) -> bool:
    # Ledger history is keyed by name and stays in place.
    with transaction(conn):
        if not q(conn, "SELECT id FROM items WHERE id=?", (item_id,)):
            return False
        x(conn, "DELETE FROM items WHERE id=?", (item_id,))
    logger.info("Deleted item %s", item_id)
    return True


def _ingredients_for(conn, formulation_id: str) -> tuple[Ingredient, ...]:
    rows = q(
        conn,
        "SELECT item_name, quantity_per_unit FROM formulation_ingredients WHERE formulation_id=? ORDER BY position",
        (formulation_id,),
    )
    return tuple(Ingredient(str(r["item_name"]), float(r["quantity_per_unit"])) for r in rows)


def get_formulation(conn, formulation_id: str) -> Formulation:
    rows = q(conn, "SELECT * FROM formulations WHERE id=?", (formulation_id,))
    if not rows:
        raise ReferenceNotFoundError("formulation", formulation_id)
    r = rows[0]
    return Formulation(
        id=str(r["id"]),
        name=str(r["name"]),
        output_item=str(r["output_item"]),
        output_unit=str(r["output_unit"]),
        ingredients=_ingredients_for(conn, str(r["id"])),
    )


def list_formulations(conn) -> list[Formulation]:
    rows = q(conn, "SELECT id FROM formulations ORDER BY name")
    return [get_formulation(conn, str(r["id"])) for r in rows]


def save_formulation(conn, formulation: Formulation) -> Formulation:
    """
    Insert or replace a formulation and its ingredient list.

    Batches already committed keep their own frozen requirement snapshot, so
    editing a recipe here never changes them.
    """
    if not str(formulation.id or "").strip():
        raise ValidationError("Formulation id is required.")
    if not str(formulation.name or "").strip():
        raise ValidationError("Formulation name is required.")
    if not formulation.ingredients:
        raise ValidationError("At least one ingredient is required.")
    for ing in formulation.ingredients:
        if not str(ing.item_name or "").strip():
            raise ValidationError("Ingredient item name is required.")
        if float(ing.quantity_per_unit) < 0:
            raise ValidationError(f"Quantity per unit must be >= 0 for {ing.item_name}.")

    with transaction(conn):
        x(conn, "DELETE FROM formulation_ingredients WHERE formulation_id=?", (formulation.id,))
        x(
            conn,
            """
            INSERT INTO formulations (id, name, output_item, output_unit) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              name=excluded.name, output_item=excluded.output_item, output_unit=excluded.output_unit
            """,
            (formulation.id, formulation.name.strip(), formulation.output_item, formulation.output_unit),
        )
        for pos, ing in enumerate(formulation.ingredients, start=1):
            x(
                conn,
                """
                INSERT INTO formulation_ingredients (formulation_id, position, item_name, quantity_per_unit)
                VALUES (?, ?, ?, ?)
                """,
                (formulation.id, pos, ing.item_name.strip(), float(ing.quantity_per_unit)),
            )
    logger.info("Saved formulation %s with %d ingredient(s)", formulation.id, len(formulation.ingredients))
    return get_formulation(conn, formulation.id)


def delete_formulation(conn, formulation_id: str) -> bool:
    with transaction(conn):
        if not q(conn, "SELECT id FROM formulations WHERE id=?", (formulation_id,)):
            return False
        x(conn, "DELETE FROM formulations WHERE id=?", (formulation_id,))
    return True
