from __future__ import annotations

import random
from dataclasses import replace
from datetime import date, timedelta

from erp.db import ensure_schema, q, transaction, x
from erp.services.catalog import (
    FINISHED_GOOD,
    RAW_MATERIAL,
    SPARE_PART,
    Formulation,
    Ingredient,
    add_item,
    find_item,
    save_formulation,
)
from erp.services.ledger import (
    DISPATCH,
    DISPATCHES,
    FINISHED_GOODS,
    FINISHED_GOODS_OUTPUT,
    GOODS_RECEIVED,
    RECEIPTS,
    SPARE_PURCHASE,
    SPARE_PURCHASES,
    STORE,
    STORE_CONSUMPTION,
    LedgerStore,
    Movement,
)

DEFAULT_ITEMS = [
    ("Charcoal Powder", RAW_MATERIAL, "kg"),
    ("Saw Dust", RAW_MATERIAL, "kg"),
    ("Jigat Powder", RAW_MATERIAL, "kg"),
    ("Guar Gum", RAW_MATERIAL, "kg"),
    ("CH - 8 Inch Bamboo Stick", RAW_MATERIAL, "kg"),
    ("Black Raw Agarbatti 8 Inch", FINISHED_GOOD, "kg"),
    ("Black Raw Agarbatti 9 Inch", FINISHED_GOOD, "kg"),
    ("Die 2.9", SPARE_PART, "pcs"),
    ("Piston Rod", SPARE_PART, "pcs"),
]

DEFAULT_FORMULATIONS = [
    Formulation(
        id="RCP001",
        name="Standard Masala Mix",
        output_item="Black Raw Agarbatti 8 Inch",
        ingredients=(
            Ingredient("Charcoal Powder", 0.4),
            Ingredient("Saw Dust", 0.4),
            Ingredient("Jigat Powder", 0.2),
        ),
    ),
    Formulation(
        id="RCP002",
        name="Premix with Binder",
        output_item="Black Raw Agarbatti 9 Inch",
        ingredients=(
            Ingredient("Charcoal Powder", 0.45),
            Ingredient("Saw Dust", 0.35),
            Ingredient("Jigat Powder", 0.15),
            Ingredient("Guar Gum", 0.05),
        ),
    ),
]


def upsert_reference_data(conn) -> None:
    ensure_schema(conn)

    for name, category, unit in DEFAULT_ITEMS:
        if find_item(conn, name) is None:
            add_item(conn, name=name, category=category, unit=unit)

    existing = {str(r["id"]) for r in q(conn, "SELECT id FROM formulations")}
    for f in DEFAULT_FORMULATIONS:
        if f.id not in existing:
            save_formulation(conn, f)


def wipe_all(conn) -> None:
    # Keep schema, delete data (order matters for FKs).
    with transaction(conn):
        for t in [
            "report_definitions",
            "batch_requirements",
            "production_batches",
            "movements",
            "log_sequences",
            "formulation_ingredients",
            "formulations",
            "items",
        ]:
            x(conn, f"DELETE FROM {t};")


def load_demo_data(store: LedgerStore, *, seed: int = 7, days: int = 10) -> None:
    """
    Backfill ``days`` days of receipts, consumption, packing and dispatch.
    Writes straight to the ledger: the today-only entry rule applies to
    user entries, not to seeded history.
    """
    random.seed(seed)
    upsert_reference_data(store.conn)

    start = date.today() - timedelta(days=days)
    writes: list[tuple[str, Movement]] = []
    for i in range(days):
        d = (start + timedelta(days=i)).isoformat()

        if i % 3 == 0:
            for name in ("Charcoal Powder", "Saw Dust", "Jigat Powder"):
                bags = random.randint(8, 20)
                writes.append(
                    (
                        RECEIPTS,
                        Movement(
                            item_name=name,
                            kind=GOODS_RECEIVED,
                            quantity=bags * 50.0,
                            move_date=d,
                            supplier="SS Enterprise",
                            bags=bags,
                            qty_per_bag=50.0,
                        ),
                    )
                )

        for name in ("Charcoal Powder", "Saw Dust"):
            bags = random.randint(2, 6)
            writes.append(
                (STORE, Movement(item_name=name, kind=STORE_CONSUMPTION, quantity=bags * 25.0, move_date=d, bags=bags, qty_per_bag=25.0))
            )

        packed_bags = random.randint(4, 10)
        writes.append(
            (
                FINISHED_GOODS,
                Movement(
                    item_name="Black Raw Agarbatti 8 Inch",
                    kind=FINISHED_GOODS_OUTPUT,
                    quantity=packed_bags * 30.0,
                    move_date=d,
                    customer="ITC",
                    bags=packed_bags,
                    qty_per_bag=30.0,
                ),
            )
        )

        if i % 2 == 1:
            writes.append(
                (
                    DISPATCHES,
                    Movement(
                        item_name="Black Raw Agarbatti 8 Inch",
                        kind=DISPATCH,
                        quantity=4 * 30.0,
                        move_date=d,
                        customer="ITC",
                        invoice_no=f"INV-{i + 1:04d}",
                        bags=4,
                        qty_per_bag=30.0,
                    ),
                )
            )

    writes.append(
        (SPARE_PURCHASES, Movement(item_name="Die 2.9", kind=SPARE_PURCHASE, quantity=6, unit="pcs", move_date=start.isoformat(), supplier="Machine Works"))
    )

    store.append_many([(log_name, _with_item_id(store.conn, m)) for log_name, m in writes])


def _with_item_id(conn, m: Movement) -> Movement:
    item = find_item(conn, m.item_name)
    return replace(m, item_id=item.id) if item else m
