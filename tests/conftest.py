"""
Shared fixtures: every test gets a fresh in-memory database with the schema
applied, a LedgerStore over it, and the reference items and formulations.
"""

import pytest

from erp.db import connect, ensure_schema
from erp.services.catalog import FINISHED_GOOD, RAW_MATERIAL, Formulation, Ingredient, add_item, save_formulation
from erp.services.ledger import LedgerStore

TODAY = "2026-03-15"
YESTERDAY = "2026-03-14"


@pytest.fixture
def conn():
    """In-memory sqlite connection with the full schema."""
    c = connect(":memory:")
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def store(conn):
    """Ledger store over the test connection."""
    return LedgerStore(conn)


@pytest.fixture
def masala(conn):
    """
    Raw materials, one finished good and the standard masala recipe:
    0.4 charcoal, 0.4 saw dust, 0.2 jigat per kg of output.
    """
    for name in ("Charcoal Powder", "Saw Dust", "Jigat Powder"):
        add_item(conn, name=name, category=RAW_MATERIAL)
    add_item(conn, name="Black Raw Agarbatti 8 Inch", category=FINISHED_GOOD)
    return save_formulation(
        conn,
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
    )
