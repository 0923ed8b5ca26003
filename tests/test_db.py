"""
CONNECTION AND TRANSACTION TESTS
Tests for the shared sqlite connection used by every Streamlit session.

This test module covers:
- Nested transactions commit once and roll back as a whole
- A writer on another thread waits for an open transaction instead of joining it
- Nesting depth is tracked per thread
"""

import threading

import pytest

from conftest import TODAY
from erp.db import ensure_schema, q, transaction, x
from erp.services.catalog import RAW_MATERIAL, add_item, find_item
from erp.services.ledger import GOODS_RECEIVED, RECEIPTS, Movement


def test_nested_transaction_rolls_back_as_a_whole(conn):
    with pytest.raises(RuntimeError):
        with transaction(conn):
            x(conn, "INSERT INTO log_sequences (log_name, last_seq) VALUES ('a', 1)")
            with transaction(conn):
                x(conn, "INSERT INTO log_sequences (log_name, last_seq) VALUES ('b', 1)")
            raise RuntimeError("boom")

    assert q(conn, "SELECT * FROM log_sequences") == []
    assert conn.tx_depth == 0
    assert not conn.in_transaction


def test_ensure_schema_is_repeatable(conn):
    ensure_schema(conn)
    ensure_schema(conn)
    assert q(conn, "SELECT COUNT(*) AS n FROM movements")[0]["n"] == 0


def test_writer_on_other_thread_waits_for_open_transaction(conn, store):
    """
    Session A holds a ledger transaction that ends in a rollback while session B
    adds an item. B must not join A's transaction: A's rows vanish, B's item is
    committed, and the connection is left clean.
    """
    errors = []

    def other_session():
        try:
            add_item(conn, name="Guar Gum", category=RAW_MATERIAL)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    writer = threading.Thread(target=other_session)

    # *** SESSION A OPENS A TRANSACTION AND STARTS SESSION B ***
    with pytest.raises(RuntimeError):
        with store.atomic():
            store.append(RECEIPTS, Movement(item_name="Saw Dust", kind=GOODS_RECEIVED, quantity=10, move_date=TODAY))
            writer.start()
            writer.join(timeout=0.3)
            assert writer.is_alive()
            assert find_item(conn, "Guar Gum") is None
            raise RuntimeError("session A fails")

    # *** SESSION B FINISHES AFTER A ***
    writer.join(timeout=5)
    assert not writer.is_alive()
    assert errors == []

    assert store.query().all() == []
    assert find_item(conn, "Guar Gum") is not None
    assert conn.tx_depth == 0
    assert not conn.in_transaction

    # *** LATER PLAIN WRITES STILL COMMIT ***
    add_item(conn, name="Saw Dust", category=RAW_MATERIAL)
    assert not conn.in_transaction


def test_transaction_depth_is_per_thread(conn):
    seen = []
    with transaction(conn):
        assert conn.tx_depth == 1
        t = threading.Thread(target=lambda: seen.append(conn.tx_depth))
        t.start()
        t.join()
    assert seen == [0]
