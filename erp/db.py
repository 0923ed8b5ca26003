from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Union

import streamlit as st

from erp.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


class ERPConnection(sqlite3.Connection):
    """
    sqlite connection shared by every Streamlit session.

    ``lock`` serializes all statements; a ``transaction()`` block holds it
    until it commits or rolls back, so other threads never see or join a
    half-written unit of work. Nesting depth is tracked per thread.
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()
        self._local = threading.local()

    @property
    def tx_depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @tx_depth.setter
    def tx_depth(self, value: int) -> None:
        self._local.depth = value


def connect(db_path: Union[Path, str]) -> ERPConnection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False, factory=ERPConnection)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> ERPConnection:
    logger.info("Opening database %s", db_path)
    return connect(db_path)


def ensure_schema(conn: ERPConnection) -> None:
    with conn.lock:
        conn.executescript(SCHEMA_SQL)
        conn.commit()


def q(conn: ERPConnection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    with conn.lock:
        cur = conn.execute(sql, tuple(params))
        rows = cur.fetchall()
        cur.close()
    return rows


def x(conn: ERPConnection, sql: str, params: Iterable[Any] = ()) -> int:
    with conn.lock:
        cur = conn.execute(sql, tuple(params))
        if not conn.tx_depth:
            conn.commit()
        last = cur.lastrowid
        cur.close()
    return int(last or 0)


@contextmanager
def transaction(conn: ERPConnection) -> Iterator[ERPConnection]:
    """
    Groups several ``x`` calls into a single commit.

    Nested blocks join the outermost one. Any exception rolls back everything
    written since the outermost block opened.
    """
    with conn.lock:
        depth = conn.tx_depth
        if depth == 0:
            if conn.in_transaction:
                conn.commit()
            conn.execute("BEGIN")
        conn.tx_depth = depth + 1
        try:
            yield conn
        except BaseException:
            conn.tx_depth = depth
            if depth == 0:
                conn.rollback()
            raise
        conn.tx_depth = depth
        if depth == 0:
            conn.commit()
