from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields, replace
from datetime import date
from typing import Any, Callable, Iterable, Iterator, Optional

from erp.db import q, transaction, x
from erp.errors import ValidationError
from erp.utils import iso_now, norm_name

logger = logging.getLogger(__name__)

IN = "IN"
OUT = "OUT"

# Movement kinds
GOODS_RECEIVED = "GOODS_RECEIVED"
STORE_CONSUMPTION = "STORE_CONSUMPTION"
PRODUCTION_IN = "PRODUCTION_IN"
AUTO_DEDUCTED = "AUTO_DEDUCTED"
FINISHED_GOODS_OUTPUT = "FINISHED_GOODS_OUTPUT"
DISPATCH = "DISPATCH"
SPARE_PURCHASE = "SPARE_PURCHASE"
SPARE_CONSUMPTION = "SPARE_CONSUMPTION"

IN_KINDS = frozenset({GOODS_RECEIVED, PRODUCTION_IN, FINISHED_GOODS_OUTPUT, SPARE_PURCHASE})
OUT_KINDS = frozenset({STORE_CONSUMPTION, AUTO_DEDUCTED, DISPATCH, SPARE_CONSUMPTION})

# Logs (one per input source)
RECEIPTS = "receipts"
STORE = "store"
FINISHED_GOODS = "finished_goods"
DISPATCHES = "dispatch"
SPARE_PURCHASES = "spare_purchases"
SPARE_USAGE = "spare_usage"

LOGS = (RECEIPTS, STORE, FINISHED_GOODS, DISPATCHES, SPARE_PURCHASES, SPARE_USAGE)

_RANKED_SQL = """
    SELECT m.*,
           ROW_NUMBER() OVER (PARTITION BY m.log_name ORDER BY m.seq) AS display_rank
    FROM movements m
"""


def role_for(kind: str) -> str:
    if kind in IN_KINDS:
        return IN
    if kind in OUT_KINDS:
        return OUT
    raise ValidationError(f"Unknown movement kind: {kind!r}.", kind=kind)


@dataclass(frozen=True)
class Movement:
    item_name: str
    kind: str
    quantity: float
    move_date: str
    txn_group: Optional[str] = None
    batch_code: Optional[str] = None
    item_id: Optional[str] = None
    unit: str = "kg"

    customer: Optional[str] = None
    supplier: Optional[str] = None
    po_number: Optional[str] = None
    invoice_no: Optional[str] = None
    bags: Optional[float] = None
    qty_per_bag: Optional[float] = None
    handling_cost: Optional[float] = None
    machine_no: Optional[str] = None
    document: Optional[str] = None
    notes: Optional[str] = None

    # Set by the store
    id: Optional[int] = None
    log_name: Optional[str] = None
    seq: Optional[int] = None
    display_rank: Optional[int] = None
    created_ts: Optional[str] = None

    @property
    def role(self) -> str:
        return role_for(self.kind)

    @property
    def item_key(self) -> str:
        return norm_name(self.item_name)

    @property
    def signed_quantity(self) -> float:
        return self.quantity if self.role == IN else -self.quantity

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["role"] = self.role
        return d

    @classmethod
    def from_row(cls, row) -> "Movement":
        keys = set(row.keys())
        return cls(**{f.name: row[f.name] for f in fields(cls) if f.name in keys})


_COLUMNS = (
    "log_name", "seq", "kind", "role", "item_name", "item_key", "item_id",
    "quantity", "unit", "move_date", "txn_group", "batch_code",
    "customer", "supplier", "po_number", "invoice_no", "bags", "qty_per_bag",
    "handling_cost", "machine_no", "document", "notes", "created_ts",
)


def _validated(m: Movement) -> Movement:
    if not str(m.item_name or "").strip():
        raise ValidationError("Item name is required.")
    role_for(m.kind)
    try:
        qty = float(m.quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a number.", quantity=m.quantity)
    if qty < 0:
        raise ValidationError("Quantity must be >= 0.", quantity=qty)
    try:
        move_date = date.fromisoformat(str(m.move_date)).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date: {m.move_date!r}.", move_date=m.move_date)
    return replace(m, item_name=str(m.item_name).strip(), quantity=qty, move_date=move_date)


class MovementQuery:
    """
    Lazy view over one log (or all logs). Each iteration re-reads the
    database, so the same object can be iterated again after writes.
    """

    def __init__(self, store: "LedgerStore", where: str, params: tuple, predicate: Optional[Callable[[Movement], bool]]):
        self._store = store
        self._where = where
        self._params = params
        self._predicate = predicate

    def __iter__(self) -> Iterator[Movement]:
        rows = q(
            self._store.conn,
            f"SELECT * FROM ({_RANKED_SQL}) WHERE 1=1 {self._where} ORDER BY log_name, seq",
            self._params,
        )
        for r in rows:
            m = Movement.from_row(r)
            if self._predicate is None or self._predicate(m):
                yield m

    def all(self) -> list[Movement]:
        return list(self)


class LedgerStore:
    """
    Append-only movement logs over an injected sqlite connection.

    Every write runs inside one transaction on the connection, which holds
    the connection lock until it commits, so a group written by
    ``append_many`` or removed by ``remove_by_transaction_group`` is never
    visible half-applied.
    """

    def __init__(self, conn):
        self.conn = conn

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """One transaction (and the connection lock) for everything inside the block."""
        with transaction(self.conn):
            yield

    @staticmethod
    def _check_log(log_name: str) -> str:
        if log_name not in LOGS:
            raise ValidationError(f"Unknown log: {log_name!r}.", log_name=log_name)
        return log_name

    def _next_seq(self, log_name: str) -> int:
        rows = q(self.conn, "SELECT last_seq FROM log_sequences WHERE log_name=?", (log_name,))
        if rows:
            seq = int(rows[0]["last_seq"]) + 1
            x(self.conn, "UPDATE log_sequences SET last_seq=? WHERE log_name=?", (seq, log_name))
        else:
            # Seed from existing rows so older databases keep their numbering.
            r = q(self.conn, "SELECT COALESCE(MAX(seq),0) AS n FROM movements WHERE log_name=?", (log_name,))
            seq = int(r[0]["n"]) + 1
            x(self.conn, "INSERT INTO log_sequences (log_name, last_seq) VALUES (?, ?)", (log_name, seq))
        return seq

    def _insert(self, log_name: str, m: Movement) -> Movement:
        stored = replace(m, log_name=log_name, seq=self._next_seq(log_name), created_ts=iso_now())
        # role and item_key are derived properties on Movement
        values = [getattr(stored, c) for c in _COLUMNS]
        new_id = x(
            self.conn,
            f"INSERT INTO movements ({', '.join(_COLUMNS)}) VALUES ({', '.join('?' for _ in _COLUMNS)})",
            values,
        )
        return replace(stored, id=new_id)

    def append(self, log_name: str, movement: Movement) -> Movement:
        return self.append_many([(log_name, movement)])[0]

    def append_many(self, entries: Iterable[tuple[str, Movement]]) -> list[Movement]:
        """Write several movements as one unit: all of them land, or none do."""
        prepared = [(self._check_log(log_name), _validated(m)) for log_name, m in entries]
        if not prepared:
            return []
        with self.atomic():
            stored = [self._insert(log_name, m) for log_name, m in prepared]
        for m in stored:
            logger.info(
                "Appended %s #%s to %s: %s %.3f %s (group=%s)",
                m.kind, m.seq, m.log_name, m.item_name, m.quantity, m.unit, m.txn_group,
            )
        return self._with_ranks(stored)

    def _with_ranks(self, movements: list[Movement]) -> list[Movement]:
        ids = [int(m.id) for m in movements if m.id is not None]
        fresh: dict[int, Movement] = {}
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            marks = ", ".join("?" for _ in chunk)
            for r in q(self.conn, f"SELECT * FROM ({_RANKED_SQL}) WHERE id IN ({marks})", chunk):
                fresh[int(r["id"])] = Movement.from_row(r)
        return [fresh.get(int(m.id), m) if m.id is not None else m for m in movements]

    def get(self, movement_id: int) -> Optional[Movement]:
        rows = q(self.conn, f"SELECT * FROM ({_RANKED_SQL}) WHERE id=?", (int(movement_id),))
        return Movement.from_row(rows[0]) if rows else None

    def remove(self, log_name: str, movement_id: int) -> Optional[Movement]:
        self._check_log(log_name)
        with self.atomic():
            rows = q(self.conn, "SELECT * FROM movements WHERE id=? AND log_name=?", (int(movement_id), log_name))
            if not rows:
                return None
            x(self.conn, "DELETE FROM movements WHERE id=?", (int(movement_id),))
        removed = Movement.from_row(rows[0])
        logger.info("Removed %s #%s from %s", removed.kind, removed.seq, log_name)
        return removed

    def remove_by_transaction_group(self, groups: Iterable[str]) -> list[Movement]:
        group_list = sorted({str(g) for g in groups if g})
        if not group_list:
            return []
        marks = ", ".join("?" for _ in group_list)
        with self.atomic():
            rows = q(self.conn, f"SELECT * FROM movements WHERE txn_group IN ({marks}) ORDER BY id", group_list)
            x(self.conn, f"DELETE FROM movements WHERE txn_group IN ({marks})", group_list)
        removed = [Movement.from_row(r) for r in rows]
        logger.info("Rolled back %d movement(s) for group(s) %s", len(removed), ", ".join(group_list))
        return removed

    def query(
        self,
        log_name: Optional[str] = None,
        predicate: Optional[Callable[[Movement], bool]] = None,
        *,
        item_name: Optional[str] = None,
        kind: Optional[str] = None,
        batch_code: Optional[str] = None,
        txn_group: Optional[str] = None,
        on_date: Optional[str] = None,
    ) -> MovementQuery:
        where = ""
        params: list[Any] = []
        if log_name is not None:
            where += " AND log_name=?"
            params.append(self._check_log(log_name))
        if item_name is not None:
            where += " AND item_key=?"
            params.append(norm_name(item_name))
        if kind is not None:
            where += " AND kind=?"
            params.append(kind)
        if batch_code is not None:
            where += " AND batch_code=?"
            params.append(batch_code)
        if txn_group is not None:
            where += " AND txn_group=?"
            params.append(txn_group)
        if on_date is not None:
            where += " AND move_date=?"
            params.append(str(on_date))
        return MovementQuery(self, where, tuple(params), predicate)

    def sum_quantity(
        self,
        item_name: Optional[str],
        role: str,
        *,
        since: Optional[str] = None,
        until: Optional[str] = None,
        kinds: Optional[Iterable[str]] = None,
        batch_code: Optional[str] = None,
    ) -> float:
        """Total quantity for one item and role, with optional inclusive date bounds."""
        where = "role=?"
        params: list[Any] = [role]
        if item_name is not None:
            where += " AND item_key=?"
            params.append(norm_name(item_name))
        if since is not None:
            where += " AND move_date>=?"
            params.append(str(since))
        if until is not None:
            where += " AND move_date<=?"
            params.append(str(until))
        if kinds is not None:
            kind_list = list(kinds)
            where += f" AND kind IN ({', '.join('?' for _ in kind_list)})"
            params.extend(kind_list)
        if batch_code is not None:
            where += " AND batch_code=?"
            params.append(batch_code)
        r = q(self.conn, f"SELECT COALESCE(SUM(quantity),0) AS total FROM movements WHERE {where}", params)
        return float(r[0]["total"])

    def item_names(self) -> list[str]:
        """Every distinct item seen in the ledger (first spelling wins per key)."""
        rows = q(self.conn, "SELECT item_key, MIN(item_name) AS item_name FROM movements GROUP BY item_key ORDER BY item_key")
        return [str(r["item_name"]) for r in rows]

    def clear(self) -> None:
        with self.atomic():
            x(self.conn, "DELETE FROM movements")
            x(self.conn, "DELETE FROM log_sequences")
