from __future__ import annotations

from pathlib import Path

import streamlit as st

from erp.config import Settings, get_settings
from erp.db import ensure_schema, get_conn
from erp.logging_config import configure_logging
from erp.services.ledger import LedgerStore


@st.cache_resource
def get_store(db_path: Path) -> LedgerStore:
    # One store per database so every session shares the same writer lock.
    conn = get_conn(db_path)
    ensure_schema(conn)
    return LedgerStore(conn)


def bootstrap() -> tuple[Settings, LedgerStore]:
    settings = get_settings()
    configure_logging(settings.log_level)
    return settings, get_store(settings.db_path)
