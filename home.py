from __future__ import annotations

import streamlit as st

from erp.app_state import bootstrap
from erp.services.demo_data import upsert_reference_data

st.set_page_config(page_title="Agarbatti ERP", page_icon="🪔", layout="wide")

st.title("🪔 Agarbatti ERP")
st.caption("Raw-material receipts, store consumption, production batches, packing and dispatch in one stock ledger.")

settings, store = bootstrap()
upsert_reference_data(store.conn)

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")

st.info(
    "Use the left sidebar navigation. Start with **🧪 Data Management** to load demo data, then plan a batch in "
    "**Production Planner** and record packed output in **Finished Goods**.",
    icon="ℹ️",
)
