from __future__ import annotations

import streamlit as st

st.set_page_config(page_title="Agarbatti ERP", page_icon="🪔", layout="wide")

pages = [
    st.Page("home.py", title="Home", icon="🏠"),
    st.Page("pages/1_📥_Goods_Receipt.py", title="Goods Receipt & Store", icon="📥"),
    st.Page("pages/2_🧮_Production_Planner.py", title="Production Planner", icon="🧮"),
    st.Page("pages/3_🏭_Finished_Goods.py", title="Finished Goods", icon="🏭"),
    st.Page("pages/4_🚚_Dispatch_&_Spares.py", title="Dispatch & Spares", icon="🚚"),
    st.Page("pages/5_📦_Inventory.py", title="Inventory", icon="📦"),
    st.Page("pages/6_📊_Reports.py", title="Reports", icon="📊"),
    st.Page("pages/7_🧪_Data_Management.py", title="Data Management", icon="🧪"),
]

st.navigation(pages).run()
