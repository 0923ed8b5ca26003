"""
REPORTS TESTS
Tests for the pandas views over the ledger: inventory summary, alerts,
daily production, forecast, batch performance and custom reports.
"""

import pytest

from conftest import TODAY
from erp.errors import ValidationError
from erp.services.ledger import (
    DISPATCH,
    DISPATCHES,
    FINISHED_GOODS,
    FINISHED_GOODS_OUTPUT,
    GOODS_RECEIVED,
    RECEIPTS,
    STORE,
    STORE_CONSUMPTION,
    Movement,
)
from erp.services.planner import commit_batch, plan_for
from erp.services.production import FinishedGoodsEntry, record_finished_goods_output
from erp.services.reports import (
    MOVEMENT_COLUMNS,
    ReportDefinition,
    custom_report,
    delete_report_definition,
    list_report_definitions,
    report_window,
    run_report,
    save_report_definition,
    batch_summary,
    daily_production,
    inventory_summary,
    movements_frame,
    production_forecast,
    stock_alerts,
)


def _output(store, day, qty, batch_code=None):
    store.append(
        FINISHED_GOODS,
        Movement(item_name="Agarbatti", kind=FINISHED_GOODS_OUTPUT, quantity=qty, move_date=day, batch_code=batch_code),
    )


def test_movements_frame(store):
    assert list(movements_frame(store).columns) == MOVEMENT_COLUMNS

    store.append(RECEIPTS, Movement(item_name="Saw Dust", kind=GOODS_RECEIVED, quantity=10, move_date=TODAY))
    store.append(RECEIPTS, Movement(item_name="Saw Dust", kind=GOODS_RECEIVED, quantity=5, move_date="2026-03-01"))
    df = movements_frame(store, RECEIPTS, on_date=TODAY)
    assert len(df) == 1
    assert df.iloc[0]["role"] == "IN"
    assert df.iloc[0]["display_rank"] == 1


def test_inventory_summary(store, masala):
    """
    Every catalog item gets a row; names only seen in the ledger are listed as uncatalogued.
    """
    # *** SETUP ***
    store.append(RECEIPTS, Movement(item_name="Charcoal Powder", kind=GOODS_RECEIVED, quantity=600, move_date=TODAY))
    store.append(STORE, Movement(item_name="charcoal powder", kind=STORE_CONSUMPTION, quantity=300, move_date=TODAY))
    store.append(RECEIPTS, Movement(item_name="Guar Gum", kind=GOODS_RECEIVED, quantity=5, move_date=TODAY))

    df = inventory_summary(store, today=TODAY).set_index("item")

    assert len(df) == 5
    assert df.loc["Charcoal Powder", "current_stock"] == 300.0
    assert df.loc["Charcoal Powder", "total_out"] == 300.0
    assert df.loc["Charcoal Powder", "avg_daily_usage"] == 10.0
    assert df.loc["Charcoal Powder", "status"] == "normal"
    assert df.loc["Guar Gum", "category"] == "Uncatalogued"
    assert bool(df.loc["Saw Dust", "is_dead"])
    assert not bool(df.loc["Charcoal Powder", "is_dead"])


def test_stock_alerts_skip_dead_items(store, masala):
    store.append(STORE, Movement(item_name="Saw Dust", kind=STORE_CONSUMPTION, quantity=10, move_date=TODAY))
    store.append(RECEIPTS, Movement(item_name="Jigat Powder", kind=GOODS_RECEIVED, quantity=100, move_date=TODAY))

    alerts = stock_alerts(store, today=TODAY)
    assert list(alerts["item"]) == ["Saw Dust", "Jigat Powder"]
    assert list(alerts["status"]) == ["critical", "overstock"]


def test_daily_production_and_forecast(store):
    """
    Output is summed per day across the window, with empty days filled with zero.
    """
    # *** SETUP ***
    _output(store, "2026-03-12", 100, "PB-A")
    _output(store, "2026-03-14", 50)
    _output(store, "2026-03-15", 80, "PB-A")
    _output(store, "2026-03-15", 20, "PB-B")
    _output(store, "2026-03-01", 999)  # outside window

    daily = daily_production(store, days=4, today=TODAY)
    assert len(daily) == 4
    assert list(daily["total_kg"]) == [100.0, 0.0, 50.0, 100.0]
    assert list(daily["batches"]) == [1, 0, 0, 2]

    forecast = production_forecast(store, days=4, today=TODAY)
    assert forecast["avg_daily_production"] == pytest.approx(62.5)
    assert forecast["forecast_next_7_days"] == pytest.approx(437.5)
    assert forecast["forecast_next_30_days"] == pytest.approx(1875.0)
    assert forecast["growth_rate_pct"] == pytest.approx(50.0)


def test_forecast_without_output(store):
    daily = daily_production(store, days=7, today=TODAY)
    assert len(daily) == 7
    assert daily["total_kg"].sum() == 0

    forecast = production_forecast(store, days=7, today=TODAY)
    assert forecast == {
        "avg_daily_production": 0.0,
        "forecast_next_7_days": 0.0,
        "forecast_next_30_days": 0.0,
        "growth_rate_pct": 0.0,
    }


def test_batch_summary(store, masala):
    batch = commit_batch(store.conn, plan_for(store, masala, 100), today=TODAY)
    entry = FinishedGoodsEntry(move_date=TODAY, customer_name="ITC", item="Black Raw Agarbatti 8 Inch", total_bags=5, kg_per_bag=10)
    record_finished_goods_output(store, entry, batch.batch_code, accept_mismatch=True, today=TODAY)

    df = batch_summary(store)
    row = df.iloc[0]
    assert row["batch_code"] == batch.batch_code
    assert row["produced_kg"] == 50.0
    assert row["progress_pct"] == 50.0
    assert row["status"] == "IN_PRODUCTION"


@pytest.fixture
def dispatches(store):
    """Three dispatch notes over two customers and two dates."""
    for day, customer, qty in (("2026-03-01", "ITC Limited", 120), (TODAY, "ITC Limited", 60), (TODAY, "Cycle Pure", 90)):
        store.append(
            DISPATCHES,
            Movement(item_name="Agarbatti", kind=DISPATCH, quantity=qty, move_date=day, customer=customer, invoice_no=f"INV-{qty}"),
        )
    return store


def test_custom_report_filters_and_columns(dispatches):
    """
    Date bounds, a case-insensitive contains filter and a column selection combine.
    """
    df = custom_report(
        dispatches,
        DISPATCHES,
        start="2026-03-10",
        end=TODAY,
        filters=[("customer", "itc"), ("invoice_no", "")],
        columns=["move_date", "customer", "quantity"],
    )
    assert list(df.columns) == ["move_date", "customer", "quantity"]
    assert df.to_dict("records") == [{"move_date": TODAY, "customer": "ITC Limited", "quantity": 60.0}]


def test_custom_report_group_and_sort(dispatches):
    df = custom_report(dispatches, DISPATCHES, group_by="customer", sort_by="total_quantity")
    assert list(df["customer"]) == ["ITC Limited", "Cycle Pure"]
    assert list(df["entries"]) == [2, 1]
    assert list(df["total_quantity"]) == [180.0, 90.0]


def test_custom_report_rejects_unknown_fields(dispatches):
    with pytest.raises(ValidationError):
        custom_report(dispatches, filters=[("colour", "red")])
    with pytest.raises(ValidationError):
        custom_report(dispatches, columns=["colour"])
    with pytest.raises(ValidationError):
        custom_report(dispatches, "nowhere")


def test_report_window():
    assert report_window("last7days", today=TODAY) == ("2026-03-08", TODAY)
    assert report_window("last30days", today=TODAY) == ("2026-02-13", TODAY)
    assert report_window("all", today=TODAY) == (None, None)
    assert report_window("custom", start="2026-03-01", end="2026-03-05") == ("2026-03-01", "2026-03-05")
    with pytest.raises(ValidationError):
        report_window("custom", start="2026-03-05", end="2026-03-01")
    with pytest.raises(ValidationError):
        report_window("custom", start="2026-03-05")
    with pytest.raises(ValidationError):
        report_window("yesterday")


def test_saved_report_definitions(conn, dispatches):
    """
    Definitions are saved by name, replaced on re-save, reloaded intact and deletable.
    """
    definition = ReportDefinition(
        name=" Weekly ITC ",
        log_name=DISPATCHES,
        date_range="last7days",
        filters=(("customer", "itc"),),
        columns=("move_date", "quantity"),
    )
    saved = save_report_definition(conn, definition)
    assert saved.name == "Weekly ITC"
    save_report_definition(conn, ReportDefinition(name="All dispatch", log_name=DISPATCHES, date_range="all"))

    loaded = list_report_definitions(conn)
    assert [d.name for d in loaded] == ["All dispatch", "Weekly ITC"]
    assert loaded[1] == saved

    df = run_report(dispatches, loaded[1], today=TODAY)
    assert list(df["quantity"]) == [60.0]

    assert delete_report_definition(conn, "Weekly ITC")
    assert not delete_report_definition(conn, "Weekly ITC")
    with pytest.raises(ValidationError):
        save_report_definition(conn, ReportDefinition(name=" "))
