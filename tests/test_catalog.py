"""
CATALOG TESTS
Tests for the item catalog and formulation store.
"""

import pytest

from erp.errors import ReferenceNotFoundError, ValidationError
from erp.services.catalog import (
    FINISHED_GOOD,
    RAW_MATERIAL,
    SPARE_PART,
    Formulation,
    Ingredient,
    add_item,
    delete_formulation,
    delete_item,
    find_item,
    get_formulation,
    list_formulations,
    list_items,
    save_formulation,
)


def test_add_item_generates_ids_per_category(conn):
    a = add_item(conn, name="Charcoal Powder", category=RAW_MATERIAL)
    b = add_item(conn, name="Saw Dust", category=RAW_MATERIAL)
    c = add_item(conn, name="Die 2.9", category=SPARE_PART, unit="pcs")
    d = add_item(conn, name="Agarbatti", category=FINISHED_GOOD, item_id="FG-CUSTOM")

    assert [a.id, b.id, c.id, d.id] == ["RM001", "RM002", "SP001", "FG-CUSTOM"]
    assert [i.name for i in list_items(conn, RAW_MATERIAL)] == ["Charcoal Powder", "Saw Dust"]
    assert len(list_items(conn)) == 4


def test_find_item_matches_normalized_name(conn):
    add_item(conn, name="Jigat Powder", category=RAW_MATERIAL)
    assert find_item(conn, "  jigat POWDER ").id == "RM001"
    assert find_item(conn, "Guar Gum") is None


def test_add_item_rejects_duplicates_and_blanks(conn):
    add_item(conn, name="Saw Dust", category=RAW_MATERIAL)
    with pytest.raises(ValidationError):
        add_item(conn, name="saw dust", category=RAW_MATERIAL)
    with pytest.raises(ValidationError):
        add_item(conn, name=" ", category=RAW_MATERIAL)
    with pytest.raises(ValidationError):
        add_item(conn, name="Guar Gum", category="")


def test_delete_item(conn):
    item = add_item(conn, name="Saw Dust", category=RAW_MATERIAL)
    assert delete_item(conn, item.id)
    assert not delete_item(conn, item.id)
    assert list_items(conn) == []


def test_formulation_round_trip_keeps_ingredient_order(conn, masala):
    loaded = get_formulation(conn, "RCP001")
    assert loaded == masala
    assert [i.item_name for i in loaded.ingredients] == ["Charcoal Powder", "Saw Dust", "Jigat Powder"]
    assert [f.id for f in list_formulations(conn)] == ["RCP001"]


def test_save_formulation_replaces_ingredients(conn, masala):
    updated = save_formulation(
        conn,
        Formulation(id="RCP001", name="Masala v2", output_item=masala.output_item, ingredients=(Ingredient("Guar Gum", 1.0),)),
    )
    assert updated.name == "Masala v2"
    assert updated.ingredients == (Ingredient("Guar Gum", 1.0),)


def test_save_formulation_validation(conn):
    with pytest.raises(ValidationError):
        save_formulation(conn, Formulation(id="R1", name="Empty", output_item="X"))
    with pytest.raises(ValidationError):
        save_formulation(conn, Formulation(id="R1", name="Neg", output_item="X", ingredients=(Ingredient("A", -0.1),)))
    with pytest.raises(ValidationError):
        save_formulation(conn, Formulation(id="", name="NoId", output_item="X", ingredients=(Ingredient("A", 1),)))
    assert list_formulations(conn) == []


def test_missing_formulation(conn, masala):
    with pytest.raises(ReferenceNotFoundError):
        get_formulation(conn, "RCP999")
    assert delete_formulation(conn, "RCP001")
    assert not delete_formulation(conn, "RCP001")
    with pytest.raises(ReferenceNotFoundError):
        get_formulation(conn, "RCP001")


def test_item_ids_are_not_reused_after_delete(conn):
    """
    Deleting an item leaves a gap; the next id continues after the highest one in use.
    """
    add_item(conn, name="Charcoal Powder", category=RAW_MATERIAL)
    add_item(conn, name="Saw Dust", category=RAW_MATERIAL)
    delete_item(conn, "RM001")

    c = add_item(conn, name="Jigat Powder", category=RAW_MATERIAL)
    assert c.id == "RM003"
    assert [i.id for i in list_items(conn, RAW_MATERIAL)] == ["RM003", "RM002"]


def test_explicit_item_id_already_in_use(conn):
    add_item(conn, name="Charcoal Powder", category=RAW_MATERIAL)
    with pytest.raises(ValidationError):
        add_item(conn, name="Saw Dust", category=RAW_MATERIAL, item_id="RM001")
