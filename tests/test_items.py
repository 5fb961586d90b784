"""Line-item list operations."""
from __future__ import annotations

import pytest

from eudr_bot import items as item_ops
from eudr_bot.errors import LastItemError, WizardStateError
from eudr_bot.models import DeclarationDetail, ItemList, LineItem, RecordItem, SourceDeclaration


@pytest.mark.parametrize(
    "raw, expected",
    [("12", 12.0), ("1,5", 1.5), (" 2 500 ", 2500.0), ("0", None), ("-3", None), ("abc", None), ("", None), (None, None)],
)
def test_parse_quantity(raw, expected):
    assert item_ops.parse_quantity(raw) == expected


def test_item_list_cannot_be_empty():
    with pytest.raises(LastItemError):
        ItemList.of([])


def test_remove_only_item_is_refused():
    items = item_ops.reset_items()
    with pytest.raises(LastItemError):
        item_ops.remove_item(items, items.first.id)
    assert len(items) == 1


def test_add_item_takes_next_free_id():
    items = item_ops.add_item(item_ops.reset_items())
    assert [i.id for i in items] == ["item-1", "item-2"]

    items = item_ops.remove_item(items, "item-1")
    items = item_ops.add_item(items)
    assert [i.id for i in items] == ["item-2", "item-3"]
    assert items[-1].unit == "kg"


def test_unknown_item_id():
    with pytest.raises(WizardStateError):
        item_ops.update_item(item_ops.reset_items(), "item-9", product_name="x")


def test_only_editable_fields_can_change():
    with pytest.raises(WizardStateError):
        item_ops.update_item(item_ops.reset_items(), "item-1", is_product_locked=True)


def test_locked_product_keeps_its_hsn_code():
    items = item_ops.choose_product(item_ops.reset_items(), "item-1", "Cocoa Beans", "1801")
    assert items.first.is_product_locked

    with pytest.raises(WizardStateError):
        item_ops.update_item(items, "item-1", hsn_code="9999")

    # Same value and other fields are fine
    items = item_ops.update_item(items, "item-1", hsn_code="1801", quantity="10")
    assert items.first.quantity == "10"


def test_clearing_product_unlocks_item():
    items = item_ops.choose_product(item_ops.reset_items(), "item-1", "Cocoa Beans", "1801")
    items = item_ops.update_item(items, "item-1", product_name="")
    assert not items.first.is_product_locked
    items = item_ops.update_item(items, "item-1", hsn_code="1803")
    assert items.first.hsn_code == "1803"


def test_completeness_needs_name_hsn_and_positive_quantity():
    assert item_ops.is_complete(LineItem(id="item-1", product_name="Coffee", hsn_code="0901", quantity="5"))
    assert not item_ops.is_complete(LineItem(id="item-1", product_name="Coffee", hsn_code="0901", quantity="0"))
    assert not item_ops.is_complete(LineItem(id="item-1", product_name="Coffee", quantity="5"))
    assert not item_ops.is_declarable(LineItem(id="item-1", product_name="  "))


def test_items_from_sources_copy_fields_and_fall_back_to_source_id():
    sources = [
        SourceDeclaration(id=7, status="approved", product_name="Cocoa Beans", hsn_code="1801", quantity=100.0, unit="t"),
        SourceDeclaration(id=9, status="approved", product_name="Coffee", quantity="12.5", batch_id="B-1", rm_id="RM-3"),
    ]
    items = item_ops.items_from_sources(sources)

    assert [i.id for i in items] == ["item-1", "item-2"]
    assert items[0].quantity == "100"
    assert items[0].unit == "t"
    assert items[0].batch_id == "7"
    assert items[1].batch_id == "B-1"
    assert items[1].rm_id == "RM-3"
    assert items[1].unit == "kg"


def test_items_from_detail_prefers_item_list():
    detail = DeclarationDetail(
        id=3,
        product_name="Flattened",
        items=[RecordItem(product_name="Rubber", hsn_code="4001", quantity=2)],
    )
    items = item_ops.items_from_detail(detail)
    assert [i.product_name for i in items] == ["Rubber"]

    bare = DeclarationDetail(id=4, product_name="Soy", hsn_code="1201", quantity=3)
    assert item_ops.items_from_detail(bare).first.product_name == "Soy"
