"""Line-item list operations.

Every function takes an ``ItemList`` and returns a new one; the list can
never drop below one entry.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from eudr_bot.errors import LastItemError, WizardStateError
from eudr_bot.models import (
    DEFAULT_UNIT,
    DeclarationDetail,
    ItemList,
    LineItem,
    SourceDeclaration,
)


_ID_RE = re.compile(r"^item-(\d+)$")

_EDITABLE = {"product_name", "hsn_code", "rm_id", "quantity", "unit", "sku_code", "batch_id"}


def parse_quantity(raw: str | None) -> float | None:
    """Positive number from user text (``"1 500,5"`` style allowed), else None."""
    if raw is None:
        return None
    text = str(raw).replace(",", ".").replace(" ", "").strip()
    try:
        value = float(text)
    except ValueError:
        return None
    return value if value > 0 else None


def is_declarable(item: LineItem) -> bool:
    """Items with a product name survive into the submission."""
    return bool(item.product_name.strip())


def is_complete(item: LineItem) -> bool:
    return (
        is_declarable(item)
        and bool(item.hsn_code.strip())
        and parse_quantity(item.quantity) is not None
    )


def next_item_id(items: Iterable[LineItem]) -> str:
    highest = 0
    for item in items:
        m = _ID_RE.match(item.id)
        if m:
            highest = max(highest, int(m.group(1)))
    return f"item-{highest + 1}"


def reset_items() -> ItemList:
    return ItemList.single()


def add_item(items: ItemList) -> ItemList:
    return ItemList(*items, LineItem(id=next_item_id(items)))


def _index_of(items: ItemList, item_id: str) -> int:
    for i, item in enumerate(items):
        if item.id == item_id:
            return i
    raise WizardStateError(f"Unknown item {item_id!r}")


def remove_item(items: ItemList, item_id: str) -> ItemList:
    idx = _index_of(items, item_id)
    if len(items) == 1:
        raise LastItemError("At least one item is required")
    return ItemList.of(item for i, item in enumerate(items) if i != idx)


def update_item(items: ItemList, item_id: str, **changes: Any) -> ItemList:
    unknown = set(changes) - _EDITABLE
    if unknown:
        raise WizardStateError(f"Not an editable item field: {', '.join(sorted(unknown))}")

    idx = _index_of(items, item_id)
    current = items[idx]
    if (
        current.is_product_locked
        and "hsn_code" in changes
        and changes["hsn_code"] != current.hsn_code
    ):
        raise WizardStateError("HSN code is fixed by the selected product")

    if "product_name" in changes and not str(changes["product_name"]).strip():
        # Clearing the product releases the HSN code again
        changes["is_product_locked"] = False

    updated = current.model_copy(update=changes)
    return ItemList.of(updated if i == idx else item for i, item in enumerate(items))


def choose_product(items: ItemList, item_id: str, product_name: str, hsn_code: str) -> ItemList:
    """Pick a product from the canonical list; its HSN code becomes read-only."""
    idx = _index_of(items, item_id)
    updated = items[idx].model_copy(
        update={"product_name": product_name, "hsn_code": hsn_code, "is_product_locked": True}
    )
    return ItemList.of(updated if i == idx else item for i, item in enumerate(items))


def _quantity_text(value: float | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def items_from_sources(sources: Iterable[SourceDeclaration]) -> ItemList:
    """One item per source declaration, ids renumbered from 1."""
    items = [
        LineItem(
            id=f"item-{n}",
            product_name=src.product_name or "",
            hsn_code=src.hsn_code or "",
            quantity=_quantity_text(src.quantity),
            unit=src.unit or DEFAULT_UNIT,
            rm_id=src.rm_id or None,
            sku_code=src.sku_code or None,
            batch_id=src.batch_id or str(src.id),
        )
        for n, src in enumerate(sources, start=1)
    ]
    if not items:
        return reset_items()
    return ItemList.of(items)


def items_from_detail(detail: DeclarationDetail) -> ItemList:
    """Items of a declaration being copied; falls back to its flattened product."""
    if not detail.items:
        return items_from_sources([detail])
    return ItemList.of(
        LineItem(
            id=f"item-{n}",
            product_name=rec.product_name or "",
            hsn_code=rec.hsn_code or "",
            quantity=_quantity_text(rec.quantity),
            unit=rec.unit or DEFAULT_UNIT,
            rm_id=rec.rm_id or None,
            sku_code=rec.sku_code or None,
        )
        for n, rec in enumerate(detail.items, start=1)
    )
