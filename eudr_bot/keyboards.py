"""Inline keyboards and button labels for the wizard cards."""

from __future__ import annotations

from typing import Iterable

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from eudr_bot.models import (
    DOCUMENT_LABELS,
    Counterparty,
    DeclarationDraft,
    DeclarationKind,
    DeclarationSource,
    DeclarationType,
    DocumentType,
    LineItem,
    Product,
    SourceDeclaration,
)

# ── Data lists (label, callback_value) ──────────────────────────────

TYPES = [
    ("📥 Inbound", DeclarationType.INBOUND.value),
    ("📤 Outbound", DeclarationType.OUTBOUND.value),
]

SOURCES = [
    ("📚 From existing declarations", DeclarationSource.EXISTING.value),
    ("🆕 Fresh declaration", DeclarationSource.FRESH.value),
]

VALIDITY_OPTIONS = [
    ("N/A", "na"),
    ("30 days", "30days"),
    ("6 months", "6months"),
    ("9 months", "9months"),
    ("1 year", "1year"),
    ("✏️ Custom dates", "custom"),
]

TYPE_LABELS: dict[str, str] = {v: lbl for lbl, v in TYPES}
SOURCE_LABELS: dict[str, str] = {v: lbl for lbl, v in SOURCES}


def _mark(selected: bool) -> str:
    return "☑️" if selected else "⬜"


# ── Keyboard builders ───────────────────────────────────────────────

def welcome_kb() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="📝 New declaration", callback_data="wiz:new")]
        ]
    )


def nav_row(b: InlineKeyboardBuilder, step: int, terminal: bool) -> None:
    buttons = []
    if step > 1:
        buttons.append(InlineKeyboardButton(text="◀ Back", callback_data="nav:back"))
    if terminal:
        buttons.append(InlineKeyboardButton(text="✅ Submit", callback_data="nav:submit"))
    else:
        buttons.append(InlineKeyboardButton(text="Next ▶", callback_data="nav:next"))
    b.row(*buttons)


def type_kb(draft: DeclarationDraft, locked: bool) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    if not locked:
        for label, data in TYPES:
            sel = data == draft.declaration_type.value
            b.button(text=f"{_mark(sel)} {label}", callback_data=f"type:{data}")
    if draft.declaration_type is DeclarationType.OUTBOUND:
        for label, data in SOURCES:
            sel = data == draft.declaration_source.value
            b.button(text=f"{_mark(sel)} {label}", callback_data=f"source:{data}")
    b.adjust(2 if not locked else 1)
    nav_row(b, 1, False)
    return b.as_markup()


def _item_label(item: LineItem, n: int) -> str:
    return item.product_name.strip() or f"Item {n}"


def _reference_buttons(b: InlineKeyboardBuilder, draft: DeclarationDraft, rows: list[int]) -> None:
    """PO / SO / shipment prompt plus the upstream EUDR pairs when they apply."""
    b.button(text="✏️ PO / SO / Shipment", callback_data="ask:refs")
    rows.append(1)
    if draft.references.pairs_visible:
        b.button(text="➕ EUDR reference", callback_data="ask:pair")
        if draft.references.eudr_pairs:
            b.button(text="➖ Last reference", callback_data="pair:remove")
            rows.append(2)
        else:
            rows.append(1)


def details_kb(
    draft: DeclarationDraft,
    sources: Iterable[SourceDeclaration],
    suppliers: Iterable[Counterparty],
    step: int,
) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    rows: list[int] = []

    if draft.kind is DeclarationKind.OUTBOUND_EXISTING:
        for src in sources:
            sel = src.id in draft.selected_source_ids
            b.button(text=f"{_mark(sel)} #{src.id} {src.product_name}"[:60], callback_data=f"src:{src.id}")
            rows.append(1)

    # Every branch can edit its items; existing ones override the sources
    for n, item in enumerate(draft.items, start=1):
        b.button(text=f"✏️ {_item_label(item, n)}"[:40], callback_data=f"item:edit:{item.id}")
        b.button(text="🔎 Product", callback_data=f"item:find:{item.id}")
        rows.append(2)

    if draft.kind is not DeclarationKind.OUTBOUND_EXISTING:
        b.button(text="➕ Add item", callback_data="item:add")
        b.button(text="➖ Remove last", callback_data="item:remove")
        rows.append(2)
        b.button(text="📋 Copy from declaration", callback_data="ask:copy")
        rows.append(1)

    for label, data in VALIDITY_OPTIONS:
        b.button(text=label, callback_data=f"valid:{data}")
    rows.extend([3, 3])

    if draft.declaration_type is DeclarationType.INBOUND:
        for sup in suppliers:
            sel = draft.counterparty is not None and draft.counterparty.id == sup.id
            b.button(text=f"{_mark(sel)} {sup.name}"[:60], callback_data=f"cp:{sup.id}")
            rows.append(1)
        _reference_buttons(b, draft, rows)

    b.adjust(*rows)
    nav_row(b, step, False)
    return b.as_markup()


def products_kb(item_id: str, products: Iterable[Product]) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    for product in products:
        hs = f" · {product.hs_code}" if product.hs_code else ""
        b.button(text=f"{product.name}{hs}"[:60], callback_data=f"prod:{item_id}:{product.id}")
    b.button(text="✖️ Keep as typed", callback_data="prod:none")
    b.adjust(1)
    return b.as_markup()


def upload_kb(draft: DeclarationDraft, step: int) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    rows: list[int] = []
    if draft.kind.has_geo_phase:
        b.button(text="🗺 Upload GeoJSON", callback_data="ask:geo")
        rows.append(1)

    taken = {d.declared_type for d in draft.evidence_documents}
    added = 0
    for doc_type in DocumentType:
        if doc_type is not DocumentType.OTHERS and doc_type in taken:
            continue
        b.button(text=f"📎 {DOCUMENT_LABELS[doc_type]}", callback_data=f"doc:add:{doc_type.value}")
        added += 1
    if added:
        rows.append(added)

    for doc in draft.evidence_documents:
        if not doc.uploaded:
            b.button(text=f"⬆️ {doc.label}", callback_data=f"doc:file:{doc.id}")
        b.button(text=f"🗑 {doc.label}", callback_data=f"doc:del:{doc.id}")
        rows.append(1 if doc.uploaded else 2)

    b.adjust(*rows)
    nav_row(b, step, False)
    return b.as_markup()


def additional_kb(
    draft: DeclarationDraft, customers: Iterable[Counterparty], step: int,
) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    rows: list[int] = []
    for cust in customers:
        sel = draft.counterparty is not None and draft.counterparty.id == cust.id
        b.button(text=f"{_mark(sel)} {cust.name}"[:60], callback_data=f"cp:{cust.id}")
        rows.append(1)
    _reference_buttons(b, draft, rows)
    b.adjust(*rows)
    nav_row(b, step, False)
    return b.as_markup()


def review_kb(step: int) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="💬 Comments", callback_data="ask:comments")
    b.adjust(1)
    nav_row(b, step, True)
    return b.as_markup()


def after_submit_kb() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="🔄 New declaration", callback_data="wiz:new")],
        ]
    )


def retry_kb() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="🔁 Try again", callback_data="nav:submit")],
            [InlineKeyboardButton(text="◀ Back", callback_data="nav:back")],
        ]
    )
