"""
Declaration wizard conversation with edit-in-place cards.

/new → type (+ source) → details → uploads → [customer] → review → submit

• One card per step, edited in place on every button press.
• Buttons drive the WizardController directly; typed answers and uploaded
  documents go through the DeclarationForm prompts.
• Geo check outcomes arrive later as separate chat messages (see middleware).
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Callable

from aiogram import F, Router, html
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Document, InlineKeyboardMarkup, Message

from eudr_bot.api import ApiError, DeclarationsApi
from eudr_bot.assembler import derive_status
from eudr_bot.errors import (
    SubmissionBlockedError,
    SubmissionFailedError,
    WizardError,
)
from eudr_bot.items import is_declarable, parse_quantity
from eudr_bot.keyboards import (
    SOURCE_LABELS,
    TYPE_LABELS,
    additional_kb,
    after_submit_kb,
    details_kb,
    products_kb,
    retry_kb,
    review_kb,
    type_kb,
    upload_kb,
)
from eudr_bot.middleware import WizardSession
from eudr_bot.models import (
    STEP_TITLES,
    DateRange,
    DeclarationKind,
    DeclarationSource,
    DeclarationType,
    DocumentType,
    GeoPhase,
    LineItem,
    Step,
    UploadedFile,
)
from eudr_bot.states import DeclarationForm

logger = logging.getLogger(__name__)
router = Router()

_DATES_RE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})\s+(\d{4}-\d{2}-\d{2})\s*$")

GEO_LABELS: dict[GeoPhase, str] = {
    GeoPhase.IDLE: "not uploaded",
    GeoPhase.UPLOADED: "uploaded",
    GeoPhase.CHECKING_GEOMETRY: "⏳ checking geometry…",
    GeoPhase.GEOMETRY_FAILED: "❌ geometry invalid",
    GeoPhase.CHECKING_SATELLITE: "⏳ checking satellite imagery…",
    GeoPhase.SATELLITE_FAILED: "❌ satellite check failed",
    GeoPhase.COMPLIANT: "✅ compliant",
}


# ── Helper: build a progress card ────────────────────────────────────

def _bar(step: int, total: int) -> str:
    step = max(1, min(total, step))
    return f"Step {step}/{total}  {'▰' * step}{'▱' * (total - step)}"


def _card(session: WizardSession, notice: str = "") -> str:
    """Accumulating summary of the draft plus the current step title."""
    wizard = session.wizard
    draft = wizard.draft
    kind_label = TYPE_LABELS[draft.declaration_type.value]

    lines: list[str] = [
        f"<b>EUDR • {kind_label} declaration</b>\n"
        f"{_bar(wizard.step, wizard.total_steps)}\n"
        f"<b>{STEP_TITLES[wizard.current]}</b>\n"
    ]

    if draft.declaration_type is DeclarationType.OUTBOUND:
        lines.append(f"  ✅ Source: {SOURCE_LABELS[draft.declaration_source.value]}")
    if draft.kind is DeclarationKind.OUTBOUND_EXISTING and draft.selected_source_ids:
        ids = ", ".join(f"#{i}" for i in sorted(draft.selected_source_ids))
        lines.append(f"  ✅ Based on: {ids}")

    for item in draft.items:
        if not is_declarable(item):
            continue
        hsn = f" · HSN {html.quote(item.hsn_code)}" if item.hsn_code else ""
        qty = f" · {html.quote(item.quantity)} {html.quote(item.unit)}" if item.quantity else ""
        lines.append(f"  • {html.quote(item.product_name)}{hsn}{qty}")

    if isinstance(draft.validity, DateRange):
        lines.append(f"  ✅ Valid: {draft.validity.start.isoformat()} → {draft.validity.end.isoformat()}")
    elif draft.validity is not None:
        lines.append("  ✅ Validity: N/A")

    if draft.counterparty is not None:
        cp = draft.counterparty
        country = f" ({html.quote(cp.country)})" if cp.country else ""
        lines.append(f"  ✅ {cp.kind.value.title()}: {html.quote(cp.name)}{country}")
    refs = draft.references
    for label, value in (("PO", refs.po_number), ("SO", refs.so_number), ("Shipment", refs.shipment_number)):
        if value:
            lines.append(f"  ✅ {label}: {html.quote(value)}")
    for pair in refs.eudr_pairs or ():
        if not pair.is_blank:
            lines.append(
                f"  🔗 {html.quote(pair.reference_number)} / {html.quote(pair.verification_number)}"
            )

    if draft.kind.has_geo_phase and wizard.step >= draft.steps.index(Step.UPLOAD) + 1:
        geo = draft.geo
        name = f" {html.quote(geo.file.name)}" if geo.has_file else ""  # type: ignore[union-attr]
        lines.append(f"  🗺 GeoJSON{name}: {GEO_LABELS[geo.phase]}")
    for doc in draft.evidence_documents:
        status = html.quote(doc.file_name or "") if doc.uploaded else "awaiting file"
        lines.append(f"  📎 {html.quote(doc.label)}: {status}")

    if draft.comments:
        lines.append(f"  💬 {html.quote(draft.comments)}")

    if wizard.is_terminal:
        try:
            status, compliance = derive_status(draft)
        except SubmissionBlockedError:
            lines.append("\n⏳ <i>Waiting for the GeoJSON check to finish…</i>")
        else:
            extra = f" ({compliance})" if compliance else ""
            lines.append(f"\nWill be saved as <b>{status.value}</b>{extra}")

    if notice:
        lines.append(f"\n{notice}")

    return "\n".join(lines)


async def _load_lists(session: WizardSession, api: DeclarationsApi) -> str:
    """Fetch the records the current step offers as buttons."""
    wizard = session.wizard
    draft = wizard.draft
    step = wizard.current
    try:
        if step is Step.DETAILS and draft.kind is DeclarationKind.OUTBOUND_EXISTING and not wizard.source_catalog:
            wizard.load_source_declarations(await api.list_source_declarations())

        wants = draft.kind.counterparty_kind
        shows_counterparties = (
            (step is Step.DETAILS and draft.kind is DeclarationKind.INBOUND)
            or step is Step.ADDITIONAL
        )
        if shows_counterparties and session.counterparty_kind is not wants:
            records = await api.list_counterparties(wants)
            session.counterparties = {c.id: c for c in records}
            session.counterparty_kind = wants
    except ApiError as exc:
        return f"⚠️ Could not load records: {html.quote(exc.message)}"
    return ""


def _keyboard(session: WizardSession) -> InlineKeyboardMarkup:
    wizard = session.wizard
    draft = wizard.draft
    step = wizard.current
    if step is Step.TYPE:
        return type_kb(draft, locked=1 in wizard.completed_steps)
    if step is Step.DETAILS:
        return details_kb(
            draft, wizard.source_catalog.values(), session.counterparties.values(), wizard.step,
        )
    if step is Step.UPLOAD:
        return upload_kb(draft, wizard.step)
    if step is Step.ADDITIONAL:
        return additional_kb(draft, session.counterparties.values(), wizard.step)
    return review_kb(wizard.step)


async def _render(session: WizardSession, api: DeclarationsApi, notice: str = "") -> tuple[str, InlineKeyboardMarkup]:
    warning = await _load_lists(session, api)
    notice = "\n".join(n for n in (warning, notice) if n)
    return _card(session, notice), _keyboard(session)


async def _safe_edit(
    cb: CallbackQuery,
    text: str,
    reply_markup=None,  # noqa: ANN001
) -> None:
    """Edit the card in place; send a new one when the old message cannot be edited."""
    try:
        await cb.message.edit_text(text, reply_markup=reply_markup)  # type: ignore[union-attr]
    except Exception:
        await cb.message.answer(text, reply_markup=reply_markup)  # type: ignore[union-attr]


async def _refresh(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi, notice: str = "") -> None:
    text, kb = await _render(session, api, notice)
    await _safe_edit(cb, text, reply_markup=kb)


async def _reply_card(message: Message, session: WizardSession, api: DeclarationsApi, notice: str = "") -> None:
    text, kb = await _render(session, api, notice)
    await message.answer(text, reply_markup=kb)


async def _act(
    cb: CallbackQuery,
    session: WizardSession,
    api: DeclarationsApi,
    action: Callable[[], object],
) -> None:
    """Run a controller call; refused calls become an alert, the card stays."""
    try:
        action()
    except WizardError as exc:
        await cb.answer(exc.message, show_alert=True)
        return
    await _refresh(cb, session, api)
    await cb.answer()


async def _ask(cb: CallbackQuery, state: FSMContext, target: object, prompt: str) -> None:
    await state.set_state(target)  # type: ignore[arg-type]
    await cb.message.answer(prompt)  # type: ignore[union-attr]
    await cb.answer()


async def _left_step(
    message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi, *steps: Step,
) -> bool:
    """True when the wizard is no longer on a step the pending prompt belongs to.

    The prompt is dropped and the current card sent again instead.
    """
    if session.wizard.current in steps:
        return False
    await state.set_state(None)
    await _reply_card(message, session, api, "⌛ That prompt has expired.")
    return True


def _uploaded(document: Document) -> UploadedFile:
    return UploadedFile(
        name=document.file_name or "file",
        size=document.file_size or 0,
        ref=document.file_id,
    )


# ── 1. New wizard ────────────────────────────────────────────────────

@router.message(Command("new"))
async def cmd_new(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    await state.clear()
    session.wizard.reset()
    await _reply_card(message, session, api)


@router.callback_query(F.data == "wiz:new")
async def cb_new(cb: CallbackQuery, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    await state.clear()
    session.wizard.reset()
    await _refresh(cb, session, api)
    await cb.answer()


# ── 2. Navigation ────────────────────────────────────────────────────

@router.callback_query(F.data == "nav:next")
async def cb_next(cb: CallbackQuery, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    await state.set_state(None)
    await _act(cb, session, api, session.wizard.advance)


@router.callback_query(F.data == "nav:back")
async def cb_back(cb: CallbackQuery, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    await state.set_state(None)
    await _act(cb, session, api, session.wizard.retreat)


@router.callback_query(F.data == "nav:submit")
async def cb_submit(cb: CallbackQuery, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    try:
        created = await session.wizard.submit(api)
    except SubmissionFailedError as exc:
        await _safe_edit(cb, _card(session, f"❌ {html.quote(exc.message)}"), reply_markup=retry_kb())
        await cb.answer()
        return
    except WizardError as exc:
        await cb.answer(exc.message, show_alert=True)
        return

    await state.clear()
    status = created.get("status")
    saved_as = f"\nStatus: <b>{html.quote(str(status))}</b>" if status else ""
    await _safe_edit(
        cb,
        f"✅ <b>Declaration #{created['id']} created</b>{saved_as}",
        reply_markup=after_submit_kb(),
    )
    await cb.answer()


# ── 3. Step 1: type and source ───────────────────────────────────────

@router.callback_query(F.data.startswith("type:"))
async def cb_type(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    value = DeclarationType(cb.data.split(":", 1)[1])  # type: ignore[union-attr]
    await _act(cb, session, api, lambda: session.wizard.choose_type(value))


@router.callback_query(F.data.startswith("source:"))
async def cb_source(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    value = DeclarationSource(cb.data.split(":", 1)[1])  # type: ignore[union-attr]
    await _act(cb, session, api, lambda: session.wizard.choose_source(value))


# ── 4. Step 2: details ───────────────────────────────────────────────

def parse_item_line(text: str) -> dict[str, str]:
    """``product; HSN; quantity; unit`` → item fields; raises ValueError with a user message."""
    parts = [p.strip() for p in text.split(";")]
    if len(parts) < 3 or not parts[0]:
        raise ValueError("Please use <code>product; HSN code; quantity; unit</code>.")
    if parse_quantity(parts[2]) is None:
        raise ValueError("Quantity must be a number above 0.")
    changes = {"product_name": parts[0], "hsn_code": parts[1], "quantity": parts[2]}
    if len(parts) > 3 and parts[3]:
        changes["unit"] = parts[3]
    return changes


def _find_item(session: WizardSession, item_id: str) -> LineItem | None:
    return next((i for i in session.wizard.draft.items if i.id == item_id), None)


@router.callback_query(F.data.startswith("src:"))
async def cb_toggle_source(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    source_id = int(cb.data.split(":", 1)[1])  # type: ignore[union-attr]
    await _act(cb, session, api, lambda: session.wizard.toggle_source(source_id))


@router.callback_query(F.data == "item:add")
async def cb_add_item(cb: CallbackQuery, state: FSMContext, session: WizardSession) -> None:
    session.pending_item_id = None
    await _ask(
        cb, state, DeclarationForm.item_line,
        "📦 <b>Send the item as</b>\n<code>product; HSN code; quantity; unit</code>\n"
        "Unit is optional (default kg).",
    )


@router.callback_query(F.data.startswith("item:edit:"))
async def cb_edit_item(cb: CallbackQuery, state: FSMContext, session: WizardSession) -> None:
    item = _find_item(session, cb.data.split(":", 2)[2])  # type: ignore[union-attr]
    if item is None:
        await cb.answer("This item was removed", show_alert=True)
        return
    session.pending_item_id = item.id
    current = f"{item.product_name}; {item.hsn_code}; {item.quantity}; {item.unit}"
    await _ask(
        cb, state, DeclarationForm.item_line,
        f"✏️ <b>New values for this item</b>\n<code>product; HSN code; quantity; unit</code>\n"
        f"Now: <code>{html.quote(current)}</code>",
    )


@router.message(DeclarationForm.item_line, F.text)
async def on_item_line(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.DETAILS):
        return
    try:
        changes = parse_item_line(message.text or "")
    except ValueError as exc:
        await message.answer(str(exc))
        return
    try:
        session.wizard.enter_item(session.pending_item_id, **changes)
    except WizardError as exc:
        await message.answer(f"❌ {html.quote(exc.message)}")
        return
    session.pending_item_id = None
    await state.set_state(None)
    await _reply_card(message, session, api)


@router.callback_query(F.data == "item:remove")
async def cb_remove_item(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    wizard = session.wizard
    await _act(cb, session, api, lambda: wizard.remove_item(wizard.draft.items[-1].id))


# ── Product list ──

@router.callback_query(F.data.startswith("item:find:"))
async def cb_find_product(cb: CallbackQuery, state: FSMContext, session: WizardSession) -> None:
    item = _find_item(session, cb.data.split(":", 2)[2])  # type: ignore[union-attr]
    if item is None:
        await cb.answer("This item was removed", show_alert=True)
        return
    session.pending_item_id = item.id
    await _ask(cb, state, DeclarationForm.product_query, "🔎 <b>Product name or code</b> (at least 2 characters):")


@router.message(DeclarationForm.product_query, F.text)
async def on_product_query(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.DETAILS):
        return
    item_id = session.pending_item_id
    if item_id is None or _find_item(session, item_id) is None:
        await state.set_state(None)
        await _reply_card(message, session, api)
        return
    query = (message.text or "").strip()
    if len(query) < 2:
        await message.answer("Please type at least 2 characters.")
        return
    try:
        products = await api.search_products(query)
    except ApiError as exc:
        await message.answer(f"⚠️ Product search failed: {html.quote(exc.message)}")
        return
    if not products:
        await message.answer("Nothing found. Try another name or code.")
        return

    session.product_results = {p.id: p for p in products[:10]}
    await state.set_state(None)
    await message.answer(
        f"🔎 <b>{len(session.product_results)} product(s) found</b>",
        reply_markup=products_kb(item_id, session.product_results.values()),
    )


@router.callback_query(F.data.startswith("prod:"))
async def cb_choose_product(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    parts = cb.data.split(":")  # type: ignore[union-attr]
    if len(parts) != 3:
        session.product_results = {}
        await _refresh(cb, session, api)
        await cb.answer()
        return
    item_id, product = parts[1], session.product_results.get(int(parts[2]))
    if product is None:
        await cb.answer("These search results have expired", show_alert=True)
        return

    def choose() -> None:
        # Without an HS code the product only names the item; the HSN stays editable
        if product.hs_code:
            session.wizard.choose_product(item_id, product.name, product.hs_code)
        else:
            session.wizard.update_item(item_id, product_name=product.name)

    session.product_results = {}
    await _act(cb, session, api, choose)


# ── Copy from an existing declaration ──

@router.callback_query(F.data == "ask:copy")
async def cb_ask_copy(cb: CallbackQuery, state: FSMContext) -> None:
    await _ask(cb, state, DeclarationForm.copy_id, "📋 <b>Number of the declaration to copy items from:</b>")


@router.message(DeclarationForm.copy_id, F.text)
async def on_copy_id(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.DETAILS):
        return
    raw = (message.text or "").strip().lstrip("#")
    if not raw.isdigit():
        await message.answer("Please send the declaration number, e.g. <code>42</code>.")
        return
    try:
        detail = await api.get_declaration(int(raw))
    except ApiError as exc:
        await message.answer(f"⚠️ Could not load declaration #{raw}: {html.quote(exc.message)}")
        return
    session.wizard.copy_from(detail)
    await state.set_state(None)
    await _reply_card(message, session, api, f"📋 Items copied from declaration #{detail.id}.")


# ── Validity ──

@router.callback_query(F.data.startswith("valid:"))
async def cb_validity(cb: CallbackQuery, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    preset = cb.data.split(":", 1)[1]  # type: ignore[union-attr]
    if preset == "custom":
        await _ask(
            cb, state, DeclarationForm.custom_dates,
            "📅 <b>Send start and end date</b>\n<code>YYYY-MM-DD YYYY-MM-DD</code>",
        )
        return
    await _act(cb, session, api, lambda: session.wizard.apply_validity_preset(preset))


@router.message(DeclarationForm.custom_dates, F.text)
async def on_custom_dates(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.DETAILS):
        return
    m = _DATES_RE.match(message.text or "")
    try:
        if not m:
            raise ValueError(message.text)
        start, end = date.fromisoformat(m.group(1)), date.fromisoformat(m.group(2))
    except ValueError:
        await message.answer("Please send two dates as <code>YYYY-MM-DD YYYY-MM-DD</code>.")
        return
    session.wizard.set_validity(DateRange(start=start, end=end))
    await state.set_state(None)
    await _reply_card(message, session, api)


@router.callback_query(F.data.startswith("cp:"))
async def cb_counterparty(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    cp_id = int(cb.data.split(":", 1)[1])  # type: ignore[union-attr]
    counterparty = session.counterparties.get(cp_id)
    if counterparty is None:
        await cb.answer("This entry is no longer available", show_alert=True)
        return
    await _act(cb, session, api, lambda: session.wizard.select_counterparty(counterparty))


# ── 5. Step 3: uploads ───────────────────────────────────────────────

@router.callback_query(F.data == "ask:geo")
async def cb_ask_geo(cb: CallbackQuery, state: FSMContext) -> None:
    await _ask(
        cb, state, DeclarationForm.geo_file,
        "🗺 <b>Send the GeoJSON file</b> as a document (.geojson or .json).",
    )


@router.message(DeclarationForm.geo_file, F.document)
async def on_geo_file(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.UPLOAD):
        return
    file = _uploaded(message.document)  # type: ignore[arg-type]
    try:
        session.wizard.upload_geojson(file)
    except WizardError as exc:
        await message.answer(f"❌ {html.quote(exc.message)}")
        return
    await state.set_state(None)
    await _reply_card(message, session, api, "🔄 Checking geometry, the result will follow shortly.")


@router.callback_query(F.data.startswith("doc:add:"))
async def cb_add_document(cb: CallbackQuery, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    doc_type = DocumentType(cb.data.split(":", 2)[2])  # type: ignore[union-attr]
    try:
        session.pending_doc_id = session.wizard.add_document(doc_type)
    except WizardError as exc:
        await cb.answer(exc.message, show_alert=True)
        return
    if doc_type is DocumentType.OTHERS:
        await _ask(cb, state, DeclarationForm.doc_name, "✏️ <b>Document name:</b>")
    else:
        await _ask(cb, state, DeclarationForm.doc_file, "📎 <b>Send the file</b> as a document.")


@router.callback_query(F.data.startswith("doc:file:"))
async def cb_document_file(cb: CallbackQuery, state: FSMContext, session: WizardSession) -> None:
    doc_id = cb.data.split(":", 2)[2]  # type: ignore[union-attr]
    doc = next((d for d in session.wizard.draft.evidence_documents if d.id == doc_id), None)
    if doc is None:
        await cb.answer("This document was removed", show_alert=True)
        return
    session.pending_doc_id = doc_id
    if not doc.ready_for_file:
        await _ask(cb, state, DeclarationForm.doc_name, "✏️ <b>Document name:</b>")
    else:
        await _ask(cb, state, DeclarationForm.doc_file, "📎 <b>Send the file</b> as a document.")


@router.message(DeclarationForm.doc_name, F.text)
async def on_document_name(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.UPLOAD):
        return
    wizard = session.wizard
    doc_id = session.pending_doc_id
    if doc_id is None:
        await state.set_state(None)
        return
    try:
        wizard.name_document(doc_id, message.text or "")
        wizard.confirm_document_name(doc_id)
    except WizardError as exc:
        await message.answer(f"❌ {html.quote(exc.message)}")
        return
    await state.set_state(DeclarationForm.doc_file)
    await message.answer("📎 <b>Now send the file</b> as a document.")


@router.message(DeclarationForm.doc_file, F.document)
async def on_document_file(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.UPLOAD):
        return
    doc_id = session.pending_doc_id
    if doc_id is None:
        await state.set_state(None)
        await _reply_card(message, session, api)
        return
    try:
        session.wizard.attach_document(doc_id, _uploaded(message.document))  # type: ignore[arg-type]
    except WizardError as exc:
        await message.answer(f"❌ {html.quote(exc.message)}")
        return
    session.pending_doc_id = None
    await state.set_state(None)
    await _reply_card(message, session, api)


@router.callback_query(F.data.startswith("doc:del:"))
async def cb_remove_document(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    doc_id = cb.data.split(":", 2)[2]  # type: ignore[union-attr]
    await _act(cb, session, api, lambda: session.wizard.remove_document(doc_id))


@router.message(DeclarationForm.geo_file)
@router.message(DeclarationForm.doc_file)
async def expect_document(message: Message) -> None:
    await message.answer("Please send the file as a document (📎 → File).")


# ── 6. Counterparty references (inbound step 2, outbound step 4) ─────

@router.callback_query(F.data == "ask:refs")
async def cb_ask_refs(cb: CallbackQuery, state: FSMContext) -> None:
    await _ask(
        cb, state, DeclarationForm.references,
        "🧾 <b>Send the reference numbers</b>\n<code>PO; SO; shipment</code>\n"
        "Leave a part empty to skip it.",
    )


@router.message(DeclarationForm.references, F.text)
async def on_references(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.DETAILS, Step.ADDITIONAL):
        return
    parts = [p.strip() for p in (message.text or "").split(";")] + ["", ""]
    session.wizard.set_reference_numbers(
        po_number=parts[0], so_number=parts[1], shipment_number=parts[2],
    )
    await state.set_state(None)
    await _reply_card(message, session, api)


@router.callback_query(F.data == "ask:pair")
async def cb_ask_pair(cb: CallbackQuery, state: FSMContext) -> None:
    await _ask(
        cb, state, DeclarationForm.ref_pair,
        "🔗 <b>Send the upstream EUDR reference</b>\n<code>reference number; verification number</code>",
    )


@router.message(DeclarationForm.ref_pair, F.text)
async def on_reference_pair(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.DETAILS, Step.ADDITIONAL):
        return
    parts = [p.strip() for p in (message.text or "").split(";")]
    if len(parts) != 2 or not all(parts):
        await message.answer("Please use <code>reference number; verification number</code>.")
        return
    try:
        session.wizard.add_reference_pair(parts[0], parts[1])
    except WizardError as exc:
        await message.answer(f"❌ {html.quote(exc.message)}")
        await state.set_state(None)
        return
    await state.set_state(None)
    await _reply_card(message, session, api)


@router.callback_query(F.data == "pair:remove")
async def cb_remove_pair(cb: CallbackQuery, session: WizardSession, api: DeclarationsApi) -> None:
    wizard = session.wizard
    last = len(wizard.draft.references.eudr_pairs or ()) - 1
    await _act(cb, session, api, lambda: wizard.remove_reference_pair(last))


# ── 7. Review ────────────────────────────────────────────────────────

@router.callback_query(F.data == "ask:comments")
async def cb_ask_comments(cb: CallbackQuery, state: FSMContext) -> None:
    await _ask(cb, state, DeclarationForm.comments, "💬 <b>Comments:</b>")


@router.message(DeclarationForm.comments, F.text)
async def on_comments(message: Message, state: FSMContext, session: WizardSession, api: DeclarationsApi) -> None:
    if await _left_step(message, state, session, api, Step.REVIEW):
        return
    session.wizard.set_comments(message.text or "")
    await state.set_state(None)
    await _reply_card(message, session, api)
