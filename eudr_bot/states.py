"""FSM states for the free-text prompts of the declaration wizard.

Button presses never need a state; only prompts that wait for a typed
answer or an uploaded document do.
"""

from aiogram.fsm.state import State, StatesGroup


class DeclarationForm(StatesGroup):
    # ── Step 2: details ────────────────────────────────────────────────
    item_line     = State()   # "product; HSN; quantity; unit"
    product_query = State()   # product name or code to search for
    copy_id       = State()   # id of the declaration to copy items from
    custom_dates  = State()   # "YYYY-MM-DD YYYY-MM-DD"

    # ── Step 3: uploads ────────────────────────────────────────────────
    geo_file      = State()
    doc_name      = State()   # name of an "others" document
    doc_file      = State()

    # ── Counterparty references (inbound step 2, outbound step 4) ─────
    references    = State()   # "PO; SO; shipment"
    ref_pair      = State()   # "reference; verification"

    # ── Review ─────────────────────────────────────────────────────────
    comments      = State()
