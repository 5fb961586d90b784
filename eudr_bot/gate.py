"""Step gates: may the user leave step N forward with this draft?

Pure functions of (step, draft).  Nothing here raises for bad input; a
refusal comes back as a failed ``GateResult`` with a reason code.
"""

from __future__ import annotations

from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from eudr_bot.errors import WizardStateError
from eudr_bot.items import is_complete
from eudr_bot.models import (
    DateRange,
    DeclarationDraft,
    DeclarationKind,
    Step,
)


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    reason_code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def fail(cls, reason_code: str, message: str) -> GateResult:
        return cls(ok=False, reason_code=reason_code, message=message)


PASS = GateResult(ok=True)


def _type_step(draft: DeclarationDraft) -> GateResult:
    # A type (and source) is always preselected
    return PASS


def _details_step(draft: DeclarationDraft) -> GateResult:
    kind = draft.kind

    if kind is DeclarationKind.OUTBOUND_EXISTING:
        if not draft.selected_source_ids:
            return GateResult.fail(
                "source_missing", "Please select at least one existing inbound declaration",
            )
    elif kind in (DeclarationKind.OUTBOUND_FRESH, DeclarationKind.INBOUND):
        if not any(is_complete(item) for item in draft.items):
            return GateResult.fail(
                "item_incomplete",
                "Please enter at least one item with product name, HSN code and a quantity above 0",
            )
    else:
        raise WizardStateError(f"No details rule for {kind}")

    if draft.validity is None:
        return GateResult.fail(
            "validity_missing",
            "Please select both start and end dates for the declaration validity period",
        )
    if isinstance(draft.validity, DateRange) and draft.validity.end < draft.validity.start:
        return GateResult.fail("validity_inverted", "End date must not be before start date")

    if kind is DeclarationKind.INBOUND:
        if draft.counterparty is None:
            return GateResult.fail("supplier_missing", "Please select a supplier to continue")
        if not draft.references.po_number.strip():
            return GateResult.fail("po_number_missing", "Please enter a PO number to continue")
    return PASS


def _upload_step(draft: DeclarationDraft) -> GateResult:
    if draft.kind.has_geo_phase and not draft.geo.has_file:
        return GateResult.fail("geojson_missing", "Please upload a GeoJSON file for geographical data")
    if not any(doc.uploaded for doc in draft.evidence_documents):
        return GateResult.fail("evidence_missing", "Please upload at least one document as evidence")
    return PASS


def _additional_step(draft: DeclarationDraft) -> GateResult:
    if draft.kind is DeclarationKind.INBOUND:
        return PASS
    if draft.counterparty is None:
        return GateResult.fail("customer_missing", "Please select a customer to continue")
    return PASS


def _review_step(draft: DeclarationDraft) -> GateResult:
    return PASS


_RULES: dict[Step, Callable[[DeclarationDraft], GateResult]] = {
    Step.TYPE: _type_step,
    Step.DETAILS: _details_step,
    Step.UPLOAD: _upload_step,
    Step.ADDITIONAL: _additional_step,
    Step.REVIEW: _review_step,
}

if set(_RULES) != set(Step):
    raise WizardStateError(f"Steps without a gate: {sorted(s.value for s in set(Step) - set(_RULES))}")


def step_at(step_index: int, draft: DeclarationDraft) -> Step:
    steps = draft.steps
    if not 1 <= step_index <= len(steps):
        raise WizardStateError(f"Step {step_index} does not exist (1..{len(steps)})")
    return steps[step_index - 1]


def can_leave(step_index: int, draft: DeclarationDraft) -> GateResult:
    return _RULES[step_at(step_index, draft)](draft)
