"""Declaration wizard: draft reducers and the controller that owns the draft.

Reducers are pure ``(draft, ...) -> draft`` functions.  ``WizardController``
holds the only reference to the live draft, applies reducers in response to
user actions, consults the step gates before moving forward and feeds geo
pipeline results back into the draft.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional

from eudr_bot import items as item_ops
from eudr_bot.api import ApiError, DeclarationsApi
from eudr_bot.assembler import Submission, assemble
from eudr_bot.errors import (
    DocumentNotReadyError,
    StepValidationError,
    SubmissionFailedError,
    WizardStateError,
)
from eudr_bot.gate import can_leave
from eudr_bot.geo import (
    EVIDENCE_EXTENSIONS,
    GeoComplianceChecker,
    GeoValidationPipeline,
    UploadLimits,
)
from eudr_bot.models import (
    NOT_APPLICABLE,
    Counterparty,
    DateRange,
    DeclarationDetail,
    DeclarationDraft,
    DeclarationSource,
    DeclarationType,
    DocumentType,
    EvidenceDocument,
    GeoState,
    ItemList,
    ReferencePair,
    SourceDeclaration,
    Step,
    UploadedFile,
    ValidityPeriod,
)

logger = logging.getLogger(__name__)

# Counterparty countries whose declarations must quote upstream EUDR references
EU_COUNTRIES = frozenset({
    "Austria", "Belgium", "Bulgaria", "Croatia", "Cyprus", "Czech Republic", "Czechia",
    "Denmark", "Estonia", "Finland", "France", "Germany", "Greece", "Hungary",
    "Ireland", "Italy", "Latvia", "Lithuania", "Luxembourg", "Malta", "Netherlands",
    "Poland", "Portugal", "Romania", "Slovakia", "Slovenia", "Spain", "Sweden",
})

VALIDITY_PRESETS = ("na", "30days", "6months", "9months", "1year")


# ═══════════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════════

def requires_upstream_references(country: str, countries: Iterable[str] = EU_COUNTRIES) -> bool:
    c = (country or "").strip().lower()
    if not c:
        return False
    return any(c == x.lower() or x.lower() in c for x in countries)


def _add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def validity_from_preset(preset: str, today: date) -> ValidityPeriod:
    if preset == "na":
        return NOT_APPLICABLE
    if preset == "30days":
        return DateRange(start=today, end=today + timedelta(days=30))
    if preset == "6months":
        return DateRange(start=today, end=_add_months(today, 6))
    if preset == "9months":
        return DateRange(start=today, end=_add_months(today, 9))
    if preset == "1year":
        return DateRange(start=today, end=_add_months(today, 12))
    raise WizardStateError(f"Unknown validity preset {preset!r}")


# ═══════════════════════════════════════════════════════════════
# Reducers
# ═══════════════════════════════════════════════════════════════

def set_declaration_type(draft: DeclarationDraft, declaration_type: DeclarationType) -> DeclarationDraft:
    if declaration_type is draft.declaration_type:
        return draft
    # A new type means a new counterparty kind; drop anything picked for the old one
    return draft.model_copy(update={
        "declaration_type": declaration_type,
        "counterparty": None,
        "references": draft.references.model_copy(update={"eudr_pairs": None}),
    })


def set_declaration_source(
    draft: DeclarationDraft,
    source: DeclarationSource,
    catalog: Mapping[int, SourceDeclaration],
) -> DeclarationDraft:
    """Switch source; the item list is recomputed, not merged."""
    if source is draft.declaration_source:
        return draft
    update: dict[str, Any] = {"declaration_source": source}
    if source is DeclarationSource.FRESH:
        update["items"] = item_ops.reset_items()
    else:
        selected = [catalog[i] for i in sorted(draft.selected_source_ids) if i in catalog]
        if selected:
            update["items"] = item_ops.items_from_sources(selected)
    return draft.model_copy(update=update)


def select_sources(
    draft: DeclarationDraft,
    source_ids: Iterable[int],
    catalog: Mapping[int, SourceDeclaration],
) -> DeclarationDraft:
    ids = frozenset(source_ids)
    update: dict[str, Any] = {"selected_source_ids": ids}
    if draft.declaration_source is DeclarationSource.EXISTING:
        selected = [catalog[i] for i in sorted(ids) if i in catalog]
        if selected:
            update["items"] = item_ops.items_from_sources(selected)
    return draft.model_copy(update=update)


def set_items(draft: DeclarationDraft, items: ItemList) -> DeclarationDraft:
    return draft.model_copy(update={"items": items})


def set_validity(draft: DeclarationDraft, validity: Optional[ValidityPeriod]) -> DeclarationDraft:
    return draft.model_copy(update={"validity": validity})


def set_geo(draft: DeclarationDraft, geo: GeoState) -> DeclarationDraft:
    return draft.model_copy(update={"geo": geo})


def _next_document_id(docs: Iterable[EvidenceDocument]) -> str:
    highest = 0
    for doc in docs:
        suffix = doc.id.rpartition("-")[2]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"doc-{highest + 1}"


def add_document(draft: DeclarationDraft, declared_type: DocumentType) -> DeclarationDraft:
    docs = draft.evidence_documents
    if declared_type is not DocumentType.OTHERS and any(d.declared_type is declared_type for d in docs):
        raise DocumentNotReadyError(f"{declared_type.value} has already been added")
    doc = EvidenceDocument(id=_next_document_id(docs), declared_type=declared_type)
    return draft.model_copy(update={"evidence_documents": docs + (doc,)})


def _replace_document(draft: DeclarationDraft, doc_id: str, **changes: Any) -> DeclarationDraft:
    docs = list(draft.evidence_documents)
    for i, doc in enumerate(docs):
        if doc.id == doc_id:
            docs[i] = doc.model_copy(update=changes)
            return draft.model_copy(update={"evidence_documents": tuple(docs)})
    raise WizardStateError(f"Unknown document {doc_id!r}")


def _document(draft: DeclarationDraft, doc_id: str) -> EvidenceDocument:
    for doc in draft.evidence_documents:
        if doc.id == doc_id:
            return doc
    raise WizardStateError(f"Unknown document {doc_id!r}")


def name_document(draft: DeclarationDraft, doc_id: str, name: str) -> DeclarationDraft:
    """Edit the free-text name of an "others" document; unconfirms it."""
    return _replace_document(draft, doc_id, custom_name=name, name_confirmed=False)


def confirm_document_name(draft: DeclarationDraft, doc_id: str) -> DeclarationDraft:
    name = (_document(draft, doc_id).custom_name or "").strip()
    if not name:
        raise DocumentNotReadyError("Please enter a document name first")
    return _replace_document(draft, doc_id, custom_name=name, name_confirmed=True)


def attach_document_file(draft: DeclarationDraft, doc_id: str, file: UploadedFile) -> DeclarationDraft:
    doc = _document(draft, doc_id)
    if not doc.ready_for_file:
        raise DocumentNotReadyError("Confirm the document name before uploading the file")
    return _replace_document(draft, doc_id, uploaded=True, file_name=file.name, file_ref=file.ref)


def remove_document(draft: DeclarationDraft, doc_id: str) -> DeclarationDraft:
    _document(draft, doc_id)
    docs = tuple(d for d in draft.evidence_documents if d.id != doc_id)
    return draft.model_copy(update={"evidence_documents": docs})


def select_counterparty(
    draft: DeclarationDraft,
    counterparty: Counterparty,
    reference_countries: Iterable[str] = EU_COUNTRIES,
) -> DeclarationDraft:
    expected = draft.kind.counterparty_kind
    if counterparty.kind is not expected:
        raise WizardStateError(f"A {expected.value} is required here, got a {counterparty.kind.value}")

    refs = draft.references
    if requires_upstream_references(counterparty.country, reference_countries):
        pairs = refs.eudr_pairs or (ReferencePair(),)
    else:
        pairs = None
    return draft.model_copy(update={
        "counterparty": counterparty,
        "references": refs.model_copy(update={"eudr_pairs": pairs}),
    })


def set_reference_numbers(draft: DeclarationDraft, **numbers: str) -> DeclarationDraft:
    allowed = {"po_number", "so_number", "shipment_number"}
    if set(numbers) - allowed:
        raise WizardStateError(f"Unknown reference field(s): {', '.join(sorted(set(numbers) - allowed))}")
    clean = {k: (v or "").strip() for k, v in numbers.items()}
    return draft.model_copy(update={"references": draft.references.model_copy(update=clean)})


def _require_pairs(draft: DeclarationDraft) -> tuple[ReferencePair, ...]:
    if draft.references.eudr_pairs is None:
        raise WizardStateError("Upstream reference numbers do not apply to this counterparty")
    return draft.references.eudr_pairs


def add_reference_pair(
    draft: DeclarationDraft, reference_number: str = "", verification_number: str = "",
) -> DeclarationDraft:
    pairs = list(_require_pairs(draft))
    pair = ReferencePair(reference_number=reference_number.strip(), verification_number=verification_number.strip())
    # Fill the placeholder pair before appending new ones
    if pairs and pairs[-1].is_blank:
        pairs[-1] = pair
    else:
        pairs.append(pair)
    return draft.model_copy(update={"references": draft.references.model_copy(update={"eudr_pairs": tuple(pairs)})})


def remove_reference_pair(draft: DeclarationDraft, index: int) -> DeclarationDraft:
    pairs = list(_require_pairs(draft))
    if not 0 <= index < len(pairs):
        raise WizardStateError(f"No reference pair #{index}")
    del pairs[index]
    return draft.model_copy(update={"references": draft.references.model_copy(update={"eudr_pairs": tuple(pairs)})})


def set_comments(draft: DeclarationDraft, comments: str) -> DeclarationDraft:
    return draft.model_copy(update={"comments": comments or ""})


# ═══════════════════════════════════════════════════════════════
# Controller
# ═══════════════════════════════════════════════════════════════

GeoListener = Callable[[GeoState], None]


class WizardController:
    """One wizard session: step cursor, completed steps and the draft."""

    def __init__(
        self,
        checker: GeoComplianceChecker,
        geo_limits: UploadLimits | None = None,
        evidence_limits: UploadLimits | None = None,
        phase_timeout: float = 30.0,
        reference_countries: Iterable[str] = EU_COUNTRIES,
        on_geo_change: GeoListener | None = None,
    ) -> None:
        self.evidence_limits = evidence_limits or UploadLimits(EVIDENCE_EXTENSIONS)
        self.reference_countries = frozenset(reference_countries)
        self.on_geo_change = on_geo_change
        self._pipeline = GeoValidationPipeline(
            checker, self._apply_geo, limits=geo_limits, phase_timeout=phase_timeout,
        )
        self.source_catalog: dict[int, SourceDeclaration] = {}
        self.draft = DeclarationDraft()
        self.step = 1
        self._completed: set[int] = set()

    # ── read-only views ──────────────────────────────────────────

    @property
    def completed_steps(self) -> frozenset[int]:
        return frozenset(self._completed)

    @property
    def total_steps(self) -> int:
        return len(self.draft.steps)

    @property
    def current(self) -> Step:
        return self.draft.steps[self.step - 1]

    @property
    def is_terminal(self) -> bool:
        return self.step == self.total_steps

    @property
    def geo_running(self) -> bool:
        return self._pipeline.running

    # ── navigation ───────────────────────────────────────────────

    def advance(self) -> Step:
        if self.is_terminal:
            raise WizardStateError("Already on the last step; submit instead")
        result = can_leave(self.step, self.draft)
        if not result.ok:
            logger.info("Step %d refused: %s", self.step, result.reason_code)
            raise StepValidationError(self.step, result.reason_code or "invalid", result.message or "")
        self._completed.add(self.step)
        self.step += 1
        logger.debug("Advanced to step %d/%d (%s)", self.step, self.total_steps, self.current.value)
        return self.current

    def retreat(self) -> Step:
        if self.step == 1:
            raise WizardStateError("Already on the first step")
        self.step -= 1
        logger.debug("Back to step %d/%d (%s)", self.step, self.total_steps, self.current.value)
        return self.current

    # ── step 1 ───────────────────────────────────────────────────

    def _require_step(self, step: Step) -> None:
        if self.current is not step:
            raise WizardStateError(f"Only allowed on the {step.value} step (now on {self.current.value})")

    def choose_type(self, declaration_type: DeclarationType) -> None:
        self._require_step(Step.TYPE)
        if 1 in self._completed and declaration_type is not self.draft.declaration_type:
            raise WizardStateError("The declaration type is fixed once the first step is done")
        self.draft = set_declaration_type(self.draft, declaration_type)

    def choose_source(self, source: DeclarationSource) -> None:
        self._require_step(Step.TYPE)
        if self.draft.declaration_type is not DeclarationType.OUTBOUND:
            raise WizardStateError("Only outbound declarations have a source")
        self.draft = set_declaration_source(self.draft, source, self.source_catalog)
        if source is DeclarationSource.EXISTING and self.draft.geo.has_file:
            # Declarations built on approved sources carry no GeoJSON of their own
            self._pipeline.reset()

    # ── step 2 ───────────────────────────────────────────────────

    def load_source_declarations(self, records: Iterable[SourceDeclaration]) -> None:
        self.source_catalog = {r.id: r for r in records}

    def select_sources(self, source_ids: Iterable[int]) -> None:
        self.draft = select_sources(self.draft, source_ids, self.source_catalog)

    def toggle_source(self, source_id: int) -> None:
        ids = set(self.draft.selected_source_ids)
        ids.symmetric_difference_update({source_id})
        self.select_sources(ids)

    def add_item(self) -> str:
        self.draft = set_items(self.draft, item_ops.add_item(self.draft.items))
        return self.draft.items[-1].id

    def remove_item(self, item_id: str) -> None:
        self.draft = set_items(self.draft, item_ops.remove_item(self.draft.items, item_id))

    def update_item(self, item_id: str, **changes: Any) -> None:
        self.draft = set_items(self.draft, item_ops.update_item(self.draft.items, item_id, **changes))

    def enter_item(self, item_id: str | None = None, **changes: Any) -> str:
        """Write typed fields into ``item_id``, else the empty last row, else a new row."""
        items = self.draft.items
        if item_id is None:
            if item_ops.is_declarable(items[-1]):
                items = item_ops.add_item(items)
            item_id = items[-1].id
        self.draft = set_items(self.draft, item_ops.update_item(items, item_id, **changes))
        return item_id

    def choose_product(self, item_id: str, product_name: str, hsn_code: str) -> None:
        self.draft = set_items(
            self.draft, item_ops.choose_product(self.draft.items, item_id, product_name, hsn_code),
        )

    def copy_from(self, detail: DeclarationDetail) -> None:
        """Pre-populate items from an existing declaration's detail record."""
        self.draft = set_items(self.draft, item_ops.items_from_detail(detail))

    def set_validity(self, validity: Optional[ValidityPeriod]) -> None:
        self.draft = set_validity(self.draft, validity)

    def apply_validity_preset(self, preset: str, today: date | None = None) -> None:
        self.draft = set_validity(self.draft, validity_from_preset(preset, today or date.today()))

    # ── step 3 ───────────────────────────────────────────────────

    def upload_geojson(self, file: UploadedFile) -> None:
        self._require_step(Step.UPLOAD)
        if not self.draft.kind.has_geo_phase:
            raise WizardStateError("Declarations based on existing ones take no GeoJSON file")
        self._pipeline.upload(file, self.draft.declaration_type)

    async def wait_for_geo(self) -> GeoState:
        await self._pipeline.wait()
        return self.draft.geo

    def _apply_geo(self, state: GeoState) -> None:
        self.draft = set_geo(self.draft, state)
        if self.on_geo_change is not None:
            self.on_geo_change(state)

    def add_document(self, declared_type: DocumentType) -> str:
        self.draft = add_document(self.draft, declared_type)
        return self.draft.evidence_documents[-1].id

    def name_document(self, doc_id: str, name: str) -> None:
        self.draft = name_document(self.draft, doc_id, name)

    def confirm_document_name(self, doc_id: str) -> None:
        self.draft = confirm_document_name(self.draft, doc_id)

    def attach_document(self, doc_id: str, file: UploadedFile) -> None:
        self.evidence_limits.check(file)
        self.draft = attach_document_file(self.draft, doc_id, file)

    def remove_document(self, doc_id: str) -> None:
        self.draft = remove_document(self.draft, doc_id)

    # ── step 4 / counterparty ────────────────────────────────────

    def select_counterparty(self, counterparty: Counterparty) -> None:
        self.draft = select_counterparty(self.draft, counterparty, self.reference_countries)

    def set_reference_numbers(self, **numbers: str) -> None:
        self.draft = set_reference_numbers(self.draft, **numbers)

    def add_reference_pair(self, reference_number: str = "", verification_number: str = "") -> None:
        self.draft = add_reference_pair(self.draft, reference_number, verification_number)

    def remove_reference_pair(self, index: int) -> None:
        self.draft = remove_reference_pair(self.draft, index)

    def set_comments(self, comments: str) -> None:
        self.draft = set_comments(self.draft, comments)

    # ── terminal ─────────────────────────────────────────────────

    def build_submission(self) -> Submission:
        if not self.is_terminal:
            raise WizardStateError(f"Submit is only possible on step {self.total_steps}")
        return assemble(self.draft)

    async def submit(self, api: DeclarationsApi) -> dict[str, Any]:
        """Send the assembled payload; on failure the draft stays as it is."""
        submission = self.build_submission()
        try:
            created = await api.create_declaration(submission.payload)
        except ApiError as exc:
            logger.error("Submission failed (%s): %s", exc.status, exc.message)
            raise SubmissionFailedError(
                "Failed to create declaration. Please try again.",
                status=exc.status,
                payload=submission.payload,
            ) from exc

        logger.info(
            "Declaration #%s submitted [%s / %s]",
            created.get("id"), self.draft.kind.value, submission.status.value,
        )
        self.reset()
        return created

    def reset(self) -> None:
        """Discard the draft and start over at step 1."""
        self._pipeline.reset()
        self.draft = DeclarationDraft()
        self.step = 1
        self._completed.clear()

    def close(self) -> None:
        """Wizard dismissed: stop any running check and drop the draft."""
        self.reset()
