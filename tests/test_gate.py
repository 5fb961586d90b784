"""Step gates."""
from __future__ import annotations

from datetime import date

import pytest

from eudr_bot.errors import WizardStateError
from eudr_bot.gate import can_leave, step_at
from eudr_bot.models import (
    NOT_APPLICABLE,
    Counterparty,
    CounterpartyKind,
    DateRange,
    DeclarationDraft,
    DeclarationSource,
    DeclarationType,
    DocumentType,
    EvidenceDocument,
    GeoCheckingGeometry,
    ItemList,
    LineItem,
    ReferenceNumbers,
    Step,
    UploadedFile,
)

FILE = UploadedFile(name="plots.geojson", size=100)
VALID = DateRange(start=date(2025, 1, 1), end=date(2025, 12, 31))
SUPPLIER = Counterparty(id=1, name="Acme Farms", kind=CounterpartyKind.SUPPLIER, country="Ghana")
CUSTOMER = Counterparty(id=2, name="Choco GmbH", kind=CounterpartyKind.CUSTOMER, country="Germany")
UPLOADED_DOC = EvidenceDocument(id="doc-1", declared_type=DocumentType.EXPORT_INVOICE, uploaded=True, file_name="inv.pdf")


def _item(**kw) -> ItemList:
    fields = {"id": "item-1", "product_name": "Cocoa Beans", "hsn_code": "1801", "quantity": "10"}
    fields.update(kw)
    return ItemList(LineItem(**fields))


def _fresh(**kw) -> DeclarationDraft:
    fields = dict(
        declaration_type=DeclarationType.OUTBOUND,
        declaration_source=DeclarationSource.FRESH,
        items=_item(),
        validity=VALID,
    )
    fields.update(kw)
    return DeclarationDraft(**fields)


def _inbound(**kw) -> DeclarationDraft:
    fields = dict(
        declaration_type=DeclarationType.INBOUND,
        items=_item(),
        validity=VALID,
        counterparty=SUPPLIER,
        references=ReferenceNumbers(po_number="PO-1"),
    )
    fields.update(kw)
    return DeclarationDraft(**fields)


def test_type_step_always_passes():
    assert can_leave(1, DeclarationDraft()).ok


def test_existing_source_needs_a_selection():
    draft = _fresh(declaration_source=DeclarationSource.EXISTING)
    result = can_leave(2, draft)
    assert not result.ok
    assert result.reason_code == "source_missing"

    assert can_leave(2, draft.model_copy(update={"selected_source_ids": frozenset({7})})).ok


@pytest.mark.parametrize(
    "item",
    [_item(quantity="0"), _item(hsn_code=""), _item(product_name=""), _item(quantity="lots")],
)
def test_fresh_needs_a_complete_item(item):
    result = can_leave(2, _fresh(items=item))
    assert result.reason_code == "item_incomplete"


def test_one_complete_item_is_enough():
    items = ItemList(LineItem(id="item-1"), *_item(id="item-2"))
    assert can_leave(2, _fresh(items=items)).ok


def test_validity_missing():
    assert can_leave(2, _fresh(validity=None)).reason_code == "validity_missing"


def test_validity_not_applicable_passes():
    assert can_leave(2, _fresh(validity=NOT_APPLICABLE)).ok


def test_validity_inverted():
    inverted = DateRange(start=date(2025, 6, 1), end=date(2025, 5, 31))
    assert can_leave(2, _fresh(validity=inverted)).reason_code == "validity_inverted"


def test_inbound_details_need_supplier_and_po():
    assert can_leave(2, _inbound()).ok
    assert can_leave(2, _inbound(counterparty=None)).reason_code == "supplier_missing"
    assert can_leave(2, _inbound(references=ReferenceNumbers(po_number="  "))).reason_code == "po_number_missing"


def test_upload_needs_geojson_where_geo_applies():
    result = can_leave(3, _fresh(evidence_documents=(UPLOADED_DOC,)))
    assert result.reason_code == "geojson_missing"
    assert can_leave(3, _inbound(evidence_documents=(UPLOADED_DOC,))).reason_code == "geojson_missing"


def test_upload_accepts_a_file_still_being_checked():
    draft = _fresh(geo=GeoCheckingGeometry(file=FILE), evidence_documents=(UPLOADED_DOC,))
    assert can_leave(3, draft).ok


def test_existing_source_skips_geojson():
    draft = _fresh(
        declaration_source=DeclarationSource.EXISTING,
        selected_source_ids=frozenset({7}),
        evidence_documents=(UPLOADED_DOC,),
    )
    assert can_leave(3, draft).ok


def test_upload_needs_an_uploaded_document():
    pending = EvidenceDocument(id="doc-1", declared_type=DocumentType.PACKING_LIST)
    draft = _fresh(geo=GeoCheckingGeometry(file=FILE), evidence_documents=(pending,))
    assert can_leave(3, draft).reason_code == "evidence_missing"


def test_outbound_needs_customer():
    assert can_leave(4, _fresh()).reason_code == "customer_missing"
    assert can_leave(4, _fresh(counterparty=CUSTOMER)).ok


def test_inbound_has_no_additional_step():
    draft = _inbound()
    assert step_at(4, draft) is Step.REVIEW
    assert can_leave(4, draft).ok
    with pytest.raises(WizardStateError):
        can_leave(5, draft)


def test_step_indices_are_one_based():
    with pytest.raises(WizardStateError):
        step_at(0, _fresh())
    assert step_at(4, _fresh()) is Step.ADDITIONAL


def test_every_step_has_a_gate():
    from eudr_bot import gate

    assert set(gate._RULES) == set(Step)
    for draft in (_fresh(), _inbound()):
        for index in range(1, len(draft.steps) + 1):
            assert isinstance(can_leave(index, draft).ok, bool)
