"""Turn a finished draft into the submission payload for POST /declarations.

Keys are camelCase because that is what the declarations service stores.
Every payload carries both the full ``items`` list and the first item's
fields flattened to the top level for single-product consumers.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict

from eudr_bot.errors import SubmissionBlockedError, WizardStateError
from eudr_bot.items import is_declarable, parse_quantity
from eudr_bot.models import (
    DEFAULT_UNIT,
    DateRange,
    DeclarationDraft,
    DeclarationKind,
    GeoPhase,
    LineItem,
)

logger = logging.getLogger(__name__)

UNNAMED_PRODUCT = "Unnamed Product"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    DRAFT = "draft"
    NON_COMPLIANT_GEOMETRY = "non-compliant-geometry"
    NON_COMPLIANT_SATELLITE = "non-compliant-satellite"
    VALIDATING = "validating"


COMPLIANT = "compliant"


class Submission(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: SubmissionStatus
    compliance_status: Optional[str] = None
    payload: dict[str, Any]


def derive_status(draft: DeclarationDraft) -> tuple[SubmissionStatus, Optional[str]]:
    """(status, complianceStatus) for the draft's current geo state.

    Raises ``SubmissionBlockedError`` while a check is still running.
    """
    geo = draft.geo
    if geo.is_checking:
        raise SubmissionBlockedError("Please wait while the GeoJSON file is being validated")
    if geo.phase is GeoPhase.GEOMETRY_FAILED:
        return SubmissionStatus.DRAFT, SubmissionStatus.NON_COMPLIANT_GEOMETRY.value
    if geo.phase is GeoPhase.SATELLITE_FAILED:
        return SubmissionStatus.DRAFT, SubmissionStatus.NON_COMPLIANT_SATELLITE.value
    if geo.phase is GeoPhase.COMPLIANT:
        if draft.kind is DeclarationKind.INBOUND:
            # Inbound records wait for confirmation by the authority
            return SubmissionStatus.VALIDATING, COMPLIANT
        return SubmissionStatus.PENDING, COMPLIANT
    # idle / uploaded: never checked, or a branch without a geo phase
    return SubmissionStatus.PENDING, None


# ── Field helpers ────────────────────────────────────────────────────

def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _item_payload(item: LineItem) -> dict[str, Any]:
    return {
        "hsnCode": item.hsn_code,
        "productName": item.product_name.strip(),
        "quantity": parse_quantity(item.quantity) or 0.0,
        "unit": item.unit or DEFAULT_UNIT,
        "rmId": _blank_to_none(item.rm_id),
        "skuCode": _blank_to_none(item.sku_code),
        "batchId": _blank_to_none(item.batch_id),
    }


def _common(draft: DeclarationDraft, status: SubmissionStatus, compliance: Optional[str]) -> dict[str, Any]:
    items = [_item_payload(i) for i in draft.items if is_declarable(i)]
    first = items[0] if items else None

    validity = draft.validity
    dated = isinstance(validity, DateRange)

    payload: dict[str, Any] = {
        "type": draft.declaration_type.value,
        "status": status.value,
        "complianceStatus": compliance,
        "items": items,
        "productName": first["productName"] if first else UNNAMED_PRODUCT,
        "hsnCode": (first["hsnCode"] or None) if first else None,
        "quantity": first["quantity"] if first else 0.0,
        "unit": first["unit"] if first else DEFAULT_UNIT,
        "validityPeriod": "dated" if dated else "na",
        "startDate": validity.start.isoformat() if dated else None,
        "endDate": validity.end.isoformat() if dated else None,
        "documents": [
            {"type": d.declared_type.value, "name": d.label, "fileName": d.file_name}
            for d in draft.evidence_documents
            if d.uploaded
        ],
        "comments": _blank_to_none(draft.comments),
    }

    refs = draft.references
    if refs.pairs_visible:
        payload["referenceNumberPairs"] = [
            {"referenceNumber": p.reference_number.strip(), "verificationNumber": p.verification_number.strip()}
            for p in refs.eudr_pairs or ()
            if not p.is_blank
        ]
    return payload


def _geo_flags(draft: DeclarationDraft) -> dict[str, Any]:
    return {
        "hasGeoJSON": draft.geo.has_file,
        "geometryValid": draft.geo.geometry_valid,
        "satelliteValid": draft.geo.satellite_valid,
    }


def _customer_refs(draft: DeclarationDraft) -> dict[str, Any]:
    refs = draft.references
    return {
        "customerId": draft.counterparty.id if draft.counterparty else None,
        "customerPONumber": _blank_to_none(refs.po_number),
        "soNumber": _blank_to_none(refs.so_number),
        "shipmentNumber": _blank_to_none(refs.shipment_number),
    }


# ── Per-kind payloads ────────────────────────────────────────────────

def _outbound_existing(draft: DeclarationDraft, base: dict[str, Any]) -> dict[str, Any]:
    # Item edits made in step 2 always win over the source declarations
    return {
        **base,
        "basedOnDeclarationIds": sorted(draft.selected_source_ids),
        "hasProductOverride": True,
        **_customer_refs(draft),
    }


def _outbound_fresh(draft: DeclarationDraft, base: dict[str, Any]) -> dict[str, Any]:
    return {**base, **_geo_flags(draft), **_customer_refs(draft)}


def _inbound(draft: DeclarationDraft, base: dict[str, Any]) -> dict[str, Any]:
    refs = draft.references
    return {
        **base,
        **_geo_flags(draft),
        "supplierId": draft.counterparty.id if draft.counterparty else None,
        "poNumber": _blank_to_none(refs.po_number),
        "supplierSoNumber": _blank_to_none(refs.so_number),
        "shipmentNumber": _blank_to_none(refs.shipment_number),
    }


_BUILDERS: dict[DeclarationKind, Callable[[DeclarationDraft, dict[str, Any]], dict[str, Any]]] = {
    DeclarationKind.INBOUND: _inbound,
    DeclarationKind.OUTBOUND_EXISTING: _outbound_existing,
    DeclarationKind.OUTBOUND_FRESH: _outbound_fresh,
}

if set(_BUILDERS) != set(DeclarationKind):
    raise WizardStateError(
        f"Declaration kinds without a payload builder: "
        f"{sorted(k.value for k in set(DeclarationKind) - set(_BUILDERS))}"
    )


def assemble(draft: DeclarationDraft) -> Submission:
    """Read the draft once and build the payload plus its derived status."""
    status, compliance = derive_status(draft)
    kind = draft.kind
    payload = _BUILDERS[kind](draft, _common(draft, status, compliance))
    logger.debug("Assembled %s payload with %d item(s), status=%s", kind.value, len(payload["items"]), status.value)
    return Submission(status=status, compliance_status=compliance, payload=payload)
