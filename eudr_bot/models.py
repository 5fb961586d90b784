"""Draft data model for one declaration wizard session.

All models are frozen pydantic models; the wizard replaces them wholesale
instead of mutating fields.  ``DeclarationDraft`` is the single aggregate the
controller owns.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, ClassVar, Iterable, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from eudr_bot.errors import LastItemError


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ── Axes of variation ───────────────────────────────────────────────

class DeclarationType(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DeclarationSource(str, Enum):
    EXISTING = "existing"
    FRESH = "fresh"


class DeclarationKind(str, Enum):
    """Closed set of (type, source) combinations the wizard distinguishes."""

    INBOUND = "inbound"
    OUTBOUND_EXISTING = "outbound-existing"
    OUTBOUND_FRESH = "outbound-fresh"

    @property
    def has_geo_phase(self) -> bool:
        return self is not DeclarationKind.OUTBOUND_EXISTING

    @property
    def counterparty_kind(self) -> "CounterpartyKind":
        if self is DeclarationKind.INBOUND:
            return CounterpartyKind.SUPPLIER
        return CounterpartyKind.CUSTOMER


def kind_of(declaration_type: DeclarationType, source: DeclarationSource) -> DeclarationKind:
    if declaration_type is DeclarationType.INBOUND:
        return DeclarationKind.INBOUND
    if source is DeclarationSource.EXISTING:
        return DeclarationKind.OUTBOUND_EXISTING
    return DeclarationKind.OUTBOUND_FRESH


class Step(str, Enum):
    TYPE = "type"
    DETAILS = "details"
    UPLOAD = "upload"
    ADDITIONAL = "additional"
    REVIEW = "review"


STEP_TITLES: dict[Step, str] = {
    Step.TYPE: "Declaration Type",
    Step.DETAILS: "Declaration Details",
    Step.UPLOAD: "Upload Data",
    Step.ADDITIONAL: "Additional Data",
    Step.REVIEW: "Review",
}


def steps_for(declaration_type: DeclarationType) -> tuple[Step, ...]:
    """Ordered steps of the wizard; outbound adds counterparty selection."""
    if declaration_type is DeclarationType.OUTBOUND:
        return (Step.TYPE, Step.DETAILS, Step.UPLOAD, Step.ADDITIONAL, Step.REVIEW)
    return (Step.TYPE, Step.DETAILS, Step.UPLOAD, Step.REVIEW)


# ── Line items ──────────────────────────────────────────────────────

DEFAULT_UNIT = "kg"


class LineItem(_Frozen):
    id: str
    product_name: str = ""
    hsn_code: str = ""
    rm_id: Optional[str] = None
    quantity: str = ""
    unit: str = DEFAULT_UNIT
    sku_code: Optional[str] = None
    batch_id: Optional[str] = None
    is_product_locked: bool = False


class ItemList:
    """Immutable, never-empty sequence of line items.

    The constructor takes the first item positionally, so an empty list
    cannot be built at all; ``of()`` is the checked entry point for
    arbitrary iterables.
    """

    __slots__ = ("_items",)

    def __init__(self, first: LineItem, *rest: LineItem) -> None:
        self._items: tuple[LineItem, ...] = (first, *rest)

    @classmethod
    def of(cls, items: Iterable[LineItem]) -> ItemList:
        items = tuple(items)
        if not items:
            raise LastItemError("At least one item is required")
        return cls(*items)

    @classmethod
    def single(cls) -> ItemList:
        return cls(LineItem(id="item-1"))

    @property
    def first(self) -> LineItem:
        return self._items[0]

    def __iter__(self) -> Iterator[LineItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> LineItem:
        return self._items[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ItemList):
            return self._items == other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        return f"ItemList({', '.join(i.id for i in self._items)})"


# ── Validity period ─────────────────────────────────────────────────

class DateRange(_Frozen):
    start: date
    end: date


class NotApplicable(_Frozen):
    """Explicit "validity period not applicable" choice."""


NOT_APPLICABLE = NotApplicable()

ValidityPeriod = Union[DateRange, NotApplicable]


# ── Evidence documents ──────────────────────────────────────────────

class DocumentType(str, Enum):
    EXPORT_INVOICE = "export-invoice"
    PACKING_LIST = "packing-list"
    OTHERS = "others"


DOCUMENT_LABELS: dict[DocumentType, str] = {
    DocumentType.EXPORT_INVOICE: "Export Invoice",
    DocumentType.PACKING_LIST: "Packing List",
    DocumentType.OTHERS: "Others",
}


class EvidenceDocument(_Frozen):
    id: str
    declared_type: DocumentType
    custom_name: Optional[str] = None
    name_confirmed: bool = False
    uploaded: bool = False
    file_name: Optional[str] = None
    file_ref: Optional[str] = None

    @property
    def label(self) -> str:
        if self.declared_type is DocumentType.OTHERS and self.custom_name:
            return self.custom_name
        return DOCUMENT_LABELS[self.declared_type]

    @property
    def ready_for_file(self) -> bool:
        if self.declared_type is DocumentType.OTHERS:
            return self.name_confirmed
        return True


class UploadedFile(_Frozen):
    """What the host knows about a selected file before reading it."""

    name: str
    size: int
    ref: Optional[str] = None

    @property
    def extension(self) -> str:
        dot = self.name.rfind(".")
        return self.name[dot:].lower() if dot >= 0 else ""


# ── Counterparties & references ─────────────────────────────────────

class CounterpartyKind(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class Counterparty(_Frozen):
    id: int
    name: str
    kind: CounterpartyKind
    country: str = ""

    @classmethod
    def from_record(cls, record: dict[str, Any], kind: CounterpartyKind) -> Counterparty:
        """Build from a /customers or /suppliers record."""
        person = f"{record.get('firstName') or ''} {record.get('lastName') or ''}".strip()
        name = record.get("companyName") or record.get("name") or person or f"#{record['id']}"
        return cls(id=int(record["id"]), name=name, kind=kind, country=record.get("country") or "")


class ReferencePair(_Frozen):
    reference_number: str = ""
    verification_number: str = ""

    @property
    def is_blank(self) -> bool:
        return not (self.reference_number.strip() or self.verification_number.strip())


class ReferenceNumbers(_Frozen):
    po_number: str = ""
    so_number: str = ""
    shipment_number: str = ""
    # None while the counterparty's country does not call for upstream references
    eudr_pairs: Optional[tuple[ReferencePair, ...]] = None

    @property
    def pairs_visible(self) -> bool:
        return self.eudr_pairs is not None


# ── Records fetched from the declarations service ───────────────────

class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RecordItem(_Record):
    product_name: str = ""
    hsn_code: Optional[str] = None
    quantity: Optional[Union[float, str]] = None
    unit: Optional[str] = None
    rm_id: Optional[str] = None
    sku_code: Optional[str] = None


class SourceDeclaration(_Record):
    """An approved inbound declaration that can seed an outbound one."""

    id: int
    type: str = DeclarationType.INBOUND.value
    status: str = ""
    product_name: str = ""
    hsn_code: Optional[str] = None
    quantity: Optional[Union[float, str]] = None
    unit: Optional[str] = None
    rm_id: Optional[str] = None
    sku_code: Optional[str] = None
    batch_id: Optional[str] = None
    eudr_reference_number: Optional[str] = None


class DeclarationDetail(SourceDeclaration):
    items: list[RecordItem] = Field(default_factory=list)


class Product(_Record):
    """Entry of the canonical product list."""

    id: int
    name: str
    product_code: str = ""
    product_type: Optional[str] = None
    hs_code: Optional[str] = None


# ── Geo validation state ────────────────────────────────────────────

class GeoPhase(str, Enum):
    IDLE = "idle"
    UPLOADED = "uploaded"
    CHECKING_GEOMETRY = "checking_geometry"
    GEOMETRY_FAILED = "geometry_failed"
    CHECKING_SATELLITE = "checking_satellite"
    SATELLITE_FAILED = "satellite_failed"
    COMPLIANT = "compliant"


class _GeoState(_Frozen):
    phase: ClassVar[GeoPhase]
    geometry_valid: ClassVar[Optional[bool]] = None
    satellite_valid: ClassVar[Optional[bool]] = None

    @property
    def is_checking(self) -> bool:
        return self.phase in (GeoPhase.CHECKING_GEOMETRY, GeoPhase.CHECKING_SATELLITE)

    @property
    def has_file(self) -> bool:
        return self.phase is not GeoPhase.IDLE

    @property
    def is_failed(self) -> bool:
        return self.phase in (GeoPhase.GEOMETRY_FAILED, GeoPhase.SATELLITE_FAILED)


class GeoIdle(_GeoState):
    phase: ClassVar[GeoPhase] = GeoPhase.IDLE


class GeoUploaded(_GeoState):
    phase: ClassVar[GeoPhase] = GeoPhase.UPLOADED
    file: UploadedFile


class GeoCheckingGeometry(_GeoState):
    phase: ClassVar[GeoPhase] = GeoPhase.CHECKING_GEOMETRY
    file: UploadedFile


class GeoGeometryFailed(_GeoState):
    phase: ClassVar[GeoPhase] = GeoPhase.GEOMETRY_FAILED
    geometry_valid: ClassVar[Optional[bool]] = False
    file: UploadedFile
    reason: str = ""


class GeoCheckingSatellite(_GeoState):
    phase: ClassVar[GeoPhase] = GeoPhase.CHECKING_SATELLITE
    geometry_valid: ClassVar[Optional[bool]] = True
    file: UploadedFile


class GeoSatelliteFailed(_GeoState):
    phase: ClassVar[GeoPhase] = GeoPhase.SATELLITE_FAILED
    geometry_valid: ClassVar[Optional[bool]] = True
    satellite_valid: ClassVar[Optional[bool]] = False
    file: UploadedFile
    reason: str = ""


class GeoCompliant(_GeoState):
    phase: ClassVar[GeoPhase] = GeoPhase.COMPLIANT
    geometry_valid: ClassVar[Optional[bool]] = True
    satellite_valid: ClassVar[Optional[bool]] = True
    file: UploadedFile


GeoState = Union[
    GeoIdle,
    GeoUploaded,
    GeoCheckingGeometry,
    GeoGeometryFailed,
    GeoCheckingSatellite,
    GeoSatelliteFailed,
    GeoCompliant,
]

GEO_IDLE = GeoIdle()


# ── The aggregate ───────────────────────────────────────────────────

class DeclarationDraft(_Frozen):
    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    declaration_type: DeclarationType = DeclarationType.INBOUND
    declaration_source: DeclarationSource = DeclarationSource.EXISTING
    selected_source_ids: frozenset[int] = frozenset()
    items: ItemList = Field(default_factory=ItemList.single)
    validity: Optional[ValidityPeriod] = None
    geo: GeoState = GEO_IDLE
    evidence_documents: tuple[EvidenceDocument, ...] = ()
    counterparty: Optional[Counterparty] = None
    references: ReferenceNumbers = ReferenceNumbers()
    comments: str = ""

    @property
    def kind(self) -> DeclarationKind:
        return kind_of(self.declaration_type, self.declaration_source)

    @property
    def steps(self) -> tuple[Step, ...]:
        return steps_for(self.declaration_type)
