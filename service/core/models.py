"""Pydantic models for stored declarations, the fields derived from their payloads,
mapped 61.1 detail, archive records, statistics and export progress.

Stored items use camelCase keys; models that face the API dump with camelCase aliases.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _coerce_float(v: Any) -> Any:
    """Turn DynamoDB decimals and numeric strings into floats; blanks become None."""
    if v is None or v == "":
        return None
    if isinstance(v, bool):
        return float(v)
    if isinstance(v, (int, float, Decimal)):
        return float(v)
    s = str(v).replace(" ", "").replace(",", ".").strip()
    try:
        return float(s)
    except ValueError:
        return None


class _CamelModel(BaseModel):
    """Accepts both the stored camelCase keys and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeclarationSummary(_CamelModel):
    """Denormalized per-declaration aggregates written by the sync job."""

    customs_value: Optional[float] = None
    currency: Optional[str] = None
    total_items: Optional[float] = None
    customs_office: Optional[str] = None
    declarant_name: Optional[str] = None
    sender_name: Optional[str] = None
    recipient_name: Optional[str] = None
    declaration_type: Optional[str] = None
    contract_holder: Optional[str] = None
    registered_date: Optional[datetime] = None
    invoice_value: Optional[float] = None
    invoice_currency: Optional[str] = None
    invoice_value_uah: Optional[float] = None
    exchange_rate: Optional[float] = None
    transport_details: Optional[str] = None

    @field_validator("customs_value", "total_items", "invoice_value", "invoice_value_uah", "exchange_rate", mode="before")
    def _coerce_numbers(cls, v: Any) -> Any:
        return _coerce_float(v)

    @field_validator("registered_date", mode="before")
    def _blank_date(cls, v: Any) -> Any:
        return v or None


class Declaration(_CamelModel):
    """A stored customs declaration as read from the declarations table."""

    id: str
    customs_id: Optional[str] = None
    mrn: Optional[str] = None
    status: str = ""
    xml_data: Optional[str] = None
    date: Optional[datetime] = None
    summary: Optional[DeclarationSummary] = None
    hs_codes: List[str] = Field(default_factory=list)
    company_id: Optional[str] = None

    @field_validator("hs_codes", mode="before")
    def _coerce_hs_codes(cls, v: Any) -> List[str]:
        if not v:
            return []
        codes: List[str] = []
        for entry in v:
            code = entry.get("hsCode") if isinstance(entry, dict) else entry
            if code is not None and str(code).strip():
                codes.append(str(code).strip())
        return codes

    @field_validator("date", mode="before")
    def _blank_date(cls, v: Any) -> Any:
        return v or None


class RawFields(BaseModel):
    """Flat header fields of a declaration; immutable once built."""

    model_config = ConfigDict(frozen=True)

    guid: Optional[str] = None
    MRN: Optional[str] = None
    ccd_registered: Optional[str] = None
    ccd_status: Optional[str] = None
    ccd_type: Optional[str] = None
    trn_all: Optional[Union[str, List[str]]] = None
    ccd_07_01: Optional[str] = None
    ccd_07_02: Optional[str] = None
    ccd_07_03: Optional[str] = None
    ccd_01_01: Optional[str] = None
    ccd_01_02: Optional[str] = None
    ccd_01_03: Optional[str] = None

    @field_validator("guid", "MRN", "ccd_registered", "ccd_status", "ccd_type", "ccd_07_01", "ccd_07_02", "ccd_07_03", "ccd_01_01", "ccd_01_02", "ccd_01_03", mode="before")
    def _stringify(cls, v: Any) -> Any:
        if v is None or isinstance(v, (dict, list)):
            return None
        return str(v)

    @field_validator("trn_all", mode="before")
    def _coerce_transport(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, list):
            return [str(item) for item in v if item is not None]
        return str(v)


class ExtractedFields(BaseModel):
    """Registration date and type parts read straight from the raw 61.1 XML."""

    ccd_registered: Optional[str] = None
    ccd_01_01: Optional[str] = None
    ccd_01_02: Optional[str] = None
    ccd_01_03: Optional[str] = None

    def type_parts(self) -> List[str]:
        return [part for part in (self.ccd_01_01, self.ccd_01_02, self.ccd_01_03) if part]


class GoodsDocument(BaseModel):
    part: str = "---"
    code: str = "---"
    name: str = "---"
    date_beg: str = "---"
    date_end: str = "---"


class GoodsPayment(BaseModel):
    code: str = "---"
    char: str = "---"
    amount: float = 0.0


class InvoicePosition(BaseModel):
    pos: str = "---"
    name: str = "---"
    price: float = 0.0
    sum_cur: float = 0.0
    sum_uah: float = 0.0
    producer_name: str = "---"


class MappedGoods(BaseModel):
    """One goods line item (box 32) of a 61.1 declaration."""

    index: int = 0
    description: str = "---"
    hs_code: str = "N/A"
    origin_country: str = "---"
    gross_weight: float = 0.0
    net_weight: float = 0.0
    price: float = 0.0
    invoice_value_uah: float = 0.0
    customs_value: float = 0.0
    add_unit_code: str = "---"
    producer_name: str = "---"
    payments: List[GoodsPayment] = Field(default_factory=list)
    docs: List[GoodsDocument] = Field(default_factory=list)
    invoice_specification: List[InvoicePosition] = Field(default_factory=list)


class Client(BaseModel):
    box: str = "---"
    code: str = "---"
    name: str = "---"
    country: str = "---"
    address: str = "---"


class Transport(BaseModel):
    box: str = "---"
    name: str = "---"
    country_code: str = "---"


class DeclarationDocument(BaseModel):
    box_part: str = "---"
    type: str = "---"
    number: str = "---"
    date: str = "---"
    expiry_date: str = "---"


class GeneralPayment(BaseModel):
    code: str = "---"
    method: str = "---"
    amount: float = 0.0
    currency: str = "---"
    bank_details: str = "---"
    date: str = "---"
    doc_number: str = "---"
    payer: str = "---"


class Tax(BaseModel):
    code: str = "---"
    base: float = 0.0
    rate: str = "0"
    amount: float = 0.0
    payment_method: str = "---"


class ProtocolEntry(BaseModel):
    code: str = "---"
    user_name: str = "---"
    date: str = "---"
    server_date: str = "---"
    action_name: str = "---"


class MappedHeader(BaseModel):
    """Declaration-level fields of a mapped 61.1 document."""

    mrn: Optional[str] = None
    type: Optional[str] = None
    date: Optional[str] = None
    raw_date: Optional[str] = None
    currency_rate_date_raw: Optional[str] = None
    customs_office: Optional[str] = None
    consignor: Optional[str] = None
    consignee: Optional[str] = None
    contract_holder: Optional[str] = None
    declarant_name: Optional[str] = None
    delivery_terms: Optional[str] = None
    delivery_place: Optional[str] = None
    delivery_country_code: Optional[str] = None
    total_items: float = 0
    total_value: float = 0.0
    currency: Optional[str] = None
    invoice_value: float = 0.0
    invoice_currency: Optional[str] = None
    invoice_value_uah: float = 0.0
    exchange_rate: float = 0.0
    status: Optional[str] = None
    display_status: Optional[str] = None
    transport_details: Optional[str] = None
    md_number_part1: Optional[str] = None
    md_number_part2: Optional[str] = None
    md_number_part3: Optional[str] = None

    @field_validator("total_items", "total_value", "invoice_value", "invoice_value_uah", "exchange_rate", mode="before")
    def _coerce_numbers(cls, v: Any) -> Any:
        coerced = _coerce_float(v)
        return 0.0 if coerced is None else coerced


class MappedDeclaration(BaseModel):
    header: MappedHeader = Field(default_factory=MappedHeader)
    goods: List[MappedGoods] = Field(default_factory=list)
    clients: List[Client] = Field(default_factory=list)
    transports: List[Transport] = Field(default_factory=list)
    documents: List[DeclarationDocument] = Field(default_factory=list)
    general_payments: List[GeneralPayment] = Field(default_factory=list)
    protocol: List[ProtocolEntry] = Field(default_factory=list)
    taxes: List[Tax] = Field(default_factory=list)


class DetailResult(BaseModel):
    mapped: Optional[MappedDeclaration] = None
    extracted: ExtractedFields = Field(default_factory=ExtractedFields)


class ArchiveRecord(BaseModel):
    """A declaration together with everything derived from its payload."""

    declaration: Declaration
    raw_data: Optional[RawFields] = None
    mapped_data: Optional[MappedDeclaration] = None
    extracted_data: Optional[ExtractedFields] = None

    @property
    def has_goods(self) -> bool:
        return bool(self.mapped_data and self.mapped_data.goods)


class GroupTotals(_CamelModel):
    count: int = 0
    total_value: float = 0.0


class NamedGroup(GroupTotals):
    name: str


class CodeGroup(GroupTotals):
    code: str


class TypeGroup(GroupTotals):
    type: str


class OfficeGroup(GroupTotals):
    office: str


class Statistics(_CamelModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=lambda: {"CLEARED": 0, "PROCESSING": 0, "REJECTED": 0})
    total_customs_value: float = 0.0
    total_invoice_value: float = 0.0
    total_items: float = 0
    top_consignors: List[NamedGroup] = Field(default_factory=list)
    top_consignees: List[NamedGroup] = Field(default_factory=list)
    top_contract_holders: List[NamedGroup] = Field(default_factory=list)
    top_hs_codes: List[CodeGroup] = Field(default_factory=list, alias="topHSCodes")
    top_declaration_types: List[TypeGroup] = Field(default_factory=list)
    top_customs_offices: List[OfficeGroup] = Field(default_factory=list)


class ExportProgress(BaseModel):
    phase: Literal["fetching_details", "generating_rows", "writing_file"]
    current: int
    total: int
