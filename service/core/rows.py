"""Tabular row generation for the declaration exports.

Three fidelity levels share the derivation helpers:

- basic: one row per declaration with the list columns.
- extended: one row per goods item; declaration-level columns appear only on the
  first goods row of each declaration.
- goods: one row per goods item across the whole batch, with the contract holder,
  weight and USD columns and one column per payment code seen in the batch.

Every builder returns ``(headers, rows)``; rows are lists of cell values ready for
the workbook writers in ``utils.declaration_excel_export``.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from core.cancellation import CancellationToken, check_cancelled
from core.constants import (
    BASIC_COLUMN_LABELS,
    CLEARED_STATUS_LABEL,
    CMR_DOC_CODES,
    CONTRACT_DOC_CODES,
    CONTRACT_HOLDER_BOX,
    DEFAULT_BASIC_COLUMNS,
    EXTENDED_COLUMN_LABELS,
    GOODS_COLUMN_LABELS,
    GOODS_DEBUG_COLUMN_LABELS,
    GOODS_EXTRA_COLUMN_LABELS,
    INVOICE_DOC_CODES,
    LIST61,
    MERGED_EXTENDED_COLUMNS,
    PAYMENT_COLUMN_PREFIX,
    SENTINEL,
    STATUS_LABELS,
)
from core.derivation import (
    aggregate_payments,
    carrier_name,
    client_by_box,
    completion_date_raw,
    delivery_terms_details,
    find_document_info,
    format_amount_uk,
    format_date_for_export,
    format_goods_payments,
    format_registered_date,
    get_md_number,
    get_status_text,
    invoice_value_uah,
    to_usd,
    transport_label,
    transport_text,
    usd_per_kg,
)
from core.models import ArchiveRecord, ExportProgress, MappedGoods
from core.xml_fields import join_type_parts
from exceptions import ExportAborted
from logger import logger

Cell = Union[str, int, float]
Row = List[Cell]
ProgressCallback = Callable[[ExportProgress], None]
UsdRateSource = Callable[[str], float]


def resolve_columns(columns: Optional[Mapping[str, bool]], order: Optional[Sequence[str]], defaults: Iterable[str]) -> List[str]:
    """Ordered list of enabled column keys.

    Args:
        columns: Inclusion map; None enables every key in ``defaults``.
        order: Explicit key order. When omitted the inclusion map's order is used.
        defaults: Keys used when no inclusion map is given.

    Returns:
        Keys of ``order`` (or ``columns``) whose inclusion flag is truthy.
    """
    if columns is None:
        columns = {key: True for key in defaults}
    if order:
        return [key for key in order if columns.get(key)]
    return [key for key, enabled in columns.items() if enabled]


def resolve_query_columns(columns: Sequence[str], order: Sequence[str]) -> List[str]:
    """Column keys for the server export: ``order`` (or every goods column) narrowed to ``columns``."""
    keys = list(order) if order else list(GOODS_COLUMN_LABELS)
    if columns:
        wanted = set(columns)
        keys = [key for key in keys if key in wanted]
    return keys


def _project(values: Mapping[str, Cell], keys: Sequence[str]) -> Row:
    return [values.get(key, SENTINEL) for key in keys]


def _registered_raw(record: ArchiveRecord) -> Optional[str]:
    if record.extracted_data is not None and record.extracted_data.ccd_registered:
        return record.extracted_data.ccd_registered
    return record.raw_data.ccd_registered if record.raw_data is not None else None


def _extracted_type(record: ArchiveRecord) -> str:
    return join_type_parts(record.extracted_data.type_parts()) or SENTINEL


def _guid(record: ArchiveRecord) -> str:
    raw = record.raw_data
    return (raw.guid if raw is not None else None) or record.declaration.customs_id or SENTINEL


def _raw_mrn(record: ArchiveRecord) -> str:
    raw = record.raw_data
    return (raw.MRN if raw is not None else None) or record.declaration.mrn or SENTINEL


# region Basic rows
def _basic_values(record: ArchiveRecord, tab: str) -> Dict[str, Cell]:
    raw = record.raw_data
    header = record.mapped_data.header if record.mapped_data is not None else None

    if tab == LIST61 and record.extracted_data is not None and record.extracted_data.ccd_registered:
        registered = record.extracted_data.ccd_registered
    else:
        registered = raw.ccd_registered if raw is not None else None

    if tab == LIST61 and record.extracted_data is not None:
        declaration_type = _extracted_type(record)
    else:
        declaration_type = (raw.ccd_type if raw is not None else None) or SENTINEL

    return {
        "mdNumber": get_md_number(raw, record.declaration.mrn),
        "registeredDate": format_registered_date(registered),
        "status": get_status_text(raw, record.declaration.status),
        "type": declaration_type,
        "transport": transport_text(raw),
        "consignor": (header.consignor if header else None) or SENTINEL,
        "consignee": (header.consignee if header else None) or SENTINEL,
        "invoiceValue": format_amount_uk(header.invoice_value) if header and header.invoice_value else SENTINEL,
        "invoiceCurrency": (header.invoice_currency if header else None) or SENTINEL,
        "goodsCount": len(record.mapped_data.goods) if record.mapped_data is not None else 0,
        "customsOffice": (header.customs_office if header else None) or SENTINEL,
        "declarantName": (header.declarant_name if header else None) or SENTINEL,
        "guid": _guid(record),
        "mrn": _raw_mrn(record),
    }


def build_basic_rows(
    records: Sequence[ArchiveRecord],
    tab: str,
    columns: Optional[Mapping[str, bool]] = None,
    order: Optional[Sequence[str]] = None,
) -> Tuple[List[str], List[Row]]:
    """One row per declaration with the list-view columns of ``tab``."""
    if columns is None:
        columns = {key: True for key in DEFAULT_BASIC_COLUMNS[tab]}
    keys = resolve_columns(columns, order, DEFAULT_BASIC_COLUMNS[tab])
    headers = [BASIC_COLUMN_LABELS.get(key, key) for key in keys]

    rows: List[Row] = []
    for record in records:
        try:
            rows.append(_project(_basic_values(record, tab), keys))
        except Exception:
            logger.exception("Skipping declaration in basic export", declaration_id=record.declaration.id)
    return headers, rows
# endregion


# region Extended rows
def _documents(record: ArchiveRecord, goods_index: Optional[int]) -> Dict[str, Cell]:
    invoice = find_document_info(record.mapped_data, goods_index, INVOICE_DOC_CODES)
    cmr = find_document_info(record.mapped_data, goods_index, CMR_DOC_CODES)
    contract = find_document_info(record.mapped_data, goods_index, CONTRACT_DOC_CODES)
    return {
        "invoiceNumber": invoice[0],
        "invoiceDate": invoice[1],
        "cmrNumber": cmr[0],
        "cmrDate": cmr[1],
        "contractNumber": contract[0],
        "contractDate": contract[1],
    }


def _extended_declaration_values(record: ArchiveRecord) -> Dict[str, Cell]:
    mapped = record.mapped_data
    header = mapped.header
    raw = record.raw_data

    if record.extracted_data is not None:
        declaration_type = _extracted_type(record)
    else:
        declaration_type = (raw.ccd_type if raw is not None else None) or SENTINEL

    return {
        "mdNumber": get_md_number(raw, record.declaration.mrn),
        "registeredDate": format_registered_date(_registered_raw(record)),
        "status": get_status_text(raw, record.declaration.status),
        "type": declaration_type,
        "transport": transport_label(mapped),
        "consignor": header.consignor or SENTINEL,
        "consignee": header.consignee or SENTINEL,
        "invoiceValue": header.invoice_value or 0,
        "invoiceCurrency": header.invoice_currency or SENTINEL,
        "customsOffice": header.customs_office or SENTINEL,
        "declarantName": header.declarant_name or SENTINEL,
        "guid": _guid(record),
        "mrn": _raw_mrn(record),
        "carrierName": carrier_name(mapped),
        "deliveryTermsIncoterms": header.delivery_terms or SENTINEL,
        "deliveryTermsDetails": delivery_terms_details(mapped),
    }


def _extended_goods_values(record: ArchiveRecord, goods: MappedGoods, position: int, usd_rate: Optional[float]) -> Dict[str, Cell]:
    goods_index = goods.index or position + 1
    value_uah = invoice_value_uah(goods.price, record.mapped_data.header.exchange_rate)
    spec = goods.invoice_specification
    values: Dict[str, Cell] = {
        "goodsIndex": goods_index,
        "goodsDescription": goods.description or SENTINEL,
        "goodsHSCode": goods.hs_code or SENTINEL,
        "goodsPrice": goods.price or 0,
        "goodsInvoiceValueUah": value_uah,
        "goodsInvoiceValueUsd": to_usd(value_uah, usd_rate or 0),
        "goodsCustomsValue": goods.customs_value or 0,
        "goodsPayments": format_goods_payments(goods.payments),
        "manufacturer": goods.producer_name or SENTINEL,
        "invoiceValueCurrency": (spec[0].sum_cur if spec else 0) or goods.price or 0,
    }
    values.update(_documents(record, goods_index))
    return values


def build_extended_rows(
    records: Sequence[ArchiveRecord],
    columns: Mapping[str, bool],
    order: Optional[Sequence[str]] = None,
    usd_rate: Optional[float] = None,
) -> Tuple[List[str], List[Row]]:
    """One row per goods item of every record that carries mapped detail.

    Declaration-level columns in ``MERGED_EXTENDED_COLUMNS`` are blanked on every
    goods row after the first so the sheet reads like merged cells. Records without
    goods produce a single row with declaration-level documents.
    """
    keys = resolve_columns(columns, order, EXTENDED_COLUMN_LABELS)
    headers = [EXTENDED_COLUMN_LABELS.get(key, key) for key in keys]

    rows: List[Row] = []
    for record in records:
        if record.mapped_data is None:
            continue
        try:
            declaration_values = _extended_declaration_values(record)
        except Exception:
            logger.exception("Skipping declaration in extended export", declaration_id=record.declaration.id)
            continue

        if not record.mapped_data.goods:
            values = dict(declaration_values)
            values.update(_documents(record, None))
            rows.append(_project(values, keys))
            continue

        for position, goods in enumerate(record.mapped_data.goods):
            try:
                values = dict(declaration_values)
                values.update(_extended_goods_values(record, goods, position, usd_rate))
                if position > 0:
                    values.update({key: "" for key in MERGED_EXTENDED_COLUMNS})
                rows.append(_project(values, keys))
            except Exception:
                logger.exception("Skipping goods item in extended export", declaration_id=record.declaration.id, position=position)
    return headers, rows
# endregion


# region Goods rows
def collect_payment_codes(records: Iterable[ArchiveRecord]) -> List[str]:
    """Sorted union of general payment codes across ``records``."""
    codes = set()
    for record in records:
        if record.mapped_data is not None:
            codes.update(aggregate_payments(record.mapped_data.general_payments))
    return sorted(codes)


def goods_headers(keys: Sequence[str], payment_codes: Sequence[str], debug: bool = False) -> List[str]:
    headers = [GOODS_COLUMN_LABELS.get(key, key) for key in keys]
    headers += GOODS_EXTRA_COLUMN_LABELS
    if debug:
        headers += GOODS_DEBUG_COLUMN_LABELS
    headers += [f"{PAYMENT_COLUMN_PREFIX} {code}" for code in payment_codes]
    return headers


def usd_rate_date(record: ArchiveRecord) -> str:
    """Date string the USD rate of a declaration is looked up for; ``''`` when unknown."""
    header = record.mapped_data.header if record.mapped_data is not None else None
    candidates = [
        header.currency_rate_date_raw if header else None,
        header.raw_date if header else None,
        record.raw_data.ccd_registered if record.raw_data is not None else None,
        completion_date_raw(record),
    ]
    for candidate in candidates:
        value = str(candidate or "").strip()
        if value and value != SENTINEL:
            return value
    return ""


def _goods_declaration_type(record: ArchiveRecord) -> str:
    if record.extracted_data is not None:
        extracted = join_type_parts(record.extracted_data.type_parts())
        if extracted:
            return extracted
    raw = record.raw_data
    if raw is not None:
        from_raw = join_type_parts([raw.ccd_01_01, raw.ccd_01_02, raw.ccd_01_03]) or raw.ccd_type
        if from_raw:
            return from_raw
    header = record.mapped_data.header if record.mapped_data is not None else None
    return (header.type if header else None) or SENTINEL


@dataclass
class GoodsDeclarationContext:
    """Values shared by every goods row of one declaration."""

    values: Dict[str, Cell]
    holder_code: str
    holder_name: str
    usd_rate: float
    usd_rate_date: str
    payments: Dict[str, float] = field(default_factory=dict)


def goods_declaration_context(record: ArchiveRecord, rate_lookup: Optional[UsdRateSource] = None) -> GoodsDeclarationContext:
    mapped = record.mapped_data
    header = mapped.header
    raw = record.raw_data

    raw_status = (raw.ccd_status if raw is not None else None) or record.declaration.status
    status = CLEARED_STATUS_LABEL if raw_status == "R" else (STATUS_LABELS.get(record.declaration.status) or record.declaration.status or SENTINEL)

    rate_date = usd_rate_date(record)
    usd_rate = rate_lookup(rate_date) if rate_lookup is not None and rate_date else 0.0
    holder = client_by_box(mapped, CONTRACT_HOLDER_BOX)

    values: Dict[str, Cell] = {
        "mdNumber": get_md_number(raw, record.declaration.mrn),
        "registeredDate": format_date_for_export(completion_date_raw(record)),
        "status": status,
        "type": _goods_declaration_type(record),
        "transport": transport_label(mapped),
        "consignor": header.consignor or SENTINEL,
        "consignee": header.consignee or SENTINEL,
        "invoiceCurrency": header.invoice_currency or header.currency or SENTINEL,
        "goodsCount": len(mapped.goods),
        "customsOffice": header.customs_office or SENTINEL,
        "declarantName": header.declarant_name or SENTINEL,
        "guid": _guid(record),
        "mrn": record.declaration.mrn or header.mrn or (raw.MRN if raw is not None else None) or SENTINEL,
        "carrierName": carrier_name(mapped),
        "deliveryTermsIncoterms": header.delivery_terms or SENTINEL,
        "deliveryTermsDetails": delivery_terms_details(mapped),
    }
    return GoodsDeclarationContext(
        values=values,
        holder_code=(holder.code if holder else None) or SENTINEL,
        holder_name=(holder.name if holder else None) or SENTINEL,
        usd_rate=usd_rate or 0.0,
        usd_rate_date=rate_date,
        payments=aggregate_payments(mapped.general_payments),
    )


def _goods_row(
    record: ArchiveRecord,
    context: GoodsDeclarationContext,
    goods: Optional[MappedGoods],
    position: int,
    keys: Sequence[str],
    payment_codes: Sequence[str],
    debug: bool,
    cancel: Optional[CancellationToken],
) -> Row:
    header = record.mapped_data.header
    values = dict(context.values)

    if goods is None:
        values.update(_documents(record, None))
        values.update(
            {
                "invoiceValue": 0,
                "manufacturer": SENTINEL,
                "goodsIndex": "",
                "goodsHSCode": SENTINEL,
                "goodsDescription": SENTINEL,
                "goodsPrice": 0,
                "goodsInvoiceValueUah": 0,
                "goodsInvoiceValueUsd": 0,
                "goodsCustomsValue": 0,
                "goodsPayments": SENTINEL,
            }
        )
        customs_value_usd = 0.0
        per_kg = 0.0
        extra: Row = [context.holder_code, context.holder_name, SENTINEL, 0, 0]
    else:
        goods_index = goods.index or position + 1
        value_uah = invoice_value_uah(goods.price, header.exchange_rate)
        customs_value_usd = to_usd(goods.customs_value, context.usd_rate)
        per_kg = usd_per_kg(customs_value_usd, goods.net_weight)
        values.update(_documents(record, goods_index))
        values.update(
            {
                "invoiceValue": value_uah,
                "manufacturer": goods.producer_name or SENTINEL,
                "goodsIndex": goods_index,
                "goodsHSCode": goods.hs_code or SENTINEL,
                "goodsDescription": goods.description or SENTINEL,
                "goodsPrice": goods.price or 0,
                "goodsInvoiceValueUah": value_uah,
                "goodsInvoiceValueUsd": to_usd(value_uah, context.usd_rate),
                "goodsCustomsValue": goods.customs_value or 0,
                "goodsPayments": format_goods_payments(goods.payments),
                "invoiceValueCurrency": (goods.invoice_specification[0].sum_cur if goods.invoice_specification else 0) or goods.price or 0,
            }
        )
        extra = [context.holder_code, context.holder_name, goods.add_unit_code or SENTINEL, goods.gross_weight or 0, goods.net_weight or 0]

    usd_rate_cell: Cell = context.usd_rate if context.usd_rate > 0 else SENTINEL
    row = _project(values, keys) + extra + [usd_rate_cell, customs_value_usd, per_kg]
    if debug:
        row += [context.usd_rate_date or SENTINEL, usd_rate_cell]

    for code in payment_codes:
        check_cancelled(cancel, "payments")
        row.append(f"{context.payments.get(code, 0.0):.2f}")
    return row


def goods_rows_for_record(
    record: ArchiveRecord,
    keys: Sequence[str],
    payment_codes: Sequence[str],
    rate_lookup: Optional[UsdRateSource] = None,
    *,
    debug: bool = False,
    cancel: Optional[CancellationToken] = None,
) -> List[Row]:
    """Goods rows of one declaration; exactly one row when it has no goods.

    Raises:
        ExportAborted: When ``cancel`` is tripped.
    """
    if record.mapped_data is None:
        return []

    context = goods_declaration_context(record, rate_lookup)
    goods_list = record.mapped_data.goods
    if not goods_list:
        return [_goods_row(record, context, None, 0, keys, payment_codes, debug, cancel)]

    rows: List[Row] = []
    for position, goods in enumerate(goods_list):
        check_cancelled(cancel, "goods")
        try:
            rows.append(_goods_row(record, context, goods, position, keys, payment_codes, debug, cancel))
        except ExportAborted:
            raise
        except Exception:
            logger.exception("Skipping goods item in goods export", declaration_id=record.declaration.id, position=position)
    return rows


def build_goods_rows(
    records: Sequence[ArchiveRecord],
    columns: Optional[Mapping[str, bool]] = None,
    order: Optional[Sequence[str]] = None,
    rate_lookup: Optional[UsdRateSource] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel: Optional[CancellationToken] = None,
    *,
    debug: bool = False,
) -> Tuple[List[str], List[Row]]:
    """One row per goods item across ``records``, with a uniform payment column set.

    Args:
        records: Declarations with mapped detail; records without it are skipped.
        columns: Inclusion map; None includes every goods column.
        order: Explicit column order.
        rate_lookup: Callable returning the USD rate for a customs date string.
        on_progress: Receives a ``generating_rows`` update per declaration.
        cancel: Cancellation token checked at every loop head.
        debug: Append the rate-date and rate diagnostic columns.

    Returns:
        ``(headers, rows)``.

    Raises:
        ExportAborted: When ``cancel`` is tripped.
    """
    keys = resolve_columns(columns, order, GOODS_COLUMN_LABELS)
    payment_codes = collect_payment_codes(records)
    headers = goods_headers(keys, payment_codes, debug)

    rows: List[Row] = []
    total = len(records)
    for done, record in enumerate(records, start=1):
        check_cancelled(cancel, "generating_rows")
        if on_progress is not None:
            on_progress(ExportProgress(phase="generating_rows", current=done, total=total))
        try:
            rows.extend(goods_rows_for_record(record, keys, payment_codes, rate_lookup, debug=debug, cancel=cancel))
        except ExportAborted:
            raise
        except Exception:
            logger.exception("Skipping declaration in goods export", declaration_id=record.declaration.id)
    return headers, rows
# endregion
