"""Display-value derivations shared by the exports, the filters and the statistics.

Every function here is pure. Missing data renders as ``SENTINEL`` (``'---'``) or
``0``, never as an empty string, None or a non-finite number.
"""

import math
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from core.constants import CARRIER_BOX, CLEARED_STATUS_LABEL, COMPLETION_ACTION_MARKER, SENTINEL, STATUS_LABELS, TRANSPORT_BOX
from core.models import ArchiveRecord, Client, GeneralPayment, GoodsPayment, MappedDeclaration, RawFields

_CUSTOMS_TIMESTAMP_RE = re.compile(r"(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})")
_ALREADY_DECODED_RE = re.compile(r"^[А-ЯЁа-яёІіЇїЄєҐґ\s\d]+$")
_NBSP = "\u00a0"

# Windows-1251 bytes 0x80-0xBF; 0xC0-0xFF are the contiguous А-Я, а-я ranges
_CP1251_HIGH = (
    "ЂЃ‚ѓ„…†‡€‰Љ‹ЊЌЋЏ"
    'ђ‘’""•–— ™љ›њќћџ'
    " ЁёЂђЄєЇїЉљЊњЌќЋ"
    "ћЏџ№Ђђ‚ѓ„…†‡€‰Љ‹"
)
CP1251_TABLE: Dict[int, str] = {0x80 + i: ch for i, ch in enumerate(_CP1251_HIGH)}
CP1251_TABLE.update({0xC0 + i: chr(ord("А") + i) for i in range(64)})


# region Identity and status
def get_md_number(raw: Optional[RawFields], mrn: Optional[str]) -> str:
    """Return the declaration number: raw MRN, then ``mrn``, then the three-part MD number."""
    if raw is not None and raw.MRN:
        return raw.MRN
    if mrn:
        return mrn
    if raw is not None and raw.ccd_07_01 and raw.ccd_07_02 and raw.ccd_07_03:
        return f"{raw.ccd_07_01} / {raw.ccd_07_02} / {str(raw.ccd_07_03).zfill(6)}"
    return SENTINEL


def get_status_text(raw: Optional[RawFields], doc_status: str) -> str:
    status = (raw.ccd_status if raw is not None else None) or doc_status
    if status == "R":
        return CLEARED_STATUS_LABEL
    return STATUS_LABELS.get(doc_status) or status or SENTINEL
# endregion


# region Dates
def _locale_datetime(value: datetime) -> str:
    """``uk-UA`` locale rendering: ``DD.MM.YYYY, HH:MM:SS``."""
    return value.strftime("%d.%m.%Y, %H:%M:%S")


def format_registered_date(value: Optional[str]) -> str:
    """Format a customs ``YYYYMMDDTHHMMSS`` timestamp for display.

    Unmatched input is returned unchanged and missing input renders ``'---'``.
    """
    if not value:
        return SENTINEL
    match = _CUSTOMS_TIMESTAMP_RE.search(value)
    if not match:
        return value
    year, month, day, hour, minute, second = match.groups()
    return f"{day}.{month}.{year}, {hour}:{minute}:{second}"


def format_date_for_export(value: Union[str, datetime, None]) -> str:
    """Like ``format_registered_date`` but also accepts datetimes and ISO strings."""
    if not value:
        return SENTINEL
    if isinstance(value, datetime):
        return _locale_datetime(value)
    s = str(value)
    if _CUSTOMS_TIMESTAMP_RE.search(s):
        return format_registered_date(s)
    try:
        return _locale_datetime(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        return s


def completion_date_raw(record: ArchiveRecord) -> Optional[str]:
    """Raw timestamp a declaration was cleared at.

    The protocol entry marking the end of customs clearance wins. Then the extracted
    registration date, the header rate date and finally the raw ``ccd_registered``.
    """
    mapped = record.mapped_data
    if mapped is not None:
        for entry in mapped.protocol:
            if COMPLETION_ACTION_MARKER in (entry.action_name or "") and entry.server_date not in (None, "", SENTINEL):
                return entry.server_date

    if record.extracted_data is not None and record.extracted_data.ccd_registered:
        return record.extracted_data.ccd_registered

    if mapped is not None:
        header_date = mapped.header.currency_rate_date_raw or mapped.header.raw_date
        if header_date and header_date != SENTINEL:
            return header_date

    if record.raw_data is not None and record.raw_data.ccd_registered:
        return record.raw_data.ccd_registered
    return None
# endregion


# region Text
def decode_legacy_text(text: Optional[str]) -> str:
    """Repair Cyrillic stored as Windows-1251 bytes but read back one byte per character.

    Text that already consists of Cyrillic letters, digits and whitespace is returned
    unchanged. Never raises; unexpected failures return the input.

    Example:
        ``decode_legacy_text("\\xc7\\xcc\\xc5")`` returns ``"ЗМЕ"``.
    """
    if not text:
        return SENTINEL
    if _ALREADY_DECODED_RE.match(text):
        return text
    try:
        decoded: List[str] = []
        for char in text:
            byte = ord(char)
            if byte > 255:
                byte &= 0xFF
            decoded.append(chr(byte) if byte < 128 else CP1251_TABLE.get(byte, chr(byte)))
        return "".join(decoded)
    except (TypeError, ValueError):
        return text


def transport_text(raw: Optional[RawFields]) -> str:
    """``trn_all`` as display text: lists are comma-joined."""
    trn_all = raw.trn_all if raw is not None else None
    if isinstance(trn_all, list):
        return ", ".join(trn_all) or SENTINEL
    if isinstance(trn_all, str) and trn_all.strip():
        return trn_all.strip()
    return SENTINEL


def transport_label(mapped: Optional[MappedDeclaration]) -> str:
    """Names of the box-18 vehicles joined by ``/``."""
    if mapped is None:
        return SENTINEL
    names = [t.name for t in mapped.transports if t.box == TRANSPORT_BOX and t.name and t.name != SENTINEL]
    return "/".join(names) or SENTINEL


def client_by_box(mapped: Optional[MappedDeclaration], box: str) -> Optional[Client]:
    if mapped is None:
        return None
    return next((c for c in mapped.clients if c.box == box), None)


def carrier_name(mapped: Optional[MappedDeclaration]) -> str:
    carrier = client_by_box(mapped, CARRIER_BOX)
    return carrier.name if carrier is not None and carrier.name else SENTINEL


def delivery_terms_details(mapped: Optional[MappedDeclaration]) -> str:
    if mapped is None:
        return SENTINEL
    header = mapped.header
    return f"{header.delivery_place or ''} {header.delivery_country_code or ''}".strip() or SENTINEL
# endregion


# region Documents
def find_document_info(mapped: Optional[MappedDeclaration], goods_index: Optional[int], codes: Iterable[int]) -> Tuple[str, str]:
    """Find a document by code, first on a goods item then on the declaration.

    Args:
        mapped: Mapped declaration to search.
        goods_index: Box 32 number of the goods item, or None for declaration level.
        codes: Document codes, e.g. 380 for invoices.

    Returns:
        ``(number, date)``, each defaulting to ``'---'``.
    """
    if mapped is None:
        return SENTINEL, SENTINEL
    wanted = {str(code) for code in codes}

    if goods_index is not None:
        goods = next((g for position, g in enumerate(mapped.goods, start=1) if (g.index or 0) == goods_index or position == goods_index), None)
        if goods is not None:
            doc = next((d for d in goods.docs if str(d.code) in wanted), None)
            if doc is not None:
                return doc.name or SENTINEL, doc.date_beg or SENTINEL

    document = next((d for d in mapped.documents if str(d.type) in wanted), None)
    if document is not None:
        return document.number or SENTINEL, document.date or SENTINEL
    return SENTINEL, SENTINEL
# endregion


# region Money
def _finite(value: object) -> float:
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def invoice_value_uah(price: float, exchange_rate: float) -> float:
    return _finite(price) * _finite(exchange_rate)


def to_usd(value_uah: float, usd_rate: float) -> float:
    usd_rate = _finite(usd_rate)
    return _finite(value_uah) / usd_rate if usd_rate > 0 else 0.0


def usd_per_kg(value_usd: float, net_weight: float) -> float:
    net_weight = _finite(net_weight)
    return _finite(value_usd) / net_weight if net_weight > 0 else 0.0


def format_amount_uk(value: float, max_fraction_digits: int = 3) -> str:
    """Format a number the way ``toLocaleString('uk-UA')`` does.

    Thousands are grouped with a no-break space, the decimal separator is a comma
    and trailing fractional zeros are dropped.
    """
    number = Decimal(repr(_finite(value))).quantize(Decimal(1).scaleb(-max_fraction_digits), rounding=ROUND_HALF_UP)
    sign = "-" if number < 0 else ""
    whole, _, fraction = f"{abs(number):f}".partition(".")
    grouped = f"{int(whole):,}".replace(",", _NBSP)
    fraction = fraction.rstrip("0")
    return f"{sign}{grouped},{fraction}" if fraction else f"{sign}{grouped}"


def aggregate_payments(payments: Iterable[Union[GoodsPayment, GeneralPayment]], exclude_sentinel: bool = True) -> Dict[str, float]:
    """Sum payment amounts per code, keeping first-seen code order."""
    totals: Dict[str, float] = {}
    for payment in payments:
        code = str(payment.code or "").strip()
        if not code or (exclude_sentinel and code == SENTINEL):
            continue
        totals[code] = totals.get(code, 0.0) + _finite(payment.amount)
    return totals


def format_goods_payments(payments: Sequence[GoodsPayment]) -> str:
    """Render goods payments as ``"code char: amount"`` joined by ``"; "``."""
    if not payments:
        return SENTINEL

    chars: Dict[str, str] = {}
    for payment in payments:
        chars.setdefault(str(payment.code or "").strip(), str(payment.char or "").strip())

    totals = aggregate_payments(payments, exclude_sentinel=False)
    parts = [f"{code} {chars.get(code, '')}: {format_amount_uk(amount)}".strip() for code, amount in totals.items()]
    return "; ".join(parts) or SENTINEL
# endregion
