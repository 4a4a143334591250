"""Mapping of full 61.1 customs XML documents into ``MappedDeclaration`` objects.

The customs service ships one flat root element whose children are either scalar
boxes (``ccd_07_01``, ``ccd_22_02``...) or repeated groups (``ccd_goods``,
``ccd_clients``, ``ccd_payments``...). Parsing uses a locked-down lxml parser: no
DTDs, no entity resolution, no network access.
"""

import re
from typing import Iterable, List, Optional

from lxml import etree

from core.constants import CONSIGNEE_BOX, CONSIGNOR_BOX, CONTRACT_HOLDER_BOX
from core.models import (
    Client,
    DeclarationDocument,
    GeneralPayment,
    GoodsDocument,
    GoodsPayment,
    InvoicePosition,
    MappedDeclaration,
    MappedGoods,
    MappedHeader,
    ProtocolEntry,
    Tax,
    Transport,
)
from core.xml_fields import parse_xml_number
from logger import logger

_XML_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>")
_NOT_SPECIFIED = "Не вказано"
_STATUS_LABELS = {"R": "Оформлена", "N": "Анульована", "F": "Відкликана/Відмовлена"}


def get_secure_parser() -> etree.XMLParser:
    """Return an lxml parser with DTD loading, entities and network access disabled."""
    return etree.XMLParser(resolve_entities=False, no_network=True, dtd_validation=False, load_dtd=False, huge_tree=False, recover=False)


def parse_declaration_xml(xml_string: str) -> etree._Element:
    """Parse a declaration document and return its root with namespaces stripped.

    Raises:
        etree.XMLSyntaxError: When the document is not well-formed.
    """
    # lxml refuses unicode input that still carries an encoding declaration
    text = _XML_DECLARATION_RE.sub("", xml_string, count=1)
    root = etree.fromstring(text, get_secure_parser())
    for element in root.iter():
        if isinstance(element.tag, str) and element.tag.startswith("{"):
            element.tag = etree.QName(element).localname
    return root


# region Value helpers
def _first(element: etree._Element, *tags: str) -> Optional[etree._Element]:
    for tag in tags:
        child = element.find(tag)
        if child is not None:
            return child
    return None


def _many(element: etree._Element, *tags: str) -> List[etree._Element]:
    """Repeated children for the first tag present, like ``a || b`` on a parsed object."""
    for tag in tags:
        children = element.findall(tag)
        if children:
            return children
    return []


def _node_text(node: Optional[etree._Element]) -> Optional[str]:
    if node is None:
        return None
    if len(node):
        values = [(child.text or "").strip() for child in node if len(child) == 0 and (child.text or "").strip()]
        return ", ".join(values) or None
    text = (node.text or "").strip()
    return text or None


def _raw(element: etree._Element, *tags: str) -> Optional[str]:
    """Text of the first present, non-empty tag among ``tags``."""
    for tag in tags:
        value = _node_text(element.find(tag))
        if value:
            return value
    return None


def _text(element: etree._Element, *tags: str, default: str = "---") -> str:
    return _raw(element, *tags) or default


def _num(element: etree._Element, *tags: str) -> float:
    return parse_xml_number(_raw(element, *tags)) or 0.0


def _int(value: Optional[str]) -> int:
    match = re.match(r"\s*[-+]?\d+", value or "")
    return int(match.group(0)) if match else 0


def format_customs_date(value: Optional[str]) -> str:
    """Render customs date formats as ``DD.MM.YYYY`` with an optional time part."""
    s = str(value or "")
    if re.fullmatch(r"\d{8}T\d{6}", s):
        return f"{s[6:8]}.{s[4:6]}.{s[0:4]} {s[9:11]}:{s[11:13]}:{s[13:15]}"
    if re.fullmatch(r"\d{8}", s):
        return f"{s[6:8]}.{s[4:6]}.{s[0:4]}"
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", s):
        year, month, day = s.split("-")
        return f"{day}.{month}.{year}"
    return s or "---"
# endregion


def _map_clients(ccd: etree._Element) -> List[Client]:
    return [
        Client(box=_text(c, "ccd_cl_gr"), code=_text(c, "ccd_cl_code"), name=_text(c, "ccd_cl_name"), country=_text(c, "ccd_cl_cnt"), address=_text(c, "ccd_cl_adr"))
        for c in _many(ccd, "ccd_clients", "ccd_client")
    ]


def _client_name(clients: Iterable[Client], box: str) -> str:
    for client in clients:
        if client.box == box:
            return client.name or "N/A"
    return _NOT_SPECIFIED


def _map_goods_docs(goods: etree._Element) -> List[GoodsDocument]:
    return [
        GoodsDocument(
            part=_text(d, "ccd_doc_part"),
            code=_text(d, "ccd_doc_code"),
            name=_text(d, "ccd_doc_name"),
            date_beg=format_customs_date(_raw(d, "ccd_doc_date_beg")),
            date_end=format_customs_date(_raw(d, "ccd_doc_date_end")),
        )
        for d in _many(goods, "ccd_cmn_docs", "ccd_goods_docs", "ccd_goods_doc")
    ]


def _map_invoice_positions(positions: Iterable[etree._Element], exchange_rate: float) -> List[InvoicePosition]:
    mapped: List[InvoicePosition] = []
    for ip in positions:
        sum_cur = _num(ip, "ccd_inv_sum_cur", "ccd_inv_sumcur")
        sum_uah = _num(ip, "ccd_inv_sum", "ccd_inv_sumuah", "ccd_inv_sum_uah")
        mapped.append(
            InvoicePosition(
                pos=_text(ip, "ccd_inv_pos"),
                name=_text(ip, "ccd_inv_name"),
                price=_num(ip, "ccd_inv_price"),
                sum_cur=sum_cur,
                sum_uah=sum_uah or sum_cur * (exchange_rate or 1),
                producer_name=_text(ip, "ccd_inv_prod_name", "ccd_inv_prod_name_", "ccd_inv_producer"),
            )
        )
    return mapped


def _goods_spec(goods: etree._Element, top_level_spec: List[etree._Element], goods_index: int) -> List[etree._Element]:
    own = [ip for ip in _many(goods, "ccd_inv_pos", "ccd_invpos", "ccd_inv_spec") if len(ip)]
    if own:
        return own
    wanted = str(goods_index)
    return [ip for ip in top_level_spec if _raw(ip, "ccd_32_01") == wanted or _raw(ip, "ccd_inv_g") == wanted]


def _map_goods(ccd: etree._Element, exchange_rate: float) -> List[MappedGoods]:
    top_level_spec = [ip for ip in _many(ccd, "ccd_inv_pos", "ccd_invpos", "ccd_inv_spec") if len(ip)]
    goods_list: List[MappedGoods] = []
    for position, g in enumerate(_many(ccd, "ccd_goods"), start=1):
        goods_index = _int(_raw(g, "ccd_32_01")) or position
        spec = _goods_spec(g, top_level_spec, goods_index)

        producer = _raw(g, "ccd_inv_prod_name", "ccd_inv_prod_name_", "ccd_inv_producer")
        if not producer:
            producer = ", ".join(filter(None, (_raw(ip, "ccd_inv_prod_name", "ccd_inv_prod_name_", "ccd_inv_producer") for ip in spec)))

        goods_list.append(
            MappedGoods(
                index=goods_index,
                description=_text(g, "ccd_31_01", default="Опис відсутній"),
                hs_code=_text(g, "ccd_33_01", default="N/A"),
                origin_country=_text(g, "ccd_34_01"),
                gross_weight=_num(g, "ccd_35_01"),
                net_weight=_num(g, "ccd_38_01"),
                price=_num(g, "ccd_42_01"),
                invoice_value_uah=_num(g, "ccd_42_02"),
                customs_value=_num(g, "ccd_45_01"),
                add_unit_code=_text(g, "ccd_41_01"),
                producer_name=producer or "---",
                payments=[GoodsPayment(code=_text(p, "ccd_47_code"), char=_text(p, "ccd_47_char"), amount=_num(p, "ccd_47_sum")) for p in _many(g, "ccd_goods_pay")],
                docs=_map_goods_docs(g),
                invoice_specification=_map_invoice_positions(spec, exchange_rate),
            )
        )
    return goods_list


def _map_documents(ccd: etree._Element, goods: List[MappedGoods]) -> List[DeclarationDocument]:
    documents = [
        DeclarationDocument(
            box_part=_text(d, "ccd_doc_part"),
            type=_text(d, "ccd_doc_code"),
            number=_text(d, "ccd_doc_name", "ccd_doc_nom"),
            date=format_customs_date(_raw(d, "ccd_doc_date_beg", "ccd_doc_dat")),
            expiry_date=format_customs_date(_raw(d, "ccd_doc_date_end")),
        )
        for d in _many(ccd, "ccd_cmn_docs", "ccd_cmn_doc")
    ]

    # Documents of goods item 1 are promoted to the declaration level
    first_item = next((g for g in goods if g.index == 1), None)
    for doc in first_item.docs if first_item else []:
        if any(existing.number == doc.name and existing.type == doc.code for existing in documents):
            continue
        documents.append(DeclarationDocument(box_part=doc.part, type=doc.code, number=doc.name, date=doc.date_beg, expiry_date=doc.date_end))
    return documents


def _map_payments(ccd: etree._Element) -> tuple[List[Tax], List[GeneralPayment]]:
    entries = _many(ccd, "ccd_payments", "ccd_payment")
    taxes = [
        Tax(code=_text(t, "ccd_pay_code"), base=_num(t, "ccd_pay_base"), rate=_text(t, "ccd_pay_rate", default="0"), amount=_num(t, "ccd_pay_sum"), payment_method=_text(t, "ccd_pay_sp"))
        for t in entries
        if t.find("ccd_pay_base") is not None
    ]
    general = [
        GeneralPayment(
            code=_text(t, "ccd_pay_code"),
            method=_text(t, "ccd_pay_sp"),
            amount=_num(t, "ccd_pay_sum"),
            currency=_text(t, "ccd_pay_cur"),
            bank_details=_text(t, "ccd_pay_bank"),
            date=format_customs_date(_raw(t, "ccd_48_01")),
            doc_number=_text(t, "ccd_ndoc"),
            payer=_text(t, "ccd_payer"),
        )
        for t in entries
        if any(t.find(tag) is not None for tag in ("ccd_ndoc", "ccd_payer", "ccd_pay_bank"))
    ]
    return taxes, general


def _map_header(ccd: etree._Element, clients: List[Client], transports: List[Transport]) -> MappedHeader:
    part1, part2, part3 = (_raw(ccd, f"ccd_07_0{i}") for i in (1, 2, 3))
    mrn = _raw(ccd, "MRN") or f"{part1 or ''}/{part2 or ''}/{part3 or ''}"
    raw_status = _raw(ccd, "ccd_status") or "R"
    type_text = " / ".join(_raw(ccd, f"ccd_01_0{i}") or "" for i in (1, 2, 3)).strip()
    transport_details = ", ".join(label for label in (f"{t.name} ({t.country_code})" for t in transports) if len(label) > 4)

    return MappedHeader(
        mrn="N/A" if mrn == "//" else mrn,
        type=type_text or "---",
        date=format_customs_date(_raw(ccd, "version_start")),
        raw_date=_text(ccd, "ccd_registered", "version_start"),
        customs_office=_text(ccd, "ccd_07_01"),
        consignor=_client_name(clients, CONSIGNOR_BOX),
        consignee=_client_name(clients, CONSIGNEE_BOX),
        contract_holder=_client_name(clients, CONTRACT_HOLDER_BOX),
        declarant_name=_text(ccd, "ccd_54_02"),
        delivery_terms=_text(ccd, "ccd_20_01"),
        delivery_place=_text(ccd, "ccd_20_02"),
        delivery_country_code=_text(ccd, "ccd_20_cnt"),
        total_items=_int(_raw(ccd, "ccd_05_01")),
        total_value=_num(ccd, "ccd_12_01"),
        currency=_text(ccd, "ccd_22_cur", default="UAH"),
        invoice_value=_num(ccd, "ccd_22_02"),
        invoice_currency=_text(ccd, "ccd_22_01"),
        invoice_value_uah=_num(ccd, "ccd_22_03"),
        exchange_rate=_num(ccd, "ccd_23_01"),
        status=raw_status,
        display_status=_STATUS_LABELS.get(raw_status, raw_status),
        transport_details=transport_details or _text(ccd, "ccd_21_04"),
        md_number_part1=part1 or "---",
        md_number_part2=part2 or "---",
        md_number_part3=part3 or "---",
    )


def map_xml_to_declaration(xml_string: Optional[str]) -> Optional[MappedDeclaration]:
    """Map a 61.1 declaration document.

    Args:
        xml_string: Full declaration XML (the ``data61_1`` fragment or a raw document).

    Returns:
        The mapped declaration, or None for empty input or a malformed document.
    """
    if not xml_string:
        return None

    try:
        ccd = parse_declaration_xml(xml_string)
    except (etree.XMLSyntaxError, ValueError) as exc:
        logger.warning("XML mapping failed", error=str(exc))
        return None

    clients = _map_clients(ccd)
    transports = [Transport(box=_text(t, "ccd_trn_gr"), name=_text(t, "ccd_trn_name"), country_code=_text(t, "ccd_trn_cnt")) for t in _many(ccd, "ccd_transport")]
    exchange_rate = _num(ccd, "ccd_23_01")
    goods = _map_goods(ccd, exchange_rate)
    taxes, general_payments = _map_payments(ccd)
    protocol = [
        ProtocolEntry(
            code=_text(p, "pr_code"),
            user_name=_text(p, "pr_pib", default="Митниця"),
            date=format_customs_date(_raw(p, "pr_date")),
            server_date=_text(p, "pr_srv_date", "pr_date"),
            action_name=_text(p, "proc_name", default="Дія"),
        )
        for p in _many(ccd, "ccd_proc")
    ]

    return MappedDeclaration(
        header=_map_header(ccd, clients, transports),
        goods=goods,
        clients=clients,
        transports=transports,
        documents=_map_documents(ccd, goods),
        general_payments=general_payments,
        protocol=protocol,
        taxes=taxes,
    )
