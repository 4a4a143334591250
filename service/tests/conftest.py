"""
Shared pytest setup for unit tests.

We stub the global ``config`` module so imports do not build boto3 sessions or
DynamoDB tables (agents do not have AWS profile etc). Repository tests swap the
table attribute for an in-memory double instead.
"""

import json
import sys
import types
from typing import Any, Callable, Optional

import pytest

fake_config = types.ModuleType("config")
fake_config.STAGE = "test"
fake_config.AWS_REGION = "eu-west-1"
fake_config.NBU_API_URL = "https://nbu.test/exchange"
fake_config.NBU_TIMEOUT_SECONDS = 1.0
fake_config.STATISTICS_CACHE_TYPE = "SimpleCache"
fake_config.FLASK_SECRET_KEY = "test-secret"
fake_config.APP_BASE_URL = "http://localhost:8080"
fake_config.declarations_table = None
fake_config.companies_table = None
sys.modules["config"] = fake_config


SAMPLE_XML_61 = """<?xml version="1.0" encoding="windows-1251"?>
<ccd>
  <guid>GUID-61-1</guid>
  <MRN>24UA100000000001A1</MRN>
  <ccd_07_01>UA100100</ccd_07_01>
  <ccd_07_02>2024</ccd_07_02>
  <ccd_07_03>123</ccd_07_03>
  <ccd_01_01>ІМ</ccd_01_01>
  <ccd_01_02>40</ccd_01_02>
  <ccd_01_03>ДЕ</ccd_01_03>
  <ccd_registered>20240115T103000</ccd_registered>
  <ccd_status>R</ccd_status>
  <ccd_05_01>2</ccd_05_01>
  <ccd_12_01>50000</ccd_12_01>
  <ccd_20_01>FCA</ccd_20_01>
  <ccd_20_02>Warsaw</ccd_20_02>
  <ccd_20_cnt>PL</ccd_20_cnt>
  <ccd_22_01>USD</ccd_22_01>
  <ccd_22_02>1200.50</ccd_22_02>
  <ccd_23_01>40</ccd_23_01>
  <ccd_54_02>Петренко</ccd_54_02>
  <ccd_clients><ccd_cl_gr>2</ccd_cl_gr><ccd_cl_code>111</ccd_cl_code><ccd_cl_name>Sender GmbH</ccd_cl_name></ccd_clients>
  <ccd_clients><ccd_cl_gr>8</ccd_cl_gr><ccd_cl_code>222</ccd_cl_code><ccd_cl_name>ТОВ Отримувач</ccd_cl_name></ccd_clients>
  <ccd_clients><ccd_cl_gr>9</ccd_cl_gr><ccd_cl_code>12345678</ccd_cl_code><ccd_cl_name>ТОВ Контракт</ccd_cl_name></ccd_clients>
  <ccd_clients><ccd_cl_gr>50</ccd_cl_gr><ccd_cl_name>Carrier LLC</ccd_cl_name></ccd_clients>
  <ccd_transport><ccd_trn_gr>18</ccd_trn_gr><ccd_trn_name>AA1234BB</ccd_trn_name><ccd_trn_cnt>UA</ccd_trn_cnt></ccd_transport>
  <ccd_transport><ccd_trn_gr>18</ccd_trn_gr><ccd_trn_name>XX5678</ccd_trn_name><ccd_trn_cnt>UA</ccd_trn_cnt></ccd_transport>
  <ccd_goods>
    <ccd_32_01>1</ccd_32_01>
    <ccd_31_01>Widgets</ccd_31_01>
    <ccd_33_01>8471300000</ccd_33_01>
    <ccd_35_01>110.5</ccd_35_01>
    <ccd_38_01>100</ccd_38_01>
    <ccd_41_01>796</ccd_41_01>
    <ccd_42_01>1000</ccd_42_01>
    <ccd_42_02>40000</ccd_42_02>
    <ccd_45_01>40000</ccd_45_01>
    <ccd_goods_pay><ccd_47_code>020</ccd_47_code><ccd_47_char>1</ccd_47_char><ccd_47_sum>4000</ccd_47_sum></ccd_goods_pay>
    <ccd_goods_pay><ccd_47_code>028</ccd_47_code><ccd_47_char>1</ccd_47_char><ccd_47_sum>8800</ccd_47_sum></ccd_goods_pay>
    <ccd_cmn_docs><ccd_doc_code>380</ccd_doc_code><ccd_doc_name>INV-1</ccd_doc_name><ccd_doc_date_beg>20240110</ccd_doc_date_beg></ccd_cmn_docs>
  </ccd_goods>
  <ccd_goods>
    <ccd_32_01>2</ccd_32_01>
    <ccd_31_01>Gadgets</ccd_31_01>
    <ccd_33_01>8517620000</ccd_33_01>
    <ccd_38_01>0</ccd_38_01>
    <ccd_42_01>200.5</ccd_42_01>
    <ccd_45_01>10000</ccd_45_01>
    <ccd_cmn_docs><ccd_doc_code>380</ccd_doc_code><ccd_doc_name>INV-2</ccd_doc_name><ccd_doc_date_beg>20240111</ccd_doc_date_beg></ccd_cmn_docs>
  </ccd_goods>
  <ccd_cmn_docs><ccd_doc_code>4104</ccd_doc_code><ccd_doc_name>CONTRACT-7</ccd_doc_name><ccd_doc_date_beg>20230101</ccd_doc_date_beg></ccd_cmn_docs>
  <ccd_payments><ccd_pay_code>020</ccd_pay_code><ccd_pay_sp>ГР</ccd_pay_sp><ccd_pay_sum>4000</ccd_pay_sum><ccd_ndoc>1</ccd_ndoc></ccd_payments>
  <ccd_payments><ccd_pay_code>028</ccd_pay_code><ccd_pay_sum>8800</ccd_pay_sum><ccd_ndoc>2</ccd_ndoc></ccd_payments>
  <ccd_payments><ccd_pay_code>028</ccd_pay_code><ccd_pay_sum>1.5</ccd_pay_sum><ccd_payer>Payer</ccd_payer></ccd_payments>
  <ccd_proc><proc_name>Завершення митного оформлення</proc_name><pr_srv_date>20240116T090000</pr_srv_date></ccd_proc>
</ccd>
"""

SAMPLE_DATA_60 = {
    "guid": "GUID-60-1",
    "MRN": "24UA100000000001A1",
    "ccd_registered": "20240115T103000",
    "ccd_status": "R",
    "ccd_type": "ІМ 40 ДЕ",
    "trn_all": ["AA1234BB", "XX5678"],
    "ccd_07_01": "UA100100",
    "ccd_07_02": "2024",
    "ccd_07_03": "123",
    "ccd_01_01": "ІМ",
    "ccd_01_02": "40",
    "ccd_01_03": "ДЕ",
}


@pytest.fixture
def sample_xml() -> str:
    return SAMPLE_XML_61


@pytest.fixture
def json_payload() -> str:
    """Stored JSON envelope carrying both the 60.1 and 61.1 sections."""
    return json.dumps({"data60_1": SAMPLE_DATA_60, "data61_1": SAMPLE_XML_61}, ensure_ascii=False)


@pytest.fixture
def make_declaration() -> Callable[..., Any]:
    """Factory for ``Declaration`` models with sensible defaults."""
    from core.models import Declaration

    def _make(declaration_id: str = "decl-1", xml_data: Optional[str] = None, **overrides: Any) -> Declaration:
        data = {"id": declaration_id, "status": "CLEARED", "xmlData": xml_data, "companyId": "company-1"}
        data.update(overrides)
        return Declaration.model_validate(data)

    return _make
