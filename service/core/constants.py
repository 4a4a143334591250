"""Shared constants for declaration extraction, export and statistics."""

SENTINEL = "---"

LIST60 = "list60"
LIST61 = "list61"
ACTIVE_TABS = (LIST60, LIST61)

EXPORT_BATCH_SIZE = 200
DETAIL_FETCH_CONCURRENCY = 5
STATISTICS_TOP_N = 10
STATISTICS_HASH_ID_LIMIT = 100

STATISTICS_CACHE_TTL_SECONDS = 60 * 60
STATISTICS_CACHE_MAX_MEMORY_ENTRIES = 50
STATISTICS_CACHE_MAX_PERSISTED_ENTRIES = 20
STATISTICS_CACHE_MIN_PERSIST_COUNT = 200
STATISTICS_CACHE_INDEX_KEY = "archive_statistics_cache_index"

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

CLEARED_STATUS_LABEL = "Оформлена"
STATUS_LABELS = {
    "CLEARED": "Оформлено",
    "PROCESSING": "В роботі",
    "REJECTED": "Помилка",
}
SUMMARY_STATUS_TO_CCD = {"CLEARED": "R", "REJECTED": "N"}

# Document codes used for per-goods document lookup
INVOICE_DOC_CODES = (380,)
CMR_DOC_CODES = (730,)
CONTRACT_DOC_CODES = (4100, 4104)

# Client "box" numbers on the declaration form
CONSIGNOR_BOX = "2"
CONSIGNEE_BOX = "8"
CONTRACT_HOLDER_BOX = "9"
CARRIER_BOX = "50"
TRANSPORT_BOX = "18"

COMPLETION_ACTION_MARKER = "Завершення митного оформлення"

BASIC_COLUMN_LABELS = {
    "mdNumber": "Номер МД",
    "registeredDate": "Дата реєстрації",
    "status": "Статус",
    "type": "Тип",
    "transport": "Транспорт",
    "consignor": "Відправник",
    "consignee": "Отримувач",
    "invoiceValue": "Фактурна вартість",
    "invoiceCurrency": "Валюта",
    "goodsCount": "Кількість товарів",
    "customsOffice": "Митниця",
    "declarantName": "Декларант",
    "guid": "GUID",
    "mrn": "MRN",
}

DEFAULT_BASIC_COLUMNS = {
    LIST60: ["mdNumber", "registeredDate", "status", "type", "transport", "guid", "mrn"],
    LIST61: [
        "mdNumber",
        "registeredDate",
        "status",
        "type",
        "consignor",
        "consignee",
        "invoiceValue",
        "invoiceCurrency",
        "goodsCount",
        "customsOffice",
        "declarantName",
        "guid",
        "mrn",
    ],
}

BASIC_COLUMN_WIDTHS = {
    LIST60: [20, 18, 15, 25, 30, 40, 20],
    LIST61: [20, 18, 15, 25, 30, 30, 18, 10, 15, 15, 30, 40, 20],
}

EXTENDED_COLUMN_LABELS = {
    "mdNumber": "Номер МД",
    "registeredDate": "Дата реєстрації",
    "status": "Статус",
    "type": "Тип декларації",
    "transport": "Транспорт",
    "consignor": "Відправник",
    "consignee": "Отримувач",
    "invoiceValue": "Фактурна вартість (вал)",
    "invoiceCurrency": "Валюта контракту",
    "goodsIndex": "№ товару",
    "goodsDescription": "Опис товару",
    "goodsHSCode": "Код УКТЗЕД",
    "goodsPrice": "Ціна товару (вал)",
    "goodsInvoiceValueUah": "Фактурна вартість грн",
    "goodsInvoiceValueUsd": "Фактурна вартість USD",
    "goodsCustomsValue": "Митна вартість грн",
    "goodsPayments": "Платежі по товару",
    "customsOffice": "Митниця",
    "declarantName": "Декларант",
    "guid": "GUID",
    "mrn": "MRN",
    "invoiceNumber": "№ Інвойсу",
    "invoiceDate": "Дата інвойсу",
    "cmrNumber": "№ CMR/Накладної",
    "cmrDate": "Дата CMR/Накладної",
    "contractNumber": "№ Контракту",
    "contractDate": "Дата контракту",
    "manufacturer": "Виробник",
    "invoiceValueCurrency": "Фактурна вартість (валюта)",
    "deliveryTermsIncoterms": "Умови поставки (Інкотермс)",
    "deliveryTermsDetails": "Місце поставки",
    "carrierName": "Перевізник",
}

# Declaration-level columns shown only on the first goods row of a declaration
MERGED_EXTENDED_COLUMNS = frozenset(
    {
        "transport",
        "invoiceValue",
        "invoiceCurrency",
        "customsOffice",
        "declarantName",
        "guid",
        "mrn",
        "deliveryTermsIncoterms",
        "deliveryTermsDetails",
        "carrierName",
    }
)

GOODS_COLUMN_LABELS = {
    "mdNumber": "Номер МД",
    "registeredDate": "Дата оформлення",
    "status": "Статус",
    "type": "Тип декларації",
    "consignor": "Відправник",
    "consignee": "Отримувач",
    "invoiceValue": "Фактурна вартість",
    "invoiceCurrency": "Валюта",
    "goodsCount": "Кількість товарів",
    "customsOffice": "Митниця",
    "declarantName": "Декларант",
    "guid": "GUID",
    "mrn": "Номер МРН",
    "invoiceNumber": "№ Інвойсу",
    "invoiceDate": "Дата інвойсу",
    "cmrNumber": "№ CMR/Накладної",
    "cmrDate": "Дата CMR/Накладної",
    "contractNumber": "№ Контракту",
    "contractDate": "Дата контракту",
    "manufacturer": "Виробник",
    "carrierName": "Перевізник",
    "deliveryTermsIncoterms": "Умови поставки (Інкотермс)",
    "deliveryTermsDetails": "Місце поставки",
    "goodsIndex": "Номер товару в МД",
    "goodsHSCode": "Код УКТЗЕД товару",
    "goodsDescription": "Опис товару (графа 31)",
    "goodsPrice": "Фактурна вартість в валюті",
    "goodsInvoiceValueUah": "Фактурна вартість в грн",
    "goodsInvoiceValueUsd": "Фактурна вартість в дол",
    "goodsCustomsValue": "Митна вартість в грн",
    "goodsPayments": "Платежі по товару",
    "transport": "Транспорт",
    "invoiceValueCurrency": "Фактурна вартість (валюта)",
}

GOODS_EXTRA_COLUMN_LABELS = [
    "ЄДРПОУ контрактотримача",
    "Назва контрактотримача",
    "Дод. од. виміру",
    "Вага брутто",
    "Вага нетто",
    "Курс дол",
    "Митна вартість в дол",
    "Митна вартість в дол за кг нетто",
]
GOODS_DEBUG_COLUMN_LABELS = ["debug_usdRateDateRaw", "debug_usdRate"]
PAYMENT_COLUMN_PREFIX = "Платіж"

NO_DATA_MESSAGE = "Немає даних для експорту"
NO_DETAILS_MESSAGE = 'Немає детальних даних для експорту. Переконайтеся, що ви на вкладці "Деталі (61.1)" та що декларації мають завантажені деталі.'
GOODS_TAB_REQUIRED_MESSAGE = 'Розширений експорт доступний лише на вкладці "Деталі (61.1)"'
NO_GOODS_DECLARATIONS_MESSAGE = "Немає декларацій з деталями для розширеного експорту"
NO_GOODS_ROWS_MESSAGE = "Немає даних по товарах для розширеного експорту"
BASIC_EXPORT_FAILED_MESSAGE = "Помилка при експорті в Excel. Спробуйте ще раз."
EXTENDED_EXPORT_FAILED_MESSAGE = "Помилка при розширеному експорті в Excel. Спробуйте ще раз."
