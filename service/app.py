import os
import urllib.parse
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from flask import Flask, Response, jsonify, request
from flask_caching import Cache
from flask_session import Session

import cache_provider
from company_repository import CompanyRepository
from config import FLASK_SECRET_KEY, STATISTICS_CACHE_TYPE
from core.archive_data import build_archive_records, record_from_61_1
from core.constants import ACTIVE_TABS, LIST60, XLSX_MIMETYPE
from core.filtering import DeclarationQuery, FilterOptions, filter_declarations_60, sort_records
from core.models import ArchiveRecord
from core.rows import build_basic_rows, collect_payment_codes, goods_headers, goods_rows_for_record, resolve_query_columns
from core.statistics import StatisticsCache, compute_statistics
from declaration_repository import DeclarationRepository
from exceptions import CompanyAccessError, DeclarationNotFoundError
from logger import logger
from utils.auth import (
    active_company_required,
    filter_allowed_company_ids,
    get_accessible_company_ids,
    get_active_company_id,
    login_required,
    parse_company_ids,
    route_handler_logging,
)
from utils.declaration_excel_export import StreamingWorkbookWriter, goods_export_filename
from utils.exchange_rates import NbuRateClient, RateLookup

app = Flask(__name__)
app.secret_key = FLASK_SECRET_KEY or os.urandom(16)

os.makedirs(app.instance_path, exist_ok=True)
session_dir = os.path.join(app.instance_path, "flask_session")
os.makedirs(session_dir, exist_ok=True)
app.config.update(
    SESSION_TYPE="filesystem",
    SESSION_FILE_DIR=session_dir,
    SESSION_PERMANENT=False,
    SESSION_USE_SIGNER=True,
)
Session(app)

cache = Cache(app, config={"CACHE_TYPE": STATISTICS_CACHE_TYPE, "CACHE_DEFAULT_TIMEOUT": 0})
cache_provider.set_cache(cache)

# One statistics cache per process, shared by every request
statistics_cache = StatisticsCache(cache)


@app.errorhandler(CompanyAccessError)
def handle_company_access_error(exc: CompanyAccessError) -> Response:
    logger.warning("Company access denied", company_ids=exc.company_ids)
    return Response(str(exc), status=403, mimetype="text/plain")


@app.errorhandler(DeclarationNotFoundError)
def handle_declaration_not_found(exc: DeclarationNotFoundError) -> Response:
    logger.info("Declaration not found", declaration_id=exc.declaration_id)
    return jsonify({"error": "Not found"}), 404


def _split_param(name: str) -> List[str]:
    return parse_company_ids(request.args.getlist(name))


def _records(declarations) -> Iterator[ArchiveRecord]:
    for declaration in declarations:
        record = record_from_61_1(declaration)
        if record is not None:
            yield record


def _stream_goods_export(query: DeclarationQuery, keys: List[str], debug: bool) -> Iterator[bytes]:
    """Two passes over the matching declarations: payment codes first, then rows."""
    payment_codes: set[str] = set()
    for batch in DeclarationRepository.iter_batches(query):
        payment_codes.update(collect_payment_codes(_records(batch)))
    codes = sorted(payment_codes)

    rate_lookup = RateLookup(NbuRateClient())
    writer = StreamingWorkbookWriter()
    writer.write_header(goods_headers(keys, codes, debug))

    declarations = 0
    for batch in DeclarationRepository.iter_batches(query):
        for record in _records(batch):
            declarations += 1
            try:
                for row in goods_rows_for_record(record, keys, codes, rate_lookup, debug=debug):
                    writer.append(row)
            except Exception:
                logger.exception("Skipping declaration in streamed export", declaration_id=record.declaration.id)

    logger.info("Streamed export built", declarations=declarations, rows=writer.row_count, payment_codes=len(codes), rates=len(rate_lookup))
    yield from writer.chunks()


@app.route("/api/archive/export-extended", methods=["GET"])
@login_required
@active_company_required
@route_handler_logging
def export_extended() -> Response:
    active_company_id = get_active_company_id()

    requested_ids = _split_param("companyIds")
    if requested_ids:
        company_ids = filter_allowed_company_ids(requested_ids)
        if not company_ids:
            raise CompanyAccessError("Forbidden", requested_ids)
    else:
        company_ids = [active_company_id]

    query = DeclarationQuery.from_args(request.args, company_ids, CompanyRepository.show_ee_declarations(active_company_id))
    keys = resolve_query_columns(_split_param("columns"), _split_param("columnOrder"))
    debug = request.args.get("debug") == "1"

    filename = goods_export_filename(datetime.now(timezone.utc).date())
    logger.info("Starting streamed export", company_ids=company_ids, columns=len(keys), debug=debug)

    response = Response(_stream_goods_export(query, keys, debug), mimetype=XLSX_MIMETYPE)
    response.headers["Content-Disposition"] = f"attachment; filename*=UTF-8''{urllib.parse.quote(filename)}"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.route("/api/declarations/<declaration_id>", methods=["GET"])
@login_required
def get_declaration(declaration_id: str) -> Response:
    declaration = DeclarationRepository.find_in_companies(declaration_id, get_accessible_company_ids())
    if declaration is None:
        raise DeclarationNotFoundError(declaration_id)
    return jsonify({"id": declaration.id, "xmlData": declaration.xml_data})


def _filtered_archive_records(tab: str) -> List[ArchiveRecord]:
    """Active company's records for ``tab`` narrowed by the list filters in the query string."""
    company_id: Optional[str] = get_active_company_id()
    records = build_archive_records(DeclarationRepository.list_for_company(company_id), tab)
    filtered = filter_declarations_60(records, FilterOptions.from_args(request.args))
    logger.info("Archive records filtered", company_id=company_id, tab=tab, total=len(records), matched=len(filtered))
    return filtered


@app.route("/api/archive/declarations", methods=["GET"])
@login_required
@active_company_required
@route_handler_logging
def archive_declarations() -> Response:
    tab = request.args.get("tab", LIST60)
    if tab not in ACTIVE_TABS:
        return jsonify({"error": f"Unknown tab: {tab}"}), 400

    records = sort_records(_filtered_archive_records(tab), tab, request.args.get("sortColumn"), request.args.get("sortDirection", "asc"))
    headers, rows = build_basic_rows(records, tab)
    return jsonify({"headers": headers, "rows": rows, "total": len(rows)})


@app.route("/api/archive/statistics", methods=["GET"])
@login_required
@active_company_required
@route_handler_logging
def archive_statistics() -> Response:
    tab = request.args.get("tab", LIST60)
    if tab not in ACTIVE_TABS:
        return jsonify({"error": f"Unknown tab: {tab}"}), 400

    stats = compute_statistics(_filtered_archive_records(tab), tab, cache=statistics_cache)
    return jsonify(stats.model_dump(by_alias=True))


if __name__ == "__main__":
    app.run(debug=True, port=8080, use_reloader=False, threaded=True)
