"""Fill in missing 61.1 detail for archive records before a goods export.

Details are fetched on a small thread pool and written back into each record's
slot by index, so the output order always matches the input order.
"""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from config import APP_BASE_URL
from core.cancellation import CancellationToken, check_cancelled
from core.constants import DETAIL_FETCH_CONCURRENCY
from core.models import ArchiveRecord, ExportProgress, MappedDeclaration
from core.payload import get_xml_61_1
from core.xml_mapper import map_xml_to_declaration
from logger import logger

DetailFetcher = Callable[[str], Optional[str]]
XmlMapper = Callable[[str], Optional[MappedDeclaration]]


class HttpDetailFetcher:
    """Fetches a declaration's stored payload from ``GET /api/declarations/<id>``."""

    def __init__(self, base_url: str = APP_BASE_URL, session: Optional[requests.Session] = None, timeout: float = 30) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def __call__(self, declaration_id: str) -> Optional[str]:
        url = f"{self._base_url}/api/declarations/{quote(declaration_id, safe='')}"
        response = self._session.get(url, headers={"Accept": "application/json"}, timeout=self._timeout)
        if not response.ok:
            logger.debug("Declaration detail request failed", declaration_id=declaration_id, status_code=response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        xml_data = data.get("xmlData") if isinstance(data, dict) else None
        return xml_data if isinstance(xml_data, str) else None


def _fetch_and_map(record: ArchiveRecord, fetch_xml: DetailFetcher, mapper: XmlMapper) -> Optional[ArchiveRecord]:
    xml61 = get_xml_61_1(fetch_xml(record.declaration.id))
    if not xml61:
        return None
    mapped = mapper(xml61)
    if mapped is None:
        return None
    return record.model_copy(update={"mapped_data": mapped})


def enrich_with_details(
    records: Sequence[ArchiveRecord],
    fetch_xml: DetailFetcher,
    *,
    concurrency: int = DETAIL_FETCH_CONCURRENCY,
    on_progress: Optional[Callable[[ExportProgress], None]] = None,
    cancel: Optional[CancellationToken] = None,
    mapper: XmlMapper = map_xml_to_declaration,
) -> List[ArchiveRecord]:
    """Fill in mapped 61.1 detail for records that do not carry goods yet.

    Fetches run on a bounded thread pool. Each result lands in the slot of its
    source record, so the output order matches ``records``. Records that already
    have goods, or whose fetch or mapping fails, are returned unchanged.

    Args:
        records: Records to enrich.
        fetch_xml: Returns the stored payload for a declaration id, or None.
        concurrency: Maximum number of simultaneous fetches.
        on_progress: Receives ``fetching_details`` updates, one per finished fetch.
        cancel: Checked between fetches; pending fetches are cancelled when tripped.
        mapper: 61.1 XML mapper.

    Raises:
        ExportAborted: When ``cancel`` is tripped.
    """
    result = list(records)
    total = len(result)
    pending_indexes = [i for i, record in enumerate(result) if not record.has_goods and record.declaration.id]
    done = total - len(pending_indexes)

    check_cancelled(cancel, "fetching_details")
    if not pending_indexes:
        return result

    executor = ThreadPoolExecutor(max_workers=max(1, concurrency))
    futures: Dict[Future, int] = {}
    try:
        for index in pending_indexes:
            futures[executor.submit(_fetch_and_map, result[index], fetch_xml, mapper)] = index

        remaining = set(futures)
        while remaining:
            check_cancelled(cancel, "fetching_details")
            finished, remaining = wait(remaining, timeout=0.2, return_when=FIRST_COMPLETED)
            for future in finished:
                index = futures[future]
                try:
                    enriched = future.result()
                    if enriched is not None:
                        result[index] = enriched
                except Exception as exc:
                    logger.warning("Declaration detail enrichment failed", declaration_id=result[index].declaration.id, error=str(exc))
                finally:
                    done += 1
                    if on_progress is not None:
                        on_progress(ExportProgress(phase="fetching_details", current=done, total=total))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    logger.info("Declaration details enriched", total=total, fetched=len(pending_indexes))
    return result
