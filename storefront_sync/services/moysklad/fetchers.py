"""
MoySklad 페이지네이션 수집기.

limit/offset 루프로 전체 목록을 메모리에 모읍니다.
종료 조건: 짧은 페이지(< limit) 또는 누적 건수가 서버 meta.size에 도달.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Protocol

import httpx

from storefront_sync.exceptions import UpstreamFetchError
from storefront_sync.services.moysklad_utils import (
    PageStats,
    RemoteCategory,
    RemoteProduct,
    RemoteStockEntry,
)

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    def __call__(self, limit: int, offset: int) -> tuple[int, dict[str, Any]]: ...


def _call(fetch: Callable[..., tuple[int, dict[str, Any]]], endpoint: str, *args: Any) -> tuple[int, dict[str, Any]]:
    try:
        return fetch(*args)
    except httpx.HTTPError as e:
        raise UpstreamFetchError(f"MoySklad request failed: {e}", url=endpoint) from e


def _raise_for_status(status_code: int, payload: dict[str, Any], endpoint: str) -> None:
    if 200 <= status_code < 300:
        return
    body = payload.get("_raw_text") if "_raw_text" in payload else str(payload)
    raise UpstreamFetchError(
        f"MoySklad error: {status_code} {body}",
        status_code=status_code,
        url=endpoint,
        response_body=body,
    )


def paginate(
    fetch_page: PageFetcher,
    limit: int,
    endpoint: str = "",
    on_page: Optional[Callable[[PageStats], None]] = None,
) -> list[dict[str, Any]]:
    """
    전체 페이지를 순차 수집합니다.

    - 페이지 상한 없음 (종료는 짧은 페이지 또는 meta.size 도달)
    - non-2xx 응답은 즉시 UpstreamFetchError. 이미 기록된 진행률은 유지됨
    """
    rows: list[dict[str, Any]] = []
    offset = 0
    page = 1

    while True:
        request_start = time.time()
        status_code, payload = _call(fetch_page, endpoint, limit, offset)
        logger.debug(
            f"[MOYSKLAD] {endpoint} page {page}: HTTP {status_code} ({int((time.time() - request_start) * 1000)} ms)"
        )
        _raise_for_status(status_code, payload, endpoint)

        page_rows = payload.get("rows")
        page_rows = page_rows if isinstance(page_rows, list) else []
        rows.extend(page_rows)

        total = (payload.get("meta") or {}).get("size")
        total = total if isinstance(total, int) and total > 0 else 0

        if on_page is not None:
            on_page(PageStats(page=page, fetched=len(rows), total=total))

        if len(page_rows) < limit:
            break
        if total > 0 and len(rows) >= total:
            break

        offset += limit
        page += 1

    logger.info(f"[MOYSKLAD] {endpoint}: fetched {len(rows)} rows in {page} page(s)")
    return rows


def fetch_categories(
    client: Any,
    limit: int,
    on_page: Optional[Callable[[PageStats], None]] = None,
) -> list[RemoteCategory]:
    rows = paginate(client.get_product_folders, limit, endpoint="/entity/productfolder", on_page=on_page)
    return [RemoteCategory.from_payload(row) for row in rows]


def fetch_products(
    client: Any,
    limit: int,
    on_page: Optional[Callable[[PageStats], None]] = None,
) -> list[RemoteProduct]:
    rows = paginate(client.get_products, limit, endpoint="/entity/product", on_page=on_page)
    return [RemoteProduct.from_payload(row) for row in rows]


def fetch_stock(client: Any) -> dict[str, int]:
    """현재 재고 리포트를 assortmentId → 수량 맵으로 변환"""
    status_code, payload = _call(client.get_current_stock, "/report/stock/all/current")
    _raise_for_status(status_code, payload, "/report/stock/all/current")

    # 리포트는 평평한 배열({"_raw": [...]}) 또는 {"rows": [...]} 둘 다 올 수 있음
    rows = payload.get("_raw")
    if not isinstance(rows, list):
        rows = payload.get("rows")
    if not isinstance(rows, list):
        rows = []

    stock_by_id: dict[str, int] = {}
    for row in rows:
        entry = RemoteStockEntry.from_payload(row)
        if entry.assortment_id:
            stock_by_id[entry.assortment_id] = entry.stock

    logger.info(f"[MOYSKLAD] stock report: {len(stock_by_id)} items")
    return stock_by_id
