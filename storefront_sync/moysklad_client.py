from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront_sync.settings import settings

logger = logging.getLogger(__name__)


class MoySkladRateLimited(RuntimeError):
    """HTTP 429. tenacity 재시도 대상."""


class MoySkladClient:
    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._token = token
        self._base_url = (base_url or settings.moysklad_base_url).rstrip("/")
        self._timeout = httpx.Timeout(timeout or settings.moysklad_http_timeout, connect=10.0)
        self._transport = transport

    def url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    @retry(
        stop=stop_after_attempt(max(1, settings.moysklad_max_attempts)),
        wait=wait_exponential(multiplier=1, min=1, max=settings.moysklad_retry_max_wait),
        retry=retry_if_exception_type((httpx.TransportError, MoySkladRateLimited)),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"[MOYSKLAD] 재시도 중... ({retry_state.attempt_number}회째): {retry_state.outcome.exception()}"
        ),
    )
    def _send(self, url: str, params: dict[str, Any] | None) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json;charset=utf-8",
        }
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            resp = client.get(url, params=params, headers=headers)

        if resp.status_code == 429:
            raise MoySkladRateLimited(f"MoySklad rate limited: {url}")
        return resp

    def get(self, path: str, params: dict[str, Any] | None = None) -> tuple[int, dict[str, Any]]:
        url = self.url(path)
        try:
            resp = self._send(url, params)
        except MoySkladRateLimited:
            return 429, {"_raw_text": "rate limited"}

        if not resp.content:
            return resp.status_code, {}
        try:
            data = resp.json()
        except ValueError:
            return resp.status_code, {"_raw_text": resp.text}

        if isinstance(data, dict):
            return resp.status_code, data
        return resp.status_code, {"_raw": data}

    # --------------------------------------------------------------------------
    # 엔티티 / 리포트
    # --------------------------------------------------------------------------

    def get_product_folders(self, limit: int, offset: int = 0) -> tuple[int, dict[str, Any]]:
        """카테고리(productfolder) 목록"""
        return self.get("/entity/productfolder", params={"limit": limit, "offset": offset})

    def get_products(self, limit: int, offset: int = 0) -> tuple[int, dict[str, Any]]:
        """상품 목록 (이미지 포함, 최근 수정순)"""
        return self.get(
            "/entity/product",
            params={"order": "updated,desc", "limit": limit, "offset": offset, "expand": "images"},
        )

    def get_current_stock(self) -> tuple[int, dict[str, Any]]:
        """현재 재고 리포트 (페이지네이션 없음)"""
        return self.get("/report/stock/all/current")


def get_moysklad_client() -> MoySkladClient:
    """FastAPI dependency / CLI 공용 팩토리 (토큰 검증은 호출 전에 require_sync_config로)"""
    return MoySkladClient(token=settings.moysklad_token or "")
