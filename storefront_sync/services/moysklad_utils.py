from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UUID_TAIL = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def extract_uuid(href: Any) -> str | None:
    """href 끝의 UUID를 추출합니다. 매칭 실패 시 None."""
    if not isinstance(href, str):
        return None
    match = _UUID_TAIL.search(href)
    return match.group(0) if match else None


def _meta_href(value: Any) -> Any:
    """{"meta": {"href": ...}} 형태에서 href 추출"""
    if not isinstance(value, dict):
        return None
    return (value.get("meta") or {}).get("href")


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def _finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def resolve_sale_price(sale_prices: Any, price_type_ids: Sequence[str]) -> Decimal:
    """
    우선순위 가격 유형 목록에서 첫 번째로 유효한 값을 찾아 major 단위로 변환합니다.
    priceType은 id 또는 name으로 지정할 수 있습니다. 없으면 Decimal(0) (가격 미정).
    """
    rows = [_as_dict(sp) for sp in _as_list(sale_prices)]
    for type_id in price_type_ids:
        for sp in rows:
            price_type = _as_dict(sp.get("priceType"))
            if type_id not in (price_type.get("id"), price_type.get("name")):
                continue
            value = sp.get("value")
            if _finite_number(value):
                return Decimal(str(value)) / 100
    return Decimal(0)


def extract_brand(attributes: Any, attribute_name: str) -> str | None:
    for attr in _as_list(attributes):
        attr = _as_dict(attr)
        if attr.get("name") != attribute_name:
            continue
        value = attr.get("value")
        # customentity 값은 {"name": ...}, 문자열 속성은 값 그대로
        if isinstance(value, dict):
            return value.get("name") or None
        if isinstance(value, str):
            return value or None
    return None


@dataclass(frozen=True)
class RemoteCategory:
    """MoySklad productfolder (한 번의 동기화 동안만 존재)"""
    id: Optional[str]
    name: str = ""
    parent_id: Optional[str] = None
    archived: bool = False
    description: Optional[str] = None

    @classmethod
    def from_payload(cls, row: Any) -> "RemoteCategory":
        row = _as_dict(row)
        return cls(
            id=row.get("id") or None,
            name=_text(row.get("name")),
            parent_id=extract_uuid(_meta_href(row.get("productFolder"))),
            archived=bool(row.get("archived")),
            description=row.get("description") if isinstance(row.get("description"), str) else None,
        )


@dataclass(frozen=True)
class RemoteProduct:
    id: Optional[str]
    name: str = ""
    description: str = ""
    sale_prices: tuple = ()
    image_urls: tuple[str, ...] = ()
    folder_id: Optional[str] = None
    attributes: tuple = ()
    code: Optional[str] = None

    @classmethod
    def from_payload(cls, row: Any) -> "RemoteProduct":
        row = _as_dict(row)
        image_rows = _as_list(_as_dict(row.get("images")).get("rows"))
        image_urls = tuple(
            href
            for href in (_as_dict(img.get("meta")).get("downloadHref") for img in map(_as_dict, image_rows))
            if isinstance(href, str) and href
        )
        return cls(
            id=row.get("id") or None,
            name=_text(row.get("name")),
            description=_text(row.get("description")),
            sale_prices=tuple(_as_list(row.get("salePrices"))),
            image_urls=image_urls,
            folder_id=extract_uuid(_meta_href(row.get("productFolder"))),
            attributes=tuple(_as_list(row.get("attributes"))),
            code=row.get("code") or None,
        )

    def price(self, price_type_ids: Sequence[str]) -> Decimal:
        return resolve_sale_price(list(self.sale_prices), price_type_ids)

    def brand(self, attribute_name: str) -> str | None:
        return extract_brand(list(self.attributes), attribute_name)


@dataclass(frozen=True)
class RemoteStockEntry:
    assortment_id: Optional[str]
    stock: int = 0

    @classmethod
    def from_payload(cls, row: Any) -> "RemoteStockEntry":
        row = _as_dict(row)
        stock = row.get("stock")
        return cls(
            assortment_id=row.get("assortmentId") or None,
            # 1 미만 잔량은 재고 없음으로 취급
            stock=int(stock) if _finite_number(stock) else 0,
        )


@dataclass(frozen=True)
class PageStats:
    """페이지네이션 진행 정보 (on_page 콜백 인자)"""
    page: int
    fetched: int
    total: int
