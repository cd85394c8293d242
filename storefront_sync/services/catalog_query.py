"""
스토어프론트 읽기 경로.

동기화된 카탈로그를 조회합니다 (재고 > 0, 최신순, 이미지/카테고리 포함).
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront_sync.models import Category, Product
from storefront_sync.services.sync_status import get_status

logger = logging.getLogger(__name__)


def category_descendants(session: Session, category_id: uuid.UUID) -> list[uuid.UUID]:
    """카테고리 자신과 모든 하위 카테고리 ID (parent_id 기준, 순환 안전)"""
    children: dict[uuid.UUID, list[uuid.UUID]] = defaultdict(list)
    for cid, parent_id in session.execute(select(Category.id, Category.parent_id)).all():
        if parent_id is not None:
            children[parent_id].append(cid)

    result: list[uuid.UUID] = []
    seen: set[uuid.UUID] = set()
    stack = [category_id]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        result.append(current)
        stack.extend(children.get(current, []))
    return result


def list_products(
    session: Session,
    category_id: Optional[uuid.UUID] = None,
    is_new: bool = False,
    is_popular: bool = False,
    is_discount: bool = False,
    limit: Optional[int] = None,
) -> list[Product]:
    stmt = (
        select(Product)
        .options(selectinload(Product.images), selectinload(Product.category))
        .where(Product.stock > 0)
        .order_by(Product.created_at.desc(), Product.id)
    )

    if category_id is not None:
        stmt = stmt.where(Product.category_id.in_(category_descendants(session, category_id)))
    if is_new:
        stmt = stmt.where(Product.is_new.is_(True))
    if is_popular:
        stmt = stmt.where(Product.is_popular.is_(True))
    if is_discount:
        stmt = stmt.where(Product.is_discount.is_(True), Product.original_price.is_not(None))
    if limit:
        stmt = stmt.limit(limit)

    return list(session.scalars(stmt).all())


def get_product(session: Session, product_id: uuid.UUID) -> Optional[Product]:
    stmt = (
        select(Product)
        .options(selectinload(Product.images), selectinload(Product.category))
        .where(Product.id == product_id)
    )
    return session.scalars(stmt).first()


def last_product_sync(session: Session) -> tuple[Optional[str], int]:
    """products 상태 행의 (last_sync_at ISO 문자열, records_synced)"""
    row = get_status(session, "products")
    if row is None:
        return None, 0
    last_sync_at = row.last_sync_at.isoformat() if row.last_sync_at else None
    return last_sync_at, row.records_synced or 0
