"""MoySklad 삭제 웹훅 처리 (product / productfolder DELETE 이벤트)"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront_sync.exceptions import StorageError, WebhookPayloadError
from storefront_sync.models import Category
from storefront_sync.services.moysklad.categories import resolve_category_tree
from storefront_sync.services.moysklad.products import delete_products
from storefront_sync.services.moysklad_utils import chunked, extract_uuid
from storefront_sync.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleteEvents:
    product_ids: list[str]
    category_ids: list[str]


def parse_delete_events(body: bytes | str) -> DeleteEvents:
    """
    웹훅 본문에서 삭제 대상 외부 ID를 추출합니다. 중복은 첫 등장 순서로 제거.

    Raises:
        WebhookPayloadError: JSON이 아니거나 객체가 아닌 경우
    """
    try:
        payload = json.loads(body or b"")
    except ValueError as e:
        logger.error(f"[WEBHOOK] Invalid JSON: {e}")
        raise WebhookPayloadError() from e
    if not isinstance(payload, dict):
        logger.error("[WEBHOOK] Body is not a JSON object")
        raise WebhookPayloadError()

    events = payload.get("events")
    events = events if isinstance(events, list) else []

    ids: dict[str, dict[str, None]] = {"product": {}, "productfolder": {}}
    for event in events:
        if not isinstance(event, dict) or event.get("action") != "DELETE":
            continue
        meta = event.get("meta") if isinstance(event.get("meta"), dict) else {}
        entity_type = meta.get("type")
        external_id = extract_uuid(meta.get("href"))
        if entity_type in ids and external_id:
            ids[entity_type][external_id] = None

    return DeleteEvents(product_ids=list(ids["product"]), category_ids=list(ids["productfolder"]))


def handle_delete_events(session: Session, events: DeleteEvents) -> dict[str, Any]:
    deleted_products = 0
    deleted_categories = 0

    if events.product_ids:
        deleted_products = delete_products(session, events.product_ids)
        logger.info(f"[DB] Deleted {deleted_products} products")

    if events.category_ids:
        try:
            for chunk in chunked(events.category_ids, settings.sync_delete_chunk_size):
                result = session.execute(delete(Category).where(Category.moysklad_id.in_(chunk)))
                deleted_categories += result.rowcount or 0
            # 삭제된 카테고리의 하위 트리 path/level 갱신
            resolve_category_tree(session)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[DB] Category delete failed: {e}")
            raise StorageError(
                f"DB delete error: {e}",
                table_name="categories",
                operation="delete",
                row_count=len(events.category_ids),
            ) from e
        logger.info(f"[DB] Deleted {deleted_categories} categories")

    return {"ok": True, "deleted_products": deleted_products, "deleted_categories": deleted_categories}
