"""
MoySklad 상품/재고 동기화 핸들러.

재고 > 0 인 상품만 로컬 카탈로그에 유지합니다.
- 재고 0 이하 또는 재고 리포트에 없는 상품은 upsert 대상에서 제외
- 제외되었거나 MoySklad에서 사라진 로컬 상품은 이미지와 함께 삭제
- 이미지는 상품당 최초 1회만 기록 (이후 실행에서는 건드리지 않음)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront_sync.db import upsert
from storefront_sync.exceptions import StorageError
from storefront_sync.models import Category, Product, ProductImage
from storefront_sync.services.moysklad.fetchers import fetch_products, fetch_stock
from storefront_sync.services.moysklad_utils import PageStats, RemoteProduct, chunked
from storefront_sync.services.sync_status import SyncStatusRecorder
from storefront_sync.settings import settings

logger = logging.getLogger(__name__)

UPSERT_COLUMNS = (
    "name_uz",
    "name_ru",
    "name_en",
    "description_uz",
    "description_ru",
    "description_en",
    "price",
    "category_id",
    "stock",
    "sku",
    "brand",
    "updated_at",
)


@dataclass(frozen=True)
class ProductSyncResult:
    synced: int
    removed_zero_stock: int
    removed_orphaned: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "synced": self.synced,
            "removed_zero_stock": self.removed_zero_stock,
            "removed_orphaned": self.removed_orphaned,
        }


def delete_products(session: Session, moysklad_ids: list[str], chunk_size: int | None = None) -> int:
    """
    moysklad_id 목록에 해당하는 상품을 삭제합니다 (이미지 먼저).
    청크마다 커밋하며 실패한 청크는 로그만 남기고 다음 청크로 진행합니다.

    Returns:
        실제 삭제된 상품 수
    """
    size = chunk_size or settings.sync_delete_chunk_size
    deleted = 0
    for chunk in chunked(moysklad_ids, size):
        try:
            product_ids = list(session.scalars(select(Product.id).where(Product.moysklad_id.in_(chunk))).all())
            if not product_ids:
                continue
            session.execute(delete(ProductImage).where(ProductImage.product_id.in_(product_ids)))
            result = session.execute(delete(Product).where(Product.id.in_(product_ids)))
            session.commit()
            deleted += result.rowcount or 0
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[DB] Product delete failed ({len(chunk)} ids): {e}")
    return deleted


@dataclass
class ProductSyncHandler:
    """
    상품 전체 동기화.

    삭제 대상은 (로컬 moysklad_id 전체) - (이번 실행에서 유지된 moysklad_id) 이며,
    원격에 존재하면 재고 0 삭제, 원격에 없으면 고아 삭제로 집계합니다.
    """

    session: Session
    client: Any
    recorder: SyncStatusRecorder = None  # type: ignore[assignment]

    page_size: int = field(default_factory=lambda: settings.moysklad_product_page_size)
    chunk_size: int = field(default_factory=lambda: settings.sync_delete_chunk_size)
    progress_interval: int = field(default_factory=lambda: settings.sync_progress_interval)
    price_type_ids: list[str] = field(default_factory=lambda: list(settings.moysklad_price_type_ids))
    brand_attribute: str = field(default_factory=lambda: settings.moysklad_brand_attribute)

    def __post_init__(self):
        if self.recorder is None:
            self.recorder = SyncStatusRecorder(self.session, "products")

    def _on_page(self, stats: PageStats) -> None:
        self.recorder.progress(0, total=stats.total, message=f"Fetching products... {stats.fetched}/{stats.total}")

    def _category_lookup(self) -> dict[str, uuid.UUID]:
        rows = self.session.execute(
            select(Category.moysklad_id, Category.id).where(Category.moysklad_id.is_not(None))
        ).all()
        return {moysklad_id: category_id for moysklad_id, category_id in rows}

    def product_row(
        self,
        remote: RemoteProduct,
        stock: int,
        categories: dict[str, uuid.UUID],
        now: datetime,
    ) -> dict[str, Any]:
        return {
            "moysklad_id": remote.id,
            "name_uz": remote.name,
            "name_ru": remote.name,
            "name_en": remote.name,
            "description_uz": remote.description,
            "description_ru": remote.description,
            "description_en": remote.description,
            "price": remote.price(self.price_type_ids),
            "category_id": categories.get(remote.folder_id) if remote.folder_id else None,
            "stock": stock,
            "sku": remote.code,
            "brand": remote.brand(self.brand_attribute),
            "updated_at": now,
        }

    def upsert_rows(self, rows: list[dict[str, Any]]) -> None:
        try:
            for batch in chunked(rows, self.chunk_size):
                stmt = upsert(self.session, Product).values(batch)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["moysklad_id"],
                    set_={col: stmt.excluded[col] for col in UPSERT_COLUMNS},
                )
                self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"[DB] Product upsert failed ({len(rows)} rows): {e}")
            raise StorageError(
                f"DB upsert error: {e}", table_name="products", operation="upsert", row_count=len(rows)
            ) from e

    def insert_missing_images(self, images_by_moysklad_id: dict[str, tuple[str, ...]]) -> int:
        """
        이미지 행이 하나도 없는 상품에만 이미지를 기록합니다.
        첫 번째 이미지가 대표 이미지이며 sort_order는 원격 순서를 따릅니다.
        """
        pending = [mid for mid, urls in images_by_moysklad_id.items() if urls]
        inserted = 0
        for chunk in chunked(pending, self.chunk_size):
            try:
                id_rows = self.session.execute(
                    select(Product.moysklad_id, Product.id).where(Product.moysklad_id.in_(chunk))
                ).all()
                product_ids = {moysklad_id: product_id for moysklad_id, product_id in id_rows}
                with_images = set(
                    self.session.scalars(
                        select(ProductImage.product_id)
                        .where(ProductImage.product_id.in_(list(product_ids.values())))
                        .distinct()
                    ).all()
                )

                rows = []
                for moysklad_id in chunk:
                    product_id = product_ids.get(moysklad_id)
                    if product_id is None or product_id in with_images:
                        continue
                    for index, image_url in enumerate(images_by_moysklad_id[moysklad_id]):
                        rows.append(
                            {
                                "product_id": product_id,
                                "image_url": image_url,
                                "is_primary": index == 0,
                                "sort_order": index,
                            }
                        )

                if rows:
                    self.session.execute(insert(ProductImage).values(rows))
                self.session.commit()
                inserted += len(rows)
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"[DB] Product image insert failed ({len(chunk)} products): {e}")
        return inserted

    def sync(self) -> ProductSyncResult:
        self.recorder.acquire()
        self.recorder.start(0, "Starting sync...")
        try:
            return self._sync()
        except Exception as e:
            self.recorder.fail(str(e))
            raise

    def _sync(self) -> ProductSyncResult:
        stock_by_id = fetch_stock(self.client)
        categories = self._category_lookup()
        remote = fetch_products(self.client, self.page_size, on_page=self._on_page)

        total = len(remote)
        now = datetime.now(timezone.utc)
        remote_ids: set[str] = set()
        keep_rows: list[dict[str, Any]] = []
        images: dict[str, tuple[str, ...]] = {}

        interval = max(1, self.progress_interval)
        for index, product in enumerate(remote, start=1):
            if product.id:
                remote_ids.add(product.id)
                stock = stock_by_id.get(product.id, 0)
                if stock > 0:
                    keep_rows.append(self.product_row(product, stock, categories, now))
                    images[product.id] = product.image_urls
            if index % interval == 0 or index == total:
                self.recorder.progress(index, total=total, message=f"Processing products... {index}/{total}")

        # 같은 상품이 두 페이지에 걸쳐 중복될 수 있으므로 마지막 값만 유지
        keep_rows = list({row["moysklad_id"]: row for row in keep_rows}.values())

        self.recorder.progress(total, total=total, message="Saving products to database...")
        if keep_rows:
            self.upsert_rows(keep_rows)
        image_count = self.insert_missing_images(images)
        if image_count:
            logger.info(f"[DB] Inserted {image_count} product images")

        keep_ids = {row["moysklad_id"] for row in keep_rows}
        try:
            local_ids = set(
                self.session.scalars(select(Product.moysklad_id).where(Product.moysklad_id.is_not(None))).all()
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"DB fetch error: {e}", table_name="products", operation="select") from e

        stale = local_ids - keep_ids
        zero_stock_ids = sorted(stale & remote_ids)
        orphaned_ids = sorted(stale - remote_ids)
        removed_zero_stock = delete_products(self.session, zero_stock_ids, self.chunk_size)
        removed_orphaned = delete_products(self.session, orphaned_ids, self.chunk_size)

        result = ProductSyncResult(
            synced=len(keep_rows),
            removed_zero_stock=removed_zero_stock,
            removed_orphaned=removed_orphaned,
        )
        self.recorder.succeed(
            result.synced,
            f"Synced {result.synced} products, removed {removed_zero_stock} (zero stock), "
            f"{removed_orphaned} (orphaned)",
            total=total,
        )
        return result
