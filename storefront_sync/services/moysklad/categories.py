"""
MoySklad 카테고리(productfolder) 동기화 핸들러.

1단계: 전체 카테고리 페이지 수집
2단계: 부모 없이 upsert (모든 행이 먼저 존재하도록)
3단계: 실제 부모 참조로 다시 upsert
4단계: 원격에 없는 로컬 카테고리 청크 삭제
5단계: parent_id / path / level 재계산
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront_sync.db import upsert
from storefront_sync.exceptions import StorageError
from storefront_sync.models import Category
from storefront_sync.services.moysklad.fetchers import fetch_categories
from storefront_sync.services.moysklad_utils import PageStats, RemoteCategory, chunked
from storefront_sync.services.sync_status import SyncStatusRecorder
from storefront_sync.settings import settings

logger = logging.getLogger(__name__)

UPSERT_COLUMNS = ("moysklad_parent_id", "name_uz", "name_ru", "name_en", "description", "status", "updated_at")


@dataclass(frozen=True)
class CategorySyncResult:
    synced: int
    deleted: int

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "synced": self.synced, "deleted": self.deleted}


def category_row(remote: RemoteCategory, now: datetime) -> dict[str, Any]:
    # 다국어 이름은 MoySklad 이름으로 채움 (번역은 관리자 화면에서)
    return {
        "moysklad_id": remote.id,
        "moysklad_parent_id": remote.parent_id,
        "name_uz": remote.name,
        "name_ru": remote.name,
        "name_en": remote.name,
        "description": remote.description,
        "status": "hidden" if remote.archived else "active",
        "updated_at": now,
    }


def resolve_category_tree(session: Session) -> int:
    """
    moysklad_parent_id로 parent_id를 연결하고 모든 행의 path/level을 다시 계산합니다.
    재부모화는 하위 트리 전체의 path를 무효화하므로 매번 전체를 계산합니다.

    - 부모를 찾을 수 없는 동기화 카테고리는 루트로 취급
    - MoySklad와 무관한(moysklad_id 없음) 카테고리는 기존 parent_id 유지
    - 순환 참조는 루트로 끊고 경고 로그

    Returns:
        변경된 행 수
    """
    stmt = select(Category).execution_options(populate_existing=True)
    categories = list(session.scalars(stmt).all())
    by_id = {c.id: c for c in categories}
    by_external = {c.moysklad_id: c.id for c in categories if c.moysklad_id}

    parent_of: dict[uuid.UUID, uuid.UUID | None] = {}
    for c in categories:
        if c.moysklad_id:
            parent_of[c.id] = by_external.get(c.moysklad_parent_id) if c.moysklad_parent_id else None
        else:
            parent_of[c.id] = c.parent_id if c.parent_id in by_id else None

    resolved: dict[uuid.UUID, tuple[str, int]] = {}

    def _resolve(category_id: uuid.UUID) -> tuple[str, int]:
        chain: list[uuid.UUID] = []
        seen: set[uuid.UUID] = set()
        current: uuid.UUID | None = category_id
        while current is not None and current not in resolved:
            if current in seen:
                logger.warning(f"[DB] Category cycle detected at {current}, treating as root")
                parent_of[current] = None
                break
            seen.add(current)
            chain.append(current)
            current = parent_of[current]

        for node in reversed(chain):
            parent = parent_of[node]
            if parent is None or parent not in resolved:
                resolved[node] = (str(node), 0)
            else:
                parent_path, parent_level = resolved[parent]
                resolved[node] = (f"{parent_path}/{node}", parent_level + 1)
        return resolved[category_id]

    changes: list[dict[str, Any]] = []
    for c in categories:
        path, level = _resolve(c.id)
        parent_id = parent_of[c.id]
        if c.parent_id != parent_id or c.path != path or c.level != level:
            changes.append({"id": c.id, "parent_id": parent_id, "path": path, "level": level})

    if changes:
        session.execute(update(Category), changes)
    return len(changes)


@dataclass
class CategorySyncHandler:
    """
    카테고리 전체 동기화 (full outer join: 있는 것은 upsert, 없는 것은 삭제).
    같은 스냅샷으로 두 번 실행해도 두 번째는 변경 없음.
    배치는 개별 커밋되며 실패 시 이전 배치는 롤백되지 않습니다.
    """

    session: Session
    client: Any
    recorder: SyncStatusRecorder = None  # type: ignore[assignment]

    page_size: int = field(default_factory=lambda: settings.moysklad_category_page_size)
    chunk_size: int = field(default_factory=lambda: settings.sync_delete_chunk_size)

    def __post_init__(self):
        if self.recorder is None:
            self.recorder = SyncStatusRecorder(self.session, "categories")

    def _on_page(self, stats: PageStats) -> None:
        self.recorder.progress(
            stats.fetched,
            total=stats.total,
            message=f"Fetching categories... {stats.fetched}/{stats.total}",
        )

    def upsert_rows(self, rows: list[dict[str, Any]]) -> None:
        try:
            for batch in chunked(rows, self.chunk_size):
                stmt = upsert(self.session, Category).values(batch)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["moysklad_id"],
                    set_={col: stmt.excluded[col] for col in UPSERT_COLUMNS},
                )
                self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"[DB] Category upsert failed ({len(rows)} rows): {e}")
            raise StorageError(
                f"DB upsert error: {e}", table_name="categories", operation="upsert", row_count=len(rows)
            ) from e

    def delete_missing(self, remote_ids: set[str]) -> int:
        """원격에 없는 로컬 카테고리를 청크 단위로 삭제. 청크 실패는 기록만 하고 계속 진행."""
        try:
            existing = self.session.scalars(
                select(Category.moysklad_id).where(Category.moysklad_id.is_not(None))
            ).all()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"DB fetch error: {e}", table_name="categories", operation="select") from e

        to_delete = [mid for mid in existing if mid not in remote_ids]
        deleted = 0
        for chunk in chunked(to_delete, self.chunk_size):
            try:
                self.session.execute(delete(Category).where(Category.moysklad_id.in_(chunk)))
                self.session.commit()
                deleted += len(chunk)
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"[DB] Category delete failed ({len(chunk)} rows): {e}")

        if to_delete:
            logger.info(f"[DB] Deleted {deleted}/{len(to_delete)} categories no longer in MoySklad")
        return deleted

    def sync(self) -> CategorySyncResult:
        self.recorder.acquire()
        self.recorder.start(0, "Starting categories sync...")
        try:
            return self._sync()
        except Exception as e:
            self.recorder.fail(str(e))
            raise

    def _sync(self) -> CategorySyncResult:
        remote = fetch_categories(self.client, self.page_size, on_page=self._on_page)
        total = self.recorder.total or len(remote)
        self.recorder.progress(len(remote), total=total, message="Processing and saving categories...")

        now = datetime.now(timezone.utc)
        rows = [category_row(c, now) for c in remote if c.id]
        # 오프셋 페이지가 겹치면 같은 폴더가 두 번 올 수 있으므로 마지막 값만 유지
        rows = list({row["moysklad_id"]: row for row in rows}.values())
        if not rows:
            self.recorder.succeed(0, "No categories to sync", total=0)
            return CategorySyncResult(synced=0, deleted=0)

        # 1차: 부모 없이 (모든 행이 존재하도록) / 2차: 실제 부모 참조
        self.upsert_rows([{**row, "moysklad_parent_id": None} for row in rows])
        self.upsert_rows(rows)

        deleted = self.delete_missing({row["moysklad_id"] for row in rows})

        # 부모가 삭제된 하위 카테고리도 루트 기준으로 다시 계산됨
        try:
            changed = resolve_category_tree(self.session)
            self.session.commit()
            logger.info(f"[DB] Category tree resolved ({changed} rows changed)")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"[DB] Parent resolution failed: {e}")

        self.recorder.succeed(
            len(rows),
            f"Synced {len(rows)} categories, deleted {deleted}",
            total=total,
        )
        return CategorySyncResult(synced=len(rows), deleted=deleted)
