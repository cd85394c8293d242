from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront_sync.db import upsert
from storefront_sync.exceptions import SyncInProgressError
from storefront_sync.models import SyncStatus
from storefront_sync.settings import settings

logger = logging.getLogger(__name__)

ENTITIES = ("categories", "products")


class SyncState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"
    IDLE = "idle"


ACTIVE_STATES = (SyncState.RUNNING.value, SyncState.IN_PROGRESS.value)
TERMINAL_STATES = (SyncState.SUCCESS.value, SyncState.ERROR.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime | None) -> datetime | None:
    # SQLite는 tz 정보를 잃어버림
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def compute_percent(total: int, processed: int) -> int:
    if total <= 0:
        return 0
    return (processed * 100) // total


class SyncStatusRecorder:
    """
    sync_status 행 하나(엔티티별)를 갱신하는 작업 레코드.

    - entity 기준 upsert만 수행 (엔티티당 1행)
    - 매 기록마다 커밋하여 대시보드가 실시간으로 진행률을 볼 수 있게 함
    - 같은 실행 안에서 processed는 감소하지 않음
    """

    def __init__(self, session: Session, entity: str) -> None:
        if entity not in ENTITIES:
            raise ValueError(f"지원하지 않는 엔티티입니다: {entity}")
        self.session = session
        self.entity = entity
        self.total = 0
        self.processed = 0

    def _write(self, status: SyncState, **fields: Any) -> None:
        values: dict[str, Any] = {"entity": self.entity, "status": status.value, "updated_at": _now()}
        values.update(fields)
        stmt = upsert(self.session, SyncStatus).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["entity"],
            set_={key: stmt.excluded[key] for key in values if key != "entity"},
        )
        self.session.execute(stmt)
        self.session.commit()

    def acquire(self) -> None:
        """
        실행 중인 동기화가 있으면 SyncInProgressError.
        updated_at이 sync_stale_after_minutes보다 오래된 running 행은 중단된 실행으로 보고 인수합니다.
        """
        row = get_status(self.session, self.entity)
        if row is None or row.status not in ACTIVE_STATES:
            return

        cutoff = _now() - timedelta(minutes=max(1, settings.sync_stale_after_minutes))
        updated_at = _as_utc(row.updated_at)
        if updated_at is not None and updated_at >= cutoff:
            raise SyncInProgressError(self.entity)

        logger.warning(f"[SYNC] {self.entity}: stale running status (updated_at={updated_at}), taking over")

    def start(self, total: int = 0, message: str | None = None) -> None:
        self.total = max(0, int(total))
        self.processed = 0
        self._write(
            SyncState.RUNNING,
            total=self.total,
            processed=0,
            percent=0,
            message=message,
            started_at=_now(),
            finished_at=None,
        )

    def progress(self, processed: int, total: int | None = None, message: str | None = None) -> None:
        if total is not None:
            self.total = max(0, int(total))
        self.processed = max(self.processed, int(processed))
        self._write(
            SyncState.RUNNING,
            total=self.total,
            processed=self.processed,
            percent=compute_percent(self.total, self.processed),
            message=message,
        )

    def succeed(self, records_synced: int, message: str, total: int | None = None) -> None:
        if total is not None:
            self.total = max(0, int(total))
        self.processed = max(self.processed, self.total)
        now = _now()
        self._write(
            SyncState.SUCCESS,
            total=self.total,
            processed=self.processed,
            percent=100,
            message=message,
            records_synced=records_synced,
            last_sync_at=now,
            finished_at=now,
        )
        logger.info(f"[SYNC] {self.entity}: {message}")

    def fail(self, message: str) -> None:
        # 실패 시 total/processed는 그대로 두어 어디서 멈췄는지 보이게 함
        try:
            self.session.rollback()
            self._write(SyncState.ERROR, message=message, finished_at=_now())
        except Exception as e:
            logger.error(f"[SYNC] {self.entity}: failed to record error status: {e}")
            self.session.rollback()
        logger.error(f"[SYNC] {self.entity}: {message}")


def get_status(session: Session, entity: str) -> SyncStatus | None:
    stmt = select(SyncStatus).where(SyncStatus.entity == entity).execution_options(populate_existing=True)
    return session.scalars(stmt).first()


def list_statuses(session: Session) -> list[SyncStatus]:
    stmt = select(SyncStatus).order_by(SyncStatus.entity).execution_options(populate_existing=True)
    return list(session.scalars(stmt).all())
