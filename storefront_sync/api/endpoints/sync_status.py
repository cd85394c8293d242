from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront_sync.db import get_session
from storefront_sync.schemas.catalog import SyncStatusResponse
from storefront_sync.services.sync_status import ENTITIES, get_status, list_statuses

router = APIRouter()


@router.get("", response_model=List[SyncStatusResponse])
def get_sync_statuses(session: Session = Depends(get_session)):
    """엔티티별 동기화 상태 (관리자 대시보드 폴링용)"""
    return list_statuses(session)


@router.get("/{entity}", response_model=SyncStatusResponse)
def get_sync_status(entity: str, session: Session = Depends(get_session)):
    if entity not in ENTITIES:
        raise HTTPException(status_code=404, detail=f"알 수 없는 엔티티입니다: {entity}")
    row = get_status(session, entity)
    if row is None:
        raise HTTPException(status_code=404, detail=f"동기화 상태가 없습니다: {entity}")
    return row
