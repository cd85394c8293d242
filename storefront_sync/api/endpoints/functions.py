"""
MoySklad 동기화 함수 엔드포인트.

- 동기화 트리거: 설정 확인 → 서비스 키(Bearer) 확인 → 실행 → 요약 반환
- 읽기 경로(read_only): 서비스 키 불필요
"""

import hmac
import logging
import uuid

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from storefront_sync.db import get_session
from storefront_sync.moysklad_client import MoySkladClient, get_moysklad_client
from storefront_sync.schemas.catalog import ProductDetailResponse, ProductListResponse, ProductResponse
from storefront_sync.services import catalog_query
from storefront_sync.services.moysklad.categories import CategorySyncHandler
from storefront_sync.services.moysklad.products import ProductSyncHandler
from storefront_sync.services.moysklad.webhook import handle_delete_events, parse_delete_events
from storefront_sync.settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


def _check_service_role(authorization: str | None) -> None:
    expected = f"Bearer {settings.supabase_service_role_key}"
    # latin-1로 디코딩된 헤더에 비ASCII 문자가 있어도 401이 되도록 bytes로 비교
    if not authorization or not hmac.compare_digest(authorization.strip().encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_sync_caller(authorization: str | None = Header(default=None)) -> None:
    settings.require_sync_config()
    _check_service_role(authorization)


def _read_catalog(
    session: Session,
    product_id: uuid.UUID | None,
    category_id: uuid.UUID | None,
    is_new: bool,
    is_popular: bool,
    is_discount: bool,
    limit: int | None,
) -> ProductDetailResponse | ProductListResponse:
    if product_id is not None:
        product = catalog_query.get_product(session, product_id)
        return ProductDetailResponse(product=ProductResponse.model_validate(product) if product else None)

    products = catalog_query.list_products(
        session,
        category_id=category_id,
        is_new=is_new,
        is_popular=is_popular,
        is_discount=is_discount,
        limit=limit,
    )
    last_sync_at, synced = catalog_query.last_product_sync(session)
    return ProductListResponse(
        products=[ProductResponse.model_validate(p) for p in products],
        last_sync_at=last_sync_at,
        synced=synced,
    )


@router.post("/moysklad-sync-categories")
def sync_categories(
    _caller: None = Depends(require_sync_caller),
    session: Session = Depends(get_session),
    client: MoySkladClient = Depends(get_moysklad_client),
) -> dict:
    logger.info("[SYNC] Category sync requested")
    return CategorySyncHandler(session=session, client=client).sync().to_dict()


@router.api_route("/moysklad-sync-products", methods=["GET", "POST"])
def sync_products(
    read_only: bool = Query(default=False),
    product_id: uuid.UUID | None = Query(default=None),
    category_id: uuid.UUID | None = Query(default=None),
    is_new: bool = Query(default=False),
    is_popular: bool = Query(default=False),
    is_discount: bool = Query(default=False),
    limit: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None),
    session: Session = Depends(get_session),
    client: MoySkladClient = Depends(get_moysklad_client),
):
    if read_only:
        settings.require_storage_config()
        return _read_catalog(session, product_id, category_id, is_new, is_popular, is_discount, limit)

    require_sync_caller(authorization)
    logger.info("[SYNC] Product sync requested")
    return ProductSyncHandler(session=session, client=client).sync().to_dict()


@router.get("/moysklad-sync")
def read_catalog(
    product_id: uuid.UUID | None = Query(default=None),
    category_id: uuid.UUID | None = Query(default=None),
    is_new: bool = Query(default=False),
    is_popular: bool = Query(default=False),
    is_discount: bool = Query(default=False),
    limit: int | None = Query(default=None, ge=1),
    session: Session = Depends(get_session),
):
    settings.require_storage_config()
    return _read_catalog(session, product_id, category_id, is_new, is_popular, is_discount, limit)


@router.post("/moysklad-handle-product-delete")
async def handle_product_delete(request: Request, session: Session = Depends(get_session)) -> dict:
    settings.require_sync_config()
    events = parse_delete_events(await request.body())
    if not events.product_ids and not events.category_ids:
        return {"ok": True, "deleted_products": 0, "deleted_categories": 0}

    logger.info(
        f"[WEBHOOK] Delete events: {len(events.product_ids)} products, {len(events.category_ids)} categories"
    )
    return await run_in_threadpool(handle_delete_events, session, events)
