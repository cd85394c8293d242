from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime
import uuid


class ProductImageResponse(BaseModel):
    id: uuid.UUID
    image_url: str
    is_primary: bool
    sort_order: int

    model_config = ConfigDict(from_attributes=True)


class CategoryResponse(BaseModel):
    id: uuid.UUID
    moysklad_id: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    name_uz: str
    name_ru: str
    name_en: str
    status: str
    level: int
    path: str

    model_config = ConfigDict(from_attributes=True)


class ProductResponse(BaseModel):
    id: uuid.UUID
    moysklad_id: Optional[str] = None
    name_uz: str
    name_ru: str
    name_en: str
    description_uz: str
    description_ru: str
    description_en: str
    price: float
    original_price: Optional[float] = None
    category_id: Optional[uuid.UUID] = None
    brand: Optional[str] = None
    stock: int
    sku: Optional[str] = None
    is_new: bool
    is_popular: bool
    is_discount: bool
    created_at: Optional[datetime] = None
    # 스토어프론트는 product_images 키를 기대함
    product_images: List[ProductImageResponse] = Field(default_factory=list, validation_alias="images")
    category: Optional[CategoryResponse] = None

    model_config = ConfigDict(from_attributes=True)


class ProductListResponse(BaseModel):
    ok: bool = True
    products: List[ProductResponse] = []
    last_sync_at: Optional[str] = None
    synced: int = 0


class ProductDetailResponse(BaseModel):
    ok: bool = True
    product: Optional[ProductResponse] = None


class SyncStatusResponse(BaseModel):
    entity: str
    status: str
    message: Optional[str] = None
    total: int
    processed: int
    percent: int
    records_synced: int
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
