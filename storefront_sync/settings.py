from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront_sync.exceptions import ConfigurationError


class Settings(BaseSettings):
    database_url: str = ""
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    moysklad_token: str = ""
    moysklad_base_url: str = "https://api.moysklad.ru/api/remap/1.2"
    moysklad_category_page_size: int = 1000
    moysklad_product_page_size: int = 100  # 이미지 expand 때문에 카테고리보다 작게 유지
    moysklad_max_attempts: int = 3  # 429/네트워크 오류 시 총 시도 횟수 (첫 요청 포함)
    moysklad_retry_max_wait: float = 30.0
    moysklad_http_timeout: float = 60.0

    # 우선순위 순서: "Цены для Онлайн заказов" → "Цена продажи"
    moysklad_price_type_ids: list[str] = [
        "33a432af-9a7a-11ee-0a80-135e00112483",
        "5195afd0-a892-11ed-0a80-0d0500173e59",
    ]
    moysklad_brand_attribute: str = "Бренд"

    sync_delete_chunk_size: int = 500
    sync_progress_interval: int = 10  # N개 상품마다 진행률 기록
    sync_stale_after_minutes: int = 60  # running 상태가 이 시간 이상 갱신 없으면 stale

    @field_validator("database_url")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if v and not v.startswith(("postgresql", "sqlite")):
            raise ValueError("DB URL은 'postgresql' 또는 'sqlite'로 시작해야 합니다.")
        return v

    @field_validator("moysklad_base_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL은 'http://' 또는 'https://'로 시작해야 합니다.")
        return v.rstrip("/")

    @field_validator("moysklad_category_page_size", "moysklad_product_page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if not 1 <= v <= 1000:
            raise ValueError("page_size는 1에서 1000 사이여야 합니다.")
        return v

    @field_validator("sync_delete_chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if not 1 <= v <= 1000:
            raise ValueError("delete_chunk_size는 1에서 1000 사이여야 합니다.")
        return v

    @field_validator(
        "moysklad_max_attempts",
        "moysklad_retry_max_wait",
        "moysklad_http_timeout",
        "sync_progress_interval",
        "sync_stale_after_minutes",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("값은 0 이상이어야 합니다.")
        return v

    def missing_sync_config(self) -> list[str]:
        """동기화 실행에 필요한 환경 변수 중 비어 있는 항목 목록"""
        missing: list[str] = []
        if not self.moysklad_token:
            missing.append("MOYSKLAD_TOKEN")
        return missing + self.missing_storage_config()

    def missing_storage_config(self) -> list[str]:
        missing: list[str] = []
        if not self.database_url:
            missing.append("DATABASE_URL")
        if not self.supabase_service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        return missing

    def require_sync_config(self) -> None:
        """네트워크 호출 전에 필수 설정을 확인합니다."""
        missing = self.missing_sync_config()
        if missing:
            raise ConfigurationError(missing)

    def require_storage_config(self) -> None:
        missing = self.missing_storage_config()
        if missing:
            raise ConfigurationError(missing)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


settings = Settings()
