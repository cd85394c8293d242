"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from storefront_sync.models import Base
from storefront_sync.settings import settings


# 테스트용 메모리 SQLite 엔진 (TestClient 스레드와 연결을 공유하도록 StaticPool)
TEST_DATABASE_URL = "sqlite://"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False  # 테스트 로그 줄이기
)


@event.listens_for(test_engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # ON DELETE SET NULL 동작 확인용
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(
    bind=test_engine,
    autoflush=False,
    expire_on_commit=False,
)


@pytest.fixture(scope="function")
def test_session() -> Session:
    """
    테스트용 데이터베이스 세션 fixture.
    각 테스트마다 새로운 메모리 DB 생성.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def sync_settings(monkeypatch):
    """동기화에 필요한 필수 설정을 채운 settings"""
    monkeypatch.setattr(settings, "moysklad_token", "test-token")
    monkeypatch.setattr(settings, "database_url", TEST_DATABASE_URL)
    monkeypatch.setattr(settings, "supabase_service_role_key", "service-key")
    return settings


@pytest.fixture
def fail_first_statement(monkeypatch):
    """
    세션에서 지정한 테이블 대상의 첫 번째 DML 실행만 OperationalError로 실패시킵니다.
    청크 하나가 실패해도 나머지 청크가 진행되는지 확인할 때 사용.
    """

    def _install(session, statement_type, table_name):
        original = session.execute
        failed = []

        def _execute(statement, *args, **kwargs):
            if not failed and isinstance(statement, statement_type) and statement.table.name == table_name:
                failed.append(statement)
                raise OperationalError(str(statement), {}, Exception("database is locked"))
            return original(statement, *args, **kwargs)

        monkeypatch.setattr(session, "execute", _execute)
        return failed

    return _install


class MoySkladPayloads:
    """MoySklad 응답 행 빌더"""

    BASE = "https://api.moysklad.ru/api/remap/1.2"
    PRICE_TYPE_ONLINE = "33a432af-9a7a-11ee-0a80-135e00112483"
    PRICE_TYPE_SALE = "5195afd0-a892-11ed-0a80-0d0500173e59"

    @classmethod
    def folder(cls, folder_id, name="Folder", parent_id=None, archived=False):
        row = {
            "id": folder_id,
            "name": name,
            "archived": archived,
            "meta": {"href": f"{cls.BASE}/entity/productfolder/{folder_id}"},
        }
        if parent_id:
            row["productFolder"] = {"meta": {"href": f"{cls.BASE}/entity/productfolder/{parent_id}"}}
        return row

    @classmethod
    def product(cls, product_id, name="Product", price=150000, folder_id=None, images=(), brand=None, code=None):
        row = {
            "id": product_id,
            "name": name,
            "description": f"{name} description",
            "salePrices": [
                {"value": price, "priceType": {"id": cls.PRICE_TYPE_SALE, "name": "Цена продажи"}},
            ],
            "images": {
                "rows": [{"meta": {"downloadHref": url}} for url in images],
            },
        }
        if folder_id:
            row["productFolder"] = {"meta": {"href": f"{cls.BASE}/entity/productfolder/{folder_id}"}}
        if brand:
            row["attributes"] = [{"name": "Бренд", "value": {"name": brand}}]
        if code:
            row["code"] = code
        return row

    @staticmethod
    def stock(assortment_id, quantity):
        return {"assortmentId": assortment_id, "stock": quantity}


class FakeMoySkladClient:
    """
    MoySkladClient와 같은 (status_code, payload) 계약을 가진 메모리 클라이언트.
    calls에 (endpoint, limit, offset) 기록.
    """

    def __init__(self, folders=None, products=None, stock=None):
        self.folders = list(folders or [])
        self.products = list(products or [])
        self.stock = list(stock or [])
        self.errors: dict[str, tuple[int, dict]] = {}
        self.calls: list[tuple] = []

    def _page(self, endpoint, rows, limit, offset):
        self.calls.append((endpoint, limit, offset))
        if endpoint in self.errors:
            return self.errors[endpoint]
        return 200, {"meta": {"size": len(rows), "limit": limit, "offset": offset}, "rows": rows[offset : offset + limit]}

    def get_product_folders(self, limit, offset=0):
        return self._page("productfolder", self.folders, limit, offset)

    def get_products(self, limit, offset=0):
        return self._page("product", self.products, limit, offset)

    def get_current_stock(self):
        self.calls.append(("stock", None, None))
        if "stock" in self.errors:
            return self.errors["stock"]
        return 200, {"_raw": self.stock}


@pytest.fixture
def payloads():
    return MoySkladPayloads


@pytest.fixture
def fake_moysklad():
    return FakeMoySkladClient()


def pytest_configure(config):
    """Pytest 마커 등록."""
    config.addinivalue_line("markers", "unit: 단위 테스트 (DB 불필요)")
    config.addinivalue_line("markers", "integration: 통합 테스트 (메모리 DB/TestClient)")
    config.addinivalue_line("markers", "slow: 느린 테스트 (> 1분)")
