import httpx
import pytest

from storefront_sync.moysklad_client import MoySkladClient


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    # tenacity 대기 제거
    monkeypatch.setattr(MoySkladClient._send.retry, "sleep", lambda _: None)


def _client(handler) -> MoySkladClient:
    return MoySkladClient(
        token="secret",
        base_url="https://moysklad.test/api/remap/1.2",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.unit
class TestMoySkladClient:
    def test_headers_and_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["auth"] = request.headers.get("Authorization")
            seen["accept"] = request.headers.get("Accept")
            return httpx.Response(200, json={"meta": {"size": 0}, "rows": []})

        status, payload = _client(handler).get_products(limit=100, offset=200)

        assert status == 200
        assert payload["rows"] == []
        assert seen["auth"] == "Bearer secret"
        assert seen["accept"] == "application/json;charset=utf-8"
        assert seen["url"].path == "/api/remap/1.2/entity/product"
        assert seen["url"].params["expand"] == "images"
        assert seen["url"].params["order"] == "updated,desc"
        assert seen["url"].params["offset"] == "200"

    def test_list_body_wrapped(self):
        def handler(request):
            return httpx.Response(200, json=[{"assortmentId": "p1", "stock": 1}])

        status, payload = _client(handler).get_current_stock()
        assert status == 200
        assert payload == {"_raw": [{"assortmentId": "p1", "stock": 1}]}

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad gateway")

        status, payload = _client(handler).get_product_folders(limit=1000)
        assert status == 502
        assert payload == {"_raw_text": "Bad gateway"}

    def test_non_2xx_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"errors": []})

        status, _ = _client(handler).get_product_folders(limit=1000)
        assert status == 500
        assert len(calls) == 1

    def test_rate_limit_retried_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, json={"errors": []})
            return httpx.Response(200, json={"rows": []})

        status, _ = _client(handler).get_product_folders(limit=1000)
        assert status == 200
        assert len(calls) == 2

    def test_rate_limit_exhausted(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        status, payload = _client(handler).get_product_folders(limit=1000)
        assert status == 429
        assert payload == {"_raw_text": "rate limited"}
        assert len(calls) == 3

    def test_transport_error_reraised_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(httpx.ConnectError):
            _client(handler).get_current_stock()
        assert len(calls) == 3
