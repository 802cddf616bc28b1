"""
Unit Tests for the HTTP Routes

The app is built with fake-backed services and the scheduler disabled, then
driven through FastAPI's TestClient.

Run with:
    pytest tests/unit/test_app.py -v
"""

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from core.config import Settings
from core.errors import UpstreamError
from core.schemas import CoinMetaResponse, MappingEntry
from services.cache_keys import history_cache_key
from services.fx_service import FXService
from services.price_service import PriceService
from storage.mapping_store import MappingStore
from storage.meta_store import CoinMetaStore
from tests.unit.fakes import DEFAULT_MARKETS, FakeListings, FakeMarket, FakeRates, make_history


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def price_service(tmp_path):
    meta_store = CoinMetaStore(str(tmp_path / "coins_meta.json"))
    meta_store.set(CoinMetaResponse(coins=[coin.to_meta() for coin in DEFAULT_MARKETS]))
    return PriceService(
        market=FakeMarket(),
        listings=FakeListings(),
        meta_store=meta_store,
        map_store=MappingStore(str(tmp_path / "cmc_mapping.json")),
    )


@pytest.fixture
def client(price_service, tmp_path):
    app = create_app(
        config=Settings(_env_file=None, data_dir=str(tmp_path)),
        price_service=price_service,
        fx_service=FXService(FakeRates()),
        enable_scheduler=False,
    )
    with TestClient(app) as test_client:
        yield test_client


def warm_bitcoin(service: PriceService) -> None:
    service.cache.set_history(history_cache_key("bitcoin", "365", "daily"), make_history("bitcoin"))


# ============================================
# System
# ============================================

class TestSystemRoutes:
    """Tests for root and health endpoints"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["jobs"] == {}

    def test_unknown_path_is_404(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert response.json()["detail"] == "Not found"


# ============================================
# Prices
# ============================================

class TestLatestPrices:
    """Tests for /prices/latest"""

    def test_latest_prices_filtered(self, client):
        """Verify ids are split and filtered from the top listing"""
        response = client.get("/prices/latest", params={"ids": "bitcoin,ETHEREUM"})

        assert response.status_code == 200
        body = response.json()
        assert sorted(body["prices"]) == ["bitcoin", "ethereum"]
        assert body["prices"]["bitcoin"]["usd"] == 42000.0
        assert "updated_at" not in body

    def test_second_request_served_from_cache(self, client, price_service):
        client.get("/prices/latest")
        response = client.get("/prices/latest")

        assert response.json()["cached"] is True
        assert price_service.market.calls["simple_prices"] == 1

    def test_upstream_failure_is_502(self, client, price_service):
        """Verify an UpstreamError surfaces as 502"""
        async def broken(ids):
            raise UpstreamError("coingecko down", provider="coingecko", status=500)

        price_service.market.get_simple_prices = broken
        response = client.get("/prices/latest")

        assert response.status_code == 502
        assert "coingecko down" in response.json()["detail"]


class TestHistoryRoute:
    """Tests for /prices/history"""

    def test_not_warm_is_503(self, client, price_service):
        """Verify a cold series returns 503 without any upstream call"""
        response = client.get("/prices/history", params={"id": "bitcoin", "days": "7"})

        assert response.status_code == 503
        assert price_service.market.calls["market_chart"] == 0

    def test_warm_series_sliced(self, client, price_service):
        warm_bitcoin(price_service)

        response = client.get("/prices/history", params={"id": "bitcoin", "days": "7", "interval": "daily"})

        assert response.status_code == 200
        body = response.json()
        assert body["days"] == "7"
        assert body["cached"] is True
        assert len(body["prices"]) == 8

    def test_warm_max_series_served(self, client, price_service):
        """Verify days=max reads its own warmed series unsliced"""
        price_service.cache.set_history(
            history_cache_key("bitcoin", "max", "daily"), make_history("bitcoin", points=1000, days="max")
        )

        response = client.get("/prices/history", params={"id": "bitcoin", "days": "max"})

        assert response.status_code == 200
        assert response.json()["days"] == "max"
        assert len(response.json()["prices"]) == 1000
        assert price_service.market.calls["market_chart"] == 0

    def test_unsupported_days_is_400(self, client):
        response = client.get("/prices/history", params={"id": "bitcoin", "days": "14"})

        assert response.status_code == 400
        assert response.json()["detail"] == "days must be one of: 7,30,90,365,max"

    def test_missing_id_is_400(self, client):
        response = client.get("/prices/history", params={"days": "7"})

        assert response.status_code == 400

    def test_cmc_id_resolved_through_mapping(self, client, price_service):
        """Verify cmc_id is resolved to a CoinGecko id before the cache lookup"""
        price_service.map_store.set([MappingEntry(cmc_id="1", symbol="BTC", name="Bitcoin", coingecko_id="bitcoin")])
        warm_bitcoin(price_service)

        response = client.get("/prices/history", params={"cmc_id": "1", "days": "30"})

        assert response.status_code == 200
        assert response.json()["id"] == "bitcoin"
        assert len(response.json()["prices"]) == 31

    def test_unresolvable_cmc_id_is_400(self, client):
        response = client.get("/prices/history", params={"cmc_id": "1", "days": "30"})

        assert response.status_code == 400


# ============================================
# FX
# ============================================

class TestFXRoute:
    """Tests for /fx"""

    def test_rates_rebased_to_usd(self, client):
        response = client.get("/fx")

        assert response.status_code == 200
        body = response.json()
        assert body["base"] == "USD"
        assert body["rates"]["USD"] == 1.0
        assert body["rates"]["EUR"] == pytest.approx(0.8)
