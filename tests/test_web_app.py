from pathlib import Path
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from bitcoinlatte.config import Settings
from bitcoinlatte.geocoder import GeocodingError
from bitcoinlatte.models import Shop
from bitcoinlatte.overpass import OverpassError
from bitcoinlatte.web_app import create_app
from tests.conftest import make_shop_record, write_store

ADMIN = {"X-Admin-Token": "secret-admin"}

SUBMISSION = {
    "name": "Sats Cafe",
    "address": "5 Main St, New York",
    "latitude": 40.0,
    "longitude": -73.9,
    "crypto_accepted": ["BTC", "Lightning"],
    "website": "https://sats.example",
}


def _client(settings: Settings, overpass=None, geocoder=None) -> TestClient:
    return TestClient(create_app(settings, overpass=overpass or MagicMock(), geocoder=geocoder or MagicMock()))


def test_health_endpoint_reports_ok(settings: Settings) -> None:
    response = _client(settings).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_home_page_renders_leaflet_map_with_layer_toggles(settings: Settings) -> None:
    response = _client(settings).get("/")

    assert response.status_code == 200
    assert 'id="shop-map"' in response.text
    assert "leaflet@1.9.4" in response.text
    assert 'data-layer="userShops"' in response.text
    for code in ("BTC", "BCH", "LTC", "XMR"):
        assert f'data-layer="{code}"' in response.text
    assert 'const LAYERS_KEY = "mapLayers";' in response.text
    assert "SETTLE_DELAY_MS = 500" in response.text


def test_shops_near_point_are_returned_with_distance(settings: Settings) -> None:
    write_store(
        settings.data_file,
        shops=[
            make_shop_record(id="near", latitude=37.7750, longitude=-122.4195),
            make_shop_record(id="far", latitude=34.0522, longitude=-118.2437),
        ],
    )

    response = _client(settings).get("/api/shops", params={"lat": 37.7749, "lng": -122.4194, "radius": 10})

    assert response.status_code == 200
    data = response.json()["data"]
    assert [shop["id"] for shop in data] == ["near"]
    assert data[0]["source"] == "user"
    assert data[0]["distance_km"] < 1


def test_shops_without_location_list_all_approved(settings: Settings) -> None:
    write_store(
        settings.data_file,
        shops=[
            make_shop_record(id="a", crypto_accepted=["BTC"]),
            make_shop_record(id="b", crypto_accepted=["ETH"]),
            make_shop_record(id="c", approved=False),
        ],
    )
    client = _client(settings)

    assert {shop["id"] for shop in client.get("/api/shops").json()["data"]} == {"a", "b"}
    assert [shop["id"] for shop in client.get("/api/shops", params={"crypto": "ETH"}).json()["data"]] == ["b"]


def test_shops_rejects_non_numeric_coordinates(settings: Settings) -> None:
    response = _client(settings).get("/api/shops", params={"lat": "north", "lng": "1"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid lat parameter"}


def test_shop_detail_api_and_page(settings: Settings) -> None:
    write_store(settings.data_file, shops=[make_shop_record(id="shop-1"), make_shop_record(id="draft", approved=False)])
    client = _client(settings)

    assert client.get("/api/shops/shop-1").json()["data"]["name"] == "Latte Lightning"
    assert client.get("/api/shops/missing").status_code == 404

    page = client.get("/shops/shop-1")
    assert page.status_code == 200
    assert "Latte Lightning" in page.text
    assert "Lightning</li>" in page.text
    assert client.get("/shops/draft").status_code == 404


def test_admin_shop_endpoints_require_token(settings: Settings) -> None:
    write_store(settings.data_file, shops=[make_shop_record(id="shop-1")])
    client = _client(settings)

    assert client.post("/api/shops", json=SUBMISSION).status_code == 401
    assert client.post("/api/shops", json=SUBMISSION, headers={"X-Admin-Token": "wrong"}).status_code == 403
    assert client.delete("/api/shops/shop-1").status_code == 401

    created = client.post("/api/shops", json=SUBMISSION, headers=ADMIN)
    assert created.status_code == 201
    assert created.json()["data"]["approved"] is True

    patched = client.patch("/api/shops/shop-1", json={"phone": "+1 555 0100"}, headers=ADMIN)
    assert patched.json()["data"]["phone"] == "+1 555 0100"
    assert client.delete("/api/shops/shop-1", headers=ADMIN).json() == {"success": True}
    assert client.delete("/api/shops/shop-1", headers=ADMIN).status_code == 404


def test_admin_endpoints_forbidden_when_no_token_configured(settings: Settings) -> None:
    settings.admin_token = ""

    response = _client(settings).post("/api/shops", json=SUBMISSION, headers=ADMIN)

    assert response.status_code == 403


def test_osm_endpoint_requires_bbox(settings: Settings) -> None:
    client = _client(settings)

    missing = client.get("/api/osm-crypto-shops")
    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing bbox parameter. Format: south,west,north,east"}

    for bad in ("1,2,3", "a,b,c,d", "1,2,3,nan"):
        response = client.get("/api/osm-crypto-shops", params={"bbox": bad})
        assert response.status_code == 400
        assert "Invalid bbox format" in response.json()["error"]


def test_osm_endpoint_returns_parsed_shops(settings: Settings) -> None:
    overpass = MagicMock()
    overpass.fetch_shops.return_value = [
        Shop(id="osm-node-1", name="Satoshi Beans", address="Address not available", latitude=1.0, longitude=2.0, crypto_accepted=["BTC"], source="osm", shop_type="cafe", osm_id=1, osm_type="node")
    ]

    response = _client(settings, overpass=overpass).get("/api/osm-crypto-shops", params={"bbox": "37.7,-122.5,37.85,-122.35"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["count"] == 1
    assert payload["cached"] is False
    assert isinstance(payload["timestamp"], int)
    assert payload["shops"][0]["id"] == "osm-node-1"
    assert payload["shops"][0]["osm_id"] == 1
    assert payload["shops"][0]["osm_type"] == "node"
    assert payload["shops"][0]["shop_type"] == "cafe"
    overpass.fetch_shops.assert_called_once_with((37.7, -122.5, 37.85, -122.35))


def test_osm_endpoint_reports_upstream_failure(settings: Settings) -> None:
    overpass = MagicMock()
    overpass.fetch_shops.side_effect = OverpassError("Overpass API error: 504")

    response = _client(settings, overpass=overpass).get("/api/osm-crypto-shops", params={"bbox": "1,2,3,4"})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch OSM data", "message": "Overpass API error: 504"}


def test_geocode_endpoint_dispatches_by_type(settings: Settings) -> None:
    geocoder = MagicMock()
    geocoder.autosuggest.return_value = {"items": [{"title": "Blue Bottle"}]}
    geocoder.geocode.return_value = {"items": [{"title": "1 Market St"}]}
    client = _client(settings, geocoder=geocoder)

    assert client.get("/api/geocode", params={"q": "blue"}).json() == {"data": {"items": [{"title": "Blue Bottle"}]}}
    assert client.get("/api/geocode", params={"q": "1 market", "type": "geocode"}).json()["data"]["items"][0]["title"] == "1 Market St"
    assert client.get("/api/geocode", params={"q": "x", "type": "reverse"}).status_code == 400
    assert client.get("/api/geocode").status_code == 400


def test_geocode_endpoint_reports_provider_errors(settings: Settings) -> None:
    geocoder = MagicMock()
    geocoder.autosuggest.side_effect = GeocodingError("HERE API key not configured")

    response = _client(settings, geocoder=geocoder).get("/api/geocode", params={"q": "cafe"})

    assert response.status_code == 500
    assert response.json() == {"error": "HERE API key not configured"}


def test_business_search_endpoint(settings: Settings) -> None:
    geocoder = MagicMock()
    geocoder.business_search.return_value = [{"name": "Sats Cafe", "address": "NYC", "rating": 4.5, "reviews": 10, "type": "Cafe"}]
    client = _client(settings, geocoder=geocoder)

    assert client.get("/api/business-search", params={"q": "sats"}).json()["data"][0]["name"] == "Sats Cafe"
    assert client.get("/api/business-search").status_code == 400


def test_submission_workflow(settings: Settings) -> None:
    client = _client(settings)

    created = client.post("/api/submissions", json=SUBMISSION, headers={"X-Submitter": "alice"})
    assert created.status_code == 201
    submission_id = created.json()["data"]["id"]
    assert created.json()["data"]["status"] == "pending"

    assert client.get("/api/submissions").json() == {"data": []}
    assert len(client.get("/api/submissions", headers={"X-Submitter": "alice"}).json()["data"]) == 1
    assert client.get("/api/submissions", params={"count": "true", "status": "pending"}, headers=ADMIN).json() == {"count": 1}

    approved = client.post(
        "/api/submissions/approve",
        json={"submissionId": submission_id, "action": "approve", "notes": "checked"},
        headers=ADMIN,
    )
    assert approved.status_code == 200
    shop_id = approved.json()["data"]["id"]

    nearby = client.get("/api/shops", params={"lat": 40.0, "lng": -73.9, "radius": 5}).json()["data"]
    assert [shop["id"] for shop in nearby] == [shop_id]


def test_submission_review_errors(settings: Settings) -> None:
    client = _client(settings)
    submission_id = client.post("/api/submissions", json=SUBMISSION).json()["data"]["id"]

    assert client.post("/api/submissions/approve", json={"submissionId": submission_id, "action": "approve"}).status_code == 401
    assert client.post("/api/submissions/approve", json={"submissionId": "nope", "action": "reject"}, headers=ADMIN).status_code == 404
    assert client.post("/api/submissions/approve", json={"submissionId": submission_id, "action": "archive"}, headers=ADMIN).status_code == 400

    rejected = client.post("/api/submissions/approve", json={"submissionId": submission_id, "action": "reject"}, headers=ADMIN)
    assert rejected.json()["success"] is True
    assert rejected.json()["data"]["status"] == "rejected"


def test_submission_validation(settings: Settings) -> None:
    client = _client(settings)

    assert client.post("/api/submissions", json={**SUBMISSION, "name": ""}).status_code == 400
    assert client.post("/api/submissions", json={**SUBMISSION, "latitude": "north"}).status_code == 400
    assert client.post("/api/submissions", json={**SUBMISSION, "latitude": 120}).status_code == 400
    assert client.post("/api/submissions", json={**SUBMISSION, "crypto_accepted": []}).status_code == 400

    unsupported = client.post("/api/submissions", json={**SUBMISSION, "crypto_accepted": ["BTC", "SHIB"]})
    assert unsupported.status_code == 400
    assert unsupported.json() == {"error": "Unsupported currencies: SHIB"}
