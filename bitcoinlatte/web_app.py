from __future__ import annotations

import logging
import math
from pathlib import Path
import secrets
import time

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from bitcoinlatte.config import Settings, load_settings
from bitcoinlatte.geo import DEFAULT_RADIUS_KM
from bitcoinlatte.geocoder import GeocodeService, GeocodingError, HereGeocoder, ValueSerpClient
from bitcoinlatte.layers import LAYERS_STORAGE_KEY
from bitcoinlatte.models import USER_CRYPTO_CODES
from bitcoinlatte.overpass import OverpassClient, OverpassError
from bitcoinlatte.state import NotFoundError, ShopStore

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent
TEMPLATES = Jinja2Templates(directory=str(BASE_DIR / "templates"))

DEFAULT_CENTER = (37.7749, -122.4194)
DEFAULT_ZOOM = 13
ADMIN_REVIEWER = "admin"

CRYPTO_INFO = {
    "BTC": {"name": "Bitcoin", "color": "#f7931a"},
    "BCH": {"name": "Bitcoin Cash", "color": "#22c55e"},
    "LTC": {"name": "Litecoin", "color": "#3b82f6"},
    "XMR": {"name": "Monero", "color": "#a855f7"},
}

BBOX_MISSING = "Missing bbox parameter. Format: south,west,north,east"
BBOX_INVALID = "Invalid bbox format. Expected: south,west,north,east (numbers)"


def create_app(
    settings: Settings,
    overpass: OverpassClient | None = None,
    geocoder: GeocodeService | None = None,
) -> FastAPI:
    app = FastAPI(title="BitcoinLatte")
    app.state.settings = settings
    app.state.store = ShopStore(settings.data_file)
    app.state.overpass = overpass or OverpassClient(url=settings.overpass_url)
    app.state.geocoder = geocoder or GeocodeService(
        HereGeocoder(settings.here_api_key),
        ValueSerpClient(settings.valueserp_api_key),
    )

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    def require_admin(request: Request) -> str:
        token = request.headers.get("X-Admin-Token", "")
        if not token:
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not _is_admin_token(app.state.settings, token):
            raise HTTPException(status_code=403, detail="Forbidden")
        return ADMIN_REVIEWER

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/")
    def home(request: Request):
        context = {
            "center": list(DEFAULT_CENTER),
            "zoom": DEFAULT_ZOOM,
            "crypto_info": CRYPTO_INFO,
            "layers_key": LAYERS_STORAGE_KEY,
            "default_radius_km": DEFAULT_RADIUS_KM,
        }
        return TEMPLATES.TemplateResponse(request=request, name="index.html", context=context)

    @app.get("/shops/{shop_id}")
    def shop_page(request: Request, shop_id: str):
        shop = _approved_shop_or_404(app.state.store, shop_id)
        return TEMPLATES.TemplateResponse(request=request, name="shop_detail.html", context={"shop": shop})

    @app.get("/api/shops")
    def list_shops(
        lat: str | None = None,
        lng: str | None = None,
        radius: str = str(int(DEFAULT_RADIUS_KM)),
        crypto: str | None = None,
    ):
        logger.info(f"GET /api/shops lat={lat} lng={lng} radius={radius} crypto={crypto}")
        store: ShopStore = app.state.store
        if lat and lng:
            lat_value = _parse_number(lat, "lat")
            lng_value = _parse_number(lng, "lng")
            radius_value = _parse_number(radius, "radius")
            shops = store.nearby(lat_value, lng_value, radius_value)
            logger.info(f"Found {len(shops)} shops within {radius_value} km")
            return {"data": [shop.to_dict() for shop in shops]}
        return {"data": [shop.to_dict() for shop in store.approved_shops(crypto=crypto)]}

    @app.post("/api/shops", status_code=201)
    def create_shop(body: dict = Body(...), reviewer: str = Depends(require_admin)):
        values = _validated_shop_fields(body)
        record = app.state.store.add_shop(values, approved_by=reviewer)
        return {"data": record.to_dict()}

    @app.get("/api/shops/{shop_id}")
    def get_shop(shop_id: str):
        try:
            record = app.state.store.get_shop(shop_id)
        except NotFoundError as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return {"data": record.to_dict()}

    @app.patch("/api/shops/{shop_id}")
    def update_shop(shop_id: str, body: dict = Body(...), reviewer: str = Depends(require_admin)):
        try:
            record = app.state.store.update_shop(shop_id, body)
        except NotFoundError as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return {"data": record.to_dict()}

    @app.delete("/api/shops/{shop_id}")
    def delete_shop(shop_id: str, reviewer: str = Depends(require_admin)):
        try:
            app.state.store.delete_shop(shop_id)
        except NotFoundError as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return {"success": True}

    @app.get("/api/osm-crypto-shops")
    def osm_crypto_shops(bbox: str | None = None):
        logger.info(f"[OSM API] Request received: bbox={bbox}")
        parsed = _parse_bbox(bbox)
        try:
            shops = app.state.overpass.fetch_shops(parsed)
        except OverpassError as error:
            logger.error(f"[OSM API] Failed to fetch shops for bbox {parsed}: {error}")
            return JSONResponse(
                {"error": "Failed to fetch OSM data", "message": str(error)},
                status_code=500,
            )
        return {
            "shops": [shop.to_dict() for shop in shops],
            "cached": False,
            "timestamp": int(time.time() * 1000),
            "count": len(shops),
        }

    @app.get("/api/geocode")
    def geocode(q: str | None = None, kind: str = Query("autosuggest", alias="type")):
        if not q:
            raise HTTPException(status_code=400, detail="Query parameter required")
        service: GeocodeService = app.state.geocoder
        try:
            if kind == "autosuggest":
                data = service.autosuggest(q)
            elif kind == "geocode":
                data = service.geocode(q)
            else:
                raise HTTPException(status_code=400, detail="Invalid type parameter")
        except GeocodingError as error:
            logger.error(f"Geocode API error: {error}")
            return JSONResponse({"error": str(error)}, status_code=500)
        return {"data": data}

    @app.get("/api/business-search")
    def business_search(q: str | None = None):
        if not q:
            raise HTTPException(status_code=400, detail="Query parameter required")
        try:
            results = app.state.geocoder.business_search(q)
        except GeocodingError as error:
            logger.error(f"Business search API error: {error}")
            return JSONResponse({"error": str(error)}, status_code=500)
        return {"data": results}

    @app.get("/api/submissions")
    def list_submissions(request: Request, status: str | None = None, count: str | None = None):
        store: ShopStore = app.state.store
        token = request.headers.get("X-Admin-Token", "")
        submitter = request.headers.get("X-Submitter")

        if token and _is_admin_token(app.state.settings, token):
            submissions = store.list_submissions(status=status)
        elif submitter:
            submissions = store.list_submissions(status=status, submitted_by=submitter)
        else:
            submissions = []

        if count == "true":
            return {"count": len(submissions)}
        return {"data": [submission.to_dict() for submission in submissions]}

    @app.post("/api/submissions", status_code=201)
    def create_submission(request: Request, body: dict = Body(...)):
        values = _validated_shop_fields(body)
        submission = app.state.store.add_submission(values, submitted_by=request.headers.get("X-Submitter"))
        return {"data": submission.to_dict()}

    @app.post("/api/submissions/approve")
    def review_submission(body: dict = Body(...), reviewer: str = Depends(require_admin)):
        submission_id = str(body.get("submissionId") or "")
        action = body.get("action")
        notes = body.get("notes")
        store: ShopStore = app.state.store
        try:
            if action == "approve":
                shop = store.approve_submission(submission_id, reviewer, notes)
                return {"data": shop.to_dict()}
            if action == "reject":
                submission = store.reject_submission(submission_id, reviewer, notes)
                return {"success": True, "data": submission.to_dict()}
        except NotFoundError as error:
            raise HTTPException(status_code=404, detail="Submission not found") from error
        raise HTTPException(status_code=400, detail="Invalid action")

    return app


def _is_admin_token(settings: Settings, token: str) -> bool:
    if not settings.admin_token:
        return False
    return secrets.compare_digest(token, settings.admin_token)


def _approved_shop_or_404(store: ShopStore, shop_id: str):
    try:
        shop = store.get_shop(shop_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail="Shop not found") from error
    if not shop.approved:
        raise HTTPException(status_code=404, detail="Shop not found")
    return shop


def _parse_number(value: str, name: str) -> float:
    try:
        number = float(value)
    except ValueError as error:
        raise HTTPException(status_code=400, detail=f"Invalid {name} parameter") from error
    if not math.isfinite(number):
        raise HTTPException(status_code=400, detail=f"Invalid {name} parameter")
    return number


def _parse_bbox(raw: str | None) -> tuple[float, float, float, float]:
    if not raw:
        raise HTTPException(status_code=400, detail=BBOX_MISSING)

    parts = raw.split(",")
    if len(parts) != 4:
        raise HTTPException(status_code=400, detail=BBOX_INVALID)
    try:
        values = [float(part) for part in parts]
    except ValueError as error:
        raise HTTPException(status_code=400, detail=BBOX_INVALID) from error
    if not all(math.isfinite(value) for value in values):
        raise HTTPException(status_code=400, detail=BBOX_INVALID)
    south, west, north, east = values
    return (south, west, north, east)


def _validated_shop_fields(body: dict) -> dict[str, object]:
    name = str(body.get("name") or "").strip()
    address = str(body.get("address") or "").strip()
    if not name or not address:
        raise HTTPException(status_code=400, detail="name and address are required")

    try:
        latitude = float(body["latitude"])
        longitude = float(body["longitude"])
    except (KeyError, TypeError, ValueError) as error:
        raise HTTPException(status_code=400, detail="latitude and longitude must be numbers") from error
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise HTTPException(status_code=400, detail="latitude and longitude are out of range")

    crypto = body.get("crypto_accepted")
    if not isinstance(crypto, list) or not crypto:
        raise HTTPException(status_code=400, detail="crypto_accepted must list at least one currency")
    unknown = [code for code in crypto if code not in USER_CRYPTO_CODES]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unsupported currencies: {', '.join(map(str, unknown))}")

    values: dict[str, object] = {
        "name": name,
        "address": address,
        "latitude": latitude,
        "longitude": longitude,
        "crypto_accepted": list(crypto),
    }
    for key in ("description", "website", "phone", "hours"):
        if body.get(key):
            values[key] = str(body[key])
    return values


app = create_app(load_settings())
