"""
Map data pipeline for a viewport.

``MapApiClient`` talks to the shop API, ``ShopMapSession`` keeps the
current user and OSM shop lists, debounces map settle events, refreshes
both for a settled viewport and recomputes the visible set through the
layer filter.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
import threading

import requests

from bitcoinlatte.debounce import ViewportDebouncer
from bitcoinlatte.geo import Bounds, LatLng, Viewport, dynamic_radius
from bitcoinlatte.layers import LayerPreferences, LayerState, merge_visible_shops
from bitcoinlatte.models import SOURCE_OSM, SOURCE_USER, Shop

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8000"
REQUEST_TIMEOUT = 30
OSM_ID_PREFIX = "osm-"

USER_KIND = "user"
OSM_KIND = "osm"


class MapApiError(RuntimeError):
    """Raised when a shop API request fails or answers with a non-2xx status."""


def detail_path(shop: Shop) -> str | None:
    """Detail page for a shop, or None for OSM shops which have no backing record."""
    if shop.source == SOURCE_OSM or shop.id.startswith(OSM_ID_PREFIX):
        return None
    return f"/shops/{shop.id}"


class MapApiClient:
    def __init__(self, base_url: str = DEFAULT_API_URL, session: requests.Session | None = None, timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get_json(self, path: str, params: dict[str, object]) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise MapApiError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise MapApiError(f"GET {path} returned invalid JSON: {e}") from e

    def _get_shops(self, path: str, params: dict[str, object], list_key: str, source: str) -> list[Shop]:
        payload = self._get_json(path, params)
        try:
            return [Shop.from_payload(item, source=source) for item in payload.get(list_key) or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MapApiError(f"GET {path} returned an unexpected body: {e!r}") from e

    def get_user_shops(self, lat: float, lng: float, radius_km: float) -> list[Shop]:
        return self._get_shops("/api/shops", {"lat": lat, "lng": lng, "radius": radius_km}, "data", SOURCE_USER)

    def get_osm_shops(self, bbox: tuple[float, float, float, float]) -> list[Shop]:
        bbox_param = ",".join(str(value) for value in bbox)
        return self._get_shops("/api/osm-crypto-shops", {"bbox": bbox_param}, "shops", SOURCE_OSM)


class ShopMapSession:
    def __init__(
        self,
        client: MapApiClient,
        layers: LayerState | None = None,
        preferences: LayerPreferences | None = None,
        scheduler=None,
    ) -> None:
        self.client = client
        self.preferences = preferences
        if layers is None:
            layers = preferences.load() if preferences else LayerState()
        self.layers = layers
        self.user_shops: list[Shop] = []
        self.osm_shops: list[Shop] = []
        self.visible_shops: list[Shop] = []
        self._sequence = {USER_KIND: 0, OSM_KIND: 0}
        self._lock = threading.Lock()
        self.debouncer = ViewportDebouncer(lambda viewport: self.refresh(viewport), scheduler=scheduler)

    def _next_request(self, kind: str) -> int:
        with self._lock:
            self._sequence[kind] += 1
            return self._sequence[kind]

    def _apply(self, kind: str, request_id: int, shops: list[Shop]) -> bool:
        """Store ``shops`` unless a newer request of the same kind was started."""
        with self._lock:
            if request_id != self._sequence[kind]:
                logger.info(f"Discarding stale {kind} shop response #{request_id}")
                return False
            if kind == USER_KIND:
                self.user_shops = shops
            else:
                self.osm_shops = shops
            self._recompute_locked()
        return True

    def _recompute_locked(self) -> None:
        self.visible_shops = merge_visible_shops(self.user_shops, self.osm_shops, self.layers)

    def recompute(self) -> list[Shop]:
        with self._lock:
            self._recompute_locked()
            return list(self.visible_shops)

    def fetch_user_shops(self, center: LatLng, bounds: Bounds | None = None) -> bool:
        radius = dynamic_radius(bounds)
        request_id = self._next_request(USER_KIND)
        lat, lng = center
        try:
            shops = self.client.get_user_shops(lat, lng, radius)
        except MapApiError as e:
            logger.error(f"Error fetching user shops near ({lat}, {lng}) within {radius:.1f} km: {e}")
            return False
        return self._apply(USER_KIND, request_id, shops)

    def fetch_osm_shops(self, bounds: Bounds) -> bool:
        bbox = bounds.bbox()
        request_id = self._next_request(OSM_KIND)
        try:
            shops = self.client.get_osm_shops(bbox)
        except MapApiError as e:
            logger.error(f"Error fetching OSM shops for bbox {bbox}: {e}")
            return False
        return self._apply(OSM_KIND, request_id, shops)

    def refresh(self, viewport: Viewport) -> list[Shop]:
        """Fetch both shop sources for ``viewport`` concurrently and return the visible set."""
        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(self.fetch_user_shops, viewport.center, viewport.bounds)]
            if viewport.bounds is not None:
                futures.append(executor.submit(self.fetch_osm_shops, viewport.bounds))
            for future in futures:
                future.result()
        return self.recompute()

    def settle_viewport(self, viewport: Viewport) -> None:
        """Map settle event: the first one refreshes at once, later ones are debounced."""
        self.debouncer.settle(viewport)

    def close(self) -> None:
        self.debouncer.close()

    def toggle_layer(self, layer: str) -> LayerState:
        with self._lock:
            self.layers = self.layers.toggled(layer)
            self._recompute_locked()
            layers = self.layers
        if self.preferences is not None:
            self.preferences.save(layers)
        return layers

    def click(self, shop: Shop) -> str | None:
        path = detail_path(shop)
        if path is None:
            logger.debug(f"No detail page for OSM shop {shop.id}")
        return path
