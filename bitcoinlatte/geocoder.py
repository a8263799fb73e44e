from __future__ import annotations

import json
import logging
import time
from typing import Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
import urllib.request

logger = logging.getLogger(__name__)

HERE_GEOCODE_URL = "https://geocode.search.hereapi.com/v1/geocode"
HERE_AUTOSUGGEST_URL = "https://autosuggest.search.hereapi.com/v1/autosuggest"
VALUESERP_SEARCH_URL = "https://api.valueserp.com/search"

# Autosuggest is biased towards this point until the caller passes one.
DEFAULT_FOCUS = (37.7749, -122.4194)
SUGGESTION_LIMIT = 5


class GeocodingError(RuntimeError):
    """Raised when a geocoding provider is unconfigured or its request fails."""


class _JsonApi:
    def __init__(
        self,
        api_key: str,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 30.0,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.sleeper = sleeper
        self.last_status = ""
        self.last_error_message = ""

    def _request_json(self, url: str) -> dict[str, object]:
        for attempt in range(self.max_retries):
            try:
                with urllib.request.urlopen(url, timeout=self.timeout_seconds) as response:
                    self.last_status = "OK"
                    return json.loads(response.read().decode("utf-8"))
            except HTTPError as error:
                self.last_status = f"HTTP_{error.code}"
                self.last_error_message = str(error.reason or error)
                # Client errors (bad key, bad query) will not improve on retry.
                if error.code < 500 or attempt == (self.max_retries - 1):
                    break
            except URLError as error:
                self.last_status = "NETWORK_ERROR"
                self.last_error_message = str(error.reason or error)
                if attempt == (self.max_retries - 1):
                    break
            except TimeoutError as error:
                self.last_status = "TIMEOUT"
                self.last_error_message = str(error)
                if attempt == (self.max_retries - 1):
                    break
            except json.JSONDecodeError as error:
                self.last_status = "INVALID_JSON"
                self.last_error_message = str(error)
                if attempt == (self.max_retries - 1):
                    break
            self.sleeper(self.retry_delay_seconds)

        raise GeocodingError(f"{self.last_status}: {self.last_error_message}")


class HereGeocoder(_JsonApi):
    def geocode(self, query: str, limit: int | None = None) -> dict[str, object]:
        if not self.api_key:
            raise GeocodingError("HERE API key not configured")
        params: dict[str, object] = {"q": query, "apiKey": self.api_key}
        if limit is not None:
            params["limit"] = limit
        return self._request_json(f"{HERE_GEOCODE_URL}?{urlencode(params)}")

    def autosuggest(self, query: str, at: tuple[float, float] = DEFAULT_FOCUS) -> dict[str, object]:
        if not self.api_key:
            raise GeocodingError("HERE API key not configured")
        params = {
            "q": query,
            "at": f"{at[0]},{at[1]}",
            "apiKey": self.api_key,
            "limit": SUGGESTION_LIMIT,
        }
        return self._request_json(f"{HERE_AUTOSUGGEST_URL}?{urlencode(params)}")

    def position_for(self, address: str) -> dict[str, float] | None:
        """Best-effort lookup of one address; None when unconfigured or on failure."""
        if not self.api_key:
            return None
        try:
            payload = self.geocode(address, limit=1)
        except GeocodingError as error:
            logger.warning(f"HERE enrichment failed for {address!r}: {error}")
            return None
        items = payload.get("items") or []
        if not items:
            return None
        return items[0].get("position")


class ValueSerpClient(_JsonApi):
    def search(self, query: str) -> dict[str, object]:
        if not self.api_key:
            raise GeocodingError("ValueSerp API key not configured")
        params = {
            "api_key": self.api_key,
            "q": query,
            "location": "United States",
            "google_domain": "google.com",
            "gl": "us",
            "hl": "en",
            "num": SUGGESTION_LIMIT,
            "output": "json",
        }
        return self._request_json(f"{VALUESERP_SEARCH_URL}?{urlencode(params)}")


def places_from_valueserp(payload: dict[str, object]) -> list[dict[str, object]]:
    """Reshape ValueSerp local results into HERE-style autosuggest items."""
    local_results = payload.get("local_results") or {}
    places = (local_results.get("places") or []) if isinstance(local_results, dict) else []

    items = []
    for place in places:
        title = place.get("title") or place.get("name")
        label = place.get("address") or f"{title}, {place.get('city') or ''}, {place.get('state') or ''}".strip()
        coordinates = place.get("gps_coordinates")
        position = None
        if coordinates:
            position = {"lat": coordinates.get("latitude"), "lng": coordinates.get("longitude")}
        items.append(
            {
                "title": title,
                "address": {"label": label},
                "position": position,
                "resultType": "place",
                "localityType": "city",
                "metadata": {
                    "rating": place.get("rating"),
                    "reviews": place.get("reviews"),
                    "type": place.get("type"),
                    "phone": place.get("phone"),
                    "website": place.get("website"),
                    "hours": place.get("hours"),
                },
            }
        )
    return items


def businesses_from_valueserp(payload: dict[str, object]) -> list[dict[str, object]]:
    local_results = payload.get("local_results") or []
    if not isinstance(local_results, list):
        return []
    return [
        {
            "name": place.get("title") or place.get("name"),
            "address": place.get("address") or f"{place.get('city') or ''}, {place.get('state') or ''}".strip(),
            "rating": place.get("rating"),
            "reviews": place.get("reviews"),
            "type": place.get("business_type"),
        }
        for place in local_results
    ]


class GeocodeService:
    def __init__(self, here: HereGeocoder, valueserp: ValueSerpClient) -> None:
        self.here = here
        self.valueserp = valueserp

    def autosuggest(self, query: str) -> dict[str, object]:
        if not self.valueserp.api_key:
            return self.here.autosuggest(query)

        try:
            items = places_from_valueserp(self.valueserp.search(query))
        except GeocodingError as error:
            logger.error(f"ValueSerp error, falling back to HERE: {error}")
            return self.here.autosuggest(query)

        if not items:
            return self.here.autosuggest(query)

        for item in items:
            label = item["address"]["label"]
            if item["position"] is None and label:
                position = self.here.position_for(label)
                if position:
                    item["position"] = position
        return {"items": items}

    def geocode(self, query: str) -> dict[str, object]:
        return self.here.geocode(query)

    def business_search(self, query: str) -> list[dict[str, object]]:
        return businesses_from_valueserp(self.valueserp.search(query))
