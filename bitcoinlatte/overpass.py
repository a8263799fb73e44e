"""
OpenStreetMap lookup for cryptocurrency-accepting shops.

Builds an Overpass QL union over the ``currency:*`` tags inside a bounding
box, posts it to the Overpass interpreter and turns the returned nodes and
ways into map ``Shop`` records.
"""

from __future__ import annotations

import logging

import requests

from bitcoinlatte.models import SOURCE_OSM, Shop

logger = logging.getLogger(__name__)

DEFAULT_OVERPASS_URL = "https://overpass-api.de/api/interpreter"
REQUEST_TIMEOUT = 30  # seconds, Overpass itself is capped at 25

# OSM tag -> currency code shown on the map
CURRENCY_TAGS = {
    "currency:XBT": "BTC",
    "currency:BCH": "BCH",
    "currency:LTC": "LTC",
    "currency:XMR": "XMR",
}

UNNAMED_SHOP = "Unnamed Shop"
ADDRESS_UNAVAILABLE = "Address not available"
NAME_TAGS = ("name", "name:en")
ADDRESS_TAGS = ("addr:housenumber", "addr:street", "addr:city", "addr:postcode")


class OverpassError(RuntimeError):
    """Raised when the Overpass API cannot be reached or answers with an error."""


def build_overpass_query(bbox) -> str:
    """Build the Overpass QL query for ``bbox`` = (south, west, north, east)."""
    south, west, north, east = bbox
    area = f"({south},{west},{north},{east})"

    statements = []
    for tag in CURRENCY_TAGS:
        statements.append(f'  node["{tag}"="yes"]{area};')
        statements.append(f'  way["{tag}"="yes"]{area};')

    lines = ["[out:json][timeout:25];", "(", *statements, ");", "out body;", ">;", "out skel qt;"]
    return "\n".join(lines)


def parse_osm_element(element: dict, way_nodes: dict[int, tuple[float, float]]) -> Shop | None:
    """Turn one Overpass element into a Shop.

    Returns None when the element accepts none of the known currencies or
    when no coordinate can be resolved. Ways are placed at their first
    member node rather than a true centroid.
    """
    tags = element.get("tags") or {}

    crypto_accepted = [code for tag, code in CURRENCY_TAGS.items() if tags.get(tag) == "yes"]
    if not crypto_accepted:
        return None

    element_type = element.get("type")
    lat = lon = None
    if element_type == "node":
        lat = element.get("lat")
        lon = element.get("lon")
    elif element_type == "way" and element.get("nodes"):
        coords = way_nodes.get(element["nodes"][0])
        if coords:
            lat, lon = coords

    if lat is None or lon is None:
        return None

    name = next((tags[key] for key in NAME_TAGS if tags.get(key)), UNNAMED_SHOP)
    address = ", ".join(tags[key] for key in ADDRESS_TAGS if tags.get(key)) or ADDRESS_UNAVAILABLE

    return Shop(
        id=f"osm-{element_type}-{element.get('id')}",
        name=name,
        address=address,
        latitude=float(lat),
        longitude=float(lon),
        crypto_accepted=crypto_accepted,
        source=SOURCE_OSM,
        shop_type=tags.get("shop") or tags.get("amenity") or "unknown",
        website=tags.get("website"),
        phone=tags.get("phone"),
        opening_hours=tags.get("opening_hours"),
        osm_id=element.get("id"),
        osm_type=element_type,
    )


def parse_overpass_payload(payload: dict) -> list[Shop]:
    elements = payload.get("elements") or []

    way_nodes: dict[int, tuple[float, float]] = {}
    for element in elements:
        if element.get("type") == "node" and element.get("lat") is not None and element.get("lon") is not None:
            way_nodes[element["id"]] = (element["lat"], element["lon"])

    shops = []
    for element in elements:
        shop = parse_osm_element(element, way_nodes)
        if shop is not None:
            shops.append(shop)
    return shops


class OverpassClient:
    def __init__(self, url: str = DEFAULT_OVERPASS_URL, session: requests.Session | None = None, timeout: float = REQUEST_TIMEOUT):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_shops(self, bbox) -> list[Shop]:
        query = build_overpass_query(bbox)
        try:
            response = self.session.post(self.url, data={"data": query}, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error(f"Overpass request failed for bbox {bbox}: {e}")
            raise OverpassError(f"Overpass API error: {e}") from e
        except ValueError as e:
            logger.error(f"Overpass returned invalid JSON for bbox {bbox}: {e}")
            raise OverpassError(f"Overpass API returned invalid JSON: {e}") from e

        shops = parse_overpass_payload(payload)
        logger.info(f"Overpass returned {len(shops)} crypto shops for bbox {bbox}")
        return shops
