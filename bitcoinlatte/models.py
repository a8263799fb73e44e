from __future__ import annotations

from dataclasses import asdict, dataclass, field

USER_CRYPTO_CODES = ("BTC", "Lightning", "BCH", "LTC", "XMR", "ETH", "USDC", "USDT", "DOGE")

SOURCE_USER = "user"
SOURCE_OSM = "osm"

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"


@dataclass(slots=True)
class Shop:
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    crypto_accepted: list[str] = field(default_factory=list)
    source: str = SOURCE_USER
    distance_km: float | None = None
    shop_type: str | None = None
    website: str | None = None
    phone: str | None = None
    opening_hours: str | None = None
    osm_id: int | None = None
    osm_type: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, object], source: str | None = None) -> "Shop":
        resolved_source = source or str(payload.get("source") or SOURCE_USER)
        shop = cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or ""),
            address=str(payload.get("address") or ""),
            latitude=float(payload["latitude"]),
            longitude=float(payload["longitude"]),
            crypto_accepted=[str(code) for code in payload.get("crypto_accepted") or []],
            source=resolved_source,
        )
        if payload.get("distance_km") is not None:
            shop.distance_km = float(payload["distance_km"])
        if resolved_source == SOURCE_OSM:
            shop.shop_type = payload.get("shop_type")
            shop.website = payload.get("website")
            shop.phone = payload.get("phone")
            shop.opening_hours = payload.get("opening_hours")
            shop.osm_id = payload.get("osm_id")
            shop.osm_type = payload.get("osm_type")
        return shop

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(slots=True)
class ShopRecord:
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    crypto_accepted: list[str] = field(default_factory=list)
    description: str | None = None
    website: str | None = None
    phone: str | None = None
    hours: str | None = None
    approved: bool = True
    submitted_by: str | None = None
    approved_by: str | None = None
    created_at: str = ""

    def to_shop(self, distance_km: float | None = None) -> Shop:
        return Shop(
            id=self.id,
            name=self.name,
            address=self.address,
            latitude=self.latitude,
            longitude=self.longitude,
            crypto_accepted=list(self.crypto_accepted),
            source=SOURCE_USER,
            distance_km=distance_km,
        )

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(slots=True)
class Submission:
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    crypto_accepted: list[str] = field(default_factory=list)
    description: str | None = None
    website: str | None = None
    phone: str | None = None
    hours: str | None = None
    status: str = STATUS_PENDING
    submitted_by: str | None = None
    reviewed_by: str | None = None
    reviewed_at: str | None = None
    review_notes: str | None = None
    created_at: str = ""

    def to_dict(self) -> dict[str, object]:
        return asdict(self)
