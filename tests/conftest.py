"""Shared fixtures for map, store and API tests."""

import json
from pathlib import Path

import pytest

from bitcoinlatte.config import Settings


# ---------------------------------------------------------------------------
# Mock Overpass payloads
# ---------------------------------------------------------------------------

MOCK_OVERPASS_PAYLOAD = {
    "version": 0.6,
    "elements": [
        {
            "type": "node",
            "id": 101,
            "lat": 37.7751,
            "lon": -122.4180,
            "tags": {
                "name": "Satoshi Beans",
                "amenity": "cafe",
                "currency:XBT": "yes",
                "addr:housenumber": "12",
                "addr:street": "Market Street",
                "addr:city": "San Francisco",
                "addr:postcode": "94103",
                "website": "https://satoshibeans.example",
                "opening_hours": "Mo-Fr 07:00-17:00",
            },
        },
        {
            "type": "node",
            "id": 102,
            "lat": 37.7800,
            "lon": -122.4100,
            "tags": {"name:en": "Monero Mocha", "shop": "coffee", "currency:XMR": "yes", "currency:XBT": "yes"},
        },
        {
            "type": "node",
            "id": 103,
            "lat": 37.7700,
            "lon": -122.4300,
            "tags": {"name": "Cash Only Diner", "amenity": "restaurant", "currency:XBT": "no"},
        },
        {
            "type": "way",
            "id": 201,
            "nodes": [901, 902, 903],
            "tags": {"currency:LTC": "yes", "amenity": "cafe"},
        },
        {"type": "node", "id": 901, "lat": 37.7760, "lon": -122.4200},
        {"type": "node", "id": 902, "lat": 37.7761, "lon": -122.4201},
        {"type": "node", "id": 903, "lat": 37.7762, "lon": -122.4202},
    ],
}

MOCK_EMPTY_OVERPASS_PAYLOAD = {"version": 0.6, "elements": []}


def make_shop_record(**overrides):
    record = {
        "id": "shop-1",
        "name": "Latte Lightning",
        "address": "1 Embarcadero Center, San Francisco",
        "latitude": 37.7946,
        "longitude": -122.3999,
        "crypto_accepted": ["BTC", "Lightning"],
        "description": "Espresso bar taking sats",
        "website": "https://lattelightning.example",
        "phone": None,
        "hours": None,
        "approved": True,
        "submitted_by": None,
        "approved_by": "admin",
        "created_at": "2025-01-01T00:00:00+00:00",
    }
    record.update(overrides)
    return record


def write_store(path: Path, shops=(), submissions=()) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"shops": list(shops), "submissions": list(submissions)}), encoding="utf-8")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_file=tmp_path / "data" / "shops.json",
        layers_file=tmp_path / "data" / "local_storage.json",
        admin_token="secret-admin",
    )


# ---------------------------------------------------------------------------
# Deterministic timers
# ---------------------------------------------------------------------------

class ManualTimer:
    def __init__(self, due: float, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic stand-in for threading timers driven by ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def call_later(self, delay, callback):
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [timer for timer in self.timers if not timer.cancelled and timer.due <= target]
            if not due:
                break
            timer = min(due, key=lambda value: value.due)
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target
