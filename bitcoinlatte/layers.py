from __future__ import annotations

from dataclasses import asdict, dataclass, replace
import json
import logging
from pathlib import Path
from typing import Iterable

from bitcoinlatte.models import SOURCE_USER, Shop

logger = logging.getLogger(__name__)

LAYERS_STORAGE_KEY = "mapLayers"


@dataclass(slots=True)
class LayerState:
    BTC: bool = True
    BCH: bool = True
    LTC: bool = True
    XMR: bool = True
    userShops: bool = True

    def is_on(self, layer: str) -> bool:
        return bool(getattr(self, layer, False))

    def toggled(self, layer: str) -> "LayerState":
        if layer not in LAYER_NAMES:
            raise KeyError(f"Unknown map layer: {layer}")
        return replace(self, **{layer: not getattr(self, layer)})

    @property
    def active_count(self) -> int:
        return sum(1 for value in asdict(self).values() if value)

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "LayerState":
        known = {key: bool(value) for key, value in payload.items() if key in LAYER_NAMES}
        return cls(**known)


LAYER_NAMES = tuple(LayerState.__dataclass_fields__)


class LocalStorage:
    """A small string key-value store persisted as one JSON object on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as error:
            logger.warning(f"Ignoring unreadable storage file {self.path}: {error}")
            return {}
        return payload if isinstance(payload, dict) else {}

    def get_item(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        payload = self._read()
        payload[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


class LayerPreferences:
    def __init__(self, storage: LocalStorage, key: str = LAYERS_STORAGE_KEY) -> None:
        self.storage = storage
        self.key = key

    def load(self) -> LayerState:
        raw = self.storage.get_item(self.key)
        if raw is None:
            return LayerState()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Stored {self.key} value is not valid JSON, using defaults")
            return LayerState()
        if not isinstance(payload, dict):
            return LayerState()
        return LayerState.from_dict(payload)

    def save(self, layers: LayerState) -> None:
        self.storage.set_item(self.key, json.dumps(layers.to_dict()))


def merge_visible_shops(user_shops: Iterable[Shop], osm_shops: Iterable[Shop], layers: LayerState) -> list[Shop]:
    """Visible map set: user shops behind one flag, OSM shops if any of their currencies is on.

    The two sources share no identity space, so a place listed in both shows twice.
    """
    visible: list[Shop] = []
    if layers.userShops:
        visible.extend(replace(shop, source=SOURCE_USER) for shop in user_shops)

    for shop in osm_shops:
        if any(layers.is_on(code) for code in shop.crypto_accepted):
            visible.append(shop)
    return visible
