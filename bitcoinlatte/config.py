from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from bitcoinlatte.map_client import DEFAULT_API_URL
from bitcoinlatte.overpass import DEFAULT_OVERPASS_URL

BASE_DIR = Path(__file__).resolve().parent.parent


@dataclass(slots=True)
class Settings:
    data_file: Path
    layers_file: Path
    here_api_key: str = ""
    valueserp_api_key: str = ""
    admin_token: str = ""
    overpass_url: str = DEFAULT_OVERPASS_URL
    api_url: str = DEFAULT_API_URL


def load_env_file(base_dir: Path, filename: str = ".env") -> None:
    """Load simple KEY=VALUE pairs from a local .env file.

    Existing environment variables are preserved.
    """
    env_path = base_dir / filename
    if not env_path.exists():
        return
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            os.environ.setdefault(key, value)


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip() or default


def load_settings(base_dir: Path = BASE_DIR) -> Settings:
    load_env_file(base_dir)

    data_file = Path(_env("BITCOINLATTE_DATA_FILE", str(base_dir / "data" / "shops.json")))
    layers_file = Path(_env("BITCOINLATTE_LAYERS_FILE", str(base_dir / "data" / "local_storage.json")))
    return Settings(
        data_file=data_file,
        layers_file=layers_file,
        here_api_key=_env("HERE_API_KEY"),
        valueserp_api_key=_env("VALUESERP_API_KEY"),
        admin_token=_env("BITCOINLATTE_ADMIN_TOKEN"),
        overpass_url=_env("OVERPASS_URL", DEFAULT_OVERPASS_URL),
        api_url=_env("BITCOINLATTE_API_URL", DEFAULT_API_URL),
    )
