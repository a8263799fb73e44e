from argparse import ArgumentParser, ArgumentTypeError
import logging

from bitcoinlatte.config import load_settings
from bitcoinlatte.geo import Bounds, Viewport, dynamic_radius
from bitcoinlatte.layers import LAYER_NAMES, LayerPreferences, LocalStorage
from bitcoinlatte.map_client import MapApiClient, ShopMapSession
from bitcoinlatte.models import Shop


def _parse_bbox(raw: str) -> Bounds:
    try:
        parts = [float(part) for part in raw.split(",")]
    except ValueError:
        parts = []
    if len(parts) != 4:
        raise ArgumentTypeError(f"bbox must be four numbers south,west,north,east, got {raw!r}")
    return Bounds.from_bbox(parts)


def _format_shop(shop: Shop) -> str:
    crypto = ", ".join(shop.crypto_accepted)
    distance = f" [{shop.distance_km:.1f} km]" if shop.distance_km is not None else ""
    return f"{shop.source:<4} {shop.name} - {shop.address} ({crypto}){distance}"


def browse(lat: float, lng: float, bounds: Bounds | None, api_url: str) -> list[Shop]:
    settings = load_settings()
    preferences = LayerPreferences(LocalStorage(settings.layers_file))
    session = ShopMapSession(MapApiClient(api_url or settings.api_url), preferences=preferences)
    # The first settle of a session refreshes synchronously.
    session.settle_viewport(Viewport(center=(lat, lng), bounds=bounds))
    session.close()
    return session.recompute()


def toggle_layers(names: list[str]) -> dict[str, bool]:
    settings = load_settings()
    preferences = LayerPreferences(LocalStorage(settings.layers_file))
    layers = preferences.load()
    for name in names:
        layers = layers.toggled(name)
    if names:
        preferences.save(layers)
    return layers.to_dict()


def serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("bitcoinlatte.web_app:app", host=host, port=port)


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    parser = ArgumentParser(description="BitcoinLatte coffee shop map utility CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="Run the map web app and API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    browse_parser = sub.add_parser("browse", help="Fetch and print the shops visible in a map viewport")
    browse_parser.add_argument("--lat", type=float, required=True, help="Viewport center latitude")
    browse_parser.add_argument("--lng", type=float, required=True, help="Viewport center longitude")
    browse_parser.add_argument("--bbox", type=_parse_bbox, default=None, help="Viewport bounds as south,west,north,east")
    browse_parser.add_argument("--api-url", default="", help="Shop API base URL (default: BITCOINLATTE_API_URL)")

    layers_parser = sub.add_parser("layers", help="Show or toggle persisted map layers")
    layers_parser.add_argument("--toggle", action="append", default=[], choices=LAYER_NAMES, help="Layer to flip")

    args = parser.parse_args()

    if args.command == "serve":
        serve(args.host, args.port)
        return 0
    if args.command == "browse":
        shops = browse(args.lat, args.lng, args.bbox, args.api_url)
        print(f"Search radius: {dynamic_radius(args.bbox):.1f} km. Visible shops: {len(shops)}")
        for shop in shops:
            print(_format_shop(shop))
        return 0
    if args.command == "layers":
        for name, enabled in toggle_layers(args.toggle).items():
            print(f"{name:<10} {'on' if enabled else 'off'}")
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
