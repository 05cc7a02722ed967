#!/usr/bin/env python3
"""Render the base map with every saved claim filled in.

Reads claims either from a SQLite claim database or from a running claim
server, replays them onto the map image and writes a PNG.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

BASE_DIR = Path(__file__).resolve().parent
if str(BASE_DIR.parent) not in sys.path:
    sys.path.insert(0, str(BASE_DIR.parent))

from mapclaim.claims import SavedClaim
from mapclaim.logging_config import configure_logging
from mapclaim.overlay import OverlayManager
from mapclaim.raster import BaseRaster
from mapclaim.store import SqliteClaimStore, StoreUnavailable

logger = logging.getLogger("mapclaim.export")


def load_claims(db: str, server: Optional[str] = None) -> List[SavedClaim]:
    """Fetch saved claims from a claim server or an existing SQLite database."""
    if server:
        from mapclaim.http_store import HttpClaimStore

        store = HttpClaimStore(server)
        try:
            return store.list_claims()
        except StoreUnavailable as exc:
            raise SystemExit(f"Could not load claims: {exc}")

    db_path = Path(db)
    if not db_path.is_file():
        raise SystemExit(f"Claim database not found: {db_path}")
    try:
        store = SqliteClaimStore(db_path)
        try:
            return store.list_claims()
        finally:
            store.close()
    except StoreUnavailable as exc:
        raise SystemExit(f"Could not load claims: {exc}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Export the claimed map as PNG.")
    parser.add_argument("map", help="Base map image")
    parser.add_argument("--db", default="mapdata.db", help="SQLite claim database")
    parser.add_argument("--server", default=None, help="Claim server URL (overrides --db)")
    parser.add_argument("--out", default=None, help="Output PNG (default: <map>-claims.png)")
    parser.add_argument("--white-threshold", type=int, default=250)
    parser.add_argument("--radius", type=float, default=80, help="Seed recovery radius")
    parser.add_argument("--stats", action="store_true", help="Print region statistics")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    configure_logging(args.log_level)
    map_path = Path(args.map)
    if not map_path.exists():
        raise SystemExit(f"File not found: {map_path}")

    raster = BaseRaster.load(map_path, white_threshold=args.white_threshold)
    claims = load_claims(args.db, args.server)

    manager = OverlayManager(raster, saved_recovery_radius=args.radius)
    rendered = manager.rebuild_saved(claims)

    out_path = Path(args.out) if args.out else map_path.with_name(f"{map_path.stem}-claims.png")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(manager.export_png())
    print(f"Rendered {len(rendered)} of {len(claims)} claims to {out_path}")

    if args.stats:
        _labels, region_count = raster.claimable_regions()
        print(f"Claimable regions: {region_count}")
        print(f"Claimed pixels: {manager.saved.filled_count()}")
        missing = sorted(c.id for c in claims if c.id not in rendered)
        if missing:
            print(f"Claims not rendered (seed off any free region): {missing}")


if __name__ == "__main__":
    main()
