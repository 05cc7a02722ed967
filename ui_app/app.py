from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from functools import partial
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"
if str(BASE_DIR.parent) not in sys.path:
    sys.path.insert(0, str(BASE_DIR.parent))

from mapclaim.claims import PendingClaim
from mapclaim.logging_config import configure_logging
from mapclaim.overlay import OverlayManager
from mapclaim.raster import BaseRaster
from mapclaim.reconcile import ClaimSession
from mapclaim.settings import SETTINGS_FILENAME, Settings, load_settings
from mapclaim.store import ClaimStore, SqliteClaimStore, StoreUnavailable, sanitize_ids

logger = logging.getLogger("mapclaim.server")

LOOPBACK_ADDRESSES = {"127.0.0.1", "::1", "::ffff:127.0.0.1", "localhost"}

API_ROUTES = [
    "GET /claims",
    "POST /claims",
    "POST /claims/delete",
    "DELETE /claims",
    "GET /" + SETTINGS_FILENAME,
    "GET /map.png",
]


@dataclass
class ServerState:
    settings: Settings
    store: ClaimStore
    raster: Optional[BaseRaster] = None
    export_session: Optional[ClaimSession] = None
    export_lock: threading.Lock = field(default_factory=threading.Lock)

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[ClaimStore] = None) -> "ServerState":
        store = store or SqliteClaimStore(settings.database_path)
        raster = None
        session = None
        map_path = settings.map_path
        if map_path is not None and map_path.exists():
            raster = BaseRaster.load(
                map_path,
                white_threshold=settings.white_threshold,
                alpha_threshold=settings.alpha_threshold,
            )
            manager = OverlayManager(raster, saved_recovery_radius=settings.saved_recovery_radius)
            session = ClaimSession(manager, store)
        elif map_path is not None:
            logger.warning("Map image %s not found; /map.png disabled", map_path)
        return cls(settings=settings, store=store, raster=raster, export_session=session)


class ClaimsHandler(SimpleHTTPRequestHandler):
    state: ServerState

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)

    def _send_json(self, payload: object, status: int = 200) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, status: int, message: str) -> None:
        self._send_json({"error": message}, status=status)

    def _read_json(self) -> Any:
        length = int(self.headers.get("Content-Length") or 0)
        if length <= 0:
            return {}
        raw = self.rfile.read(length)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None

    def _is_loopback(self) -> bool:
        return self.client_address[0] in LOOPBACK_ADDRESSES

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path == "/claims":
            query = parse_qs(parsed.query)
            limit = None
            if "limit" in query:
                try:
                    limit = max(0, int(query["limit"][0]))
                except ValueError:
                    self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid limit")
                    return
            try:
                claims = self.state.store.list_claims()
            except StoreUnavailable as exc:
                logger.error("Claim listing failed: %s", exc)
                self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, "DB read failed")
                return
            if limit is not None:
                claims = claims[:limit]
            self._send_json({"claims": [c.to_row() for c in claims]})
            return

        if parsed.path == "/" + SETTINGS_FILENAME:
            self._send_json(self.state.settings.to_public_dict())
            return

        if parsed.path == "/map.png":
            self._send_map_png()
            return

        if parsed.path in ("", "/"):
            self._send_json({"routes": API_ROUTES})
            return
        # static assets come from STATIC_DIR only, never from the settings directory
        super().do_GET()

    def _send_map_png(self) -> None:
        session = self.state.export_session
        if session is None:
            self.send_error(HTTPStatus.NOT_FOUND, "No map image configured")
            return
        with self.state.export_lock:
            session.refresh_saved()
            body = session.manager.export_png()
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "image/png")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        payload = self._read_json()
        if payload is None or not isinstance(payload, dict):
            self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid JSON body")
            return

        if parsed.path == "/claims":
            raw_claims = payload.get("claims")
            if not isinstance(raw_claims, list) or not raw_claims:
                self._send_error_json(HTTPStatus.BAD_REQUEST, "No claims provided")
                return
            try:
                claims = [PendingClaim.from_payload(item) for item in raw_claims]
            except (AttributeError, TypeError, ValueError) as exc:
                self._send_error_json(HTTPStatus.BAD_REQUEST, f"Invalid claim: {exc}")
                return
            try:
                inserted = self.state.store.insert_claims(claims)
            except StoreUnavailable as exc:
                logger.error("Insert error: %s", exc)
                self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, "DB insert failed")
                return
            self._send_json({"ok": True, "inserted": inserted})
            return

        if parsed.path == "/claims/delete":
            ids = payload.get("ids")
            if not isinstance(ids, list) or not ids:
                self._send_error_json(HTTPStatus.BAD_REQUEST, "No ids provided")
                return
            clean = sanitize_ids(ids)
            if not clean:
                self._send_error_json(HTTPStatus.BAD_REQUEST, "No valid ids provided")
                return
            try:
                self.state.store.delete_claims(clean)
            except StoreUnavailable as exc:
                logger.error("Failed to delete claims: %s", exc)
                self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, "DB delete failed")
                return
            self._send_json({"ok": True, "deleted": len(clean)})
            return

        self._send_error_json(HTTPStatus.NOT_FOUND, "Not found")

    def do_DELETE(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path != "/claims":
            self._send_error_json(HTTPStatus.NOT_FOUND, "Not found")
            return
        if not self._is_loopback():
            logger.warning("Unauthorized clear DB attempt from %s", self.client_address[0])
            self._send_error_json(HTTPStatus.FORBIDDEN, "Forbidden: Only host can clear database")
            return
        payload = self._read_json() or {}
        expected = self.state.settings.admin_password
        if not expected or not isinstance(payload, dict) or payload.get("password") != expected:
            logger.warning("Invalid password for clear DB from %s", self.client_address[0])
            self._send_error_json(HTTPStatus.UNAUTHORIZED, "Invalid password")
            return
        try:
            deleted = self.state.store.clear()
        except StoreUnavailable as exc:
            logger.error("Failed to clear claims: %s", exc)
            self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, "DB delete failed")
            return
        self._send_json({"ok": True, "deleted": deleted})


def create_server(state: ServerState, host: str = "127.0.0.1", port: int = 3000) -> ThreadingHTTPServer:
    handler_cls = type(
        "BoundClaimsHandler",
        (ClaimsHandler,),
        {"state": state},
    )

    handler = partial(handler_cls, directory=str(STATIC_DIR))
    return ThreadingHTTPServer((host, port), handler)


def main() -> None:
    parser = argparse.ArgumentParser(description="Map claim server")
    parser.add_argument("--settings", default=SETTINGS_FILENAME, help="Path to ServerSettings.json")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", 3000)))
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level, args.log_file)
    settings = load_settings(Path(args.settings))
    logger.info("Database file path: %s", settings.database_path)
    state = ServerState.from_settings(settings)

    server = create_server(state, args.host, args.port)
    print(f"Map claim server running at http://{args.host}:{args.port}")
    print("Press Ctrl+C to stop.")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
