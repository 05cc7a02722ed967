from __future__ import annotations

from typing import List, Optional, Sequence

import requests

from .claims import PendingClaim, SavedClaim
from .store import StoreUnavailable, sanitize_ids


class HttpClaimStore:
    """Client for the JSON claims API served by ``ui_app/app.py``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        admin_password: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.admin_password = admin_password

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise StoreUnavailable(f"{method} {path} failed: {exc}") from exc
        if not resp.ok:
            try:
                detail = resp.json().get("error", resp.reason)
            except ValueError:
                detail = resp.reason
            raise StoreUnavailable(f"{method} {path} returned {resp.status_code}: {detail}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise StoreUnavailable(f"{method} {path} returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise StoreUnavailable(f"{method} {path} returned unexpected payload")
        return body

    def list_claims(self) -> List[SavedClaim]:
        body = self._request("GET", "/claims")
        try:
            return [SavedClaim.from_row(row) for row in body.get("claims", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreUnavailable(f"Malformed claim row: {exc}") from exc

    def insert_claims(self, claims: Sequence[PendingClaim]) -> int:
        if not claims:
            return 0
        body = self._request("POST", "/claims", {"claims": [c.to_payload() for c in claims]})
        return int(body.get("inserted", 0))

    def delete_claims(self, ids: Sequence[int]) -> int:
        clean = sanitize_ids(ids)
        if not clean:
            return 0
        body = self._request("POST", "/claims/delete", {"ids": clean})
        return int(body.get("deleted", 0))

    def clear(self) -> int:
        body = self._request("DELETE", "/claims", {"password": self.admin_password})
        return int(body.get("deleted", 0))
