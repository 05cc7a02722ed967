from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image

from .claims import PendingClaim, SavedClaim, claim_ids
from .overlay import ClaimOutcome, OverlayManager, Viewport
from .store import ClaimStore, StoreUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    user_id: str
    is_admin: bool = False


class ConfirmStatus(Enum):
    CONFIRMED = "confirmed"
    NOTHING_PENDING = "nothing_pending"
    BUSY = "busy"
    FAILED = "failed"


@dataclass(frozen=True)
class ConfirmResult:
    status: ConfirmStatus
    deleted_ids: Tuple[int, ...] = ()
    inserted: int = 0
    skipped_ids: Tuple[int, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ConfirmStatus.CONFIRMED


def overlapped_claims(manager: OverlayManager, claims: Sequence[SavedClaim]) -> List[SavedClaim]:
    """Saved claims whose seed point lies under the pending fill.

    Only the seed is sampled, so an old region that is partly covered but
    whose seed is not stays in place.
    """
    hits: List[SavedClaim] = []
    for claim in claims:
        x, y = claim.seed
        if manager.pending.is_filled(x, y):
            hits.append(claim)
    return hits


class ClaimSession:
    """One client's claiming session against a shared claim store."""

    def __init__(
        self,
        manager: OverlayManager,
        store: ClaimStore,
        *,
        user: Optional[User] = None,
        log_fn: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.manager = manager
        self.store = store
        self.user = user
        self.log_fn = log_fn
        self._confirm_lock = threading.Lock()
        self._overlay_lock = threading.RLock()
        self._last_rendered_ids: Optional[set[int]] = None

    def _log(self, level: int, msg: str) -> None:
        logger.log(level, msg)
        if self.log_fn is not None:
            self.log_fn(msg)

    @property
    def confirm_in_flight(self) -> bool:
        return self._confirm_lock.locked()

    @property
    def pending_claims(self) -> List[PendingClaim]:
        with self._overlay_lock:
            return list(self.manager.pending_claims)

    def add_pending_claim(
        self,
        x: float,
        y: float,
        color: Optional[str],
        *,
        team: Optional[str] = None,
    ) -> ClaimOutcome:
        owner = self.user.user_id if self.user is not None else None
        with self._overlay_lock:
            return self.manager.add_pending_claim(x, y, color, team=team, owner_id=owner)

    def reset_pending(self) -> None:
        with self._overlay_lock:
            self.manager.reset_pending()

    def composite(self, surface: Image.Image, viewport: Optional[Viewport] = None) -> Image.Image:
        with self._overlay_lock:
            return self.manager.composite(surface, viewport)

    def _may_delete(self, claim: SavedClaim) -> bool:
        if self.user is None or self.user.is_admin:
            return True
        return claim.owner_id is None or claim.owner_id == self.user.user_id

    def confirm_pending(self) -> ConfirmResult:
        """Commit the pending claims, evicting saved claims they cover."""
        if not self._confirm_lock.acquire(blocking=False):
            return ConfirmResult(ConfirmStatus.BUSY)
        try:
            return self._confirm()
        finally:
            self._confirm_lock.release()

    def _confirm(self) -> ConfirmResult:
        with self._overlay_lock:
            if not self.manager.pending_claims:
                return ConfirmResult(ConfirmStatus.NOTHING_PENDING)

        try:
            existing = self.store.list_claims()
        except StoreUnavailable as exc:
            self._log(logging.ERROR, f"Confirm aborted, could not fetch claims: {exc}")
            return ConfirmResult(ConfirmStatus.FAILED, error=str(exc))

        with self._overlay_lock:
            snapshot = list(self.manager.pending_claims)
            covered = overlapped_claims(self.manager, existing)

        to_delete = [c.id for c in covered if self._may_delete(c)]
        skipped = tuple(c.id for c in covered if not self._may_delete(c))
        if skipped:
            self._log(logging.INFO, f"Not evicting claims owned by other users: {list(skipped)}")

        deleted: Tuple[int, ...] = ()
        if to_delete:
            try:
                self.store.delete_claims(to_delete)
                deleted = tuple(to_delete)
                self._log(logging.INFO, f"Evicted overlapped claims {to_delete}")
            except StoreUnavailable as exc:
                self._log(logging.WARNING, f"Failed to delete overlapping claims {to_delete}: {exc}")

        to_insert = [c for c in snapshot if not c.is_removal]
        if to_insert:
            try:
                self.store.insert_claims(to_insert)
            except StoreUnavailable as exc:
                self._log(logging.ERROR, f"Failed to save claims: {exc}")
                return ConfirmResult(
                    ConfirmStatus.FAILED,
                    deleted_ids=deleted,
                    skipped_ids=skipped,
                    error=str(exc),
                )
        self._log(logging.INFO, f"Saved {len(to_insert)} claim(s)")

        with self._overlay_lock:
            done = {c.client_key for c in snapshot}
            remaining = [c for c in self.manager.pending_claims if c.client_key not in done]
            self.manager.mark_confirmed(to_insert)
            self.manager.mark_discarded(c for c in snapshot if c.is_removal)
            self.manager.replay_pending(remaining)

        self.refresh_saved(force=True)
        return ConfirmResult(
            ConfirmStatus.CONFIRMED,
            deleted_ids=deleted,
            inserted=len(to_insert),
            skipped_ids=skipped,
        )

    def refresh_saved(self, *, force: bool = False) -> bool:
        """Rebuild the saved overlay if the store's id set changed."""
        try:
            claims = self.store.list_claims()
        except StoreUnavailable as exc:
            self._log(logging.WARNING, f"Failed to reload saved claims: {exc}")
            return False
        ids = claim_ids(claims)
        if not force and ids == self._last_rendered_ids:
            return False
        with self._overlay_lock:
            self.manager.rebuild_saved(claims)
            self._last_rendered_ids = ids
        return True

    def delete_claims(self, ids: Sequence[int]) -> int:
        """Explicit removal; non-admin users may only remove their own claims."""
        if self.user is None:
            raise PermissionError("Deleting claims requires a signed-in user")
        wanted = {int(i) for i in ids}
        if not self.user.is_admin:
            claims = self.store.list_claims()
            foreign = sorted(
                c.id for c in claims if c.id in wanted and c.owner_id != self.user.user_id
            )
            if foreign:
                raise PermissionError(f"Claims {foreign} belong to other users")
        deleted = self.store.delete_claims(sorted(wanted))
        self._log(logging.INFO, f"{self.user.user_id} deleted {deleted} claim(s)")
        self.refresh_saved(force=True)
        return deleted

    def clear_all(self) -> int:
        if self.user is None or not self.user.is_admin:
            raise PermissionError("Only admins can clear all claims")
        deleted = self.store.clear()
        with self._overlay_lock:
            self.manager.clear_all()
            self._last_rendered_ids = None
        self.refresh_saved(force=True)
        return deleted


class ClaimPoller:
    """Background thread re-fetching claims and repainting on change."""

    def __init__(self, session: ClaimSession, *, interval: float = 3.0) -> None:
        self.session = session
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> bool:
        if self.session.confirm_in_flight:
            return False
        return self.session.refresh_saved()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.poll_once()
            except Exception:  # noqa: BLE001
                logger.exception("Claim poll failed; polling continues")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="claim-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
