"""Region claiming on a raster map (flood fill, overlays, claim reconciliation)."""

from .claims import REMOVE_TEAM, PendingClaim, SavedClaim, hex_to_rgba
from .flood_fill import BoundingBox, FillResult, flood_fill
from .overlay import (
    ClaimOutcome,
    ClaimState,
    FillStatus,
    OverlayBuffer,
    OverlayManager,
    RegionComposite,
    Viewport,
)
from .raster import BaseRaster
from .reconcile import ClaimPoller, ClaimSession, ConfirmResult, ConfirmStatus, User
from .seed_recovery import find_nearest_claimable
from .store import ClaimStore, InMemoryClaimStore, SqliteClaimStore, StoreUnavailable

__all__ = [
    "BaseRaster",
    "BoundingBox",
    "ClaimOutcome",
    "ClaimPoller",
    "ClaimSession",
    "ClaimState",
    "ClaimStore",
    "ConfirmResult",
    "ConfirmStatus",
    "FillResult",
    "FillStatus",
    "HttpClaimStore",
    "InMemoryClaimStore",
    "OverlayBuffer",
    "OverlayManager",
    "PendingClaim",
    "REMOVE_TEAM",
    "RegionComposite",
    "SavedClaim",
    "SqliteClaimStore",
    "StoreUnavailable",
    "User",
    "Viewport",
    "find_nearest_claimable",
    "flood_fill",
    "hex_to_rgba",
]


def __getattr__(name: str):
    if name == "HttpClaimStore":
        from .http_store import HttpClaimStore

        return HttpClaimStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
