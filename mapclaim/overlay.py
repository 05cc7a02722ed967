from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
from PIL import Image

from .claims import Claim, PendingClaim, hex_to_rgba, round_half_up
from .flood_fill import NOT_FILLED, BoundingBox, FillResult, flood_fill
from .raster import BaseRaster
from .seed_recovery import find_nearest_claimable

logger = logging.getLogger(__name__)

PENDING_ALPHA = 128
SAVED_ALPHA = 255
PENDING_RECOVERY_RADIUS = 20
SAVED_RECOVERY_RADIUS = 80
FALLBACK_PENDING_COLOR = "#cccccc"
FALLBACK_SAVED_COLOR = "#000000"


class OverlayBuffer:
    """Transparent RGBA layer with the same dimensions as the base raster."""

    def __init__(self, width: int, height: int) -> None:
        self.width = int(width)
        self.height = int(height)
        self.pixels = np.zeros((self.height, self.width, 4), dtype=np.uint8)

    def clear(self) -> None:
        self.pixels.fill(0)

    def alpha_at(self, x: int, y: int) -> int:
        if not (0 <= x < self.width and 0 <= y < self.height):
            return 0
        return int(self.pixels[y, x, 3])

    def is_filled(self, x: int, y: int) -> bool:
        return self.alpha_at(x, y) != 0

    def is_blank(self) -> bool:
        return not self.pixels[:, :, 3].any()

    def filled_count(self) -> int:
        return int(np.count_nonzero(self.pixels[:, :, 3]))

    def copy_region(self, bbox: BoundingBox) -> np.ndarray:
        rows, cols = bbox.as_slices()
        return self.pixels[rows, cols].copy()

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels.copy())


@dataclass(frozen=True, eq=False)
class RegionComposite:
    min_x: int
    min_y: int
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True)
class Viewport:
    """Pan/zoom transform from image pixels to surface (device) pixels."""

    pan_x: float = 0.0
    pan_y: float = 0.0
    scale: float = 1.0
    dpr: float = 1.0

    @classmethod
    def fit(cls, image_size: tuple[int, int], surface_size: tuple[int, int], *, dpr: float = 1.0) -> "Viewport":
        img_w, img_h = image_size
        surf_w, surf_h = surface_size
        scale = min(surf_w / max(img_w, 1), surf_h / max(img_h, 1), 1.0)
        pan_x = (surf_w - img_w * scale) / 2
        pan_y = (surf_h - img_h * scale) / 2
        return cls(pan_x=pan_x, pan_y=pan_y, scale=scale, dpr=dpr)

    def dest_rect(self, width: int, height: int) -> tuple[int, int, int, int]:
        return (
            int(round(self.pan_x * self.dpr)),
            int(round(self.pan_y * self.dpr)),
            int(round(width * self.scale * self.dpr)),
            int(round(height * self.scale * self.dpr)),
        )

    def image_to_surface(self, x: float, y: float) -> tuple[float, float]:
        return (
            x * self.dpr * self.scale + self.pan_x * self.dpr,
            y * self.dpr * self.scale + self.pan_y * self.dpr,
        )

    def surface_to_image(self, x: float, y: float) -> tuple[float, float]:
        return (
            (x / self.dpr - self.pan_x) / self.scale,
            (y / self.dpr - self.pan_y) / self.scale,
        )


class ClaimState(Enum):
    UNSEEDED = "unseeded"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISCARDED = "discarded"


class FillStatus(Enum):
    FILLED = "filled"
    RECOVERED = "recovered"
    SEED_UNCLAIMABLE = "seed_unclaimable"
    REGION_ALREADY_FILLED = "region_already_filled"

    @property
    def ok(self) -> bool:
        return self in (FillStatus.FILLED, FillStatus.RECOVERED)


@dataclass(frozen=True)
class ClaimOutcome:
    status: FillStatus
    claim: Optional[PendingClaim] = None
    seed: Optional[tuple[int, int]] = None
    result: FillResult = NOT_FILLED

    @property
    def ok(self) -> bool:
        return self.status.ok


def _claim_rgba(claim: Claim, fallback: str, alpha: int) -> tuple[int, int, int, int]:
    try:
        return hex_to_rgba(claim.color or fallback, alpha)
    except (AttributeError, ValueError):
        logger.warning("Claim %s has invalid color %r; drawing it as %s", claim.id, claim.color, fallback)
        return hex_to_rgba(fallback, alpha)


def _draw_layer(
    surface: Image.Image,
    layer: np.ndarray,
    origin: tuple[int, int],
    image_size: tuple[int, int],
    viewport: Viewport,
) -> None:
    img_w, img_h = image_size
    dest_x, dest_y, dest_w, dest_h = viewport.dest_rect(img_w, img_h)
    if dest_w <= 0 or dest_h <= 0:
        return
    sx = dest_w / img_w
    sy = dest_h / img_h
    ox, oy = origin
    # affine maps surface pixels back into this layer's local coordinates
    data = (1.0 / sx, 0.0, -dest_x / sx - ox, 0.0, 1.0 / sy, -dest_y / sy - oy)
    warped = Image.fromarray(layer).transform(
        surface.size,
        Image.Transform.AFFINE,
        data,
        resample=Image.Resampling.NEAREST,
    )
    surface.alpha_composite(warped)


class OverlayManager:
    """Owns the saved and pending overlays plus their region composites."""

    def __init__(
        self,
        raster: BaseRaster,
        *,
        pending_alpha: int = PENDING_ALPHA,
        saved_alpha: int = SAVED_ALPHA,
        pending_recovery_radius: float = PENDING_RECOVERY_RADIUS,
        saved_recovery_radius: float = SAVED_RECOVERY_RADIUS,
    ) -> None:
        self.raster = raster
        self.pending_alpha = pending_alpha
        self.saved_alpha = saved_alpha
        self.pending_recovery_radius = pending_recovery_radius
        self.saved_recovery_radius = saved_recovery_radius
        self.saved = OverlayBuffer(raster.width, raster.height)
        self.pending = OverlayBuffer(raster.width, raster.height)
        self.saved_composites: List[RegionComposite] = []
        self.pending_composites: List[RegionComposite] = []
        self.pending_claims: List[PendingClaim] = []
        self.rendered_claim_ids: set[int] = set()
        self._lifecycle: Dict[str, ClaimState] = {}

    def _fill_with_recovery(
        self,
        overlay: OverlayBuffer,
        x: int,
        y: int,
        rgba: tuple[int, int, int, int],
        radius: float,
    ) -> tuple[FillStatus, Optional[tuple[int, int]], FillResult]:
        result = flood_fill(self.raster, overlay.pixels, x, y, rgba)
        if result.filled:
            return FillStatus.FILLED, (x, y), result
        found = find_nearest_claimable(self.raster, x, y, radius)
        if found is not None:
            result = flood_fill(self.raster, overlay.pixels, found[0], found[1], rgba)
            if result.filled:
                return FillStatus.RECOVERED, found, result
        if self.raster.is_claimable(x, y) or (found is not None and overlay.is_filled(*found)):
            return FillStatus.REGION_ALREADY_FILLED, found, result
        return FillStatus.SEED_UNCLAIMABLE, found, result

    def _cut_composite(self, overlay: OverlayBuffer, result: FillResult) -> RegionComposite:
        bbox = result.bbox
        pixels = overlay.copy_region(bbox)
        if result.region is not None:
            pixels[~result.region] = 0
        return RegionComposite(bbox.min_x, bbox.min_y, pixels)

    def add_pending_claim(
        self,
        x: float,
        y: float,
        color: Optional[str],
        *,
        team: Optional[str] = None,
        owner_id: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> ClaimOutcome:
        """Fill the clicked region into the pending overlay.

        A click that cannot be resolved to an unfilled claimable region is
        dropped: nothing is recorded and the returned status says why.
        """
        ix, iy = round_half_up(x), round_half_up(y)
        rgba = hex_to_rgba(color or FALLBACK_PENDING_COLOR, self.pending_alpha)
        status, seed, result = self._fill_with_recovery(
            self.pending, ix, iy, rgba, self.pending_recovery_radius
        )
        if not status.ok:
            logger.debug("Dropped click at (%s, %s): %s", ix, iy, status.value)
            return ClaimOutcome(status, None, seed, result)

        kwargs = {"timestamp": timestamp} if timestamp else {}
        claim = PendingClaim(x=ix, y=iy, team=team, color=color, owner_id=owner_id, **kwargs)
        self.pending_claims.append(claim)
        self._lifecycle[claim.client_key] = ClaimState.PENDING
        self.pending_composites.append(self._cut_composite(self.pending, result))
        return ClaimOutcome(status, claim, seed, result)

    def reset_pending(self) -> None:
        self.mark_discarded(self.pending_claims)
        self.pending_claims = []
        self.pending.clear()
        self.pending_composites = []

    def replay_pending(self, claims: Iterable[PendingClaim]) -> None:
        """Rebuild the pending overlay from scratch for ``claims``."""
        self.pending.clear()
        self.pending_composites = []
        kept: List[PendingClaim] = []
        for claim in claims:
            rgba = _claim_rgba(claim, FALLBACK_PENDING_COLOR, self.pending_alpha)
            seed_x, seed_y = claim.seed
            status, _seed, result = self._fill_with_recovery(
                self.pending, seed_x, seed_y, rgba, self.pending_recovery_radius
            )
            if status.ok:
                self.pending_composites.append(self._cut_composite(self.pending, result))
            kept.append(claim)
        self.pending_claims = kept

    def mark_confirmed(self, claims: Iterable[PendingClaim]) -> None:
        for claim in claims:
            self._lifecycle[claim.client_key] = ClaimState.CONFIRMED

    def mark_discarded(self, claims: Iterable[PendingClaim]) -> None:
        for claim in claims:
            self._lifecycle[claim.client_key] = ClaimState.DISCARDED

    def claim_state(self, claim: Claim) -> ClaimState:
        if claim.is_saved:
            return ClaimState.CONFIRMED
        return self._lifecycle.get(claim.client_key, ClaimState.UNSEEDED)

    def rebuild_saved(self, claims: Sequence[Claim]) -> set[int]:
        """Repaint the saved overlay from scratch, replaying claims in order."""
        self.saved.clear()
        self.saved_composites = []
        rendered: set[int] = set()
        for claim in claims:
            rgba = _claim_rgba(claim, FALLBACK_SAVED_COLOR, self.saved_alpha)
            seed_x, seed_y = claim.seed
            status, _seed, result = self._fill_with_recovery(
                self.saved, seed_x, seed_y, rgba, self.saved_recovery_radius
            )
            if not status.ok:
                logger.debug("Saved claim %s at %s not rendered: %s", claim.id, claim.seed, status.value)
                continue
            self.saved_composites.append(self._cut_composite(self.saved, result))
            if claim.id is not None:
                rendered.add(claim.id)
        self.rendered_claim_ids = rendered
        return rendered

    def clear_all(self) -> None:
        self.reset_pending()
        self.saved.clear()
        self.saved_composites = []
        self.rendered_claim_ids = set()

    def _draw_overlay(
        self,
        surface: Image.Image,
        overlay: OverlayBuffer,
        composites: Sequence[RegionComposite],
        viewport: Viewport,
    ) -> None:
        size = (self.raster.width, self.raster.height)
        composite_area = sum(c.width * c.height for c in composites)
        if composites and composite_area < overlay.width * overlay.height:
            for comp in composites:
                _draw_layer(surface, comp.pixels, (comp.min_x, comp.min_y), size, viewport)
            return
        if overlay.is_blank():
            return
        _draw_layer(surface, overlay.pixels, (0, 0), size, viewport)

    def composite(self, surface: Image.Image, viewport: Optional[Viewport] = None) -> Image.Image:
        """Draw base, saved and pending layers onto ``surface`` in that order."""
        if surface.mode != "RGBA":
            raise ValueError(f"surface must be RGBA, got {surface.mode}")
        viewport = viewport or Viewport()
        size = (self.raster.width, self.raster.height)
        _draw_layer(surface, np.array(self.raster.pixels), (0, 0), size, viewport)
        self._draw_overlay(surface, self.saved, self.saved_composites, viewport)
        self._draw_overlay(surface, self.pending, self.pending_composites, viewport)
        return surface

    def export_image(self, *, include_pending: bool = False) -> Image.Image:
        image = self.raster.to_image()
        image.alpha_composite(self.saved.to_image())
        if include_pending:
            image.alpha_composite(self.pending.to_image())
        return image

    def export_png(self, *, include_pending: bool = False) -> bytes:
        buf = io.BytesIO()
        self.export_image(include_pending=include_pending).save(buf, format="PNG")
        return buf.getvalue()
