from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .raster import BaseRaster


@dataclass(frozen=True)
class BoundingBox:
    """Inclusive pixel extent of a fill."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    def as_slices(self) -> tuple[slice, slice]:
        return slice(self.min_y, self.max_y + 1), slice(self.min_x, self.max_x + 1)

    def contains(self, x: int, y: int) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y


@dataclass(frozen=True)
class FillResult:
    filled: bool
    pixel_count: int = 0
    bbox: Optional[BoundingBox] = None
    # pixels painted by this call, cropped to bbox
    region: Optional[np.ndarray] = field(default=None, compare=False, repr=False)


NOT_FILLED = FillResult(False, 0, None)


def _seed_coord(value: float) -> int:
    return int(math.floor(value))


def flood_fill(
    raster: BaseRaster,
    overlay: np.ndarray,
    seed_x: float,
    seed_y: float,
    fill_rgba: Sequence[int],
) -> FillResult:
    """Scanline flood fill of the claimable region around a seed.

    ``overlay`` is an (H, W, 4) uint8 array aligned to ``raster``. Pixels with
    non-zero alpha count as already filled and bound the region. The overlay
    is only written when the seed is valid, so a failed attempt leaves it
    untouched.
    """
    color = tuple(int(c) for c in fill_rgba)
    if len(color) != 4:
        raise ValueError(f"fill color must be RGBA, got {fill_rgba!r}")
    if color[3] == 0:
        raise ValueError("fill color must not be fully transparent")
    if overlay.shape != (raster.height, raster.width, 4):
        raise ValueError(
            f"overlay shape {overlay.shape} does not match raster {(raster.height, raster.width, 4)}"
        )

    w, h = raster.width, raster.height
    sx, sy = _seed_coord(seed_x), _seed_coord(seed_y)
    if not raster.in_bounds(sx, sy):
        return NOT_FILLED
    claimable = raster.claimable_mask
    alpha = overlay[:, :, 3]
    if not claimable[sy, sx] or alpha[sy, sx] != 0:
        return NOT_FILLED

    visited = np.zeros((h, w), dtype=bool)

    def _open(x: int, y: int) -> bool:
        return bool(claimable[y, x]) and alpha[y, x] == 0 and not visited[y, x]

    stack: List[Tuple[int, int]] = [(sx, sy)]
    count = 0
    min_x, min_y, max_x, max_y = w, h, -1, -1

    while stack:
        x, y = stack.pop()
        if visited[y, x] or not claimable[y, x]:
            continue

        # walk to the left edge of this span
        while x > 0 and _open(x - 1, y):
            x -= 1

        left = x
        while x < w and _open(x, y):
            x += 1
        right = x - 1
        if right < left:
            continue
        overlay[y, left : right + 1] = color
        visited[y, left : right + 1] = True
        count += right - left + 1

        min_x = min(min_x, left)
        max_x = max(max_x, right)
        min_y = min(min_y, y)
        max_y = max(max_y, y)

        for col in range(left, right + 1):
            if y > 0 and _open(col, y - 1):
                stack.append((col, y - 1))
            if y < h - 1 and _open(col, y + 1):
                stack.append((col, y + 1))

    if count == 0:
        return NOT_FILLED
    bbox = BoundingBox(min_x, min_y, max_x, max_y)
    rows, cols = bbox.as_slices()
    return FillResult(True, count, bbox, visited[rows, cols].copy())
