from __future__ import annotations

from pathlib import Path
from typing import Tuple

import numpy as np
from PIL import Image
from scipy import ndimage as ndi

WHITE_THRESHOLD = 250
ALPHA_THRESHOLD = 0

RGBA = Tuple[int, int, int, int]


def is_claimable_rgba(
    rgba: RGBA,
    *,
    white_threshold: int = WHITE_THRESHOLD,
    alpha_threshold: int = ALPHA_THRESHOLD,
) -> bool:
    r, g, b, a = rgba
    if a <= alpha_threshold:
        return False
    return r >= white_threshold and g >= white_threshold and b >= white_threshold


def claimable_mask(
    pixels: np.ndarray,
    *,
    white_threshold: int = WHITE_THRESHOLD,
    alpha_threshold: int = ALPHA_THRESHOLD,
) -> np.ndarray:
    """Vectorised ``is_claimable_rgba`` over an (H, W, 4) array."""
    rgb_ok = (pixels[:, :, :3] >= white_threshold).all(axis=2)
    return rgb_ok & (pixels[:, :, 3] > alpha_threshold)


class BaseRaster:
    """Immutable RGBA map image with the claimable predicate precomputed.

    The pixel array is copied on construction and flagged read-only, so
    nothing downstream can paint into the base map by accident.
    """

    def __init__(
        self,
        pixels: np.ndarray,
        *,
        white_threshold: int = WHITE_THRESHOLD,
        alpha_threshold: int = ALPHA_THRESHOLD,
    ) -> None:
        arr = np.array(pixels, dtype=np.uint8, copy=True)
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(f"Expected an (H, W, 4) RGBA array, got shape {arr.shape}")
        arr.flags.writeable = False
        self._pixels = arr
        self.white_threshold = int(white_threshold)
        self.alpha_threshold = int(alpha_threshold)
        mask = claimable_mask(
            arr,
            white_threshold=self.white_threshold,
            alpha_threshold=self.alpha_threshold,
        )
        mask.flags.writeable = False
        self._mask = mask

    @classmethod
    def from_image(cls, image: Image.Image, **kwargs) -> "BaseRaster":
        return cls(np.array(image.convert("RGBA"), dtype=np.uint8), **kwargs)

    @classmethod
    def load(cls, path: Path | str, **kwargs) -> "BaseRaster":
        with Image.open(path) as img:
            return cls.from_image(img, **kwargs)

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    @property
    def claimable_mask(self) -> np.ndarray:
        return self._mask

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        return self.height, self.width

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def is_claimable(self, x: int, y: int) -> bool:
        if not self.in_bounds(x, y):
            return False
        return bool(self._mask[y, x])

    def sample(self, x: int, y: int) -> RGBA | None:
        if not self.in_bounds(x, y):
            return None
        r, g, b, a = (int(v) for v in self._pixels[y, x])
        return r, g, b, a

    def claimable_regions(self) -> tuple[np.ndarray, int]:
        """Label 4-connected claimable regions (0 = not claimable)."""
        struct = ndi.generate_binary_structure(2, 1)
        labels, count = ndi.label(self._mask, structure=struct)
        return labels, int(count)

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.array(self._pixels))
