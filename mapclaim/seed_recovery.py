from __future__ import annotations

from collections import deque
from typing import Deque, Optional, Set, Tuple

from .raster import BaseRaster

Coord = Tuple[int, int]


def _neighbors(x: int, y: int) -> list[Coord]:
    return [(x, y - 1), (x, y + 1), (x - 1, y), (x + 1, y)]


def find_nearest_claimable(
    raster: BaseRaster,
    x: int,
    y: int,
    max_radius: float,
) -> Optional[Coord]:
    """Breadth-first search for the closest claimable pixel around (x, y).

    Only pixels within ``max_radius`` (Euclidean) of the query point are
    considered. The result is nearest by hop count, which can differ from
    the Euclidean nearest on diagonals.
    """
    sx, sy = int(x), int(y)
    if not raster.in_bounds(sx, sy):
        return None
    max_dist2 = float(max_radius) * float(max_radius)

    queue: Deque[Coord] = deque([(sx, sy)])
    seen: Set[Coord] = {(sx, sy)}
    while queue:
        px, py = queue.popleft()
        dx, dy = px - sx, py - sy
        if dx * dx + dy * dy > max_dist2:
            continue
        if raster.is_claimable(px, py):
            return px, py
        for nxt in _neighbors(px, py):
            if nxt in seen or not raster.in_bounds(*nxt):
                continue
            seen.add(nxt)
            queue.append(nxt)
    return None
