import math
import unittest

import numpy as np

from mapclaim.raster import BaseRaster
from mapclaim.seed_recovery import find_nearest_claimable


def _framed(size: int = 100) -> np.ndarray:
    arr = np.full((size, size, 4), 255, dtype=np.uint8)
    arr[0, :, :3] = 0
    arr[-1, :, :3] = 0
    arr[:, 0, :3] = 0
    arr[:, -1, :3] = 0
    return arr


def _black(size: int = 60) -> np.ndarray:
    arr = np.zeros((size, size, 4), dtype=np.uint8)
    arr[:, :, 3] = 255
    return arr


class SeedRecoveryTests(unittest.TestCase):
    def test_corner_of_frame_recovers_inner_corner(self) -> None:
        raster = BaseRaster(_framed())
        self.assertEqual(find_nearest_claimable(raster, 0, 0, 5), (1, 1))

    def test_claimable_point_returns_itself(self) -> None:
        raster = BaseRaster(_framed())
        self.assertEqual(find_nearest_claimable(raster, 40, 40, 5), (40, 40))

    def test_edge_click_moves_inward(self) -> None:
        raster = BaseRaster(_framed())
        self.assertEqual(find_nearest_claimable(raster, 0, 50, 3), (1, 50))

    def test_radius_exhausted_returns_none(self) -> None:
        arr = _black()
        arr[50, 50, :3] = 255
        raster = BaseRaster(arr)
        self.assertIsNone(find_nearest_claimable(raster, 0, 0, 5))
        self.assertEqual(find_nearest_claimable(raster, 50, 45, 5), (50, 50))
        self.assertIsNone(find_nearest_claimable(raster, 50, 44, 5.5))

    def test_zero_radius_only_checks_query_point(self) -> None:
        raster = BaseRaster(_framed())
        self.assertIsNone(find_nearest_claimable(raster, 0, 0, 0))
        self.assertEqual(find_nearest_claimable(raster, 1, 1, 0), (1, 1))

    def test_out_of_bounds_query(self) -> None:
        raster = BaseRaster(_framed())
        self.assertIsNone(find_nearest_claimable(raster, -1, 0, 10))
        self.assertIsNone(find_nearest_claimable(raster, 100, 100, 10))

    def test_result_within_radius_and_claimable(self) -> None:
        arr = _black(40)
        rng = np.random.default_rng(3)
        for x, y in rng.integers(0, 40, size=(25, 2)):
            arr[y, x, :3] = 255
        raster = BaseRaster(arr)
        for qx in range(0, 40, 3):
            for qy in range(0, 40, 3):
                for radius in (1, 2.5, 6):
                    found = find_nearest_claimable(raster, qx, qy, radius)
                    if found is None:
                        continue
                    self.assertLessEqual(math.hypot(found[0] - qx, found[1] - qy), radius)
                    self.assertTrue(raster.is_claimable(*found))


if __name__ == "__main__":
    unittest.main()
