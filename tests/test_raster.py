import tempfile
import unittest
from pathlib import Path

import numpy as np
from PIL import Image

from mapclaim.raster import BaseRaster, is_claimable_rgba


class RasterSamplerTests(unittest.TestCase):
    def test_predicate_thresholds(self) -> None:
        self.assertTrue(is_claimable_rgba((255, 255, 255, 255)))
        self.assertTrue(is_claimable_rgba((250, 252, 254, 1)))
        self.assertFalse(is_claimable_rgba((249, 255, 255, 255)))
        self.assertFalse(is_claimable_rgba((255, 255, 255, 0)))
        self.assertTrue(is_claimable_rgba((240, 240, 240, 255), white_threshold=240))
        self.assertFalse(is_claimable_rgba((255, 255, 255, 100), alpha_threshold=100))

    def test_is_claimable_fails_closed_out_of_bounds(self) -> None:
        raster = BaseRaster(np.full((4, 6, 4), 255, dtype=np.uint8))
        self.assertEqual(raster.shape, (4, 6))
        self.assertTrue(raster.is_claimable(5, 3))
        for x, y in [(-1, 0), (0, -1), (6, 0), (0, 4)]:
            self.assertFalse(raster.is_claimable(x, y))
            self.assertIsNone(raster.sample(x, y))

    def test_sample_returns_raw_pixel(self) -> None:
        arr = np.zeros((3, 3, 4), dtype=np.uint8)
        arr[1, 2] = (10, 20, 30, 40)
        raster = BaseRaster(arr)
        self.assertEqual(raster.sample(2, 1), (10, 20, 30, 40))
        self.assertFalse(raster.is_claimable(2, 1))

    def test_source_array_changes_do_not_leak(self) -> None:
        arr = np.full((3, 3, 4), 255, dtype=np.uint8)
        raster = BaseRaster(arr)
        arr[1, 1, :3] = 0
        self.assertTrue(raster.is_claimable(1, 1))
        with self.assertRaises(ValueError):
            raster.pixels[0, 0, 0] = 1

    def test_rejects_non_rgba_arrays(self) -> None:
        with self.assertRaises(ValueError):
            BaseRaster(np.zeros((3, 3, 3), dtype=np.uint8))

    def test_load_converts_to_rgba(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "map.png"
            img = Image.new("RGB", (8, 5), color="white")
            img.putpixel((3, 2), (0, 0, 0))
            img.save(path)
            raster = BaseRaster.load(path)
        self.assertEqual((raster.width, raster.height), (8, 5))
        self.assertEqual(raster.sample(0, 0), (255, 255, 255, 255))
        self.assertFalse(raster.is_claimable(3, 2))

    def test_claimable_regions_use_four_connectivity(self) -> None:
        arr = np.zeros((4, 4, 4), dtype=np.uint8)
        arr[:, :, 3] = 255
        arr[0, 0, :3] = 255
        arr[1, 1, :3] = 255
        arr[3, 2:4, :3] = 255
        labels, count = BaseRaster(arr).claimable_regions()
        self.assertEqual(count, 3)
        self.assertEqual(labels[3, 2], labels[3, 3])
        self.assertNotEqual(labels[0, 0], labels[1, 1])


if __name__ == "__main__":
    unittest.main()
