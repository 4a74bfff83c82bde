from __future__ import annotations

import unittest

import numpy as np

from assetbake.core.bitmap import Bitmap, new_canvas, premultiply, unpremultiply
from assetbake.core.data_structures import BlendMode
from assetbake.core.errors import MalformedInput, UnsupportedFeature
from assetbake.core.trimmer import trim, untrim

from tests.helpers import solid


class PremultiplyTests(unittest.TestCase):
    def test_premultiplied_channels_never_exceed_alpha(self) -> None:
        rng = np.random.default_rng(7)
        pixels = rng.integers(0, 256, size=(32, 32, 4), dtype=np.uint8)
        premul = premultiply(pixels)
        self.assertTrue(np.all(premul[..., :3] <= premul[..., 3:4]))

    def test_premultiply_of_unpremultiply_is_identity(self) -> None:
        rng = np.random.default_rng(11)
        straight = rng.integers(0, 256, size=(64, 64, 4), dtype=np.uint8)
        premul = premultiply(straight)
        again = premultiply(unpremultiply(premul))
        np.testing.assert_array_equal(again, premul)

    def test_zero_alpha_maps_to_transparent_black(self) -> None:
        pixels = np.array([[[200, 100, 50, 0]]], dtype=np.uint8)
        np.testing.assert_array_equal(premultiply(pixels), np.zeros((1, 1, 4), dtype=np.uint8))
        np.testing.assert_array_equal(unpremultiply(pixels), np.zeros((1, 1, 4), dtype=np.uint8))


class BitmapTests(unittest.TestCase):
    def test_blit_is_clipped_to_target(self) -> None:
        target = Bitmap.new(4, 4)
        Bitmap(solid(3, 3, (255, 0, 0, 255))).blit_to(target, (-1, 2))
        self.assertEqual(target.get_or_default(0, 2), (255, 0, 0, 255))
        self.assertEqual(target.get_or_default(1, 3), (255, 0, 0, 255))
        self.assertEqual(target.get_or_default(2, 2), (0, 0, 0, 0))
        self.assertEqual(target.get_or_default(9, 9, (1, 2, 3, 4)), (1, 2, 3, 4))

    def test_trimmed_respects_requested_sides(self) -> None:
        pixels = np.zeros((10, 10, 4), dtype=np.uint8)
        pixels[2:5, 3:7] = (9, 9, 9, 255)
        bitmap = Bitmap(pixels)
        _, rect = bitmap.trimmed()
        self.assertEqual(rect, (3, 2, 4, 3))
        _, rect = bitmap.trimmed(left=False, top=False)
        self.assertEqual(rect, (0, 0, 7, 5))

    def test_empty_bitmap_trims_to_placeholder(self) -> None:
        image = trim("empty", Bitmap.new(8, 5))
        self.assertEqual(image.bitmap.size, (1, 1))
        self.assertEqual((image.trimmed_rect.x, image.trimmed_rect.y), (0, 0))
        self.assertTrue(image.bitmap.is_fully_transparent())
        self.assertEqual(image.untrimmed_size, (8, 5))

    def test_trim_is_faithful(self) -> None:
        rng = np.random.default_rng(3)
        for _ in range(20):
            pixels = np.zeros((24, 17, 4), dtype=np.uint8)
            mask = rng.random((24, 17)) > 0.9
            pixels[mask] = rng.integers(1, 256, size=(int(mask.sum()), 4), dtype=np.uint8)
            pixels[..., 3][mask] = np.maximum(pixels[..., 3][mask], 1)
            bitmap = Bitmap(pixels)
            restored = untrim(trim("random", bitmap))
            np.testing.assert_array_equal(restored.pixels[..., 3] > 0, pixels[..., 3] > 0)

    def test_translucency_detection(self) -> None:
        self.assertFalse(Bitmap(solid(2, 2, (1, 2, 3, 255))).has_translucency())
        self.assertTrue(Bitmap(solid(2, 2, (1, 2, 3, 128))).has_translucency())

    def test_png_round_trip(self) -> None:
        pixels = solid(3, 2, (10, 20, 30, 40))
        decoded = Bitmap.from_png_bytes(Bitmap(pixels).to_png_bytes())
        np.testing.assert_array_equal(decoded.pixels, pixels)

    def test_png_can_be_written_premultiplied(self) -> None:
        decoded = Bitmap.from_png_bytes(Bitmap(solid(1, 1, (255, 255, 255, 128))).to_png_bytes(premultiplied=True))
        self.assertEqual(decoded.get_or_default(0, 0), (128, 128, 128, 128))

    def test_garbage_is_not_a_png(self) -> None:
        with self.assertRaises(MalformedInput):
            Bitmap.from_png_bytes(b"definitely not an image", "junk.png")


class BlendTests(unittest.TestCase):
    def _blend(self, below, above, mode) -> tuple:
        canvas = new_canvas(1, 1)
        Bitmap(solid(1, 1, below)).premultiplied_blit_to_alpha_blended(canvas, (0, 0))
        Bitmap(solid(1, 1, above)).premultiplied_blit_to_alpha_blended(canvas, (0, 0), mode)
        return Bitmap.from_premultiplied_canvas(canvas).get_or_default(0, 0)

    def test_normal_source_over(self) -> None:
        self.assertEqual(self._blend((0, 0, 255, 255), (255, 0, 0, 255), BlendMode.NORMAL), (255, 0, 0, 255))
        r, g, b, a = self._blend((0, 0, 255, 255), (255, 0, 0, 128), BlendMode.NORMAL)
        self.assertEqual(a, 255)
        self.assertAlmostEqual(r, 128, delta=1)
        self.assertAlmostEqual(b, 127, delta=1)

    def test_multiply(self) -> None:
        self.assertEqual(
            self._blend((200, 100, 255, 255), (128, 255, 0, 255), BlendMode.MULTIPLY),
            (100, 100, 0, 255),
        )

    def test_multiply_over_transparent_keeps_source(self) -> None:
        self.assertEqual(self._blend((0, 0, 0, 0), (10, 20, 30, 255), BlendMode.MULTIPLY), (10, 20, 30, 255))

    def test_opacity_scales_source(self) -> None:
        canvas = new_canvas(1, 1)
        Bitmap(solid(1, 1, (255, 255, 255, 255))).premultiplied_blit_to_alpha_blended(canvas, (0, 0), 0, 0.5)
        self.assertAlmostEqual(Bitmap.from_premultiplied_canvas(canvas).get_or_default(0, 0)[3], 128, delta=1)

    def test_unimplemented_mode_is_rejected(self) -> None:
        with self.assertRaises(UnsupportedFeature):
            Bitmap.new(1, 1).premultiplied_blit_to_alpha_blended(new_canvas(1, 1), (0, 0), BlendMode.OVERLAY)


if __name__ == "__main__":
    unittest.main()
