"""
RGBA bitmaps backed by numpy arrays.

Bitmaps hold straight alpha. Compositing converts to premultiplied float
canvases (see ``premultiplied_blit_to_alpha_blended``) and back.
"""

import io
from typing import Callable, Dict, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import BakeIOError, MalformedInput, UnsupportedFeature

Pixel = Tuple[int, int, int, int]
TRANSPARENT: Pixel = (0, 0, 0, 0)


def premultiply(pixels: np.ndarray) -> np.ndarray:
    """Convert straight uint8 RGBA to premultiplied uint8 RGBA (rounded)."""
    data = pixels.astype(np.uint32)
    alpha = data[..., 3:4]
    out = data.copy()
    out[..., :3] = (data[..., :3] * alpha + 127) // 255
    return out.astype(np.uint8)


def unpremultiply(pixels: np.ndarray) -> np.ndarray:
    """Convert premultiplied uint8 RGBA back to straight alpha; α = 0 maps to (0,0,0,0)."""
    data = pixels.astype(np.uint32)
    alpha = data[..., 3:4]
    safe_alpha = np.maximum(alpha, 1)
    rgb = (data[..., :3] * 255 + safe_alpha // 2) // safe_alpha
    rgb = np.where(alpha > 0, np.minimum(rgb, 255), 0)
    out = np.concatenate([rgb, alpha], axis=-1)
    return out.astype(np.uint8)


# Separable blend functions on straight colors in [0, 1]: B(backdrop, source).
_BLEND_FUNCTIONS: Dict[int, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    0: lambda cb, cs: cs,                                 # normal
    1: lambda cb, cs: cb * cs,                            # multiply
    2: lambda cb, cs: cb + cs - cb * cs,                  # screen
    4: np.minimum,                                        # darken
    5: np.maximum,                                        # lighten
    10: lambda cb, cs: np.abs(cb - cs),                   # difference
    16: lambda cb, cs: np.minimum(cb + cs, 1.0),          # addition
    17: lambda cb, cs: np.maximum(cb - cs, 0.0),          # subtract
}

BLEND_MODE_NAMES = {
    0: "normal", 1: "multiply", 2: "screen", 3: "overlay", 4: "darken",
    5: "lighten", 6: "color dodge", 7: "color burn", 8: "hard light",
    9: "soft light", 10: "difference", 11: "exclusion", 12: "hue",
    13: "saturation", 14: "color", 15: "luminosity", 16: "addition",
    17: "subtract", 18: "divide",
}


def supports_blend_mode(mode: int) -> bool:
    return mode in _BLEND_FUNCTIONS


def new_canvas(width: int, height: int) -> np.ndarray:
    """Transparent premultiplied float32 canvas used for compositing."""
    return np.zeros((height, width, 4), dtype=np.float32)


class Bitmap:
    """Straight-alpha RGBA image, origin top-left, y growing downward"""

    def __init__(self, pixels: np.ndarray) -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"expected an (h, w, 4) array, got {pixels.shape}")
        if pixels.shape[0] <= 0 or pixels.shape[1] <= 0:
            raise ValueError("bitmap dimensions must be positive")
        self.pixels = np.ascontiguousarray(pixels, dtype=np.uint8)

    @classmethod
    def new(cls, width: int, height: int, fill: Pixel = TRANSPARENT) -> "Bitmap":
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[...] = fill
        return cls(pixels)

    @classmethod
    def from_premultiplied_canvas(cls, canvas: np.ndarray) -> "Bitmap":
        """Build a straight-alpha bitmap from a premultiplied float canvas."""
        quantized = np.clip(np.rint(canvas * 255.0), 0, 255).astype(np.uint8)
        quantized[..., :3] = np.minimum(quantized[..., :3], quantized[..., 3:4])
        return cls(unpremultiply(quantized))

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def copy(self) -> "Bitmap":
        return Bitmap(self.pixels.copy())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bitmap):
            return NotImplemented
        return self.pixels.shape == other.pixels.shape and bool(np.array_equal(self.pixels, other.pixels))

    def __repr__(self) -> str:
        return f"Bitmap({self.width}x{self.height})"

    def get_or_default(self, x: int, y: int, default: Pixel = TRANSPARENT) -> Pixel:
        if 0 <= x < self.width and 0 <= y < self.height:
            return tuple(int(c) for c in self.pixels[y, x])  # type: ignore[return-value]
        return default

    def has_translucency(self) -> bool:
        alpha = self.pixels[..., 3]
        return bool(np.any((alpha != 0) & (alpha != 255)))

    def is_fully_transparent(self) -> bool:
        return not bool(np.any(self.pixels[..., 3]))

    def _clip(self, target_w: int, target_h: int, pos: Tuple[int, int]):
        x, y = pos
        x0, y0 = max(x, 0), max(y, 0)
        x1, y1 = min(x + self.width, target_w), min(y + self.height, target_h)
        if x0 >= x1 or y0 >= y1:
            return None
        return (y0, y1, x0, x1), (y0 - y, y1 - y, x0 - x, x1 - x)

    def blit_to(self, target: "Bitmap", pos: Tuple[int, int]) -> None:
        """Copy pixels into ``target`` at ``pos`` replacing what is there; clipped to the target."""
        clipped = self._clip(target.width, target.height, pos)
        if clipped is None:
            return
        (ty0, ty1, tx0, tx1), (sy0, sy1, sx0, sx1) = clipped
        target.pixels[ty0:ty1, tx0:tx1] = self.pixels[sy0:sy1, sx0:sx1]

    def premultiplied_blit_to_alpha_blended(
        self,
        target: np.ndarray,
        pos: Tuple[int, int],
        mode: int = 0,
        opacity: float = 1.0,
    ) -> None:
        """
        Blend this bitmap onto a premultiplied float canvas.

        Uses the separable compositing formula
        ``co = cs*(1-ab) + cb*(1-as) + as*ab*B(Cb, Cs)`` with the blend
        function selected by ``mode``.

        Args:
            target: (h, w, 4) float32 canvas in premultiplied alpha, modified in place
            pos: top-left position of this bitmap on the canvas
            mode: BlendMode value
            opacity: extra opacity in [0, 1] applied to the source
        """
        blend = _BLEND_FUNCTIONS.get(int(mode))
        if blend is None:
            raise UnsupportedFeature(f"blend mode '{BLEND_MODE_NAMES.get(int(mode), mode)}'")
        clipped = self._clip(target.shape[1], target.shape[0], pos)
        if clipped is None:
            return
        (ty0, ty1, tx0, tx1), (sy0, sy1, sx0, sx1) = clipped

        src = self.pixels[sy0:sy1, sx0:sx1].astype(np.float32) / 255.0
        src_alpha = src[..., 3:4] * opacity
        src_straight = src[..., :3]
        src_premul = src_straight * src_alpha

        dst = target[ty0:ty1, tx0:tx1]
        dst_alpha = dst[..., 3:4]
        dst_straight = np.divide(
            dst[..., :3], dst_alpha, out=np.zeros_like(dst[..., :3]), where=dst_alpha > 0
        )

        mixed = np.clip(blend(dst_straight, src_straight), 0.0, 1.0)
        out_rgb = (
            src_premul * (1.0 - dst_alpha)
            + dst[..., :3] * (1.0 - src_alpha)
            + src_alpha * dst_alpha * mixed
        )
        out_alpha = src_alpha + dst_alpha * (1.0 - src_alpha)
        target[ty0:ty1, tx0:tx1, :3] = out_rgb
        target[ty0:ty1, tx0:tx1, 3:4] = out_alpha

    def opaque_bounds(self) -> Optional[Tuple[int, int, int, int]]:
        """Return (x, y, w, h) of the pixels with α > 0, or None when there are none."""
        alpha = self.pixels[..., 3]
        rows = np.flatnonzero(alpha.any(axis=1))
        if rows.size == 0:
            return None
        cols = np.flatnonzero(alpha.any(axis=0))
        x0, x1 = int(cols[0]), int(cols[-1])
        y0, y1 = int(rows[0]), int(rows[-1])
        return x0, y0, x1 - x0 + 1, y1 - y0 + 1

    def trimmed(
        self, left: bool = True, top: bool = True, right: bool = True, bottom: bool = True
    ) -> Tuple["Bitmap", Tuple[int, int, int, int]]:
        """
        Cut away fully transparent borders on the requested sides.

        Returns:
            The trimmed bitmap and its (x, y, w, h) inside this bitmap. A fully
            transparent bitmap yields a 1x1 transparent placeholder at (0, 0).
        """
        bounds = self.opaque_bounds()
        if bounds is None:
            return Bitmap.new(1, 1), (0, 0, 1, 1)
        bx, by, bw, bh = bounds
        x0 = bx if left else 0
        y0 = by if top else 0
        x1 = bx + bw if right else self.width
        y1 = by + bh if bottom else self.height
        region = Bitmap(self.pixels[y0:y1, x0:x1].copy())
        return region, (x0, y0, x1 - x0, y1 - y0)

    def first_opaque_pixel(self) -> Optional[Tuple[int, int]]:
        """Coordinate of the first fully opaque pixel in row-major order."""
        hits = np.argwhere(self.pixels[..., 3] == 255)
        if hits.size == 0:
            return None
        y, x = hits[0]
        return int(x), int(y)

    def premultiplied(self) -> np.ndarray:
        return premultiply(self.pixels)

    # PNG --------------------------------------------------------------------

    def to_png_bytes(self, premultiplied: bool = False) -> bytes:
        """Encode as 8-bit RGBA non-interlaced PNG."""
        data = premultiply(self.pixels) if premultiplied else self.pixels
        stream = io.BytesIO()
        Image.fromarray(data).save(stream, format="PNG")
        return stream.getvalue()

    @classmethod
    def from_png_bytes(cls, data: bytes, path: Optional[str] = None) -> "Bitmap":
        try:
            with Image.open(io.BytesIO(data)) as image:
                if image.format != "PNG":
                    raise MalformedInput(f"expected PNG data, found {image.format}", 0, path)
                rgba = image.convert("RGBA")
                pixels = np.array(rgba, dtype=np.uint8)
        except UnidentifiedImageError as exc:
            raise MalformedInput(f"not a readable PNG: {exc}", 0, path) from exc
        except (OSError, SyntaxError) as exc:
            raise MalformedInput(f"corrupt PNG: {exc}", None, path) from exc
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise MalformedInput("PNG has zero width or height", None, path)
        return cls(pixels)

    @classmethod
    def load_png(cls, path: str) -> "Bitmap":
        try:
            with open(path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            raise BakeIOError(path, exc) from exc
        return cls.from_png_bytes(data, path)
