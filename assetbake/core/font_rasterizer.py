"""
Bitmap font rasterizer
Renders every codepoint a TrueType font maps in [0, 65536) into a glyph
sheet, optionally with a 1 pixel border, using Pillow (FreeType) for the
outlines and fontTools for the character map.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from fontTools.ttLib import TTFont, TTLibError
from PIL import Image, ImageDraw, ImageFont

from .bitmap import Bitmap
from .data_structures import FONT_CODEPOINT_LIMIT, FontSheet, RasterGlyph, Rect
from .errors import BakeIOError, FontOverflow, MalformedInput

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int, int]

# (dx, dy) of the pixels a glyph pixel paints with the border color.
BORDER_KERNEL = ((-1, 0), (1, 0), (0, -1), (0, 1), (1, 1))


@dataclass(frozen=True)
class FontStyle:
    """How a font is drawn: plain or bordered, and in which colors"""
    bordered: bool = False
    glyph_color: Color = (255, 255, 255, 255)
    border_color: Color = (0, 0, 0, 255)

    def font_name(self, stem: str) -> str:
        return f"{stem}_bordered" if self.bordered else stem


@dataclass
class GlyphBitmap:
    codepoint: int
    bitmap: Optional[Bitmap]
    xoffset: int
    yoffset: int
    xadvance: int


def font_codepoints(path: str) -> List[int]:
    """Sorted codepoints below 65536 that the font's cmap maps to a glyph."""
    try:
        font = TTFont(path, lazy=True)
    except FileNotFoundError as exc:
        raise BakeIOError(path, exc) from exc
    except (TTLibError, OSError, AssertionError) as exc:
        raise MalformedInput(f"not a readable TrueType font: {exc}", None, path) from exc
    try:
        if "cmap" not in font:
            raise MalformedInput("font has no cmap table", None, path)
        codepoints = set()
        for table in font["cmap"].tables:
            if not table.isUnicode():
                continue
            for codepoint in table.cmap.keys():
                # Surrogates cannot be rendered on their own.
                if codepoint < FONT_CODEPOINT_LIMIT and not 0xD800 <= codepoint <= 0xDFFF:
                    codepoints.add(codepoint)
    finally:
        font.close()
    return sorted(codepoints)


def recolor(coverage: np.ndarray, color: Color, antialias: bool = True) -> np.ndarray:
    """
    Use glyph coverage as an alpha mask over ``color``.

    Without antialiasing, coverage above one half becomes fully opaque and
    everything else fully transparent.
    """
    if antialias:
        alpha = (coverage.astype(np.uint32) * color[3] + 127) // 255
    else:
        alpha = np.where(coverage > 127, color[3], 0)
    pixels = np.zeros(coverage.shape + (4,), dtype=np.uint8)
    pixels[..., :3] = color[:3]
    pixels[..., 3] = alpha
    pixels[pixels[..., 3] == 0] = 0
    return pixels


def add_border(pixels: np.ndarray, border_color: Color) -> np.ndarray:
    """
    Paint ``border_color`` around glyph pixels.

    ``pixels`` must already carry a 1 pixel transparent margin. Every pixel
    with alpha > 0 paints its 4-neighbourhood and its bottom-right diagonal
    unless that pixel belongs to the glyph itself.
    """
    glyph = pixels[..., 3] > 0
    height, width = glyph.shape
    painted = np.zeros_like(glyph)
    for dx, dy in BORDER_KERNEL:
        src = glyph[max(-dy, 0):height - max(dy, 0), max(-dx, 0):width - max(dx, 0)]
        painted[max(dy, 0):height - max(-dy, 0), max(dx, 0):width - max(-dx, 0)] |= src
    border = painted & ~glyph
    out = pixels.copy()
    out[border] = border_color
    return out


class FontRasterizer:
    """Rasterizes one font file at one pixel size."""

    def __init__(self, path: str, size_px: int, antialias: bool = True) -> None:
        self.path = path
        self.size_px = size_px
        self.antialias = antialias
        try:
            self.font = ImageFont.truetype(path, size_px)
        except OSError as exc:
            raise MalformedInput(f"FreeType cannot load font: {exc}", None, path) from exc
        self.ascent, self.descent = self.font.getmetrics()

    def render_glyph(self, codepoint: int, style: FontStyle) -> GlyphBitmap:
        char = chr(codepoint)
        border = 1 if style.bordered else 0
        xadvance = int(round(self.font.getlength(char))) + border
        left, top, right, bottom = self.font.getbbox(char)
        if right <= left or bottom <= top:
            return GlyphBitmap(codepoint, None, 0, 0, xadvance)

        mask = Image.new("L", (right - left, bottom - top), 0)
        draw = ImageDraw.Draw(mask)
        draw.fontmode = "L" if self.antialias else "1"
        draw.text((-left, -top), char, font=self.font, fill=255)
        coverage = np.array(mask, dtype=np.uint8)
        if not coverage.any():
            return GlyphBitmap(codepoint, None, 0, 0, xadvance)

        pixels = recolor(coverage, style.glyph_color, self.antialias)
        if border:
            pixels = np.pad(pixels, ((border, border), (border, border), (0, 0)))
            pixels = add_border(pixels, style.border_color)
        # Offsets are measured from the pen position on the top line of the glyph cell.
        return GlyphBitmap(codepoint, Bitmap(pixels), left, top, xadvance)

    def rasterize(self, name: str, style: FontStyle, texture_size: int) -> FontSheet:
        """
        Render every mapped codepoint and lay the glyphs out on one sheet.

        Glyphs are placed in codepoint order on shelves, each glyph going to
        the first shelf with room for it. Running out of space raises
        FontOverflow.
        """
        border = 1 if style.bordered else 0
        glyph_bitmaps = [self.render_glyph(cp, style) for cp in font_codepoints(self.path)]
        if not glyph_bitmaps:
            logger.warning("Font '%s' has no glyphs in [0, %d)", name, FONT_CODEPOINT_LIMIT)

        layout = ShelfLayout(texture_size)
        sheet = Bitmap.new(texture_size, texture_size)
        glyphs: List[RasterGlyph] = []
        for glyph in glyph_bitmaps:
            bitmap = glyph.bitmap if glyph.bitmap is not None else Bitmap.new(1, 1)
            position = layout.insert(bitmap.width, bitmap.height)
            if position is None:
                raise FontOverflow(name, texture_size)
            bitmap.blit_to(sheet, position)
            glyphs.append(
                RasterGlyph(
                    codepoint=glyph.codepoint,
                    sheet_rect=Rect(position[0], position[1], bitmap.width, bitmap.height),
                    xoffset=glyph.xoffset,
                    yoffset=glyph.yoffset,
                    xadvance=glyph.xadvance,
                    has_translucency=bitmap.has_translucency(),
                )
            )

        # Only the right and bottom sides are cut, and never through a glyph cell,
        # so glyph positions stay valid.
        width = max((g.sheet_rect.x + g.sheet_rect.w for g in glyphs), default=1)
        height = max((g.sheet_rect.y + g.sheet_rect.h for g in glyphs), default=1)
        trimmed = Bitmap(sheet.pixels[:height, :width].copy())
        return FontSheet(
            name=name,
            bitmap=trimmed,
            baseline=self.ascent + border,
            line_height=self.ascent + self.descent + 2 * border,
            font_height_px=self.size_px + 2 * border,
            glyphs=glyphs,
        )


class ShelfLayout:
    """Ordered first-fit shelf layout inside a square texture."""

    def __init__(self, size: int) -> None:
        self.size = size
        # [y, height, next free x]
        self.shelves: List[List[int]] = []

    def insert(self, width: int, height: int) -> Optional[Tuple[int, int]]:
        if width > self.size or height > self.size:
            return None
        for index, shelf in enumerate(self.shelves):
            y, shelf_height, cursor = shelf
            if cursor + width > self.size:
                continue
            is_last = index == len(self.shelves) - 1
            if height <= shelf_height or (is_last and y + height <= self.size):
                shelf[1] = max(shelf_height, height)
                shelf[2] = cursor + width
                return cursor, y
        y = self.shelves[-1][0] + self.shelves[-1][1] if self.shelves else 0
        if y + height > self.size:
            return None
        self.shelves.append([y, height, width])
        return 0, y


def rasterize_font(
    path: str,
    name: str,
    size_px: int,
    texture_size: int,
    style: FontStyle = FontStyle(),
    antialias: bool = True,
) -> FontSheet:
    return FontRasterizer(path, size_px, antialias).rasterize(name, style, texture_size)
