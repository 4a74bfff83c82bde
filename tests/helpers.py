"""Builders for synthetic test inputs: Aseprite files, PNGs and TrueType fonts."""

from __future__ import annotations

import struct
import zlib
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

CHUNK_LAYER = 0x2004
CHUNK_CEL = 0x2005
CHUNK_TAGS = 0x2018
CHUNK_PALETTE = 0x2019
CHUNK_USER_DATA = 0x2020


def ase_string(text: str) -> bytes:
    raw = text.encode("utf-8")
    return struct.pack("<H", len(raw)) + raw


def chunk(chunk_type: int, payload: bytes) -> bytes:
    return struct.pack("<IH", 6 + len(payload), chunk_type) + payload


class AseBuilder:
    """Assembles a minimal but valid Aseprite file in memory."""

    def __init__(self, width: int, height: int, depth: int = 32, transparent_index: int = 0) -> None:
        self.width = width
        self.height = height
        self.depth = depth
        self.transparent_index = transparent_index
        self.header_flags = 1
        self.layer_chunks: List[bytes] = []
        self.palette_chunk: Optional[bytes] = None
        self.tag_chunk: Optional[bytes] = None
        self.frames: List[Tuple[int, List[bytes]]] = []

    def add_layer(
        self,
        name: str,
        visible: bool = True,
        blend: int = 0,
        opacity: int = 255,
        layer_type: int = 0,
        child_level: int = 0,
        background: bool = False,
    ) -> int:
        flags = (1 if visible else 0) | (8 if background else 0)
        payload = struct.pack("<HHHHHHB3x", flags, layer_type, child_level, 0, 0, blend, opacity)
        self.layer_chunks.append(chunk(CHUNK_LAYER, payload + ase_string(name)))
        return len(self.layer_chunks) - 1

    def add_frame(self, duration: int = 100) -> int:
        self.frames.append((duration, []))
        return len(self.frames) - 1

    def add_cel(
        self,
        frame: int,
        layer: int,
        pixels: np.ndarray,
        x: int = 0,
        y: int = 0,
        opacity: int = 255,
        compressed: bool = True,
    ) -> None:
        height, width = pixels.shape[:2]
        raw = np.ascontiguousarray(pixels, dtype=np.uint8).tobytes()
        cel_type = 2 if compressed else 0
        body = struct.pack("<HhhBHh5x", layer, x, y, opacity, cel_type, 0)
        body += struct.pack("<HH", width, height)
        body += zlib.compress(raw) if compressed else raw
        self.frames[frame][1].append(chunk(CHUNK_CEL, body))

    def add_linked_cel(self, frame: int, layer: int, source_frame: int, x: int = 0, y: int = 0) -> None:
        body = struct.pack("<HhhBHh5x", layer, x, y, 255, 1, 0) + struct.pack("<H", source_frame)
        self.frames[frame][1].append(chunk(CHUNK_CEL, body))

    def add_raw_chunk(self, frame: int, chunk_type: int, payload: bytes) -> None:
        self.frames[frame][1].append(chunk(chunk_type, payload))

    def set_tags(self, tags: Sequence[Tuple[str, int, int, int]]) -> None:
        payload = struct.pack("<H8x", len(tags))
        for name, start, end, direction in tags:
            payload += struct.pack("<HHB8xBBBx", start, end, direction, 255, 0, 0) + ase_string(name)
        self.tag_chunk = chunk(CHUNK_TAGS, payload)

    def set_palette(self, colors: Sequence[Tuple[int, int, int, int]]) -> None:
        payload = struct.pack("<III8x", len(colors), 0, len(colors) - 1)
        for color in colors:
            payload += struct.pack("<HBBBB", 0, *color)
        self.palette_chunk = chunk(CHUNK_PALETTE, payload)

    def _frame_bytes(self, index: int, duration: int, chunks: List[bytes]) -> bytes:
        if index == 0:
            prefix = [c for c in (self.palette_chunk,) if c is not None] + self.layer_chunks
            if self.tag_chunk is not None:
                prefix.append(self.tag_chunk)
            chunks = prefix + chunks
        body = b"".join(chunks)
        count = len(chunks)
        header = struct.pack("<IHHHxxI", 16 + len(body), 0xF1FA, min(count, 0xFFFF), duration, count)
        return header + body

    def build(self) -> bytes:
        frames = b"".join(self._frame_bytes(i, d, c) for i, (d, c) in enumerate(self.frames))
        size = 128 + len(frames)
        header = struct.pack(
            "<IHHHHHIHIIB3xHBBhhHH84x",
            size, 0xA5E0, len(self.frames), self.width, self.height, self.depth,
            self.header_flags, 100, 0, 0, self.transparent_index, 0, 1, 1, 0, 0, 16, 16,
        )
        return header + frames

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.build())
        return path


def solid(width: int, height: int, color: Tuple[int, int, int, int]) -> np.ndarray:
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[...] = color
    return pixels


def write_png(path: Path, pixels: np.ndarray) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(path, format="PNG")
    return path


def build_test_font(path: Path, extra_codepoints: Sequence[int] = (0x4E00,)) -> Path:
    """Write a TrueType font with box-shaped glyphs for 'A', 'B', '|' and a blank space."""
    from fontTools.fontBuilder import FontBuilder
    from fontTools.pens.ttGlyphPen import TTGlyphPen

    def box(x0: int, y0: int, x1: int, y1: int):
        pen = TTGlyphPen(None)
        pen.moveTo((x0, y0))
        pen.lineTo((x0, y1))
        pen.lineTo((x1, y1))
        pen.lineTo((x1, y0))
        pen.closePath()
        return pen.glyph()

    def empty():
        return TTGlyphPen(None).glyph()

    glyphs: Dict[str, object] = {
        ".notdef": empty(),
        "space": empty(),
        "A": box(100, 0, 500, 700),
        "B": box(100, 0, 600, 500),
        "bar": box(200, -200, 300, 800),
    }
    cmap = {32: "space", 65: "A", 66: "B", 124: "bar"}
    for codepoint in extra_codepoints:
        name = f"uni{codepoint:04X}"
        glyphs[name] = box(50, 0, 850, 700)
        cmap[codepoint] = name

    builder = FontBuilder(1000, isTTF=True)
    builder.setupGlyphOrder(list(glyphs))
    builder.setupCharacterMap(cmap)
    builder.setupGlyf(glyphs)
    glyph_table = builder.font["glyf"]
    builder.setupHorizontalMetrics(
        {name: (700, getattr(glyph_table[name], "xMin", 0)) for name in glyphs}
    )
    builder.setupHorizontalHeader(ascent=800, descent=-200)
    builder.setupNameTable({"familyName": "Boxes", "styleName": "Regular"})
    builder.setupOS2(sTypoAscender=800, sTypoDescender=-200, usWinAscent=800, usWinDescent=200)
    builder.setupPost()
    path.parent.mkdir(parents=True, exist_ok=True)
    builder.save(str(path))
    return path
