"""
Data structures for the asset baker
Defines the decoded Aseprite document model and the runtime bundle entities
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

import numpy as np

from .bitmap import Bitmap

META_PIVOT = "pivot"
META_ATTACHMENTS = ("attachment_0", "attachment_1", "attachment_2", "attachment_3")
META_LAYER_NAMES = (META_PIVOT,) + META_ATTACHMENTS

FONT_FASTPATH_CODEPOINTS = 256
FONT_CODEPOINT_LIMIT = 65536


class ColorDepth(IntEnum):
    """Bits per pixel as stored in the Aseprite header"""
    INDEXED8 = 8
    GRAYSCALE16 = 16
    RGBA32 = 32

    @property
    def bytes_per_pixel(self) -> int:
        return self.value // 8


class LayerType(IntEnum):
    NORMAL = 0
    GROUP = 1
    TILEMAP = 2


class BlendMode(IntEnum):
    """Layer blend modes, numbered as Aseprite numbers them"""
    NORMAL = 0
    MULTIPLY = 1
    SCREEN = 2
    OVERLAY = 3
    DARKEN = 4
    LIGHTEN = 5
    COLOR_DODGE = 6
    COLOR_BURN = 7
    HARD_LIGHT = 8
    SOFT_LIGHT = 9
    DIFFERENCE = 10
    EXCLUSION = 11
    HUE = 12
    SATURATION = 13
    COLOR = 14
    LUMINOSITY = 15
    ADDITION = 16
    SUBTRACT = 17
    DIVIDE = 18


class AnimationDirection(IntEnum):
    FORWARD = 0
    REVERSE = 1
    PING_PONG = 2


class AudioFormat(IntEnum):
    WAV = 0
    OGG = 1


# ---------------------------------------------------------------------------
# Decoded Aseprite document
# ---------------------------------------------------------------------------

@dataclass
class UserData:
    """Free-form text and color an artist attached to a layer, cel, tag or sprite"""
    text: Optional[str] = None
    color: Optional[Tuple[int, int, int, int]] = None


@dataclass
class Layer:
    """Layer information"""
    name: str
    index: int
    visible: bool = True
    opacity: int = 255
    blend_mode: int = BlendMode.NORMAL
    layer_type: LayerType = LayerType.NORMAL
    child_level: int = 0
    is_background: bool = False
    user_data: Optional[UserData] = None

    @property
    def is_meta(self) -> bool:
        return self.name in META_LAYER_NAMES


@dataclass
class RawCel:
    width: int
    height: int
    pixels: bytes


@dataclass
class CompressedCel:
    """Pixels are stored already inflated; only the on-disk encoding differs from RawCel"""
    width: int
    height: int
    pixels: bytes


@dataclass
class LinkedCel:
    source_frame_index: int


@dataclass
class CelExtra:
    """Sub-pixel placement stored in an EXTRA_CEL chunk"""
    flags: int
    x: float
    y: float
    width: float
    height: float


@dataclass
class Cel:
    layer_index: int
    x: int
    y: int
    opacity: int
    data: object  # RawCel | CompressedCel | LinkedCel
    z_index: int = 0
    extra: Optional[CelExtra] = None
    user_data: Optional[UserData] = None


@dataclass
class Frame:
    duration_ms: int
    cels: List[Cel] = field(default_factory=list)

    def cel_for_layer(self, layer_index: int) -> Optional[Cel]:
        for cel in self.cels:
            if cel.layer_index == layer_index:
                return cel
        return None


@dataclass
class AnimationTag:
    name: str
    frame_start: int
    frame_end: int
    direction: AnimationDirection
    color: Tuple[int, int, int]
    user_data: Optional[UserData] = None


@dataclass
class SliceKey:
    frame: int
    x: int
    y: int
    width: int
    height: int
    center: Optional[Tuple[int, int, int, int]] = None
    pivot: Optional[Tuple[int, int]] = None


@dataclass
class Slice:
    name: str
    flags: int
    keys: List[SliceKey] = field(default_factory=list)
    user_data: Optional[UserData] = None


@dataclass
class ColorProfile:
    kind: int
    flags: int
    gamma: float
    icc: bytes = b""


@dataclass
class Document:
    """A decoded .ase file"""
    width: int
    height: int
    color_depth: ColorDepth
    layers: List[Layer] = field(default_factory=list)
    frames: List[Frame] = field(default_factory=list)
    tags: Dict[str, AnimationTag] = field(default_factory=dict)
    transparent_index: int = 0
    palette: Optional[np.ndarray] = None  # (n, 4) uint8, straight RGBA
    slices: List[Slice] = field(default_factory=list)
    color_profile: Optional[ColorProfile] = None
    user_data: Optional[UserData] = None

    def layer_by_name(self, name: str) -> Optional[Layer]:
        for layer in self.layers:
            if layer.name == name:
                return layer
        return None


# ---------------------------------------------------------------------------
# Intermediate products handed from the per-file stages to the packer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    w: int
    h: int

    def intersects(self, other: "Rect") -> bool:
        return (
            self.x < other.x + other.w
            and other.x < self.x + self.w
            and self.y < other.y + other.h
            and other.y < self.y + self.h
        )


@dataclass
class TrimmedImage:
    """A trimmed bitmap plus everything the linker needs to turn it into a Sprite"""
    name: str
    bitmap: Bitmap
    trimmed_rect: Rect
    untrimmed_size: Tuple[int, int]
    pivot: Tuple[float, float] = (0.0, 0.0)
    attachments: List[Optional[Tuple[float, float]]] = field(
        default_factory=lambda: [None] * len(META_ATTACHMENTS)
    )
    has_translucency: bool = False


@dataclass
class FontSheet:
    """
    A font's glyphs laid out on one texture.

    The sheet is packed into the atlas as a single unit; ``glyph_rects`` are
    positions inside the sheet and are translated once the sheet is placed.
    """
    name: str
    bitmap: Bitmap
    baseline: int
    line_height: int
    font_height_px: int
    glyphs: List["RasterGlyph"] = field(default_factory=list)


@dataclass
class RasterGlyph:
    codepoint: int
    sheet_rect: Rect
    xoffset: int
    yoffset: int
    xadvance: int
    has_translucency: bool = False


# ---------------------------------------------------------------------------
# Runtime bundle entities
# ---------------------------------------------------------------------------

@dataclass
class AAQuad:
    """Axis aligned quad; left may exceed right (and top bottom) for mirrored UVs"""
    left: float
    top: float
    right: float
    bottom: float


@dataclass
class Sprite:
    """
    One drawable image in the atlas.

    ``trimmed_rect`` is the opaque part relative to the untrimmed image of
    ``untrimmed_dimensions``. Font glyph sprites are the exception: their
    rect origin is the pen offset of the glyph (possibly negative) and the
    untrimmed dimensions are those of the glyph cell itself.
    """
    name: str
    atlas_texture_index: int
    trimmed_rect: Rect
    trimmed_uvs: AAQuad
    untrimmed_dimensions: Tuple[int, int]
    pivot_offset: Tuple[float, float] = (0.0, 0.0)
    attachment_points: List[Tuple[float, float]] = field(
        default_factory=lambda: [(0.0, 0.0)] * len(META_ATTACHMENTS)
    )
    has_translucency: bool = False


@dataclass
class Sprite3D:
    """A voxel-style stack of sprites, bottom layer first"""
    name: str
    layers: List[str] = field(default_factory=list)

    @property
    def draw_height(self) -> int:
        return len(self.layers) - 1


@dataclass
class Animation:
    """Animation over Sprite names or Sprite3D names"""
    name: str
    frames: List[str] = field(default_factory=list)
    frame_duration_ms: List[int] = field(default_factory=list)
    direction: AnimationDirection = AnimationDirection.FORWARD


@dataclass
class Glyph:
    codepoint: int
    horizontal_advance: int
    sprite_name: str


@dataclass
class Font:
    name: str
    baseline: int
    vertical_advance: int
    horizontal_advance_max: int
    is_fixed_width: bool
    font_height_px: int
    fastpath: List[Optional[Glyph]] = field(
        default_factory=lambda: [None] * FONT_FASTPATH_CODEPOINTS
    )
    unicode: Dict[int, Glyph] = field(default_factory=dict)

    def glyphs(self) -> List[Glyph]:
        present = [glyph for glyph in self.fastpath if glyph is not None]
        return present + [self.unicode[cp] for cp in sorted(self.unicode)]


@dataclass
class AudioResource:
    name: str
    file: str
    format: AudioFormat
    sample_rate: int
    channels: int
    frames: int
    volume: float = 1.0
    looping: bool = False
