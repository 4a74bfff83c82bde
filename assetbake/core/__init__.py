"""
Core module for the asset baker
Contains data structures, decoders, rasterizers and the atlas packer
"""

from .errors import (
    BakeError,
    BakeFailed,
    BakeIOError,
    Cancelled,
    ConfigError,
    DuplicateName,
    FontOverflow,
    InconsistentMetaLayer,
    MalformedInput,
    SpriteTooLarge,
    UnsupportedFeature,
)
from .binfile import BinaryWriter, Buffer
from .bitmap import Bitmap, premultiply, unpremultiply
from .data_structures import (
    Animation,
    AnimationDirection,
    BlendMode,
    ColorDepth,
    Document,
    Font,
    Glyph,
    Rect,
    Sprite,
    Sprite3D,
    TrimmedImage,
)
from .aseprite import decode_document, load_document
from .cel_renderer import render_document
from .font_rasterizer import FontStyle, rasterize_font
from .trimmer import trim
from .texture_atlas import AtlasPacker, TextureAtlas
from .linker import BundleTables, DocumentInfo, Linker

__all__ = [
    'BakeError',
    'BakeFailed',
    'BakeIOError',
    'Cancelled',
    'ConfigError',
    'DuplicateName',
    'FontOverflow',
    'InconsistentMetaLayer',
    'MalformedInput',
    'SpriteTooLarge',
    'UnsupportedFeature',
    'BinaryWriter',
    'Buffer',
    'Bitmap',
    'premultiply',
    'unpremultiply',
    'Animation',
    'AnimationDirection',
    'BlendMode',
    'ColorDepth',
    'Document',
    'Font',
    'Glyph',
    'Rect',
    'Sprite',
    'Sprite3D',
    'TrimmedImage',
    'decode_document',
    'load_document',
    'render_document',
    'FontStyle',
    'rasterize_font',
    'trim',
    'AtlasPacker',
    'TextureAtlas',
    'BundleTables',
    'DocumentInfo',
    'Linker',
]
