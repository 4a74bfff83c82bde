"""
Per-file import stages: decode, render, rasterize and trim one source file.

Each importer is independent of every other input so the pipeline can run
them on a worker pool.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..core.aseprite import load_document
from ..core.audio import probe_audio
from ..core.bitmap import Bitmap
from ..core.cel_renderer import render_document
from ..core.data_structures import AudioResource, FontSheet, TrimmedImage
from ..core.font_rasterizer import rasterize_font
from ..core.linker import DocumentInfo, TagInfo, frame_sprite_name, layer_sprite_name
from ..core.trimmer import trim
from ..utils.file_loader import AssetKind, SourceFile, load_audio_options, load_font_options
from ..utils.settings import BakeConfig

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Everything one source file contributes to the bundle"""
    images: List[TrimmedImage] = field(default_factory=list)
    font_sheets: List[FontSheet] = field(default_factory=list)
    document: Optional[DocumentInfo] = None
    audio: Optional[AudioResource] = None


def import_document(source: SourceFile) -> ImportResult:
    document = load_document(source.path)
    name = source.name
    if not document.frames:
        logger.warning("Document '%s' has no frames", source.relative)
    rendered = render_document(document, name, stacked=source.is_3d)

    result = ImportResult()
    for frame in rendered.frames:
        points = dict(pivot=frame.pivot, attachments=frame.attachments)
        if not source.is_3d:
            result.images.append(trim(frame_sprite_name(name, frame.index), frame.composite, **points))
        for layer_name, bitmap in frame.layers.items():
            result.images.append(trim(layer_sprite_name(name, layer_name, frame.index), bitmap, **points))

    result.document = DocumentInfo(
        name=name,
        frame_durations=[frame.duration_ms for frame in rendered.frames],
        layer_names=list(rendered.layer_names),
        tags=[
            TagInfo(tag.name, tag.frame_start, tag.frame_end, tag.direction)
            for tag in rendered.tags.values()
        ],
        is_3d=source.is_3d,
    )
    return result


def import_image(source: SourceFile) -> ImportResult:
    return ImportResult(images=[trim(source.name, Bitmap.load_png(source.path))])


def import_font(source: SourceFile, config: BakeConfig) -> ImportResult:
    options = load_font_options(source, config)
    result = ImportResult()
    for style in options.styles:
        result.font_sheets.append(
            rasterize_font(
                source.path,
                style.font_name(source.stem),
                options.size_px,
                options.texture_size,
                style,
                options.antialias,
            )
        )
    return result


def import_audio(source: SourceFile) -> ImportResult:
    volume, looping = load_audio_options(source)
    return ImportResult(audio=probe_audio(source.path, source.name, volume, looping))


def import_source(source: SourceFile, config: BakeConfig) -> ImportResult:
    if source.kind == AssetKind.DOCUMENT:
        return import_document(source)
    if source.kind == AssetKind.IMAGE:
        return import_image(source)
    if source.kind == AssetKind.FONT:
        return import_font(source, config)
    return import_audio(source)
