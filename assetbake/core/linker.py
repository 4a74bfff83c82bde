"""
Cross-reference linker
Builds the sprite, animation, 3D sprite and font tables from packed images
and resolves every reference between them by name.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from .data_structures import (
    FONT_FASTPATH_CODEPOINTS,
    META_ATTACHMENTS,
    AAQuad,
    Animation,
    AnimationDirection,
    AudioResource,
    Font,
    FontSheet,
    Glyph,
    Rect,
    Sprite,
    Sprite3D,
    TrimmedImage,
)
from .errors import BakeError, DuplicateName
from .texture_atlas import AtlasPacker, TextureAtlas

logger = logging.getLogger(__name__)

# Pack keys for font sheets cannot collide with sprite names taken from file paths.
FONT_SHEET_KEY_PREFIX = "\0font/"


@dataclass
class TagInfo:
    name: str
    frame_start: int
    frame_end: int
    direction: AnimationDirection


@dataclass
class DocumentInfo:
    """What the linker needs to know about a rendered Aseprite document"""
    name: str
    frame_durations: List[int]
    layer_names: List[str]
    tags: List[TagInfo] = field(default_factory=list)
    is_3d: bool = False

    @property
    def frame_count(self) -> int:
        return len(self.frame_durations)


def layer_sprite_name(document: str, layer: str, frame: int) -> str:
    return f"{document}.{layer}.{frame}"


def frame_sprite_name(document: str, frame: int) -> str:
    return f"{document}.{frame}"


def glyph_sprite_name(font: str, codepoint: int) -> str:
    return f"{font}_codepoint_{codepoint}"


@dataclass
class BundleTables:
    atlas: TextureAtlas
    sprites: List[Sprite] = field(default_factory=list)
    sprites_3d: List[Sprite3D] = field(default_factory=list)
    animations: List[Animation] = field(default_factory=list)
    animations_3d: List[Animation] = field(default_factory=list)
    fonts: List[Font] = field(default_factory=list)
    audio: List[AudioResource] = field(default_factory=list)


def _require_unique(names: Iterable[str]) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise DuplicateName(name)
        seen.add(name)


def _document_animations(document: DocumentInfo, frame_names: Sequence[str]) -> List[Animation]:
    animations = []
    for tag in document.tags:
        frames = range(tag.frame_start, tag.frame_end + 1)
        animations.append(
            Animation(
                name=f"{document.name}.{tag.name}",
                frames=[frame_names[i] for i in frames],
                frame_duration_ms=[document.frame_durations[i] for i in frames],
                direction=tag.direction,
            )
        )
    if document.frame_count:
        animations.append(
            Animation(
                name=document.name,
                frames=list(frame_names),
                frame_duration_ms=list(document.frame_durations),
            )
        )
    return animations


class Linker:
    """
    Collects every image of a bake, packs them and turns the placements into
    runtime tables.

    Names are checked for collisions before anything is packed so a
    DuplicateName error is reported ahead of packing errors.
    """

    def __init__(self, atlas_size: int) -> None:
        self.atlas_size = atlas_size
        self.images: List[TrimmedImage] = []
        self.font_sheets: List[FontSheet] = []
        self.documents: List[DocumentInfo] = []
        self.audio: List[AudioResource] = []

    def add_images(self, images: Iterable[TrimmedImage]) -> None:
        self.images.extend(images)

    def add_font_sheet(self, sheet: FontSheet) -> None:
        self.font_sheets.append(sheet)

    def add_document(self, document: DocumentInfo) -> None:
        self.documents.append(document)

    def add_audio(self, audio: AudioResource) -> None:
        self.audio.append(audio)

    def sprite_names(self) -> List[str]:
        names = [image.name for image in self.images]
        for sheet in self.font_sheets:
            names.extend(glyph_sprite_name(sheet.name, glyph.codepoint) for glyph in sheet.glyphs)
        return names

    def pack(self) -> TextureAtlas:
        _require_unique(self.sprite_names())
        _require_unique(sheet.name for sheet in self.font_sheets)
        items: List[Tuple[str, object]] = [(image.name, image.bitmap) for image in self.images]
        items.extend((FONT_SHEET_KEY_PREFIX + sheet.name, sheet.bitmap) for sheet in self.font_sheets)
        atlas = AtlasPacker(self.atlas_size).pack(items)
        logger.info(
            "Packed %d image(s) into %d atlas texture(s) of %dx%d",
            len(items), len(atlas.textures), self.atlas_size, self.atlas_size,
        )
        return atlas

    def _uvs(self, rect: Rect) -> AAQuad:
        size = float(self.atlas_size)
        return AAQuad(rect.x / size, rect.y / size, (rect.x + rect.w) / size, (rect.y + rect.h) / size)

    def link(self) -> BundleTables:
        atlas = self.pack()
        tables = BundleTables(atlas=atlas, audio=sorted(self.audio, key=lambda a: a.name))

        sprites: Dict[str, Sprite] = {}
        for image in self.images:
            placement = atlas.placements[image.name]
            attachments = [point if point is not None else (0.0, 0.0) for point in image.attachments]
            sprites[image.name] = Sprite(
                name=image.name,
                atlas_texture_index=placement.texture_index,
                trimmed_rect=image.trimmed_rect,
                trimmed_uvs=self._uvs(placement.rect),
                untrimmed_dimensions=image.untrimmed_size,
                pivot_offset=image.pivot,
                attachment_points=attachments,
                has_translucency=image.has_translucency,
            )

        for sheet in sorted(self.font_sheets, key=lambda s: s.name):
            placement = atlas.placements[FONT_SHEET_KEY_PREFIX + sheet.name]
            font = Font(
                name=sheet.name,
                baseline=sheet.baseline,
                vertical_advance=sheet.line_height,
                horizontal_advance_max=max((g.xadvance for g in sheet.glyphs), default=0),
                is_fixed_width=len({g.xadvance for g in sheet.glyphs}) <= 1,
                font_height_px=sheet.font_height_px,
            )
            for raster in sheet.glyphs:
                name = glyph_sprite_name(sheet.name, raster.codepoint)
                local = raster.sheet_rect
                atlas_rect = Rect(placement.rect.x + local.x, placement.rect.y + local.y, local.w, local.h)
                sprites[name] = Sprite(
                    name=name,
                    atlas_texture_index=placement.texture_index,
                    trimmed_rect=Rect(raster.xoffset, raster.yoffset, local.w, local.h),
                    trimmed_uvs=self._uvs(atlas_rect),
                    untrimmed_dimensions=(local.w, local.h),
                    attachment_points=[(0.0, 0.0)] * len(META_ATTACHMENTS),
                    has_translucency=raster.has_translucency,
                )
                glyph = Glyph(raster.codepoint, raster.xadvance, name)
                if raster.codepoint < FONT_FASTPATH_CODEPOINTS:
                    font.fastpath[raster.codepoint] = glyph
                else:
                    font.unicode[raster.codepoint] = glyph
            tables.fonts.append(font)

        for document in sorted(self.documents, key=lambda d: d.name):
            if document.is_3d:
                stacks = []
                for frame in range(document.frame_count):
                    stacks.append(
                        Sprite3D(
                            name=frame_sprite_name(document.name, frame),
                            layers=[layer_sprite_name(document.name, layer, frame) for layer in document.layer_names],
                        )
                    )
                tables.sprites_3d.extend(stacks)
                tables.animations_3d.extend(_document_animations(document, [s.name for s in stacks]))
            else:
                frame_names = [frame_sprite_name(document.name, i) for i in range(document.frame_count)]
                tables.animations.extend(_document_animations(document, frame_names))

        tables.sprites = [sprites[name] for name in sorted(sprites)]
        tables.sprites_3d.sort(key=lambda s: s.name)
        tables.animations.sort(key=lambda a: a.name)
        tables.animations_3d.sort(key=lambda a: a.name)
        for names in (
            [s.name for s in tables.sprites_3d],
            [a.name for a in tables.animations],
            [a.name for a in tables.animations_3d],
            [a.name for a in tables.audio],
        ):
            _require_unique(names)

        missing = unresolved_references(tables)
        if missing:
            raise BakeError(f"unresolved sprite references: {', '.join(sorted(missing))}")
        return tables


def unresolved_references(tables: BundleTables) -> List[str]:
    """Names referenced by animations, glyphs or 3D sprites that have no table entry."""
    sprite_names = {sprite.name for sprite in tables.sprites}
    sprite_3d_names = {sprite.name for sprite in tables.sprites_3d}
    missing = set()
    for animation in tables.animations:
        missing.update(name for name in animation.frames if name not in sprite_names)
    for animation in tables.animations_3d:
        missing.update(name for name in animation.frames if name not in sprite_3d_names)
    for sprite_3d in tables.sprites_3d:
        missing.update(name for name in sprite_3d.layers if name not in sprite_names)
    for font in tables.fonts:
        missing.update(glyph.sprite_name for glyph in font.glyphs() if glyph.sprite_name not in sprite_names)
    return sorted(missing)
