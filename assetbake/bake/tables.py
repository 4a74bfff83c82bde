"""
Binary tables of the runtime bundle.

Every ``*.data`` file is a little-endian ``u32`` entry count followed by the
entries. Strings are ``u64`` byte length plus UTF-8, enums are ``u8``. Each
table knows how to ``encode`` itself and how to ``decode`` its bytes; the two
are exact inverses so decoding and re-encoding reproduces the file.
"""

from typing import Callable, Generic, List, Optional, Type, TypeVar

from ..core.data_structures import (
    FONT_FASTPATH_CODEPOINTS,
    AAQuad,
    Animation,
    AnimationDirection,
    AudioFormat,
    AudioResource,
    Font,
    Glyph,
    Rect,
    Sprite,
    Sprite3D,
)
from ..core.errors import MalformedInput
from ..core.binfile import BinaryWriter, Buffer

T = TypeVar("T")


def write_sprite(out: BinaryWriter, sprite: Sprite) -> None:
    out.write_string(sprite.name)
    out.write_u32(sprite.atlas_texture_index)
    rect = sprite.trimmed_rect
    for value in (rect.x, rect.y, rect.w, rect.h):
        out.write_i32(value)
    uvs = sprite.trimmed_uvs
    for value in (uvs.left, uvs.top, uvs.right, uvs.bottom):
        out.write_f32(value)
    out.write_i32(sprite.untrimmed_dimensions[0])
    out.write_i32(sprite.untrimmed_dimensions[1])
    out.write_f32(sprite.pivot_offset[0])
    out.write_f32(sprite.pivot_offset[1])
    for x, y in sprite.attachment_points:
        out.write_f32(x)
        out.write_f32(y)
    out.write_u8(1 if sprite.has_translucency else 0)


def read_sprite(buf: Buffer) -> Sprite:
    name = buf.read_string()
    atlas_index = buf.read_u32()
    rect = Rect(buf.read_i32(), buf.read_i32(), buf.read_i32(), buf.read_i32())
    uvs = AAQuad(buf.read_f32(), buf.read_f32(), buf.read_f32(), buf.read_f32())
    untrimmed = (buf.read_i32(), buf.read_i32())
    pivot = (buf.read_f32(), buf.read_f32())
    attachments = [(buf.read_f32(), buf.read_f32()) for _ in range(4)]
    return Sprite(
        name=name,
        atlas_texture_index=atlas_index,
        trimmed_rect=rect,
        trimmed_uvs=uvs,
        untrimmed_dimensions=untrimmed,
        pivot_offset=pivot,
        attachment_points=attachments,
        has_translucency=_read_bool(buf),
    )


def write_sprite_3d(out: BinaryWriter, sprite: Sprite3D) -> None:
    out.write_string(sprite.name)
    out.write_u32(len(sprite.layers))
    for layer in sprite.layers:
        out.write_string(layer)


def read_sprite_3d(buf: Buffer) -> Sprite3D:
    name = buf.read_string()
    return Sprite3D(name, [buf.read_string() for _ in range(buf.read_u32())])


def write_animation(out: BinaryWriter, animation: Animation) -> None:
    out.write_string(animation.name)
    out.write_u8(int(animation.direction))
    out.write_u32(len(animation.frames))
    for duration in animation.frame_duration_ms:
        out.write_u32(duration)
    for frame in animation.frames:
        out.write_string(frame)


def read_animation(buf: Buffer) -> Animation:
    name = buf.read_string()
    direction = _read_enum(buf, AnimationDirection)
    count = buf.read_u32()
    durations = [buf.read_u32() for _ in range(count)]
    frames = [buf.read_string() for _ in range(count)]
    return Animation(name=name, frames=frames, frame_duration_ms=durations, direction=direction)


def _write_glyph(out: BinaryWriter, glyph: Glyph) -> None:
    out.write_i32(glyph.horizontal_advance)
    out.write_string(glyph.sprite_name)


def write_font(out: BinaryWriter, font: Font) -> None:
    out.write_string(font.name)
    out.write_i32(font.baseline)
    out.write_i32(font.vertical_advance)
    out.write_i32(font.horizontal_advance_max)
    out.write_u8(1 if font.is_fixed_width else 0)
    out.write_i32(font.font_height_px)
    out.write_u32(len(font.fastpath))
    for glyph in font.fastpath:
        out.write_u8(0 if glyph is None else 1)
        if glyph is not None:
            _write_glyph(out, glyph)
    out.write_u32(len(font.unicode))
    for codepoint in sorted(font.unicode):
        out.write_u32(codepoint)
        _write_glyph(out, font.unicode[codepoint])


def read_font(buf: Buffer) -> Font:
    font = Font(
        name=buf.read_string(),
        baseline=buf.read_i32(),
        vertical_advance=buf.read_i32(),
        horizontal_advance_max=buf.read_i32(),
        is_fixed_width=_read_bool(buf),
        font_height_px=buf.read_i32(),
    )
    fastpath_len = buf.read_u32()
    if fastpath_len != FONT_FASTPATH_CODEPOINTS:
        raise MalformedInput(f"font fastpath has {fastpath_len} entries", buf.absolute())
    for codepoint in range(fastpath_len):
        if _read_bool(buf):
            advance = buf.read_i32()
            font.fastpath[codepoint] = Glyph(codepoint, advance, buf.read_string())
    for _ in range(buf.read_u32()):
        codepoint = buf.read_u32()
        advance = buf.read_i32()
        font.unicode[codepoint] = Glyph(codepoint, advance, buf.read_string())
    return font


def write_audio(out: BinaryWriter, audio: AudioResource) -> None:
    out.write_string(audio.name)
    out.write_string(audio.file)
    out.write_u8(int(audio.format))
    out.write_u32(audio.sample_rate)
    out.write_u32(audio.channels)
    out.write_u64(audio.frames)
    out.write_f32(audio.volume)
    out.write_u8(1 if audio.looping else 0)


def read_audio(buf: Buffer) -> AudioResource:
    return AudioResource(
        name=buf.read_string(),
        file=buf.read_string(),
        format=_read_enum(buf, AudioFormat),
        sample_rate=buf.read_u32(),
        channels=buf.read_u32(),
        frames=buf.read_u64(),
        volume=buf.read_f32(),
        looping=_read_bool(buf),
    )


def _read_bool(buf: Buffer) -> bool:
    offset = buf.absolute()
    value = buf.read_u8()
    if value > 1:
        raise MalformedInput(f"invalid boolean {value}", offset)
    return value == 1


def _read_enum(buf: Buffer, enum_type):
    offset = buf.absolute()
    value = buf.read_u8()
    try:
        return enum_type(value)
    except ValueError:
        raise MalformedInput(f"invalid {enum_type.__name__} tag {value}", offset) from None


class Table(Generic[T]):
    """A list of entries plus the functions that (de)serialize one entry."""

    filename = ""
    writer: Callable[[BinaryWriter, T], None]
    reader: Callable[[Buffer], T]

    def __init__(self, entries: Optional[List[T]] = None) -> None:
        self.entries: List[T] = list(entries or [])

    def encode(self) -> bytes:
        out = BinaryWriter()
        out.write_u32(len(self.entries))
        for entry in self.entries:
            type(self).writer(out, entry)
        return out.getvalue()

    @classmethod
    def decode(cls: Type["Table[T]"], data: bytes, path: Optional[str] = None) -> "Table[T]":
        buf = Buffer(data)
        try:
            entries = [cls.reader(buf) for _ in range(buf.read_u32())]
            if buf.remaining:
                raise MalformedInput(f"{buf.remaining} trailing byte(s)", buf.absolute())
        except MalformedInput as exc:
            if path is not None:
                exc.with_path(path)
            raise
        return cls(entries)


class AtlasTable(Table[str]):
    filename = "atlas.data"
    writer = staticmethod(BinaryWriter.write_string)
    reader = staticmethod(Buffer.read_string)


class SpriteTable(Table[Sprite]):
    filename = "sprites.data"
    writer = staticmethod(write_sprite)
    reader = staticmethod(read_sprite)


class Sprite3DTable(Table[Sprite3D]):
    filename = "sprites_3d.data"
    writer = staticmethod(write_sprite_3d)
    reader = staticmethod(read_sprite_3d)


class AnimationTable(Table[Animation]):
    filename = "animations.data"
    writer = staticmethod(write_animation)
    reader = staticmethod(read_animation)


class Animation3DTable(Table[Animation]):
    filename = "animations_3d.data"
    writer = staticmethod(write_animation)
    reader = staticmethod(read_animation)


class FontTable(Table[Font]):
    filename = "fonts.data"
    writer = staticmethod(write_font)
    reader = staticmethod(read_font)


class AudioTable(Table[AudioResource]):
    filename = "audio.data"
    writer = staticmethod(write_audio)
    reader = staticmethod(read_audio)


TABLE_TYPES = (AtlasTable, SpriteTable, Sprite3DTable, AnimationTable, Animation3DTable, FontTable, AudioTable)
