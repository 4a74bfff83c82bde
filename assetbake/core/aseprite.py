"""
Aseprite (.ase/.aseprite) decoder

Parses the binary layered-sprite format into a :class:`Document`: a 128-byte
file header, then ``frame_count`` frames made of a 16-byte frame header and
a run of chunks. Every chunk starts with ``{u32 size, u16 type}`` and covers
exactly ``size`` bytes, so unknown chunks can be skipped.
"""

import logging
import zlib
from enum import IntEnum
from typing import List, Optional

import numpy as np

from .binfile import Buffer
from .data_structures import (
    AnimationDirection,
    AnimationTag,
    BlendMode,
    Cel,
    CelExtra,
    ColorDepth,
    ColorProfile,
    CompressedCel,
    Document,
    Frame,
    Layer,
    LayerType,
    LinkedCel,
    RawCel,
    Slice,
    SliceKey,
    UserData,
)
from .errors import BakeIOError, MalformedInput, UnsupportedFeature

logger = logging.getLogger(__name__)

FILE_MAGIC = 0xA5E0
FRAME_MAGIC = 0xF1FA
FILE_HEADER_SIZE = 128
FRAME_HEADER_SIZE = 16
CHUNK_HEADER_SIZE = 6

HEADER_FLAG_LAYER_OPACITY_VALID = 1
LAYER_FLAG_VISIBLE = 1
LAYER_FLAG_BACKGROUND = 8


class ChunkType(IntEnum):
    OLD_PALETTE_1 = 0x0004
    OLD_PALETTE_2 = 0x0011
    LAYER = 0x2004
    CEL = 0x2005
    CEL_EXTRA = 0x2006
    COLOR_PROFILE = 0x2007
    MASK = 0x2016
    PATH = 0x2017
    TAGS = 0x2018
    PALETTE = 0x2019
    USER_DATA = 0x2020
    SLICE = 0x2022


class CelType(IntEnum):
    RAW = 0
    LINKED = 1
    COMPRESSED = 2
    COMPRESSED_TILEMAP = 3


class _Decoder:
    def __init__(self, data: bytes) -> None:
        self.buf = Buffer(data)
        self.document: Optional[Document] = None
        self.header_flags = 0
        self.frame_count = 0
        # Chunk that a following USER_DATA chunk belongs to.
        self._user_data_target: object = None
        self._pending_tags: List[AnimationTag] = []

    def decode(self) -> Document:
        self.frame_count = self._read_file_header()
        for frame_index in range(self.frame_count):
            self._read_frame(frame_index)
        _disambiguate_layer_names(self.document.layers)
        return self.document

    # Headers ----------------------------------------------------------------

    def _read_file_header(self) -> int:
        buf = self.buf
        if len(buf) < FILE_HEADER_SIZE:
            raise MalformedInput(
                f"file is {len(buf)} bytes, shorter than the {FILE_HEADER_SIZE}-byte header", 0
            )
        declared_size = buf.read_u32()
        magic = buf.read_u16()
        if magic != FILE_MAGIC:
            raise MalformedInput(f"bad file magic 0x{magic:04X}, expected 0x{FILE_MAGIC:04X}", 4)
        if declared_size != len(buf):
            raise MalformedInput(
                f"header declares {declared_size} bytes but the file has {len(buf)}", 0
            )
        frame_count = buf.read_u16()
        width = buf.read_u16()
        height = buf.read_u16()
        depth_offset = buf.tell()
        depth = buf.read_u16()
        self.header_flags = buf.read_u32()
        buf.read_u16()  # speed, deprecated in favour of per-frame durations
        for _ in range(2):
            reserved_offset = buf.tell()
            if buf.read_u32() != 0:
                raise MalformedInput("reserved header field is not zero", reserved_offset)
        transparent_index = buf.read_u8()
        buf.skip(3)
        buf.read_u16()  # number of colors
        pixel_width = buf.read_u8()
        pixel_height = buf.read_u8()
        buf.skip(2 + 2 + 2 + 2)  # grid position and size
        buf.skip(84)

        if width == 0 or height == 0:
            raise MalformedInput(f"document size {width}x{height} is empty", 8)
        try:
            color_depth = ColorDepth(depth)
        except ValueError:
            raise MalformedInput(f"unknown color depth {depth}", depth_offset) from None
        if pixel_width and pixel_height and pixel_width != pixel_height:
            raise UnsupportedFeature(f"non-square pixel ratio {pixel_width}:{pixel_height}")

        self.document = Document(
            width=width,
            height=height,
            color_depth=color_depth,
            transparent_index=transparent_index,
        )
        return frame_count

    def _read_frame(self, frame_index: int) -> None:
        buf = self.buf
        start = buf.tell()
        frame_size = buf.read_u32()
        magic = buf.read_u16()
        if magic != FRAME_MAGIC:
            raise MalformedInput(
                f"bad frame magic 0x{magic:04X} in frame {frame_index}", start + 4
            )
        old_chunk_count = buf.read_u16()
        duration = buf.read_u16()
        buf.skip(2)
        new_chunk_count = buf.read_u32()
        if frame_size < FRAME_HEADER_SIZE or start + frame_size > len(buf):
            raise MalformedInput(f"frame {frame_index} size {frame_size} is out of bounds", start)

        chunk_count = new_chunk_count if new_chunk_count != 0 else old_chunk_count
        if chunk_count == 0 and frame_size > FRAME_HEADER_SIZE:
            raise MalformedInput(f"frame {frame_index} has content but a chunk count of zero", start + 6)
        if new_chunk_count == 0 and old_chunk_count == 0xFFFF:
            raise MalformedInput(f"frame {frame_index} overflows the old chunk count field", start + 6)

        frame = Frame(duration_ms=duration)
        self.document.frames.append(frame)
        body = buf.sub_buffer(frame_size - FRAME_HEADER_SIZE)
        for _ in range(chunk_count):
            self._read_chunk(body, frame_index, frame)

    def _read_chunk(self, body: Buffer, frame_index: int, frame: Frame) -> None:
        chunk_start = body.absolute()
        if body.remaining < CHUNK_HEADER_SIZE:
            raise MalformedInput("chunk header runs past the end of the frame", chunk_start)
        size = body.read_u32()
        chunk_type = body.read_u16()
        if size < CHUNK_HEADER_SIZE or size - CHUNK_HEADER_SIZE > body.remaining:
            raise MalformedInput(f"chunk size {size} runs past the end of the frame", chunk_start)
        chunk = body.sub_buffer(size - CHUNK_HEADER_SIZE)

        if chunk_type == ChunkType.LAYER:
            self._read_layer(chunk)
        elif chunk_type == ChunkType.CEL:
            self._read_cel(chunk, frame_index, frame)
        elif chunk_type == ChunkType.CEL_EXTRA:
            self._read_cel_extra(chunk)
        elif chunk_type == ChunkType.COLOR_PROFILE:
            self._read_color_profile(chunk)
        elif chunk_type == ChunkType.TAGS:
            self._read_tags(chunk)
        elif chunk_type == ChunkType.PALETTE:
            self._read_palette(chunk)
        elif chunk_type == ChunkType.USER_DATA:
            self._read_user_data(chunk)
        elif chunk_type == ChunkType.SLICE:
            self._read_slice(chunk)
        elif chunk_type in (ChunkType.OLD_PALETTE_1, ChunkType.OLD_PALETTE_2):
            self._user_data_target = self.document
        else:
            logger.debug("Skipping chunk 0x%04X at 0x%X", chunk_type, chunk_start)

    # Chunks -----------------------------------------------------------------

    def _read_layer(self, chunk: Buffer) -> None:
        flags = chunk.read_u16()
        type_offset = chunk.absolute()
        layer_type = chunk.read_u16()
        child_level = chunk.read_u16()
        chunk.skip(4)  # default width/height, ignored by Aseprite itself
        blend_offset = chunk.absolute()
        blend_mode = chunk.read_u16()
        opacity = chunk.read_u8()
        chunk.skip(3)
        name = chunk.read_short_string()

        if layer_type == LayerType.TILEMAP:
            raise UnsupportedFeature(f"tilemap layer '{name}'")
        if layer_type not in (LayerType.NORMAL, LayerType.GROUP):
            raise MalformedInput(f"unknown layer type {layer_type}", type_offset)
        if blend_mode > max(BlendMode):
            raise MalformedInput(f"unknown blend mode {blend_mode}", blend_offset)
        if not self.header_flags & HEADER_FLAG_LAYER_OPACITY_VALID:
            opacity = 255

        layer = Layer(
            name=name,
            index=len(self.document.layers),
            visible=bool(flags & LAYER_FLAG_VISIBLE),
            opacity=opacity,
            blend_mode=blend_mode,
            layer_type=LayerType(layer_type),
            child_level=child_level,
            is_background=bool(flags & LAYER_FLAG_BACKGROUND),
        )
        self.document.layers.append(layer)
        self._user_data_target = layer

    def _read_cel(self, chunk: Buffer, frame_index: int, frame: Frame) -> None:
        chunk_start = chunk.absolute()
        layer_index = chunk.read_u16()
        x = chunk.read_i16()
        y = chunk.read_i16()
        opacity = chunk.read_u8()
        cel_type = chunk.read_u16()
        z_index = chunk.read_i16()
        chunk.skip(5)

        if layer_index >= len(self.document.layers):
            raise MalformedInput(f"cel refers to missing layer {layer_index}", chunk_start)
        if frame.cel_for_layer(layer_index) is not None:
            raise MalformedInput(
                f"frame {frame_index} has two cels for layer {layer_index}", chunk_start
            )

        if cel_type == CelType.LINKED:
            source = chunk.read_u16()
            if source >= frame_index:
                raise MalformedInput(
                    f"linked cel in frame {frame_index} points to frame {source}; links must point backwards",
                    chunk_start,
                )
            data: object = LinkedCel(source)
        elif cel_type in (CelType.RAW, CelType.COMPRESSED):
            width = chunk.read_u16()
            height = chunk.read_u16()
            if width == 0 or height == 0:
                raise MalformedInput(f"cel has empty size {width}x{height}", chunk_start)
            expected = width * height * self.document.color_depth.bytes_per_pixel
            payload_offset = chunk.absolute()
            payload = chunk.read_bytes(chunk.remaining)
            if cel_type == CelType.COMPRESSED:
                try:
                    payload = zlib.decompress(payload)
                except zlib.error as exc:
                    raise MalformedInput(f"cel pixel data does not inflate: {exc}", payload_offset) from exc
            if len(payload) != expected:
                raise MalformedInput(
                    f"cel pixel data is {len(payload)} bytes, expected {expected} for {width}x{height}",
                    payload_offset,
                )
            if cel_type == CelType.RAW:
                data = RawCel(width, height, payload)
            else:
                data = CompressedCel(width, height, payload)
        elif cel_type == CelType.COMPRESSED_TILEMAP:
            raise UnsupportedFeature("compressed tilemap cel")
        else:
            raise MalformedInput(f"unknown cel type {cel_type}", chunk_start + 7)

        cel = Cel(layer_index=layer_index, x=x, y=y, opacity=opacity, data=data, z_index=z_index)
        frame.cels.append(cel)
        self._user_data_target = cel

    def _read_cel_extra(self, chunk: Buffer) -> None:
        if not isinstance(self._user_data_target, Cel):
            raise MalformedInput("extra cel chunk does not follow a cel", chunk.absolute())
        flags = chunk.read_u32()
        self._user_data_target.extra = CelExtra(
            flags=flags,
            x=chunk.read_fixed(),
            y=chunk.read_fixed(),
            width=chunk.read_fixed(),
            height=chunk.read_fixed(),
        )

    def _read_color_profile(self, chunk: Buffer) -> None:
        kind = chunk.read_u16()
        flags = chunk.read_u16()
        gamma = chunk.read_fixed()
        chunk.skip(8)
        icc = b""
        if kind == 2:
            icc = chunk.read_bytes(chunk.read_u32())
        self.document.color_profile = ColorProfile(kind=kind, flags=flags, gamma=gamma, icc=icc)

    def _read_tags(self, chunk: Buffer) -> None:
        count = chunk.read_u16()
        chunk.skip(8)
        self._pending_tags = []
        for _ in range(count):
            tag_offset = chunk.absolute()
            frame_start = chunk.read_u16()
            frame_end = chunk.read_u16()
            direction_offset = chunk.absolute()
            direction = chunk.read_u8()
            chunk.skip(8)
            color = (chunk.read_u8(), chunk.read_u8(), chunk.read_u8())
            chunk.skip(1)
            name = chunk.read_short_string()

            try:
                tag_direction = AnimationDirection(direction)
            except ValueError:
                raise MalformedInput(
                    f"tag '{name}' has invalid direction {direction}", direction_offset
                ) from None
            if frame_start > frame_end:
                raise MalformedInput(
                    f"tag '{name}' starts at frame {frame_start} after its end {frame_end}", tag_offset
                )
            if frame_end >= self.frame_count:
                raise MalformedInput(
                    f"tag '{name}' ends at frame {frame_end} but the document has {self.frame_count}",
                    tag_offset,
                )
            if name in self.document.tags:
                raise MalformedInput(f"duplicate tag name '{name}'", tag_offset)
            tag = AnimationTag(name, frame_start, frame_end, tag_direction, color)
            self.document.tags[name] = tag
            self._pending_tags.append(tag)
        self._user_data_target = None

    def _read_palette(self, chunk: Buffer) -> None:
        chunk_start = chunk.absolute()
        size = chunk.read_u32()
        first = chunk.read_u32()
        last = chunk.read_u32()
        chunk.skip(8)
        if first > last or last >= size:
            raise MalformedInput(f"palette range {first}..{last} outside size {size}", chunk_start)
        palette = np.zeros((size, 4), dtype=np.uint8)
        previous = self.document.palette
        if previous is not None:
            keep = min(size, previous.shape[0])
            palette[:keep] = previous[:keep]
        for index in range(first, last + 1):
            flags = chunk.read_u16()
            palette[index] = (chunk.read_u8(), chunk.read_u8(), chunk.read_u8(), chunk.read_u8())
            if flags & 1:
                chunk.read_short_string()
        self.document.palette = palette
        self._user_data_target = self.document

    def _read_user_data(self, chunk: Buffer) -> None:
        flags = chunk.read_u32()
        user_data = UserData()
        if flags & 1:
            user_data.text = chunk.read_short_string()
        if flags & 2:
            user_data.color = (chunk.read_u8(), chunk.read_u8(), chunk.read_u8(), chunk.read_u8())
        # Property maps (flag 4) are not used by the baker; the chunk size bounds them.

        if self._pending_tags:
            self._pending_tags.pop(0).user_data = user_data
            return
        target = self._user_data_target
        if isinstance(target, (Layer, Cel, Slice, Document)):
            target.user_data = user_data
        else:
            self.document.user_data = user_data

    def _read_slice(self, chunk: Buffer) -> None:
        key_count = chunk.read_u32()
        flags = chunk.read_u32()
        chunk.read_u32()
        slice_ = Slice(name=chunk.read_short_string(), flags=flags)
        for _ in range(key_count):
            key = SliceKey(
                frame=chunk.read_u32(),
                x=chunk.read_i32(),
                y=chunk.read_i32(),
                width=chunk.read_u32(),
                height=chunk.read_u32(),
            )
            if flags & 1:
                key.center = (chunk.read_i32(), chunk.read_i32(), chunk.read_u32(), chunk.read_u32())
            if flags & 2:
                key.pivot = (chunk.read_i32(), chunk.read_i32())
            slice_.keys.append(key)
        self.document.slices.append(slice_)
        self._user_data_target = slice_


def _disambiguate_layer_names(layers: List[Layer]) -> None:
    """Give repeated layer names a ``_{n}`` suffix so names are unique per document."""
    taken = {layer.name for layer in layers}
    seen = set()
    for layer in layers:
        if layer.name not in seen:
            seen.add(layer.name)
            continue
        counter = 1
        while f"{layer.name}_{counter}" in taken:
            counter += 1
        renamed = f"{layer.name}_{counter}"
        logger.debug("Renaming duplicate layer '%s' to '%s'", layer.name, renamed)
        layer.name = renamed
        taken.add(renamed)
        seen.add(renamed)


def decode_document(data: bytes, path: Optional[str] = None) -> Document:
    """Decode Aseprite bytes; ``path`` is only used for error messages."""
    try:
        return _Decoder(data).decode()
    except MalformedInput as exc:
        if path is not None and exc.path is None:
            exc.with_path(path)
        raise


def load_document(path: str) -> Document:
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise BakeIOError(path, exc) from exc
    return decode_document(data, path)
