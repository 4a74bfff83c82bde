"""
Texture atlas packing
Places trimmed bitmaps into fixed-size square bins using a skyline packer
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .bitmap import Bitmap
from .data_structures import Rect
from .errors import ConfigError, DuplicateName, SpriteTooLarge

logger = logging.getLogger(__name__)


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


@dataclass
class _Segment:
    x: int
    y: int
    width: int


class SkylineBin:
    """
    One S x S texture tracked by its skyline: a list of horizontal segments
    describing the top contour of the space used so far.
    """

    def __init__(self, size: int) -> None:
        self.size = size
        self.skyline: List[_Segment] = [_Segment(0, 0, size)]
        self.used_area = 0
        self.texture = Bitmap.new(size, size)
        self.placements: Dict[str, Rect] = {}

    @property
    def free_area(self) -> int:
        return self.size * self.size - self.used_area

    def _fit_at(self, index: int, width: int, height: int) -> Optional[int]:
        """Lowest y at which a width x height rect fits starting at segment ``index``."""
        x = self.skyline[index].x
        if x + width > self.size:
            return None
        y = 0
        remaining = width
        i = index
        while remaining > 0:
            segment = self.skyline[i]
            y = max(y, segment.y)
            if y + height > self.size:
                return None
            remaining -= segment.width
            i += 1
        return y

    def find_position(self, width: int, height: int) -> Optional[Tuple[int, int]]:
        """Bottom-left rule: lowest y, then lowest x."""
        best: Optional[Tuple[int, int]] = None
        for index, segment in enumerate(self.skyline):
            y = self._fit_at(index, width, height)
            if y is None:
                continue
            if best is None or (y, segment.x) < (best[1], best[0]):
                best = (segment.x, y)
        return best

    def place(self, name: str, bitmap: Bitmap, position: Tuple[int, int]) -> Rect:
        x, y = position
        width, height = bitmap.size
        self._raise_skyline(x, y + height, width)
        self.used_area += width * height
        bitmap.blit_to(self.texture, (x, y))
        rect = Rect(x, y, width, height)
        self.placements[name] = rect
        return rect

    def _raise_skyline(self, x: int, top: int, width: int) -> None:
        end = x + width
        updated: List[_Segment] = []
        for segment in self.skyline:
            seg_end = segment.x + segment.width
            if seg_end <= x or segment.x >= end:
                updated.append(segment)
                continue
            if segment.x < x:
                updated.append(_Segment(segment.x, segment.y, x - segment.x))
            if seg_end > end:
                updated.append(_Segment(end, segment.y, seg_end - end))
        updated.append(_Segment(x, top, width))
        updated.sort(key=lambda segment: segment.x)

        merged: List[_Segment] = []
        for segment in updated:
            if merged and merged[-1].y == segment.y:
                merged[-1].width += segment.width
            else:
                merged.append(segment)
        self.skyline = merged


@dataclass
class Placement:
    name: str
    texture_index: int
    rect: Rect


@dataclass
class TextureAtlas:
    """Packed textures plus the sprite name -> (texture index, top-left) mapping"""
    size: int
    textures: List[Bitmap] = field(default_factory=list)
    placements: Dict[str, Placement] = field(default_factory=dict)


class AtlasPacker:
    """Packs bitmaps into as many S x S bins as needed."""

    def __init__(self, size: int) -> None:
        if not is_power_of_two(size):
            raise ConfigError(f"atlas size {size} is not a power of two")
        self.size = size
        self.bins: List[SkylineBin] = []
        self.placements: Dict[str, Placement] = {}

    def add(self, name: str, bitmap: Bitmap) -> Placement:
        if name in self.placements:
            raise DuplicateName(name)
        width, height = bitmap.size
        if width > self.size or height > self.size:
            raise SpriteTooLarge(name, (width, height), self.size)

        best: Optional[Tuple[int, int, Tuple[int, int]]] = None
        for index, bin_ in enumerate(self.bins):
            position = bin_.find_position(width, height)
            if position is None:
                continue
            key = (bin_.free_area, index)
            if best is None or key < (best[0], best[1]):
                best = (bin_.free_area, index, position)

        if best is None:
            self.bins.append(SkylineBin(self.size))
            index = len(self.bins) - 1
            position = self.bins[index].find_position(width, height)
            logger.debug("Opened atlas texture %d for '%s'", index, name)
        else:
            _, index, position = best

        rect = self.bins[index].place(name, bitmap, position)
        placement = Placement(name, index, rect)
        self.placements[name] = placement
        return placement

    def pack(self, items: Sequence[Tuple[str, Bitmap]]) -> TextureAtlas:
        """Pack ``items`` in name order and return the finished atlas."""
        for name, bitmap in sorted(items, key=lambda item: item[0]):
            self.add(name, bitmap)
        return self.finish()

    def finish(self) -> TextureAtlas:
        return TextureAtlas(
            size=self.size,
            textures=[bin_.texture for bin_ in self.bins],
            placements=dict(self.placements),
        )
