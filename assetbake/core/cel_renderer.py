"""
Cel renderer
Turns a decoded Document into per-layer and composed frame bitmaps and
extracts the pivot/attachment meta layers.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .bitmap import BLEND_MODE_NAMES, Bitmap, new_canvas, supports_blend_mode
from .data_structures import (
    META_ATTACHMENTS,
    META_PIVOT,
    AnimationTag,
    BlendMode,
    Cel,
    ColorDepth,
    Document,
    Layer,
    LayerType,
    LinkedCel,
)
from .errors import InconsistentMetaLayer, MalformedInput, UnsupportedFeature

logger = logging.getLogger(__name__)

Point = Tuple[int, int]


@dataclass
class RenderedFrame:
    index: int
    duration_ms: int
    layers: Dict[str, Bitmap]
    composite: Bitmap
    pivot: Point = (0, 0)
    attachments: List[Optional[Point]] = field(default_factory=lambda: [None] * len(META_ATTACHMENTS))


@dataclass
class RenderedDocument:
    name: str
    width: int
    height: int
    layer_names: List[str]
    frames: List[RenderedFrame]
    tags: Dict[str, AnimationTag]


def cel_to_bitmap(document: Document, cel: Cel, layer: Layer) -> Bitmap:
    """Convert a Raw/Compressed cel payload into a straight RGBA bitmap."""
    data = cel.data
    raw = np.frombuffer(data.pixels, dtype=np.uint8)
    shape = (data.height, data.width)
    if document.color_depth == ColorDepth.RGBA32:
        return Bitmap(raw.reshape(shape + (4,)).copy())
    if document.color_depth == ColorDepth.GRAYSCALE16:
        gray = raw.reshape(shape + (2,))
        value, alpha = gray[..., 0], gray[..., 1]
        return Bitmap(np.stack([value, value, value, alpha], axis=-1))

    palette = document.palette
    if palette is None:
        raise MalformedInput("indexed document has no palette chunk")
    indices = raw.reshape(shape)
    if int(indices.max()) >= palette.shape[0]:
        raise MalformedInput(
            f"cel on layer '{layer.name}' uses color index {int(indices.max())} "
            f"outside the {palette.shape[0]}-entry palette"
        )
    pixels = palette[indices].copy()
    if not layer.is_background:
        pixels[indices == document.transparent_index] = 0
    return Bitmap(pixels)


class CelRenderer:
    """Renders one document; decoded cel bitmaps are cached across frames."""

    def __init__(self, document: Document, name: str, stacked: bool = False) -> None:
        self.document = document
        self.name = name
        self.stacked = stacked
        self._cel_cache: Dict[int, Bitmap] = {}
        self._effective_visibility = self._resolve_visibility()

    def _resolve_visibility(self) -> Dict[int, bool]:
        """Visibility of each layer including the visibility of its parent groups."""
        visibility: Dict[int, bool] = {}
        parents: List[Layer] = []
        for layer in self.document.layers:
            del parents[layer.child_level:]
            visible = layer.visible and all(parent.visible for parent in parents)
            visibility[layer.index] = visible
            if layer.layer_type == LayerType.GROUP:
                if visible and (layer.opacity != 255 or layer.blend_mode != BlendMode.NORMAL):
                    raise UnsupportedFeature(
                        f"group layer '{layer.name}' with its own opacity or blend mode"
                    )
                parents.append(layer)
        return visibility

    def owning_cel(self, frame_index: int, layer_index: int) -> Optional[Cel]:
        """Follow linked cels back to the cel that owns the pixels."""
        cel = self.document.frames[frame_index].cel_for_layer(layer_index)
        while cel is not None and isinstance(cel.data, LinkedCel):
            source = cel.data.source_frame_index
            linked = self.document.frames[source].cel_for_layer(layer_index)
            if linked is None:
                raise MalformedInput(
                    f"linked cel in frame {frame_index} points to frame {source} "
                    f"which has no cel on layer {layer_index}"
                )
            cel = linked
        return cel

    def _cel_bitmap(self, cel: Cel, layer: Layer) -> Bitmap:
        key = id(cel)
        bitmap = self._cel_cache.get(key)
        if bitmap is None:
            bitmap = cel_to_bitmap(self.document, cel, layer)
            self._cel_cache[key] = bitmap
        return bitmap

    def _stack_layers(self) -> List[Layer]:
        """
        Slices of a 3D document ordered bottom to top.

        Every non-meta layer must be named by its slice number, the numbers
        must run 0..n-1 without gaps, and a stack needs at least two slices.
        Visibility is ignored: a hidden slice is still part of the stack.
        """
        numbered: Dict[int, Layer] = {}
        for layer in self.document.layers:
            if layer.is_meta or layer.layer_type == LayerType.GROUP:
                continue
            if not (layer.name.isascii() and layer.name.isdigit()) or str(int(layer.name)) != layer.name:
                raise MalformedInput(
                    f"3D sprite '{self.name}' has layer '{layer.name}', expected a slice number"
                )
            number = int(layer.name)
            if number in numbered:
                raise MalformedInput(f"3D sprite '{self.name}' has slice {number} twice")
            numbered[number] = layer
        if len(numbered) < 2:
            raise MalformedInput(f"3D sprite '{self.name}' needs at least two slice layers")
        missing = [i for i in range(len(numbered)) if i not in numbered]
        if missing:
            raise MalformedInput(f"3D sprite '{self.name}' is missing slice {missing[0]}")
        return [numbered[i] for i in range(len(numbered))]

    def _drawable_layers(self) -> List[Layer]:
        if self.stacked:
            candidates = self._stack_layers()
        else:
            candidates = [
                layer
                for layer in self.document.layers
                if not layer.is_meta
                and layer.layer_type == LayerType.NORMAL
                and self._effective_visibility[layer.index]
            ]
        layers = []
        for layer in candidates:
            if not supports_blend_mode(layer.blend_mode):
                name = BLEND_MODE_NAMES.get(int(layer.blend_mode), str(layer.blend_mode))
                raise UnsupportedFeature(f"blend mode '{name}' on layer '{layer.name}'")
            layers.append(layer)
        return layers

    def meta_points(self, layer_name: str) -> Optional[List[Point]]:
        """
        Marker coordinate of a meta layer for every frame.

        Returns None when the layer is missing or carries no marker at all.
        Raises InconsistentMetaLayer when only some frames carry a marker.
        """
        layer = self.document.layer_by_name(layer_name)
        if layer is None:
            return None
        points: List[Optional[Point]] = []
        for frame_index in range(len(self.document.frames)):
            cel = self.owning_cel(frame_index, layer.index)
            point = None
            if cel is not None:
                canvas = Bitmap.new(self.document.width, self.document.height)
                self._cel_bitmap(cel, layer).blit_to(canvas, (cel.x, cel.y))
                point = canvas.first_opaque_pixel()
            points.append(point)
        present = [point is not None for point in points]
        if not any(present):
            return None
        if not all(present):
            raise InconsistentMetaLayer(layer_name, self.name)
        return points  # type: ignore[return-value]

    def render(self) -> RenderedDocument:
        document = self.document
        pivots = self.meta_points(META_PIVOT)
        attachments = [self.meta_points(name) for name in META_ATTACHMENTS]
        layers = self._drawable_layers()

        frames: List[RenderedFrame] = []
        for frame_index, frame in enumerate(document.frames):
            composite = new_canvas(document.width, document.height)
            per_layer: Dict[str, Bitmap] = {}
            for layer in layers:
                layer_canvas = new_canvas(document.width, document.height)
                cel = self.owning_cel(frame_index, layer.index)
                if cel is not None:
                    bitmap = self._cel_bitmap(cel, layer)
                    opacity = (layer.opacity / 255.0) * (cel.opacity / 255.0)
                    bitmap.premultiplied_blit_to_alpha_blended(
                        layer_canvas, (cel.x, cel.y), BlendMode.NORMAL, opacity
                    )
                    bitmap.premultiplied_blit_to_alpha_blended(
                        composite, (cel.x, cel.y), layer.blend_mode, opacity
                    )
                per_layer[layer.name] = Bitmap.from_premultiplied_canvas(layer_canvas)

            rendered = RenderedFrame(
                index=frame_index,
                duration_ms=frame.duration_ms,
                layers=per_layer,
                composite=Bitmap.from_premultiplied_canvas(composite),
            )
            if pivots is not None:
                rendered.pivot = pivots[frame_index]
            rendered.attachments = [
                points[frame_index] if points is not None else None for points in attachments
            ]
            frames.append(rendered)

        logger.debug("Rendered '%s': %d frame(s), %d layer(s)", self.name, len(frames), len(layers))
        return RenderedDocument(
            name=self.name,
            width=document.width,
            height=document.height,
            layer_names=[layer.name for layer in layers],
            frames=frames,
            tags=dict(document.tags),
        )


def render_document(document: Document, name: str, stacked: bool = False) -> RenderedDocument:
    return CelRenderer(document, name, stacked).render()
