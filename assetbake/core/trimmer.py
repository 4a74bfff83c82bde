"""
Sprite trimmer
Cuts fully transparent borders off bitmaps before they are packed.
"""

from typing import List, Optional, Sequence, Tuple

from .bitmap import Bitmap
from .data_structures import META_ATTACHMENTS, Rect, TrimmedImage


def trim(
    name: str,
    bitmap: Bitmap,
    pivot: Tuple[float, float] = (0.0, 0.0),
    attachments: Optional[Sequence[Optional[Tuple[float, float]]]] = None,
) -> TrimmedImage:
    """
    Trim ``bitmap`` to the bounding box of its pixels with alpha > 0.

    Pivot and attachment points are kept relative to the untrimmed top-left;
    the runtime converts them using the trimmed rect.
    """
    trimmed, (x, y, w, h) = bitmap.trimmed()
    points: List[Optional[Tuple[float, float]]] = (
        list(attachments) if attachments is not None else [None] * len(META_ATTACHMENTS)
    )
    return TrimmedImage(
        name=name,
        bitmap=trimmed,
        trimmed_rect=Rect(x, y, w, h),
        untrimmed_size=bitmap.size,
        pivot=pivot,
        attachments=points,
        has_translucency=trimmed.has_translucency(),
    )


def untrim(image: TrimmedImage) -> Bitmap:
    """Paste a trimmed image back onto a transparent canvas of its original size."""
    width, height = image.untrimmed_size
    canvas = Bitmap.new(width, height)
    image.bitmap.blit_to(canvas, (image.trimmed_rect.x, image.trimmed_rect.y))
    return canvas
