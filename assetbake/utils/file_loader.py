"""
File Loader
Source tree scanning and the JSON sidecars that configure fonts and audio
"""

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.errors import BakeIOError, MalformedInput
from ..core.font_rasterizer import FontStyle
from .settings import BakeConfig

logger = logging.getLogger(__name__)

FONT_SIDECAR_SUFFIX = ".font.json"
AUDIO_SIDECAR_SUFFIX = ".audio.json"
LICENSE_SUFFIX = ".license"
CREDITS_FILENAME = "credits.txt"
THREE_D_SUFFIX = "_3d"


class AssetKind(Enum):
    DOCUMENT = "document"
    IMAGE = "image"
    FONT = "font"
    AUDIO = "audio"


EXTENSION_KINDS = {
    ".ase": AssetKind.DOCUMENT,
    ".aseprite": AssetKind.DOCUMENT,
    ".png": AssetKind.IMAGE,
    ".ttf": AssetKind.FONT,
    ".wav": AssetKind.AUDIO,
    ".ogg": AssetKind.AUDIO,
}

ROOT_KINDS = ("sprites", "fonts", "audio")


@dataclass(frozen=True)
class SourceFile:
    kind: AssetKind
    path: str
    relative: str
    sidecar: Optional[str] = None

    @property
    def stem(self) -> str:
        return os.path.splitext(os.path.basename(self.relative))[0]

    @property
    def name(self) -> str:
        """Bundle name: loose PNGs keep their root-relative path, everything else its stem."""
        if self.kind == AssetKind.IMAGE:
            return os.path.splitext(self.relative)[0]
        return self.stem

    @property
    def is_3d(self) -> bool:
        return self.kind == AssetKind.DOCUMENT and self.stem.endswith(THREE_D_SUFFIX)

    @property
    def inputs(self) -> Tuple[str, ...]:
        return (self.path,) if self.sidecar is None else (self.path, self.sidecar)


def _walk(root: str) -> List[str]:
    found = []
    for directory, subdirs, files in os.walk(root):
        subdirs[:] = sorted(d for d in subdirs if not d.startswith("."))
        for filename in files:
            found.append(os.path.join(directory, filename))
    return found


def _check_readable(path: str) -> None:
    try:
        with open(path, "rb"):
            pass
    except OSError as exc:
        raise BakeIOError(path, exc) from exc


def _sidecar_for(path: str, kind: AssetKind) -> Optional[str]:
    suffix = {AssetKind.FONT: FONT_SIDECAR_SUFFIX, AssetKind.AUDIO: AUDIO_SIDECAR_SUFFIX}.get(kind)
    if suffix is None:
        return None
    candidate = os.path.splitext(path)[0] + suffix
    return candidate if os.path.isfile(candidate) else None


def scan_sources(config: BakeConfig) -> List[SourceFile]:
    """
    Collect every input file below the configured roots.

    Files are classified by extension and returned sorted by their
    root-relative path; unknown extensions are ignored. A file reachable from
    two overlapping roots is listed once, under the first root.
    """
    sources: Dict[str, SourceFile] = {}
    for root_kind in ROOT_KINDS:
        root = config.root(root_kind)
        if not os.path.isdir(root):
            logger.warning("Input root '%s' does not exist", root)
            continue
        count = 0
        for path in _walk(root):
            kind = EXTENSION_KINDS.get(os.path.splitext(path)[1].lower())
            if kind is None:
                continue
            real = os.path.realpath(path)
            if real in sources:
                continue
            _check_readable(path)
            relative = os.path.relpath(path, root).replace(os.sep, "/")
            sources[real] = SourceFile(kind, path, relative, _sidecar_for(path, kind))
            count += 1
        if count == 0:
            logger.warning("Input root '%s' contains no assets", root)
    return sorted(sources.values(), key=lambda source: (source.relative, source.path))


def scan_credits(config: BakeConfig) -> List[str]:
    """credits.txt of the source directory followed by every *.license file, sorted."""
    found = []
    credits = os.path.join(config.source_dir, CREDITS_FILENAME)
    if os.path.isfile(credits):
        found.append(credits)
    licenses = set()
    for root_kind in ROOT_KINDS:
        root = config.root(root_kind)
        if os.path.isdir(root):
            licenses.update(p for p in _walk(root) if p.endswith(LICENSE_SUFFIX))
    for path in sorted(licenses):
        _check_readable(path)
        found.append(path)
    return found


def load_json_sidecar(path: str) -> Dict[str, Any]:
    """
    Load a JSON sidecar file

    Args:
        path: Path to the JSON file

    Returns:
        The decoded JSON object
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise MalformedInput(f"invalid JSON: {exc.msg}", exc.pos, path) from exc
    except OSError as exc:
        raise BakeIOError(path, exc) from exc
    if not isinstance(data, dict):
        raise MalformedInput("expected a JSON object", 0, path)
    return data


def _color(value: Any, path: str, key: str) -> Tuple[int, int, int, int]:
    if (
        not isinstance(value, list)
        or len(value) not in (3, 4)
        or not all(isinstance(c, int) and 0 <= c <= 255 for c in value)
    ):
        raise MalformedInput(f"'{key}' must be a list of 3 or 4 integers in [0, 255]", None, path)
    return tuple(value) if len(value) == 4 else tuple(value) + (255,)  # type: ignore[return-value]


@dataclass
class FontOptions:
    size_px: int
    texture_size: int
    antialias: bool = True
    styles: List[FontStyle] = field(
        default_factory=lambda: [FontStyle(bordered=False), FontStyle(bordered=True)]
    )


def load_font_options(source: SourceFile, config: BakeConfig) -> FontOptions:
    options = FontOptions(size_px=config.font_size_px, texture_size=config.font_texture_size)
    if source.sidecar is None:
        return options
    data = load_json_sidecar(source.sidecar)
    size = data.get("size_px", options.size_px)
    texture = data.get("texture_size", options.texture_size)
    if not isinstance(size, int) or size <= 0:
        raise MalformedInput("'size_px' must be a positive integer", None, source.sidecar)
    if not isinstance(texture, int) or not 0 < texture <= config.atlas_size:
        raise MalformedInput(
            f"'texture_size' must be a positive integer no larger than {config.atlas_size}", None, source.sidecar
        )
    options.size_px = size
    options.texture_size = texture
    options.antialias = bool(data.get("antialias", True))
    if "styles" in data:
        styles = []
        for entry in data["styles"]:
            if not isinstance(entry, dict):
                raise MalformedInput("every style must be a JSON object", None, source.sidecar)
            style = FontStyle(
                bordered=bool(entry.get("bordered", False)),
                glyph_color=_color(entry.get("glyph_color", [255, 255, 255, 255]), source.sidecar, "glyph_color"),
                border_color=_color(entry.get("border_color", [0, 0, 0, 255]), source.sidecar, "border_color"),
            )
            if any(existing.bordered == style.bordered for existing in styles):
                raise MalformedInput(
                    f"two styles produce the font name '{style.font_name(source.stem)}'", None, source.sidecar
                )
            styles.append(style)
        options.styles = styles
    return options


def load_audio_options(source: SourceFile) -> Tuple[float, bool]:
    """Volume and loop flag from an audio sidecar; defaults are (1.0, False)."""
    if source.sidecar is None:
        return 1.0, False
    data = load_json_sidecar(source.sidecar)
    volume = data.get("volume", 1.0)
    if not isinstance(volume, (int, float)) or isinstance(volume, bool) or not 0.0 <= volume <= 1.0:
        raise MalformedInput("'volume' must be a number in [0, 1]", None, source.sidecar)
    return float(volume), bool(data.get("loop", False))
