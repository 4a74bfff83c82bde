"""
Incremental build cache

Inputs are fingerprinted by (path, size, mtime, sha256) into a JSON sidecar in
the output directory. Per-file import results are kept as compressed numpy
archives in a scratch directory so unchanged inputs are not decoded again.
"""

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..core.bitmap import Bitmap
from ..core.data_structures import (
    AnimationDirection,
    AudioFormat,
    AudioResource,
    FontSheet,
    RasterGlyph,
    Rect,
    TrimmedImage,
)
from ..core.errors import BakeIOError, ConfigError
from ..core.linker import DocumentInfo, TagInfo
from .importers import ImportResult

logger = logging.getLogger(__name__)

CACHE_FILENAME = ".assetbake-cache.json"
SCRATCH_DIRNAME = ".assetbake-cache"
LOCK_FILENAME = ".assetbake.lock"
CACHE_VERSION = 1
_HASH_CHUNK = 1 << 20


@dataclass(frozen=True)
class Fingerprint:
    path: str
    size: int
    mtime_ns: int
    sha256: str

    def to_dict(self) -> Dict[str, Any]:
        return {"size": self.size, "mtime_ns": self.mtime_ns, "sha256": self.sha256}


def hash_file(path: str) -> str:
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
                digest.update(chunk)
    except OSError as exc:
        raise BakeIOError(path, exc) from exc
    return digest.hexdigest()


class OutputLock:
    """Exclusive lock file guarding an output directory for the length of a bake."""

    def __init__(self, out_dir: str) -> None:
        self.path = os.path.join(out_dir, LOCK_FILENAME)

    def __enter__(self) -> "OutputLock":
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise ConfigError(
                f"output directory is locked by '{self.path}'; "
                "delete it if no other bake is running"
            ) from None
        except OSError as exc:
            raise BakeIOError(self.path, exc) from exc
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n")
        return self

    def __exit__(self, *exc_info) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)


class BuildCache:
    """Fingerprints from the previous run plus the ones collected in this run."""

    def __init__(self, out_dir: str, force: bool = False) -> None:
        self.out_dir = out_dir
        self.path = os.path.join(out_dir, CACHE_FILENAME)
        self.scratch_dir = os.path.join(out_dir, SCRATCH_DIRNAME)
        self.force = force
        self.previous = {} if force else self._load()
        self.files: Dict[str, Dict[str, Any]] = {}
        self.imports: Dict[str, Dict[str, Any]] = {}
        self.bundle: Optional[str] = None

    def _load(self) -> Dict[str, Any]:
        if not os.path.isfile(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.info("Ignoring unreadable build cache '%s': %s", self.path, exc)
            return {}
        if not isinstance(data, dict) or data.get("version") != CACHE_VERSION:
            logger.info("Ignoring build cache from another baker version")
            return {}
        return data

    # Fingerprints -----------------------------------------------------------

    def fingerprint(self, path: str) -> Fingerprint:
        """Fingerprint ``path``; the hash is reused when size and mtime are unchanged."""
        try:
            stat = os.stat(path)
        except OSError as exc:
            raise BakeIOError(path, exc) from exc
        known = self.previous.get("files", {}).get(path)
        if known and known.get("size") == stat.st_size and known.get("mtime_ns") == stat.st_mtime_ns:
            sha = known["sha256"]
        else:
            sha = hash_file(path)
        fingerprint = Fingerprint(path, stat.st_size, stat.st_mtime_ns, sha)
        self.files[path] = fingerprint.to_dict()
        return fingerprint

    def unchanged(self, paths: Iterable[str]) -> bool:
        """True when every path hashes the same as in the previous run."""
        previous_files = self.previous.get("files", {})
        for path in paths:
            current = self.files.get(path) or self.fingerprint(path).to_dict()
            known = previous_files.get(path)
            if known is None or known.get("sha256") != current["sha256"]:
                return False
        return True

    # Import stage -----------------------------------------------------------

    def scratch_path(self, key: str) -> str:
        name = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return os.path.join(self.scratch_dir, f"{name}.npz")

    def cached_import(self, key: str, inputs: Sequence[str]) -> Optional[ImportResult]:
        """The stored result for ``key`` when its inputs are unchanged and its scratch file exists."""
        record = self.previous.get("imports", {}).get(key)
        if record is None or record.get("inputs") != list(inputs):
            return None
        scratch = self.scratch_path(key)
        if not os.path.isfile(scratch) or not self.unchanged(inputs):
            return None
        result = load_import(scratch)
        self.imports[key] = record
        return result

    def store_import(self, key: str, inputs: Sequence[str], result: ImportResult) -> None:
        save_import(self.scratch_path(key), result)
        self.imports[key] = {"inputs": list(inputs)}

    # Pack/link/write stage --------------------------------------------------

    def bundle_digest(self, config_fingerprint: str, inputs: Sequence[str]) -> str:
        digest = hashlib.sha256(config_fingerprint.encode("utf-8"))
        for path in sorted(inputs):
            digest.update(path.encode("utf-8"))
            digest.update(self.files[path]["sha256"].encode("ascii"))
        return digest.hexdigest()

    def bundle_up_to_date(self, digest: str, outputs: Sequence[str]) -> bool:
        if self.previous.get("bundle") != digest or not outputs:
            return False
        return all(os.path.isfile(os.path.join(self.out_dir, *path.split("/"))) for path in outputs)

    def save(self) -> None:
        data = {
            "version": CACHE_VERSION,
            "files": dict(sorted(self.files.items())),
            "imports": dict(sorted(self.imports.items())),
            "bundle": self.bundle,
        }
        _atomic_write(self.path, json.dumps(data, indent=2).encode("utf-8"))
        self._prune_scratch()

    def _prune_scratch(self) -> None:
        if not os.path.isdir(self.scratch_dir):
            return
        keep = {os.path.basename(self.scratch_path(key)) for key in self.imports}
        for filename in os.listdir(self.scratch_dir):
            if filename not in keep:
                os.remove(os.path.join(self.scratch_dir, filename))


def _atomic_write(path: str, data: bytes) -> None:
    directory = os.path.dirname(path)
    try:
        os.makedirs(directory, exist_ok=True)
        fd, temp = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".part")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(temp, path)
    except OSError as exc:
        raise BakeIOError(path, exc) from exc


# Scratch archives -------------------------------------------------------------

def _rect(values: List[int]) -> Rect:
    return Rect(*values)


def save_import(path: str, result: ImportResult) -> None:
    """Store an ImportResult as a compressed numpy archive with a JSON manifest."""
    arrays: Dict[str, np.ndarray] = {}
    meta: Dict[str, Any] = {"images": [], "sheets": [], "document": None, "audio": None}
    for i, image in enumerate(result.images):
        arrays[f"image_{i}"] = image.bitmap.pixels
        rect = image.trimmed_rect
        meta["images"].append({
            "name": image.name,
            "rect": [rect.x, rect.y, rect.w, rect.h],
            "untrimmed": list(image.untrimmed_size),
            "pivot": list(image.pivot),
            "attachments": [list(p) if p is not None else None for p in image.attachments],
            "translucent": image.has_translucency,
        })
    for i, sheet in enumerate(result.font_sheets):
        arrays[f"sheet_{i}"] = sheet.bitmap.pixels
        meta["sheets"].append({
            "name": sheet.name,
            "baseline": sheet.baseline,
            "line_height": sheet.line_height,
            "font_height_px": sheet.font_height_px,
            "glyphs": [
                [g.codepoint, g.sheet_rect.x, g.sheet_rect.y, g.sheet_rect.w, g.sheet_rect.h,
                 g.xoffset, g.yoffset, g.xadvance, g.has_translucency]
                for g in sheet.glyphs
            ],
        })
    if result.document is not None:
        doc = result.document
        meta["document"] = {
            "name": doc.name,
            "durations": doc.frame_durations,
            "layers": doc.layer_names,
            "tags": [[t.name, t.frame_start, t.frame_end, int(t.direction)] for t in doc.tags],
            "is_3d": doc.is_3d,
        }
    if result.audio is not None:
        audio = result.audio
        meta["audio"] = {
            "name": audio.name, "file": audio.file, "format": int(audio.format),
            "sample_rate": audio.sample_rate, "channels": audio.channels, "frames": audio.frames,
            "volume": audio.volume, "looping": audio.looping,
        }
    arrays["meta"] = np.frombuffer(json.dumps(meta).encode("utf-8"), dtype=np.uint8)

    directory = os.path.dirname(path)
    try:
        os.makedirs(directory, exist_ok=True)
        fd, temp = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".part")
        with os.fdopen(fd, "wb") as f:
            np.savez_compressed(f, **arrays)
        os.replace(temp, path)
    except OSError as exc:
        raise BakeIOError(path, exc) from exc


def load_import(path: str) -> ImportResult:
    try:
        with np.load(path) as archive:
            meta = json.loads(archive["meta"].tobytes().decode("utf-8"))
            images = [archive[f"image_{i}"] for i in range(len(meta["images"]))]
            sheets = [archive[f"sheet_{i}"] for i in range(len(meta["sheets"]))]
    except (OSError, ValueError, KeyError) as exc:
        raise BakeIOError(path, exc) from exc

    result = ImportResult()
    for pixels, entry in zip(images, meta["images"]):
        result.images.append(TrimmedImage(
            name=entry["name"],
            bitmap=Bitmap(pixels),
            trimmed_rect=_rect(entry["rect"]),
            untrimmed_size=tuple(entry["untrimmed"]),
            pivot=tuple(entry["pivot"]),
            attachments=[tuple(p) if p is not None else None for p in entry["attachments"]],
            has_translucency=entry["translucent"],
        ))
    for pixels, entry in zip(sheets, meta["sheets"]):
        result.font_sheets.append(FontSheet(
            name=entry["name"],
            bitmap=Bitmap(pixels),
            baseline=entry["baseline"],
            line_height=entry["line_height"],
            font_height_px=entry["font_height_px"],
            glyphs=[
                RasterGlyph(g[0], Rect(g[1], g[2], g[3], g[4]), g[5], g[6], g[7], g[8])
                for g in entry["glyphs"]
            ],
        ))
    doc = meta["document"]
    if doc is not None:
        result.document = DocumentInfo(
            name=doc["name"],
            frame_durations=doc["durations"],
            layer_names=doc["layers"],
            tags=[TagInfo(t[0], t[1], t[2], AnimationDirection(t[3])) for t in doc["tags"]],
            is_3d=doc["is_3d"],
        )
    audio = meta["audio"]
    if audio is not None:
        result.audio = AudioResource(**dict(audio, format=AudioFormat(audio["format"])))
    return result
