"""
Bundle writer
Serializes the linked tables and atlas textures into the output directory.

Every file goes to a temporary name first; nothing is renamed into place
until all files are staged, and ``index.txt`` is renamed last so a reader
never sees an index describing a half-written bundle.
"""

import logging
import os
import tempfile
import threading
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..core.errors import BakeIOError, Cancelled
from ..core.linker import BundleTables
from .tables import (
    Animation3DTable,
    AnimationTable,
    AtlasTable,
    AudioTable,
    FontTable,
    Sprite3DTable,
    SpriteTable,
)

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.txt"
CREDITS_FILENAME = "credits.txt"


def atlas_filename(index: int) -> str:
    return f"atlas-{index}.png"


def read_index(out_dir: str) -> List[str]:
    """Files listed by the bundle currently in ``out_dir``; empty when there is none."""
    path = os.path.join(out_dir, INDEX_FILENAME)
    if not os.path.isfile(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [line for line in f.read().split("\n") if line]
    except OSError as exc:
        raise BakeIOError(path, exc) from exc


def _read_file(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as exc:
        raise BakeIOError(path, exc) from exc


def build_credits(paths: Sequence[str], source_dir: str) -> bytes:
    """Concatenate the project credits and every license file under a header line."""
    sections = []
    for path in paths:
        text = _read_file(path).decode("utf-8", errors="replace").rstrip("\n")
        relative = os.path.relpath(path, source_dir).replace(os.sep, "/")
        if os.path.basename(path) == CREDITS_FILENAME and os.path.dirname(relative) == "":
            sections.append(text)
        else:
            sections.append(f"== {relative} ==\n{text}")
    return ("\n\n".join(sections) + "\n").encode("utf-8")


class BundleWriter:
    """Writes one bundle into ``out_dir``."""

    def __init__(self, out_dir: str, cancel_event: Optional[threading.Event] = None) -> None:
        self.out_dir = out_dir
        self.cancel_event = cancel_event
        self._staged: List[Tuple[str, str]] = []

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled()

    def _stage(self, relative: str, data: bytes) -> None:
        final = os.path.join(self.out_dir, *relative.split("/"))
        directory = os.path.dirname(final)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".part")
            self._staged.append((temp, final))
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as exc:
            raise BakeIOError(final, exc) from exc

    def _discard(self) -> None:
        for temp, _ in self._staged:
            if os.path.exists(temp):
                os.remove(temp)
        self._staged = []

    def collect_files(
        self,
        tables: BundleTables,
        audio_sources: Dict[str, str],
        credits: Sequence[str] = (),
        source_dir: str = ".",
    ) -> List[Tuple[str, Callable[[], bytes]]]:
        """Relative path and content producer of every file the bundle consists of, in index order."""
        textures = tables.atlas.textures
        files: List[Tuple[str, Callable[[], bytes]]] = [
            (atlas_filename(i), lambda t=texture: t.to_png_bytes(premultiplied=True))
            for i, texture in enumerate(textures)
        ]
        atlas_names = [atlas_filename(i) for i in range(len(textures))]
        files.extend(
            [
                (AtlasTable.filename, lambda: AtlasTable(atlas_names).encode()),
                (SpriteTable.filename, lambda: SpriteTable(tables.sprites).encode()),
                (Sprite3DTable.filename, lambda: Sprite3DTable(tables.sprites_3d).encode()),
                (AnimationTable.filename, lambda: AnimationTable(tables.animations).encode()),
                (Animation3DTable.filename, lambda: Animation3DTable(tables.animations_3d).encode()),
                (FontTable.filename, lambda: FontTable(tables.fonts).encode()),
            ]
        )
        if tables.audio:
            files.append((AudioTable.filename, lambda: AudioTable(tables.audio).encode()))
            for audio in tables.audio:
                files.append((audio.file, lambda p=audio_sources[audio.name]: _read_file(p)))
        if credits:
            files.append((CREDITS_FILENAME, lambda: build_credits(credits, source_dir)))
        return files

    def write(
        self,
        tables: BundleTables,
        audio_sources: Optional[Dict[str, str]] = None,
        credits: Sequence[str] = (),
        source_dir: str = ".",
    ) -> List[str]:
        """
        Stage and publish the bundle.

        Returns:
            The relative paths listed in the new index.txt (excluding itself)
        """
        previous = read_index(self.out_dir)
        files = self.collect_files(tables, audio_sources or {}, credits, source_dir)
        written = [relative for relative, _ in files]
        try:
            for relative, produce in files:
                self._check_cancelled()
                self._stage(relative, produce())
            index = "".join(f"{relative}\n" for relative in written).encode("utf-8")
            self._stage(INDEX_FILENAME, index)
            self._check_cancelled()
        except BaseException:
            self._discard()
            raise

        published: List[str] = []
        try:
            for temp, final in self._staged:
                os.replace(temp, final)
                published.append(os.path.relpath(final, self.out_dir))
        except OSError as exc:
            if published:
                logger.error(
                    "Publishing stopped after replacing %d file(s): %s", len(published), ", ".join(published)
                )
            self._discard()
            raise BakeIOError(self.out_dir, exc) from exc
        self._staged = []
        self._remove_stale(set(previous) - set(written) - {INDEX_FILENAME})
        logger.info("Wrote %d file(s) to '%s'", len(written) + 1, self.out_dir)
        return written

    def _remove_stale(self, stale_files: Set[str]) -> None:
        """Delete files the previous index listed; entries leading outside ``out_dir`` are left alone."""
        root = os.path.realpath(self.out_dir)
        for stale in sorted(stale_files):
            path = os.path.realpath(os.path.join(self.out_dir, *stale.split("/")))
            if os.path.commonpath([root, path]) != root:
                logger.warning("Ignoring index entry '%s' outside the output directory", stale)
                continue
            if os.path.isfile(path):
                logger.debug("Removing stale bundle file '%s'", stale)
                os.remove(path)
