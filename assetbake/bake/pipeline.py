"""
Bake pipeline
Drives scan -> per-file import (worker pool) -> pack/link -> write, skipping
work whose inputs did not change since the previous run.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..core.errors import BakeError, BakeFailed, Cancelled, MalformedInput
from ..core.linker import Linker
from ..utils.file_loader import SourceFile, scan_credits, scan_sources
from ..utils.settings import BakeConfig
from .build_cache import BuildCache, OutputLock
from .bundle_writer import INDEX_FILENAME, BundleWriter, read_index
from .importers import ImportResult, import_source

logger = logging.getLogger(__name__)


@dataclass
class BakeResult:
    files: List[str] = field(default_factory=list)
    up_to_date: bool = False
    imported: int = 0
    reused: int = 0


class BakePipeline:
    """
    One baking run over a source directory.

    ``cancel_event`` may be set from another thread; it is checked between
    stages and before every per-file work item.
    """

    def __init__(self, config: BakeConfig, cancel_event: Optional[threading.Event] = None) -> None:
        self.config = config
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise Cancelled()

    def run(self) -> BakeResult:
        with OutputLock(self.config.out_dir):
            return self._run()

    def _run(self) -> BakeResult:
        config = self.config
        cache = BuildCache(config.out_dir, config.force)
        result = BakeResult()

        sources = scan_sources(config)
        credits = scan_credits(config)
        logger.info("Found %d source file(s) in '%s'", len(sources), config.source_dir)
        all_inputs = [path for source in sources for path in source.inputs] + list(credits)
        for path in all_inputs:
            cache.fingerprint(path)
        self._check_cancelled()

        imports = self._import_all(sources, cache, result)
        self._check_cancelled()

        digest = cache.bundle_digest(config.output_fingerprint(), all_inputs)
        previous_files = read_index(config.out_dir)
        if cache.bundle_up_to_date(digest, previous_files + [INDEX_FILENAME]):
            logger.info("Bundle in '%s' is up to date", config.out_dir)
            cache.bundle = digest
            cache.save()
            result.files = previous_files
            result.up_to_date = True
            return result

        linker = Linker(config.atlas_size)
        audio_sources: Dict[str, str] = {}
        for source, imported in zip(sources, imports):
            linker.add_images(imported.images)
            for sheet in imported.font_sheets:
                linker.add_font_sheet(sheet)
            if imported.document is not None:
                linker.add_document(imported.document)
            if imported.audio is not None:
                linker.add_audio(imported.audio)
                audio_sources[imported.audio.name] = source.path
        tables = linker.link()
        self._check_cancelled()

        writer = BundleWriter(config.out_dir, self.cancel_event)
        result.files = writer.write(tables, audio_sources, credits, config.source_dir)
        cache.bundle = digest
        cache.save()
        return result

    def _import_one(self, source: SourceFile, cache: BuildCache) -> Tuple[ImportResult, bool]:
        self._check_cancelled()
        key = f"{source.kind.value}:{source.path}:{self.config.output_fingerprint()}"
        if not self.config.force:
            cached = cache.cached_import(key, source.inputs)
            if cached is not None:
                logger.debug("Reusing '%s'", source.relative)
                return cached, True
        logger.debug("Importing '%s'", source.relative)
        try:
            imported = import_source(source, self.config)
        except MalformedInput as exc:
            if exc.path is None:
                exc.with_path(source.path)
            raise
        except BakeError as exc:
            exc.source = source.relative
            raise
        cache.store_import(key, source.inputs, imported)
        return imported, False

    def _import_all(self, sources: List[SourceFile], cache: BuildCache, result: BakeResult) -> List[ImportResult]:
        """Run every per-file import on the worker pool and fail with all errors at once."""
        if not sources:
            return []
        with ThreadPoolExecutor(max_workers=self.config.worker_count) as pool:
            futures: List[Future] = [pool.submit(self._import_one, source, cache) for source in sources]
            imports: List[ImportResult] = []
            errors: List[BakeError] = []
            for future in futures:
                try:
                    imported, reused = future.result()
                except KeyboardInterrupt:
                    self.cancel_event.set()
                    pool.shutdown(wait=False, cancel_futures=True)
                    raise
                except Cancelled:
                    continue
                except BakeError as exc:
                    errors.append(exc)
                    continue
                imports.append(imported)
                if reused:
                    result.reused += 1
                else:
                    result.imported += 1
        self._check_cancelled()
        if errors:
            raise BakeFailed(errors)
        logger.info("Imported %d file(s), reused %d from the cache", result.imported, result.reused)
        return imports


def bake(config: BakeConfig, cancel_event: Optional[threading.Event] = None) -> BakeResult:
    return BakePipeline(config, cancel_event).run()
