"""
Command line entry point: ``assetbake [--source DIR] [--out DIR] [--atlas-size N] [--force]``
"""

import argparse
import logging
import threading
from typing import List, Optional

from ..core.errors import BakeError, ConfigError
from ..utils.diagnostics import configure_logging
from ..utils.settings import SettingsManager
from .pipeline import BakePipeline

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CANCELLED = 130


class ArgumentParser(argparse.ArgumentParser):
    """Reports unusable options as a ConfigError instead of exiting."""

    def error(self, message: str):
        raise ConfigError(f"{self.prog}: {message}")


def build_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(
        prog="assetbake",
        description="Bake sprites, fonts and audio into a runtime asset bundle",
    )
    parser.add_argument("--source", default="assets", help="Source asset directory (default: assets)")
    parser.add_argument("--out", default=None, help="Output bundle directory (default: resources)")
    parser.add_argument("--atlas-size", type=int, default=None, help="Atlas texture edge length, a power of two")
    parser.add_argument("--force", action="store_true", help="Ignore the build cache and bake everything")
    parser.add_argument("--jobs", type=int, default=None, help="Worker threads for per-file stages (default: CPU count)")
    parser.add_argument("--verbose", action="store_true", help="Log every file as it is processed")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = build_parser().parse_args(argv)
    except ConfigError as exc:
        configure_logging(False)
        logger.error("%s", exc.describe())
        return exc.exit_code
    configure_logging(args.verbose)

    cancel_event = threading.Event()
    try:
        config = SettingsManager(args.source).build_config(
            {
                "out_dir": args.out,
                "atlas_size": args.atlas_size,
                "force": args.force or None,
                "jobs": args.jobs,
            }
        )
        result = BakePipeline(config, cancel_event).run()
    except KeyboardInterrupt:
        cancel_event.set()
        logger.error("Interrupted, previous bundle left untouched")
        return EXIT_CANCELLED
    except BakeError as exc:
        logger.error("%s", exc.describe())
        return exc.exit_code

    if not result.up_to_date:
        logger.info("Bundle written: %d file(s)", len(result.files) + 1)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
