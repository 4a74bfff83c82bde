from __future__ import annotations

import io
import json
import logging
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from assetbake.bake.cli import build_parser, main
from assetbake.utils.diagnostics import configure_logging

from tests.helpers import AseBuilder, solid, write_png

REPO_ROOT = Path(__file__).resolve().parents[1]


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.base = Path(self._tmp.name)
        self.source = self.base / "assets"
        self.out = self.base / "resources"
        write_png(self.source / "sprites" / "hero.png", solid(4, 4, (1, 2, 3, 255)))
        self.addCleanup(self.reset_logging)

    @staticmethod
    def reset_logging() -> None:
        logger = logging.getLogger("assetbake")
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)

    def run_main(self, *extra: str) -> int:
        return main(["--source", str(self.source), "--out", str(self.out), *extra])

    def test_parser_defaults(self) -> None:
        args = build_parser().parse_args([])
        self.assertEqual(args.source, "assets")
        self.assertIsNone(args.out)
        self.assertIsNone(args.atlas_size)
        self.assertFalse(args.force)

    def test_successful_bake(self) -> None:
        self.assertEqual(self.run_main(), 0)
        self.assertTrue((self.out / "index.txt").is_file())
        self.assertEqual(self.run_main("--force", "--jobs", "1"), 0)

    def test_config_error_exit_code(self) -> None:
        self.assertEqual(self.run_main("--atlas-size", "1000"), 1)
        self.assertEqual(main(["--source", str(self.base / "missing"), "--out", str(self.out)]), 1)

    def test_unparseable_option_is_a_config_error(self) -> None:
        self.assertEqual(self.run_main("--atlas-size", "abc"), 1)
        self.assertEqual(self.run_main("--no-such-flag"), 1)
        self.assertFalse((self.out / "index.txt").exists())

    def test_project_file_is_read(self) -> None:
        (self.source / "assetbake.json").write_text(json.dumps({"atlas_size": "big"}))
        self.assertEqual(self.run_main(), 1)

    def test_malformed_input_exit_code(self) -> None:
        (self.source / "sprites" / "bad.ase").write_bytes(b"\x00" * 300)
        self.assertEqual(self.run_main(), 2)
        self.assertFalse((self.out / "index.txt").exists())

    def test_unsupported_feature_exit_code(self) -> None:
        builder = AseBuilder(4, 4)
        builder.add_layer("tiles", layer_type=2)
        builder.add_frame()
        builder.write(self.source / "sprites" / "map.ase")
        self.assertEqual(self.run_main(), 3)

    def test_too_large_sprite_exit_code(self) -> None:
        write_png(self.source / "sprites" / "wide.png", solid(40, 2, (1, 1, 1, 255)))
        self.assertEqual(self.run_main("--atlas-size", "32"), 2)

    def test_errors_are_logged_with_level_prefix(self) -> None:
        stream = io.StringIO()
        configure_logging(False, stream)
        logging.getLogger("assetbake.test").error("boom")
        logging.getLogger("assetbake.test").debug("hidden")
        self.assertEqual(stream.getvalue(), "[ERROR] boom\n")

    def test_module_entry_point(self) -> None:
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH")]))
        completed = subprocess.run(
            [sys.executable, "-m", "assetbake.bake.cli", "--source", str(self.source), "--out", str(self.out)],
            capture_output=True,
            text=True,
            env=env,
            timeout=120,
        )
        self.assertEqual(completed.returncode, 0, completed.stderr)
        self.assertIn("[INFO]", completed.stderr)
        self.assertEqual(completed.stdout, "")


if __name__ == "__main__":
    unittest.main()
