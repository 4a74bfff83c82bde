"""
Settings Manager
Bake configuration: built-in defaults, an optional assetbake.json project
file in the source directory, then command line overrides
"""

import dataclasses
import hashlib
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core.errors import ConfigError
from ..core.texture_atlas import is_power_of_two

CONFIG_FILENAME = "assetbake.json"
MAX_ATLAS_SIZE = 16384

# Fields that change what ends up in the bundle; the build cache keys on these.
_OUTPUT_FIELDS = (
    "atlas_size",
    "sprites_root",
    "fonts_root",
    "audio_root",
    "font_size_px",
    "font_texture_size",
)


@dataclass
class BakeConfig:
    source_dir: str = "assets"
    out_dir: str = "resources"
    atlas_size: int = 1024
    force: bool = False
    jobs: int = 0
    sprites_root: str = "sprites"
    fonts_root: str = "fonts"
    audio_root: str = "audio"
    font_size_px: int = 16
    font_texture_size: int = 256

    def validate(self) -> "BakeConfig":
        if not is_power_of_two(self.atlas_size) or self.atlas_size > MAX_ATLAS_SIZE:
            raise ConfigError(
                f"atlas size must be a power of two between 1 and {MAX_ATLAS_SIZE}, got {self.atlas_size}"
            )
        if self.font_size_px <= 0:
            raise ConfigError(f"font size must be positive, got {self.font_size_px}")
        if not 0 < self.font_texture_size <= self.atlas_size:
            raise ConfigError(
                f"font texture size {self.font_texture_size} must be positive and fit the {self.atlas_size} atlas"
            )
        if self.jobs < 0:
            raise ConfigError(f"jobs must not be negative, got {self.jobs}")
        if not os.path.isdir(self.source_dir):
            raise ConfigError(f"source directory '{self.source_dir}' does not exist")
        source = os.path.realpath(self.source_dir)
        out = os.path.realpath(self.out_dir)
        if out == source or out.startswith(source + os.sep):
            raise ConfigError("the output directory must not lie inside the source directory")
        return self

    def root(self, kind: str) -> str:
        """Absolute input root for 'sprites', 'fonts' or 'audio'."""
        relative = getattr(self, f"{kind}_root")
        return os.path.normpath(os.path.join(os.path.abspath(self.source_dir), relative))

    @property
    def worker_count(self) -> int:
        return self.jobs or (os.cpu_count() or 1)

    def output_fingerprint(self) -> str:
        payload = {name: getattr(self, name) for name in _OUTPUT_FIELDS}
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


class SettingsManager:
    """Loads the project file of a source directory and merges overrides into a BakeConfig"""

    def __init__(self, source_dir: str):
        self.source_dir = source_dir
        self.path = os.path.join(source_dir, CONFIG_FILENAME)

    def load_project_file(self) -> Dict[str, Any]:
        """Read assetbake.json; a missing file yields no settings."""
        if not os.path.isfile(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{self.path}: invalid JSON: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"{self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path}: expected a JSON object")
        return data

    def build_config(self, overrides: Optional[Dict[str, Any]] = None) -> BakeConfig:
        values: Dict[str, Any] = {"source_dir": self.source_dir}
        fields = {f.name: f for f in dataclasses.fields(BakeConfig)}
        for key, value in self.load_project_file().items():
            if key not in fields or key == "source_dir":
                raise ConfigError(f"{self.path}: unknown setting '{key}'")
            values[key] = value
        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value

        defaults = BakeConfig()
        for key, value in values.items():
            expected = type(getattr(defaults, key))
            if type(value) is not expected:
                raise ConfigError(
                    f"setting '{key}' must be of type {expected.__name__}, got {type(value).__name__}"
                )
        return BakeConfig(**values).validate()
