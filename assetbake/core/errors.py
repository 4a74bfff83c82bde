"""
Error types raised by the baking pipeline.

Every error carries the process exit code the CLI reports for it.
"""

from typing import List, Optional, Sequence, Tuple


class BakeError(Exception):
    """Base class for every failure the baker reports to the user."""

    exit_code = 2
    # Root-relative source file the error was raised for, when known.
    source: Optional[str] = None

    def describe(self) -> str:
        return f"{self.source}: {self}" if self.source else str(self)


class ConfigError(BakeError):
    exit_code = 1


class BakeIOError(BakeError):
    """A file could not be read or written."""

    exit_code = 4

    def __init__(self, path: str, cause: object) -> None:
        super().__init__(f"{path}: {cause}")
        self.path = path
        self.cause = cause


class MalformedInput(BakeError):
    """Input bytes violate the format they claim to be in."""

    def __init__(self, reason: str, offset: Optional[int] = None, path: Optional[str] = None) -> None:
        self.path = path
        self.offset = offset
        self.reason = reason
        super().__init__(self._format())

    def _format(self) -> str:
        where = self.path or "<memory>"
        if self.offset is not None:
            where = f"{where} @ 0x{self.offset:X}"
        return f"{where}: {self.reason}"

    def with_path(self, path: str) -> "MalformedInput":
        self.path = path
        self.args = (self._format(),)
        return self


class UnsupportedFeature(BakeError):
    exit_code = 3

    def __init__(self, what: str) -> None:
        super().__init__(f"unsupported feature: {what}")
        self.what = what


class InconsistentMetaLayer(BakeError):
    def __init__(self, layer: str, document: str) -> None:
        super().__init__(
            f"meta layer '{layer}' in '{document}' must mark either every frame or none"
        )
        self.layer = layer
        self.document = document


class SpriteTooLarge(BakeError):
    def __init__(self, name: str, dim: Tuple[int, int], size: int) -> None:
        super().__init__(
            f"sprite '{name}' is {dim[0]}x{dim[1]} which exceeds the {size}x{size} atlas"
        )
        self.name = name
        self.dim = dim
        self.size = size


class FontOverflow(BakeError):
    def __init__(self, font: str, size: int) -> None:
        super().__init__(f"glyphs of font '{font}' do not fit into a {size}x{size} texture")
        self.font = font
        self.size = size


class DuplicateName(BakeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"duplicate name '{name}'")
        self.name = name


class Cancelled(BakeError):
    exit_code = 130

    def __init__(self) -> None:
        super().__init__("bake cancelled")


class BakeFailed(BakeError):
    """Collects the per-file errors of a stage so they can be reported together."""

    def __init__(self, errors: Sequence[BakeError]) -> None:
        self.errors: List[BakeError] = list(errors)
        lines = [f"{len(self.errors)} input(s) failed:"]
        lines.extend(f"  {error.describe()}" for error in self.errors)
        super().__init__("\n".join(lines))

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.errors[0].exit_code if self.errors else 2
