"""Run gate derived from the triggering push."""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase

DEFAULT_IGNORE_PATHS = ("*.md",)


@dataclass(frozen=True, slots=True)
class Trigger:
    """Source revision plus the optional result of the path filter.

    ``None`` and an empty tuple both mean no filter result was supplied, and
    the run always proceeds. A run is skipped only when at least one path is
    known to have changed and every changed path is ignored.
    """

    revision: str
    changed_paths: tuple[str, ...] | None = None

    def should_run(self, ignore: tuple[str, ...] = DEFAULT_IGNORE_PATHS) -> bool:
        if not self.changed_paths:
            return True
        return any(not _ignored(path, ignore) for path in self.changed_paths)


def _ignored(path: str, patterns: tuple[str, ...]) -> bool:
    segments = tuple(part for part in path.strip("/").split("/") if part)
    return any(path_matches(segments, tuple(p.split("/"))) for p in patterns)


def path_matches(path: tuple[str, ...], pattern: tuple[str, ...]) -> bool:
    """Match path segments against glob segments; ``*`` stays within one segment."""
    if not pattern:
        return not path
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(path_matches(path[i:], rest) for i in range(len(path) + 1))
    if not path:
        return False
    return fnmatchcase(path[0], head) and path_matches(path[1:], rest)
