"""Compiler builders."""

from __future__ import annotations

from shipmatrix.errors import ValidationError

from .base import Builder, executable_suffix
from .cargo import CargoBuilder
from .go import GoBuilder
from .materialize import collect_artifact

BUILDERS = ("cargo", "go")


def get_builder(name: str) -> Builder:
    if name == "cargo":
        return CargoBuilder()
    if name == "go":
        return GoBuilder()
    raise ValidationError(
        "Unsupported builder.",
        hint=f"Choose one of: {', '.join(BUILDERS)}.",
        context={"builder": name},
    )


__all__ = [
    "BUILDERS",
    "Builder",
    "CargoBuilder",
    "GoBuilder",
    "collect_artifact",
    "executable_suffix",
    "get_builder",
]
