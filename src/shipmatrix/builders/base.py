"""Typed interfaces for toolchain builders."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Protocol

from shipmatrix.models import BuildJob, CommandSpec


class Builder(Protocol):
    name: str

    def compile_command(self, job: BuildJob) -> CommandSpec:
        """Return the compiler invocation for one job."""

    def output_relpath(self, triple: str, binary_name: str) -> PurePosixPath:
        """Where the compiler leaves the binary, relative to the working directory."""


def executable_suffix(triple: str) -> str:
    return ".exe" if "windows" in triple else ""


def triple_os(triple: str) -> str:
    if "windows" in triple:
        return "windows"
    if "apple" in triple or "darwin" in triple:
        return "darwin"
    return "linux"


def triple_cpu(triple: str) -> str:
    return triple.split("-", 1)[0]
