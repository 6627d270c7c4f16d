"""Protocol for isolated per-job execution environments."""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol

from shipmatrix.errors import SandboxError
from shipmatrix.models import BuildJob, CommandResult, CommandSpec

# Host variables a job may inherit; everything else is dropped.
PASSTHROUGH_ENV = (
    "PATH",
    "HOME",
    "TMPDIR",
    "LANG",
    "CARGO_HOME",
    "RUSTUP_HOME",
    "GOPATH",
    "GOROOT",
    "SYSTEMROOT",
)

SOURCE_IGNORE = (".git", "target", "dist", "__pycache__")


class ExecutionSandbox(Protocol):
    name: str
    job: BuildJob

    def prepare(self) -> None:
        """Create the private working directory for the job."""

    def run(self, command: CommandSpec) -> CommandResult:
        """Run a command inside the sandbox and return its exit status."""

    def read_file(self, path: Path) -> bytes:
        """Read a file produced inside the sandbox."""

    def cleanup(self) -> None:
        """Release sandbox resources."""


SandboxFactory = Callable[[BuildJob], ExecutionSandbox]


def stage_source_tree(source_dir: Path, destination: Path) -> None:
    """Give a job its own copy of the source tree."""
    if not source_dir.is_dir():
        raise SandboxError(
            "Source tree does not exist.",
            hint="Pass the checked-out project directory with --source.",
            context={"operation": "prepare", "source": str(source_dir)},
        )
    try:
        if destination.exists():
            shutil.rmtree(destination)
        shutil.copytree(
            source_dir,
            destination,
            ignore=shutil.ignore_patterns(*SOURCE_IGNORE),
            symlinks=True,
        )
    except OSError as exc:
        raise SandboxError(
            "Failed to stage source tree.",
            context={
                "operation": "prepare",
                "source": str(source_dir),
                "destination": str(destination),
                "error": str(exc),
            },
        ) from exc


def job_environment(
    overrides: Mapping[str, str],
    *,
    host: Mapping[str, str] | None = None,
) -> dict[str, str]:
    source = os.environ if host is None else host
    env = {key: source[key] for key in PASSTHROUGH_ENV if key in source}
    env.update(overrides)
    return env


def resolve_inside(root: Path, path: Path) -> Path:
    """Resolve *path* against *root*, refusing anything outside it."""
    candidate = path if path.is_absolute() else root / path
    resolved = candidate.resolve()
    if not resolved.is_relative_to(root.resolve()):
        raise SandboxError(
            "Path escapes the sandbox working directory.",
            context={"operation": "read_file", "path": str(path), "root": str(root)},
        )
    return resolved
