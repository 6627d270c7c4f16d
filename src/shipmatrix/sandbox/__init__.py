"""Execution sandbox interfaces and implementations."""

from __future__ import annotations

from functools import partial
from pathlib import Path

from shipmatrix.errors import ValidationError

from .base import ExecutionSandbox, SandboxFactory, job_environment, stage_source_tree
from .container import DEFAULT_IMAGE, ContainerSandbox
from .inprocess import InProcessSandbox, synthetic_executable
from .local import LocalProcessSandbox

SANDBOXES = ("local", "container", "inprocess")


def get_sandbox_factory(
    name: str,
    *,
    source_dir: Path,
    container_image: str = DEFAULT_IMAGE,
    container_engine: str = "docker",
) -> SandboxFactory:
    if name == "local":
        return partial(LocalProcessSandbox, source_dir=source_dir)
    if name == "container":
        return partial(
            ContainerSandbox,
            source_dir=source_dir,
            image=container_image,
            engine=container_engine,
        )
    if name == "inprocess":
        return InProcessSandbox
    raise ValidationError(
        "Unsupported sandbox.",
        hint=f"Choose one of: {', '.join(SANDBOXES)}.",
        context={"sandbox": name},
    )


__all__ = [
    "ContainerSandbox",
    "DEFAULT_IMAGE",
    "ExecutionSandbox",
    "InProcessSandbox",
    "LocalProcessSandbox",
    "SANDBOXES",
    "SandboxFactory",
    "get_sandbox_factory",
    "job_environment",
    "stage_source_tree",
    "synthetic_executable",
]
