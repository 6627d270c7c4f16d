"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from pathlib import Path

import pytest

from shipmatrix.macho import CPU_TYPES, thin_header_bytes
from shipmatrix.models import BuildJob, BuildResult, TargetSpec
from shipmatrix.sandbox.inprocess import InProcessSandbox

MACOS_UNIVERSAL = TargetSpec(
    platform="macos",
    architecture="universal",
    toolchain_triple="apple-darwin",
)


def thin_macho(architecture: str, body: bytes = b"payload") -> bytes:
    return thin_header_bytes(CPU_TYPES[architecture]) + body


@pytest.fixture
def inprocess_factory() -> Callable[..., Callable[[BuildJob], InProcessSandbox]]:
    """Build an in-process sandbox factory with optional injected failures."""

    def make(**options: object) -> Callable[[BuildJob], InProcessSandbox]:
        return partial(InProcessSandbox, **options)

    return make


@pytest.fixture
def make_result(tmp_path: Path) -> Callable[..., BuildResult]:
    """Write *payload* to disk and wrap it in a BuildResult for the merger."""

    def make(
        architecture: str,
        payload: bytes | None = None,
        *,
        status: str = "success",
        slot: int = 0,
        write: bool = True,
    ) -> BuildResult:
        triple = "x86_64-apple-darwin" if architecture == "x64" else "aarch64-apple-darwin"
        job_dir = tmp_path / "jobs" / f"{architecture}-{slot}"
        artifact = job_dir / "tool"
        if write and status == "success":
            job_dir.mkdir(parents=True, exist_ok=True)
            artifact.write_bytes(thin_macho(architecture) if payload is None else payload)
        job = BuildJob(
            target=MACOS_UNIVERSAL,
            architecture=architecture,  # type: ignore[arg-type]
            target_triple=triple,
            working_directory=job_dir,
            output_path=artifact,
            slot=slot,
        )
        if status != "success":
            return BuildResult(job=job, status="failed", error="compile failed", error_code="E_BUILD")
        return BuildResult(job=job, status="success", artifact_path=artifact)

    return make
