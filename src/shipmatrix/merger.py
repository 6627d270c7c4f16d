"""Combine per-architecture Mach-O builds into one universal binary."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from shipmatrix.errors import MergeError, MergeErrorKind
from shipmatrix.macho import CPU_TYPES, MH_EXECUTE, MachOFormatError, build_fat, parse_thin
from shipmatrix.models import BuildResult, MergeRequest, PublishedArtifact


def merge(request: MergeRequest) -> PublishedArtifact:
    """Validate every input, then write the fat container to ``output_dir/output_name``.

    Checks run in a fixed order (missing inputs, duplicate architectures,
    binary format) and nothing is written unless all of them pass.
    """
    context = {"platform": request.platform, "output": request.output_name}
    paths = _check_inputs_present(request.inputs, context)
    _check_distinct_architectures(request.inputs, context)
    images = [
        _load_slice(result, path, context)
        for result, path in zip(request.inputs, paths, strict=True)
    ]

    try:
        payload = build_fat(images)
    except MachOFormatError as exc:
        raise MergeError(
            "Input is not a recognizable single-architecture executable.",
            kind=MergeErrorKind.INVALID_BINARY_FORMAT,
            context={**context, "error": str(exc)},
        ) from exc

    output_path = request.output_dir / request.output_name
    temp_path = output_path.with_name(f".{output_path.name}.tmp")
    try:
        request.output_dir.mkdir(parents=True, exist_ok=True)
        temp_path.write_bytes(payload)
        os.chmod(temp_path, 0o755)
        os.replace(temp_path, output_path)
    except OSError as exc:
        raise MergeError(
            "Universal binary could not be written.",
            kind=MergeErrorKind.OUTPUT_UNWRITABLE,
            context={**context, "path": str(output_path), "error": str(exc)},
        ) from exc
    finally:
        if temp_path.exists():
            temp_path.unlink()

    return PublishedArtifact(
        name=request.output_name,
        path=output_path,
        platform_label=request.label or f"{request.platform} universal",
        sha256=hashlib.sha256(payload).hexdigest(),
    )


def _check_inputs_present(inputs: tuple[BuildResult, ...], context: dict[str, str]) -> list[Path]:
    if len(inputs) < 2:
        raise MergeError(
            "A universal binary needs at least two architecture inputs.",
            kind=MergeErrorKind.MISSING_INPUT,
            context={**context, "inputs": str(len(inputs))},
        )
    paths: list[Path] = []
    for result in inputs:
        job_context = {**context, "job": result.job.job_id}
        if not result.succeeded:
            raise MergeError(
                "Constituent build did not succeed.",
                kind=MergeErrorKind.MISSING_INPUT,
                context={**job_context, "error": result.error or ""},
            )
        if result.artifact_path is None or not result.artifact_path.is_file():
            raise MergeError(
                "Constituent build has no artifact on disk.",
                kind=MergeErrorKind.MISSING_INPUT,
                context={**job_context, "path": str(result.artifact_path or "")},
            )
        paths.append(result.artifact_path)
    return paths


def _check_distinct_architectures(inputs: tuple[BuildResult, ...], context: dict[str, str]) -> None:
    seen: dict[str, str] = {}
    for result in inputs:
        architecture = result.job.architecture
        if architecture in seen:
            raise MergeError(
                "Two inputs declare the same architecture.",
                kind=MergeErrorKind.DUPLICATE_ARCHITECTURE,
                hint="Each architecture may appear in a universal binary only once.",
                context={
                    **context,
                    "architecture": architecture,
                    "first": seen[architecture],
                    "second": result.job.job_id,
                },
            )
        seen[architecture] = result.job.job_id


def _load_slice(result: BuildResult, path: Path, context: dict[str, str]) -> bytes:
    job_context = {**context, "job": result.job.job_id, "path": str(path)}
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise MergeError(
            "Constituent artifact could not be read.",
            kind=MergeErrorKind.MISSING_INPUT,
            context={**job_context, "error": str(exc)},
        ) from exc
    try:
        header = parse_thin(data)
    except MachOFormatError as exc:
        raise MergeError(
            "Input is not a recognizable single-architecture executable.",
            kind=MergeErrorKind.INVALID_BINARY_FORMAT,
            context={**job_context, "error": str(exc)},
        ) from exc
    if header.filetype != MH_EXECUTE:
        raise MergeError(
            "Input is a Mach-O file but not an executable.",
            kind=MergeErrorKind.INVALID_BINARY_FORMAT,
            context={**job_context, "filetype": str(header.filetype)},
        )
    expected = CPU_TYPES.get(result.job.architecture)
    if header.cputype != expected:
        raise MergeError(
            "Input CPU type does not match its declared architecture.",
            kind=MergeErrorKind.INVALID_BINARY_FORMAT,
            context={
                **job_context,
                "declared": result.job.architecture,
                "actual": header.architecture or f"0x{header.cputype:08x}",
            },
        )
    return data
