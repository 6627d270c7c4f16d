"""Target matrix configuration: parsing, defaults and job expansion."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, get_args

from shipmatrix.builders.base import Builder
from shipmatrix.errors import ValidationError
from shipmatrix.models import (
    ARCHITECTURES,
    PLATFORMS,
    UNIVERSAL_CONSTITUENTS,
    BuildJob,
    SliceArchitecture,
    TargetSpec,
    job_id_for,
)
from shipmatrix.publish import Packaging
from shipmatrix.sandbox.container import DEFAULT_IMAGE
from shipmatrix.trigger import DEFAULT_IGNORE_PATHS

CONFIG_VERSION = 1

DEFAULT_TARGETS: tuple[TargetSpec, ...] = (
    TargetSpec(platform="linux", architecture="x64", toolchain_triple="x86_64-unknown-linux-gnu"),
    TargetSpec(platform="windows", architecture="x64", toolchain_triple="x86_64-pc-windows-msvc"),
    TargetSpec(platform="macos", architecture="universal", toolchain_triple="apple-darwin"),
)


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    binary_name: str
    targets: tuple[TargetSpec, ...] = DEFAULT_TARGETS
    builder: str = "cargo"
    provisioner: str = "rustup"
    sandbox: str = "local"
    container_image: str = DEFAULT_IMAGE
    max_workers: int = 4
    packaging: Packaging = "zip"
    ignore_paths: tuple[str, ...] = DEFAULT_IGNORE_PATHS


def validate_targets(targets: tuple[TargetSpec, ...]) -> None:
    """Reject matrices that cannot be expanded into distinct jobs."""
    if not targets:
        raise ValidationError("Target matrix is empty.")
    seen: dict[str, str] = {}
    for spec in targets:
        if spec.platform not in PLATFORMS:
            raise ValidationError("Unknown platform.", context={"platform": spec.platform})
        if spec.architecture not in ARCHITECTURES:
            raise ValidationError(
                "Unknown architecture.",
                context={"platform": spec.platform, "architecture": spec.architecture},
            )
        slices = spec.slices()
        if spec.is_universal and len(slices) < 2:
            raise ValidationError(
                "Universal target needs at least two constituent architectures.",
                hint="Declare `constituents` for this platform.",
                context={"platform": spec.platform},
            )
        for job_id, _arch, _triple, _slot in _job_slots(spec):
            if job_id in seen:
                raise ValidationError(
                    "Two targets expand to the same build job.",
                    context={"job": job_id, "first": seen[job_id], "second": spec.platform_label},
                )
            seen[job_id] = spec.platform_label


def expand_target(
    spec: TargetSpec,
    *,
    workspace: Path,
    binary_name: str,
    builder: Builder,
) -> tuple[BuildJob, ...]:
    """One job for a single-architecture spec, one per constituent for a universal one."""
    jobs: list[BuildJob] = []
    for job_id, architecture, triple, slot in _job_slots(spec):
        working_directory = workspace / job_id
        jobs.append(
            BuildJob(
                target=spec,
                architecture=architecture,
                target_triple=triple,
                working_directory=working_directory,
                output_path=working_directory / builder.output_relpath(triple, binary_name),
                slot=slot,
            )
        )
    return tuple(jobs)


def _job_slots(spec: TargetSpec) -> list[tuple[str, SliceArchitecture, str, int]]:
    # A repeated architecture gets its own slot so both builds still run;
    # the merge step is what rejects it.
    counts: dict[str, int] = {}
    slots: list[tuple[str, SliceArchitecture, str, int]] = []
    for architecture, triple in spec.slices():
        slot = counts.get(architecture, 0)
        counts[architecture] = slot + 1
        slots.append((job_id_for(spec.platform, architecture, slot), architecture, triple, slot))
    return slots


def shared_triple_suffix(slices: tuple[tuple[SliceArchitecture, str], ...]) -> str | None:
    """Vendor-OS part common to every constituent triple, e.g. ``apple-darwin``."""
    suffixes = {triple.partition("-")[2] for _arch, triple in slices}
    if len(suffixes) != 1:
        return None
    return suffixes.pop() or None


def parse_config(raw: str) -> ReleaseConfig:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("Invalid matrix JSON.", hint=str(exc)) from exc
    if not isinstance(payload, dict):
        raise ValidationError("Invalid matrix payload type.")

    version = _required_int(payload, "version")
    if version != CONFIG_VERSION:
        raise ValidationError(
            "Unsupported matrix version.",
            context={"version": str(version), "supported": str(CONFIG_VERSION)},
        )
    targets_raw = payload.get("targets")
    if targets_raw is None:
        targets = DEFAULT_TARGETS
    elif isinstance(targets_raw, list):
        targets = tuple(_parse_target(item) for item in targets_raw)
    else:
        raise ValidationError("Invalid matrix `targets` value.")
    validate_targets(targets)

    packaging = payload.get("packaging", "zip")
    if packaging not in get_args(Packaging):
        raise ValidationError("Invalid matrix `packaging` value.", context={"packaging": str(packaging)})
    max_workers = payload.get("max_workers", 4)
    if not isinstance(max_workers, int) or max_workers < 1:
        raise ValidationError("Invalid matrix `max_workers` value.")

    builder = _optional_str(payload, "builder", "cargo")
    return ReleaseConfig(
        binary_name=_required_str(payload, "binary_name"),
        targets=targets,
        builder=builder,
        provisioner=_optional_str(payload, "provisioner", "rustup" if builder == "cargo" else "none"),
        sandbox=_optional_str(payload, "sandbox", "local"),
        container_image=_optional_str(payload, "container_image", DEFAULT_IMAGE),
        max_workers=max_workers,
        packaging=packaging,
        ignore_paths=_optional_str_tuple(payload, "ignore_paths", DEFAULT_IGNORE_PATHS),
    )


def load_config(path: str | Path) -> ReleaseConfig:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ValidationError(
            "Matrix file does not exist.",
            context={"path": str(config_path)},
        ) from exc
    return parse_config(raw)


def _parse_target(item: Any) -> TargetSpec:
    if not isinstance(item, dict):
        raise ValidationError("Invalid target entry in matrix.")
    platform = _required_str(item, "platform")
    architecture = _required_str(item, "architecture")
    if platform not in PLATFORMS:
        raise ValidationError("Unknown platform.", context={"platform": platform})
    if architecture not in ARCHITECTURES:
        raise ValidationError("Unknown architecture.", context={"architecture": architecture})

    constituents: tuple[tuple[SliceArchitecture, str], ...] = ()
    constituents_raw = item.get("constituents")
    if constituents_raw is not None:
        if architecture != "universal":
            raise ValidationError(
                "Only universal targets may declare constituents.",
                context={"platform": platform, "architecture": architecture},
            )
        constituents = _parse_constituents(constituents_raw)
    elif architecture == "universal" and platform not in UNIVERSAL_CONSTITUENTS:
        raise ValidationError(
            "Platform has no default universal architectures.",
            hint="Declare `constituents` for this target.",
            context={"platform": platform},
        )

    label = item.get("label")
    if label is not None and (not isinstance(label, str) or not label):
        raise ValidationError("Invalid target `label` value.")
    triple = item.get("toolchain_triple")
    if triple is None and architecture == "universal":
        triple = shared_triple_suffix(constituents or UNIVERSAL_CONSTITUENTS[platform]) or platform
    if not isinstance(triple, str) or not triple:
        raise ValidationError("Invalid target `toolchain_triple` value.", context={"platform": platform})
    return TargetSpec(
        platform=platform,  # type: ignore[arg-type]
        architecture=architecture,  # type: ignore[arg-type]
        toolchain_triple=triple,
        label=label,
        constituents=constituents,
    )


def _parse_constituents(value: Any) -> tuple[tuple[SliceArchitecture, str], ...]:
    if not isinstance(value, list) or not value:
        raise ValidationError("Invalid target `constituents` value.")
    parsed: list[tuple[SliceArchitecture, str]] = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationError("Invalid constituent entry in matrix.")
        architecture = _required_str(item, "architecture")
        if architecture not in get_args(SliceArchitecture):
            raise ValidationError(
                "Unknown constituent architecture.",
                context={"architecture": architecture},
            )
        parsed.append((architecture, _required_str(item, "toolchain_triple")))  # type: ignore[arg-type]
    return tuple(parsed)


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid matrix `{key}` value.")
    return value


def _required_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if not isinstance(value, int):
        raise ValidationError(f"Invalid matrix `{key}` value.")
    return value


def _optional_str(payload: dict[str, Any], key: str, default: str) -> str:
    if key not in payload:
        return default
    return _required_str(payload, key)


def _optional_str_tuple(payload: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"Invalid matrix `{key}` value.")
    return tuple(value)
