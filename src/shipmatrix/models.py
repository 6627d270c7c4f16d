"""Core typed dataclasses for the target matrix, build jobs and run reports."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

Platform = Literal["linux", "windows", "macos"]
Architecture = Literal["x64", "arm64", "universal"]
SliceArchitecture = Literal["x64", "arm64"]
BuildStatus = Literal["success", "failed"]
TargetStatus = Literal["published", "failed"]
FailureStage = Literal["build", "merge", "publish"]

PLATFORMS: tuple[Platform, ...] = ("linux", "windows", "macos")
ARCHITECTURES: tuple[Architecture, ...] = ("x64", "arm64", "universal")

PLATFORM_LABELS: dict[Platform, str] = {
    "linux": "Linux",
    "windows": "Windows",
    "macos": "macOS",
}

# Platforms that ship one multi-architecture binary, and the slices it holds.
UNIVERSAL_CONSTITUENTS: dict[Platform, tuple[tuple[SliceArchitecture, str], ...]] = {
    "macos": (
        ("x64", "x86_64-apple-darwin"),
        ("arm64", "aarch64-apple-darwin"),
    ),
}


@dataclass(frozen=True, slots=True)
class CommandSpec:
    argv: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None


@dataclass(frozen=True, slots=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True, slots=True)
class TargetSpec:
    platform: Platform
    architecture: Architecture
    toolchain_triple: str
    label: str | None = None
    constituents: tuple[tuple[SliceArchitecture, str], ...] = ()

    @property
    def is_universal(self) -> bool:
        return self.architecture == "universal"

    @property
    def platform_label(self) -> str:
        if self.label:
            return self.label
        return f"{PLATFORM_LABELS[self.platform]} {self.architecture}"

    def slices(self) -> tuple[tuple[SliceArchitecture, str], ...]:
        """Return the (architecture, triple) pairs this spec compiles."""
        if not self.is_universal:
            return ((self.architecture, self.toolchain_triple),)  # type: ignore[return-value]
        if self.constituents:
            return self.constituents
        return UNIVERSAL_CONSTITUENTS.get(self.platform, ())


def job_id_for(platform: str, architecture: str, slot: int = 0) -> str:
    base = f"{platform}-{architecture}"
    return base if slot == 0 else f"{base}-{slot}"


@dataclass(frozen=True, slots=True)
class BuildJob:
    target: TargetSpec
    architecture: SliceArchitecture
    target_triple: str
    working_directory: Path
    output_path: Path
    slot: int = 0

    @property
    def job_id(self) -> str:
        return job_id_for(self.target.platform, self.architecture, self.slot)


@dataclass(frozen=True, slots=True)
class BuildResult:
    job: BuildJob
    status: BuildStatus
    artifact_path: Path | None = None
    error: str | None = None
    error_code: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True, slots=True)
class MergeRequest:
    platform: Platform
    inputs: tuple[BuildResult, ...]
    output_name: str
    output_dir: Path
    label: str = ""


@dataclass(frozen=True, slots=True)
class PublishedArtifact:
    name: str
    path: Path
    platform_label: str
    sha256: str | None = None


@dataclass(frozen=True, slots=True)
class TargetReport:
    target: TargetSpec
    status: TargetStatus
    results: tuple[BuildResult, ...] = ()
    stage: FailureStage | None = None
    error_code: str | None = None
    errors: tuple[str, ...] = ()
    merge_attempted: bool = False
    artifact: PublishedArtifact | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.target.platform_label,
            "platform": self.target.platform,
            "architecture": self.target.architecture,
            "status": self.status,
            "stage": self.stage,
            "error_code": self.error_code,
            "errors": list(self.errors),
            "merge_attempted": self.merge_attempted,
            "jobs": {
                result.job.job_id: {
                    "triple": result.job.target_triple,
                    "status": result.status,
                    "error": result.error,
                }
                for result in self.results
            },
            "artifact": (
                None
                if self.artifact is None
                else {
                    "name": self.artifact.name,
                    "path": str(self.artifact.path),
                    "sha256": self.artifact.sha256,
                }
            ),
        }


@dataclass(slots=True)
class RunReport:
    revision: str
    skipped: bool = False
    targets: list[TargetReport] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(report.status == "published" for report in self.targets)

    @property
    def failed_targets(self) -> list[TargetReport]:
        return [report for report in self.targets if report.status != "published"]

    @property
    def published(self) -> list[PublishedArtifact]:
        return [report.artifact for report in self.targets if report.artifact is not None]

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def report_for(self, target: TargetSpec) -> TargetReport | None:
        for report in self.targets:
            if report.target == target:
                return report
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "revision": self.revision,
            "skipped": self.skipped,
            "succeeded": self.succeeded,
            "targets": [report.to_dict() for report in self.targets],
        }


__all__ = [
    "ARCHITECTURES",
    "Architecture",
    "BuildJob",
    "BuildResult",
    "BuildStatus",
    "CommandResult",
    "CommandSpec",
    "FailureStage",
    "MergeRequest",
    "PLATFORMS",
    "PLATFORM_LABELS",
    "Platform",
    "PublishedArtifact",
    "RunReport",
    "SliceArchitecture",
    "TargetReport",
    "TargetSpec",
    "TargetStatus",
    "UNIVERSAL_CONSTITUENTS",
    "job_id_for",
]
