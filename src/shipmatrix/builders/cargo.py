"""Rust builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath

from shipmatrix.builders.base import executable_suffix
from shipmatrix.models import BuildJob, CommandSpec


@dataclass(slots=True)
class CargoBuilder:
    name: str = "cargo"
    tool: str = "cargo"
    profile: str = "release"
    reproducible: bool = True
    flags: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=lambda: {"CARGO_TERM_COLOR": "never"})

    def compile_command(self, job: BuildJob) -> CommandSpec:
        flags = list(self.flags)
        if self.reproducible and "--locked" not in flags:
            flags.append("--locked")
        argv = (
            self.tool,
            "build",
            "--profile",
            self.profile,
            *flags,
            "--target",
            job.target_triple,
        )
        return CommandSpec(argv=argv, env=dict(self.env))

    def output_relpath(self, triple: str, binary_name: str) -> PurePosixPath:
        profile_dir = "debug" if self.profile == "dev" else self.profile
        return PurePosixPath("target", triple, profile_dir, binary_name + executable_suffix(triple))
