"""Go builder."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from shipmatrix.builders.base import executable_suffix, triple_cpu, triple_os
from shipmatrix.errors import ValidationError
from shipmatrix.models import BuildJob, CommandSpec

GOARCH = {
    "x86_64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


@dataclass(slots=True)
class GoBuilder:
    name: str = "go"
    tool: str = "go"
    package: str = "."
    reproducible: bool = True
    flags: tuple[str, ...] = ()

    def compile_command(self, job: BuildJob) -> CommandSpec:
        cpu = triple_cpu(job.target_triple)
        if cpu not in GOARCH:
            raise ValidationError(
                "Unsupported CPU for the go builder.",
                context={"triple": job.target_triple},
            )
        flags = list(self.flags)
        if self.reproducible and "-trimpath" not in flags:
            flags.append("-trimpath")
        output = self.output_relpath(job.target_triple, job.output_path.name)
        env = {
            "GOOS": triple_os(job.target_triple),
            "GOARCH": GOARCH[cpu],
            "CGO_ENABLED": "0",
        }
        return CommandSpec(argv=(self.tool, "build", *flags, "-o", str(output), self.package), env=env)

    def output_relpath(self, triple: str, binary_name: str) -> PurePosixPath:
        suffix = executable_suffix(triple)
        if binary_name.endswith(suffix) and suffix:
            binary_name = binary_name[: -len(suffix)]
        return PurePosixPath("dist", triple, binary_name + suffix)
