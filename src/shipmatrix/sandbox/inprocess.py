"""In-process sandbox for tests and dry runs.

Produces deterministic executables without invoking any toolchain. Apple
triples get a thin Mach-O image for the job's architecture, Linux triples an
ELF header, Windows triples a PE stub, so the merge step sees realistic
inputs. Failures can be injected per triple.
"""

from __future__ import annotations

import shutil
import struct
from dataclasses import dataclass, field
from pathlib import Path

from shipmatrix.macho import CPU_TYPES, thin_header_bytes
from shipmatrix.models import BuildJob, CommandResult, CommandSpec
from shipmatrix.sandbox.base import resolve_inside

PROVISION_TOOLS = frozenset({"rustup"})

ELF_MACHINES = {"x64": 62, "arm64": 183}
PE_MACHINES = {"x64": 0x8664, "arm64": 0xAA64}


def synthetic_executable(triple: str, architecture: str, payload: bytes = b"") -> bytes:
    body = payload or f"shipmatrix synthetic build for {triple}\n".encode()
    if "apple" in triple or "darwin" in triple:
        return thin_header_bytes(CPU_TYPES[architecture]) + body
    if "windows" in triple:
        header = b"MZ" + bytes(58) + struct.pack("<I", 64)
        return header + b"PE\x00\x00" + struct.pack("<H", PE_MACHINES[architecture]) + body
    ident = b"\x7fELF\x02\x01\x01" + bytes(9)
    return ident + struct.pack("<HHI", 2, ELF_MACHINES[architecture], 1) + body


@dataclass(slots=True)
class InProcessSandbox:
    job: BuildJob
    name: str = "inprocess"
    fail_triples: frozenset[str] = frozenset()
    missing_output_triples: frozenset[str] = frozenset()
    provision_fail_triples: frozenset[str] = frozenset()
    architecture_override: dict[str, str] = field(default_factory=dict)
    commands: list[CommandSpec] = field(default_factory=list)

    def prepare(self) -> None:
        self.job.working_directory.mkdir(parents=True, exist_ok=True)

    def run(self, command: CommandSpec) -> CommandResult:
        self.commands.append(command)
        triple = self.job.target_triple
        if command.argv and command.argv[0] in PROVISION_TOOLS:
            if triple in self.provision_fail_triples:
                return CommandResult(returncode=1, stderr=f"error: toolchain '{triple}' unavailable")
            return CommandResult(returncode=0, stdout=f"installed {triple}\n")

        if triple in self.fail_triples:
            return CommandResult(returncode=101, stderr="error: could not compile\n")
        if triple not in self.missing_output_triples:
            architecture = self.architecture_override.get(triple, self.job.architecture)
            self.job.output_path.parent.mkdir(parents=True, exist_ok=True)
            self.job.output_path.write_bytes(synthetic_executable(triple, architecture))
        return CommandResult(returncode=0, stdout=f"Finished release [{triple}]\n")

    def read_file(self, path: Path) -> bytes:
        return resolve_inside(self.job.working_directory, path).read_bytes()

    def cleanup(self) -> None:
        shutil.rmtree(self.job.working_directory, ignore_errors=True)
