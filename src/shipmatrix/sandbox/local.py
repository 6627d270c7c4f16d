"""Host subprocess sandbox.

Each job compiles in a private copy of the source tree with an environment
rebuilt from a short allow-list, so variables and intermediate compiler state
never leak between jobs.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from shipmatrix.errors import SandboxError
from shipmatrix.models import BuildJob, CommandResult, CommandSpec
from shipmatrix.sandbox.base import job_environment, resolve_inside, stage_source_tree


@dataclass(slots=True)
class LocalProcessSandbox:
    job: BuildJob
    source_dir: Path
    name: str = "local"
    timeout: float | None = 3600
    keep_workdir: bool = False
    commands: list[CommandSpec] = field(default_factory=list)

    @property
    def root(self) -> Path:
        return self.job.working_directory

    def prepare(self) -> None:
        self.root.parent.mkdir(parents=True, exist_ok=True)
        stage_source_tree(self.source_dir, self.root)

    def run(self, command: CommandSpec) -> CommandResult:
        self.commands.append(command)
        cwd = self.root / command.cwd if command.cwd else self.root
        try:
            result = subprocess.run(
                list(command.argv),
                cwd=str(cwd),
                env=job_environment(command.env),
                capture_output=True,
                text=True,
                errors="replace",
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            return CommandResult(returncode=127, stderr=str(exc))
        except subprocess.TimeoutExpired as exc:
            raise SandboxError(
                "Command timed out.",
                context={
                    "sandbox": self.name,
                    "job": self.job.job_id,
                    "command": " ".join(command.argv),
                    "timeout": str(exc.timeout),
                },
            ) from exc
        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    def read_file(self, path: Path) -> bytes:
        return resolve_inside(self.root, path).read_bytes()

    def cleanup(self) -> None:
        if not self.keep_workdir:
            shutil.rmtree(self.root, ignore_errors=True)
