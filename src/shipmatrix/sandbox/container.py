"""Container-backed sandbox (docker or podman).

One container lives for the whole job: ``prepare`` starts it with the job
directory bind-mounted, every command ``exec``s into it, and ``cleanup``
removes it. Toolchain targets added by the provisioner are therefore still
there when the compiler runs.
"""

from __future__ import annotations

import shutil
import subprocess
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from shipmatrix.errors import SandboxError
from shipmatrix.models import BuildJob, CommandResult, CommandSpec
from shipmatrix.sandbox.base import resolve_inside, stage_source_tree

DEFAULT_IMAGE = "rust:1"


@dataclass(slots=True)
class ContainerSandbox:
    job: BuildJob
    source_dir: Path
    image: str = DEFAULT_IMAGE
    engine: str = "docker"
    mount_target: str = "/work"
    name: str = "container"
    extra_args: list[str] = field(default_factory=list)
    container: str | None = field(default=None, init=False)

    def start_argv(self, container: str) -> list[str]:
        return [
            self.engine,
            "run",
            "--detach",
            "--name",
            container,
            "--volume",
            f"{self.job.working_directory}:{self.mount_target}",
            "--workdir",
            self.mount_target,
            *self.extra_args,
            self.image,
            "sleep",
            "infinity",
        ]

    def exec_argv(self, command: CommandSpec) -> list[str]:
        if self.container is None:
            raise SandboxError(
                "Container sandbox used before prepare().",
                context={"sandbox": self.name, "job": self.job.job_id},
            )
        workdir = self.mount_target
        if command.cwd:
            workdir = f"{self.mount_target}/{command.cwd}"
        argv = [self.engine, "exec", "--workdir", workdir]
        for key, value in sorted(command.env.items()):
            argv.extend(["--env", f"{key}={value}"])
        argv.append(self.container)
        argv.extend(command.argv)
        return argv

    def prepare(self) -> None:
        self._ensure_engine_available()
        self.job.working_directory.parent.mkdir(parents=True, exist_ok=True)
        stage_source_tree(self.source_dir, self.job.working_directory)

        container = f"shipmatrix-{self.job.job_id}-{uuid.uuid4().hex[:12]}"
        result = self._engine(self.start_argv(container))
        if result.returncode != 0:
            raise SandboxError(
                "Failed to start build container.",
                hint=f"Check that `{self.engine}` can pull and run {self.image}.",
                context={
                    "sandbox": self.name,
                    "job": self.job.job_id,
                    "image": self.image,
                    "stderr": result.stderr[:2000],
                },
            )
        self.container = container

    def run(self, command: CommandSpec) -> CommandResult:
        return self._engine(self.exec_argv(command))

    def read_file(self, path: Path) -> bytes:
        return resolve_inside(self.job.working_directory, path).read_bytes()

    def cleanup(self) -> None:
        if self.container is not None:
            self._engine([self.engine, "rm", "--force", self.container])
            self.container = None
        shutil.rmtree(self.job.working_directory, ignore_errors=True)

    def _engine(self, argv: list[str]) -> CommandResult:
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise SandboxError(
                "Container engine could not be started.",
                context={"sandbox": self.name, "job": self.job.job_id, "error": str(exc)},
            ) from exc
        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    def _ensure_engine_available(self) -> None:
        if shutil.which(self.engine) is None:
            raise SandboxError(
                f"Container sandbox requires `{self.engine}` in PATH.",
                hint="Install a container engine or use the local sandbox.",
                context={"sandbox": self.name, "job": self.job.job_id},
            )
