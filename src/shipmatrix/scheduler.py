"""Fan the target matrix out into isolated build jobs and join on their results."""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path

from shipmatrix.builders.base import Builder
from shipmatrix.jobs import run_build_job
from shipmatrix.matrix import expand_target, validate_targets
from shipmatrix.models import BuildJob, BuildResult, TargetSpec
from shipmatrix.observability import StructuredLogger
from shipmatrix.sandbox.base import SandboxFactory
from shipmatrix.toolchain import ToolchainProvisioner


@dataclass(slots=True)
class Scheduler:
    """Runs every job of every target in parallel, each in a fresh sandbox.

    A failed job never cancels another one, including the other architectures
    of the same universal target. :meth:`schedule` returns only after every job
    has reported, so callers always see complete result sets.
    """

    sandbox_factory: SandboxFactory
    builder: Builder
    provisioner: ToolchainProvisioner
    workspace: Path
    collect_dir: Path
    binary_name: str
    max_workers: int = 4
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def expand(self, targets: Sequence[TargetSpec]) -> dict[TargetSpec, tuple[BuildJob, ...]]:
        validate_targets(tuple(targets))
        return {
            spec: expand_target(
                spec,
                workspace=self.workspace,
                binary_name=self.binary_name,
                builder=self.builder,
            )
            for spec in targets
        }

    def schedule(self, targets: Sequence[TargetSpec]) -> dict[TargetSpec, tuple[BuildResult, ...]]:
        plan = self.expand(targets)
        self.workspace.mkdir(parents=True, exist_ok=True)
        self.collect_dir.mkdir(parents=True, exist_ok=True)

        futures: dict[str, Future[BuildResult]] = {}
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="shipmatrix-job")
        try:
            for spec, jobs in plan.items():
                self.logger.log(
                    operation="schedule_target",
                    target=spec.platform_label,
                    job=None,
                    stage="schedule",
                    message="Dispatching build jobs.",
                    extra={"jobs": [job.job_id for job in jobs]},
                )
                for job in jobs:
                    futures[job.job_id] = executor.submit(
                        run_build_job,
                        job,
                        sandbox_factory=self.sandbox_factory,
                        builder=self.builder,
                        provisioner=self.provisioner,
                        collect_dir=self.collect_dir,
                        logger=self.logger,
                    )
            wait(futures.values())
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        return {
            spec: tuple(futures[job.job_id].result() for job in jobs)
            for spec, jobs in plan.items()
        }
