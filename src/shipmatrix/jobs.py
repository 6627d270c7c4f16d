"""Run one build job inside its own sandbox."""

from __future__ import annotations

from pathlib import Path

from shipmatrix.builders.base import Builder
from shipmatrix.builders.materialize import collect_artifact
from shipmatrix.errors import BuildError, SandboxError, ShipmatrixError
from shipmatrix.models import BuildJob, BuildResult
from shipmatrix.observability import StructuredLogger
from shipmatrix.sandbox.base import ExecutionSandbox, SandboxFactory
from shipmatrix.toolchain import ToolchainProvisioner


def run_build_job(
    job: BuildJob,
    *,
    sandbox_factory: SandboxFactory,
    builder: Builder,
    provisioner: ToolchainProvisioner,
    collect_dir: Path,
    logger: StructuredLogger,
) -> BuildResult:
    """Provision, compile and collect; every failure becomes a failed BuildResult.

    Nothing raised inside a job reaches the scheduler, so one job can never
    take down its siblings.
    """
    label = job.target.platform_label
    try:
        artifact_path = _run_in_sandbox(job, sandbox_factory, builder, provisioner, collect_dir, logger)
    except ShipmatrixError as exc:
        return _failed(job, exc, logger)
    except Exception as exc:  # noqa: BLE001
        error = SandboxError(
            "Unexpected error while running build job.",
            context={"job": job.job_id, "error": f"{type(exc).__name__}: {exc}"},
        )
        return _failed(job, error, logger)

    logger.log(
        operation="job_complete",
        target=label,
        job=job.job_id,
        stage="build",
        message="Build job succeeded.",
        extra={"artifact": str(artifact_path)},
    )
    return BuildResult(job=job, status="success", artifact_path=artifact_path)


def _run_in_sandbox(
    job: BuildJob,
    sandbox_factory: SandboxFactory,
    builder: Builder,
    provisioner: ToolchainProvisioner,
    collect_dir: Path,
    logger: StructuredLogger,
) -> Path:
    sandbox = sandbox_factory(job)
    logger.log(
        operation="job_start",
        target=job.target.platform_label,
        job=job.job_id,
        stage="build",
        message="Starting build job.",
        extra={"triple": job.target_triple, "sandbox": sandbox.name},
    )
    try:
        return _execute(job, sandbox, builder, provisioner, collect_dir)
    finally:
        sandbox.cleanup()


def _failed(job: BuildJob, exc: ShipmatrixError, logger: StructuredLogger) -> BuildResult:
    logger.log(
        operation="job_failed",
        target=job.target.platform_label,
        job=job.job_id,
        stage="build",
        message=exc.summary,
        level="error",
        extra=exc.to_dict(),
    )
    return BuildResult(job=job, status="failed", error=exc.summary, error_code=exc.code)


def _execute(
    job: BuildJob,
    sandbox: ExecutionSandbox,
    builder: Builder,
    provisioner: ToolchainProvisioner,
    collect_dir: Path,
) -> Path:
    try:
        sandbox.prepare()
        provisioner.provision(job.target_triple, sandbox)
        command = builder.compile_command(job)
        result = sandbox.run(command)
        if result.returncode != 0:
            raise BuildError(
                "Compiler exited with a nonzero status.",
                context={
                    "job": job.job_id,
                    "triple": job.target_triple,
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[:2000],
                },
            )
        try:
            payload = sandbox.read_file(job.output_path)
        except FileNotFoundError as exc:
            raise BuildError(
                "Compiler did not produce the expected output file.",
                hint="Check the builder's output path for this toolchain.",
                context={"job": job.job_id, "output_path": str(job.output_path)},
            ) from exc
        return collect_artifact(
            builder_name=builder.name,
            job=job,
            payload=payload,
            command=command,
            collect_dir=collect_dir,
        )
    except OSError as exc:
        raise SandboxError(
            "Filesystem error while running build job.",
            context={"job": job.job_id, "error": str(exc)},
        ) from exc
