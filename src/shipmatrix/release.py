"""Release pipeline: schedule builds, merge universal targets, publish artifacts."""

from __future__ import annotations

import json
from pathlib import Path

from shipmatrix.builders import get_builder
from shipmatrix.errors import ErrorCode, MergeError, PublishError
from shipmatrix.matrix import ReleaseConfig
from shipmatrix.merger import merge
from shipmatrix.models import (
    BuildResult,
    MergeRequest,
    RunReport,
    TargetReport,
    TargetSpec,
)
from shipmatrix.observability import StructuredLogger
from shipmatrix.publish import ArtifactPublisher, BlobStore
from shipmatrix.sandbox import get_sandbox_factory
from shipmatrix.sandbox.base import SandboxFactory
from shipmatrix.scheduler import Scheduler
from shipmatrix.toolchain import get_provisioner
from shipmatrix.trigger import Trigger


def run_release(
    config: ReleaseConfig,
    trigger: Trigger,
    *,
    source_dir: Path,
    output_dir: Path,
    store: BlobStore,
    sandbox_factory: SandboxFactory | None = None,
    logger: StructuredLogger | None = None,
) -> RunReport:
    """Run one release for *trigger.revision* and write ``output_dir/report.json``.

    A failure in one target never stops the others; every target ends up in
    the report as either ``published`` or ``failed`` with the failing stage.
    """
    log = logger or StructuredLogger()
    report = RunReport(revision=trigger.revision)
    if not trigger.should_run(config.ignore_paths):
        log.log(
            operation="release_skipped",
            target=None,
            job=None,
            stage=None,
            message="Every changed path is ignored; nothing to release.",
            extra={"revision": trigger.revision, "ignore": list(config.ignore_paths)},
        )
        report.skipped = True
        _write_report(output_dir, report, log)
        return report

    builder = get_builder(config.builder)
    scheduler = Scheduler(
        sandbox_factory=sandbox_factory
        or get_sandbox_factory(
            config.sandbox,
            source_dir=source_dir,
            container_image=config.container_image,
        ),
        builder=builder,
        provisioner=get_provisioner(config.provisioner),
        workspace=output_dir / "work",
        collect_dir=output_dir / "collect",
        binary_name=config.binary_name,
        max_workers=config.max_workers,
        logger=log,
    )
    publisher = ArtifactPublisher(
        store=store,
        binary_name=config.binary_name,
        revision=trigger.revision,
        staging_dir=output_dir / "dist",
        packaging=config.packaging,
    )

    log.log(
        operation="release_start",
        target=None,
        job=None,
        stage="schedule",
        message="Starting release.",
        extra={"revision": trigger.revision, "targets": [spec.platform_label for spec in config.targets]},
    )
    built = scheduler.schedule(config.targets)
    for spec, results in built.items():
        report.targets.append(
            _finish_target(
                spec,
                results,
                binary_name=config.binary_name,
                merge_dir=output_dir / "merged" / spec.platform,
                publisher=publisher,
                logger=log,
            )
        )

    log.log(
        operation="release_complete",
        target=None,
        job=None,
        stage=None,
        message="Release finished.",
        level="info" if report.succeeded else "error",
        extra={
            "published": [artifact.name for artifact in report.published],
            "failed": [target.target.platform_label for target in report.failed_targets],
        },
    )
    _write_report(output_dir, report, log)
    return report


def _finish_target(
    spec: TargetSpec,
    results: tuple[BuildResult, ...],
    *,
    binary_name: str,
    merge_dir: Path,
    publisher: ArtifactPublisher,
    logger: StructuredLogger,
) -> TargetReport:
    label = spec.platform_label
    failed = [result for result in results if not result.succeeded]
    if failed:
        # A universal target with a failed constituent never reaches the merger.
        return TargetReport(
            target=spec,
            status="failed",
            results=results,
            stage="build",
            error_code=failed[0].error_code,
            errors=tuple(f"{result.job.job_id}: {result.error}" for result in failed),
        )

    if spec.is_universal:
        try:
            merged = merge(
                MergeRequest(
                    platform=spec.platform,
                    inputs=results,
                    output_name=binary_name,
                    output_dir=merge_dir,
                    label=label,
                )
            )
        except MergeError as exc:
            logger.log(
                operation="merge_failed",
                target=label,
                job=None,
                stage="merge",
                message=exc.summary,
                level="error",
                extra=exc.to_dict(),
            )
            return TargetReport(
                target=spec,
                status="failed",
                results=results,
                stage="merge",
                error_code=exc.code,
                errors=(str(exc),),
                merge_attempted=True,
            )
        logger.log(
            operation="merge_complete",
            target=label,
            job=None,
            stage="merge",
            message="Merged universal binary.",
            extra={"path": str(merged.path), "sha256": merged.sha256},
        )
        artifact_path = merged.path
    else:
        artifact_path = results[0].artifact_path
        if artifact_path is None:
            return TargetReport(
                target=spec,
                status="failed",
                results=results,
                stage="build",
                error_code=ErrorCode.BUILD.value,
                errors=(f"{results[0].job.job_id}: build reported success without an artifact",),
            )

    try:
        published = publisher.publish(artifact_path, label)
    except PublishError as exc:
        logger.log(
            operation="publish_failed",
            target=label,
            job=None,
            stage="publish",
            message=exc.summary,
            level="error",
            extra=exc.to_dict(),
        )
        return TargetReport(
            target=spec,
            status="failed",
            results=results,
            stage="publish",
            error_code=exc.code,
            errors=(str(exc),),
            merge_attempted=spec.is_universal,
        )

    logger.log(
        operation="publish_complete",
        target=label,
        job=None,
        stage="publish",
        message="Published artifact.",
        extra={"name": published.name, "sha256": published.sha256},
    )
    return TargetReport(
        target=spec,
        status="published",
        results=results,
        merge_attempted=spec.is_universal,
        artifact=published,
    )


def _write_report(output_dir: Path, report: RunReport, logger: StructuredLogger) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    payload = report.to_dict()
    payload["logs"] = list(logger.records)
    report_path = output_dir / "report.json"
    report_path.write_text(
        json.dumps(payload, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return report_path


__all__ = ["run_release"]
