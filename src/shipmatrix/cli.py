"""Command line for release runs and universal-binary tooling.

Usage:
    shipmatrix run --config matrix.json --source . --revision "$SHA"
    shipmatrix merge -o out/tool --arch x64=tool-x64 --arch arm64=tool-arm64
    shipmatrix inspect out/tool
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from shipmatrix.errors import ShipmatrixError, ValidationError
from shipmatrix.macho import MachOFormatError, describe
from shipmatrix.matrix import load_config
from shipmatrix.merger import merge
from shipmatrix.models import UNIVERSAL_CONSTITUENTS, BuildJob, BuildResult, MergeRequest, TargetSpec
from shipmatrix.observability import StructuredLogger
from shipmatrix.publish import BlobStore, HttpBlobStore, LocalBlobStore
from shipmatrix.release import run_release
from shipmatrix.sandbox import SANDBOXES, get_sandbox_factory
from shipmatrix.trigger import Trigger

TOKEN_ENV = "SHIPMATRIX_STORE_TOKEN"


def cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    source_dir = Path(args.source).resolve()
    output_dir = Path(args.out).resolve()
    trigger = Trigger(
        revision=args.revision,
        changed_paths=tuple(args.changed_path) if args.changed_path else None,
    )
    sandbox_factory = None
    if args.sandbox:
        sandbox_factory = get_sandbox_factory(
            args.sandbox,
            source_dir=source_dir,
            container_image=config.container_image,
        )

    logger = StructuredLogger()
    report = run_release(
        config,
        trigger,
        source_dir=source_dir,
        output_dir=output_dir,
        store=_store_from_args(args, output_dir),
        sandbox_factory=sandbox_factory,
        logger=logger,
    )
    logger.to_json_lines(output_dir / "logs.jsonl")
    if report.skipped:
        print(f"skipped {report.revision}: only ignored paths changed")
        return report.exit_code
    for target in report.targets:
        if target.artifact is not None:
            print(f"published {target.target.platform_label}: {target.artifact.name}")
        else:
            print(f"failed {target.target.platform_label} [{target.stage}] {target.error_code}")
    print(f"report: {output_dir / 'report.json'}")
    return report.exit_code


def cmd_merge(args: argparse.Namespace) -> int:
    output = Path(args.output).resolve()
    spec = TargetSpec(platform="macos", architecture="universal", toolchain_triple="apple-darwin")
    triples = dict(UNIVERSAL_CONSTITUENTS["macos"])
    counts: dict[str, int] = {}
    inputs: list[BuildResult] = []
    for item in args.arch:
        architecture, path = _parse_arch(item)
        slot = counts.get(architecture, 0)
        counts[architecture] = slot + 1
        artifact = Path(path).resolve()
        job = BuildJob(
            target=spec,
            architecture=architecture,  # type: ignore[arg-type]
            target_triple=triples[architecture],
            working_directory=artifact.parent,
            output_path=artifact,
            slot=slot,
        )
        inputs.append(BuildResult(job=job, status="success", artifact_path=artifact))

    merged = merge(
        MergeRequest(
            platform="macos",
            inputs=tuple(inputs),
            output_name=output.name,
            output_dir=output.parent,
            label=spec.platform_label,
        )
    )
    print(f"{merged.path} sha256={merged.sha256}")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        slices = describe(path.read_bytes())
    except (MachOFormatError, OSError) as exc:
        print(f"error: {path}: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(slices, indent=2))
    return 0


def _parse_arch(item: str) -> tuple[str, str]:
    architecture, sep, path = item.partition("=")
    if not sep or architecture not in ("x64", "arm64") or not path:
        raise ValidationError(
            "Invalid --arch value.",
            hint="Use ARCH=PATH with ARCH one of x64, arm64.",
            context={"value": item},
        )
    return architecture, path


def _store_from_args(args: argparse.Namespace, output_dir: Path) -> BlobStore:
    if args.store_url:
        return HttpBlobStore(base_url=args.store_url, token=os.environ.get(TOKEN_ENV))
    if args.store:
        return LocalBlobStore(root=Path(args.store).resolve())
    return LocalBlobStore(root=output_dir / "store")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shipmatrix", description="Multi-platform release artifact builder")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Build, merge and publish every target in the matrix")
    run_p.add_argument("--config", required=True, help="Matrix JSON file")
    run_p.add_argument("--source", default=".", help="Source tree to build")
    run_p.add_argument("--revision", required=True, help="Source revision being released")
    run_p.add_argument(
        "--changed-path",
        action="append",
        default=[],
        help="Path changed by the triggering push (repeatable)",
    )
    run_p.add_argument("--out", default="shipmatrix-out", help="Output directory")
    run_p.add_argument("--sandbox", choices=SANDBOXES, help="Override the matrix sandbox")
    run_p.add_argument("--store", help="Local blob store directory")
    run_p.add_argument("--store-url", help=f"HTTP blob store base URL (token from ${TOKEN_ENV})")

    merge_p = sub.add_parser("merge", help="Merge thin Mach-O executables into a universal binary")
    merge_p.add_argument("-o", "--output", required=True, help="Output file")
    merge_p.add_argument("--arch", action="append", required=True, metavar="ARCH=PATH")

    inspect_p = sub.add_parser("inspect", help="List the architecture slices of a Mach-O file")
    inspect_p.add_argument("file")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    handlers = {"run": cmd_run, "merge": cmd_merge, "inspect": cmd_inspect}
    try:
        return handlers[args.command](args)
    except ShipmatrixError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
