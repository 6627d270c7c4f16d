"""Copy a compiled binary out of its sandbox, with a provenance sidecar."""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path

from shipmatrix.models import BuildJob, CommandSpec


def collect_artifact(
    *,
    builder_name: str,
    job: BuildJob,
    payload: bytes,
    command: CommandSpec,
    collect_dir: Path,
) -> Path:
    target_dir = collect_dir / job.job_id
    target_dir.mkdir(parents=True, exist_ok=True)
    output_path = target_dir / job.output_path.name
    metadata_path = target_dir / f"{job.output_path.name}.json"

    output_path.write_bytes(payload)
    os.chmod(output_path, 0o755)

    metadata = {
        "builder": builder_name,
        "job": job.job_id,
        "platform": job.target.platform,
        "architecture": job.architecture,
        "triple": job.target_triple,
        "command": list(command.argv),
        "env": dict(sorted(command.env.items())),
        "sha256": hashlib.sha256(payload).hexdigest(),
        "size": len(payload),
    }
    metadata_path.write_text(
        json.dumps(metadata, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return output_path
