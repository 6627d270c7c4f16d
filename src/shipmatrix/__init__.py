"""Public package entrypoint for the multi-platform release builder."""

from .errors import (
    BuildError,
    ErrorCode,
    MergeError,
    MergeErrorKind,
    ProvisionError,
    PublishError,
    PublishErrorKind,
    SandboxError,
    ShipmatrixError,
    ValidationError,
)
from .matrix import DEFAULT_TARGETS, ReleaseConfig, load_config, parse_config
from .merger import merge
from .models import (
    BuildJob,
    BuildResult,
    MergeRequest,
    PublishedArtifact,
    RunReport,
    TargetReport,
    TargetSpec,
)
from .publish import ArtifactPublisher, HttpBlobStore, LocalBlobStore, MemoryBlobStore
from .release import run_release
from .scheduler import Scheduler
from .trigger import Trigger

__all__ = [
    "ArtifactPublisher",
    "BuildError",
    "BuildJob",
    "BuildResult",
    "DEFAULT_TARGETS",
    "ErrorCode",
    "HttpBlobStore",
    "LocalBlobStore",
    "MemoryBlobStore",
    "MergeError",
    "MergeErrorKind",
    "MergeRequest",
    "ProvisionError",
    "PublishError",
    "PublishErrorKind",
    "PublishedArtifact",
    "ReleaseConfig",
    "RunReport",
    "SandboxError",
    "Scheduler",
    "ShipmatrixError",
    "TargetReport",
    "TargetSpec",
    "Trigger",
    "ValidationError",
    "load_config",
    "merge",
    "parse_config",
    "run_release",
]
