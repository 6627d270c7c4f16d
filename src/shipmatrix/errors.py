"""Typed release error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used in run reports."""

    VALIDATION = "E_VALIDATION"
    PROVISION = "E_PROVISION"
    BUILD = "E_BUILD"
    SANDBOX = "E_SANDBOX"
    MERGE = "E_MERGE"
    PUBLISH = "E_PUBLISH"


class MergeErrorKind(StrEnum):
    MISSING_INPUT = "MissingInput"
    DUPLICATE_ARCHITECTURE = "DuplicateArchitecture"
    INVALID_BINARY_FORMAT = "InvalidBinaryFormat"
    OUTPUT_UNWRITABLE = "OutputUnwritable"


class PublishErrorKind(StrEnum):
    UNREACHABLE = "Unreachable"
    NAME_COLLISION = "NameCollision"


class ShipmatrixError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    @property
    def summary(self) -> str:
        """First line of the message, without hint or context."""
        return super().__str__()

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": self.summary,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(ShipmatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class ProvisionError(ShipmatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PROVISION, hint=hint, context=context)


class BuildError(ShipmatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BUILD, hint=hint, context=context)


class SandboxError(ShipmatrixError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.SANDBOX, hint=hint, context=context)


class MergeError(ShipmatrixError):
    """Universal merge rejected; ``kind`` says why."""

    kind: MergeErrorKind

    def __init__(
        self,
        message: str,
        *,
        kind: MergeErrorKind,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.MERGE,
            hint=hint,
            context={"kind": kind.value, **dict(context or {})},
        )
        self.kind = kind


class PublishError(ShipmatrixError):
    """Upload rejected; ``kind`` says why."""

    kind: PublishErrorKind

    def __init__(
        self,
        message: str,
        *,
        kind: PublishErrorKind,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.PUBLISH,
            hint=hint,
            context={"kind": kind.value, **dict(context or {})},
        )
        self.kind = kind


__all__ = [
    "BuildError",
    "ErrorCode",
    "MergeError",
    "MergeErrorKind",
    "ProvisionError",
    "PublishError",
    "PublishErrorKind",
    "SandboxError",
    "ShipmatrixError",
    "ValidationError",
]
