"""Toolchain provisioner interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from shipmatrix.errors import ProvisionError, ValidationError
from shipmatrix.models import CommandSpec
from shipmatrix.sandbox.base import ExecutionSandbox

PROVISIONERS = ("rustup", "none")


class ToolchainProvisioner(Protocol):
    name: str

    def provision(self, triple: str, sandbox: ExecutionSandbox) -> None:
        """Install or activate the toolchain for *triple*; raise ProvisionError if unavailable."""


@dataclass(slots=True)
class RustupProvisioner:
    name: str = "rustup"
    tool: str = "rustup"
    toolchain: str = "stable"

    def provision(self, triple: str, sandbox: ExecutionSandbox) -> None:
        command = CommandSpec(argv=(self.tool, "target", "add", "--toolchain", self.toolchain, triple))
        result = sandbox.run(command)
        if result.returncode != 0:
            raise ProvisionError(
                "Toolchain target is unavailable.",
                hint=f"Check that `{self.tool}` can install {triple}.",
                context={
                    "triple": triple,
                    "toolchain": self.toolchain,
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[:2000],
                },
            )


@dataclass(slots=True)
class NullProvisioner:
    """For toolchains that cross-compile without extra setup."""

    name: str = "none"

    def provision(self, triple: str, sandbox: ExecutionSandbox) -> None:
        _ = triple, sandbox


def get_provisioner(name: str) -> ToolchainProvisioner:
    if name == "rustup":
        return RustupProvisioner()
    if name == "none":
        return NullProvisioner()
    raise ValidationError(
        "Unsupported toolchain provisioner.",
        hint=f"Choose one of: {', '.join(PROVISIONERS)}.",
        context={"provisioner": name},
    )
