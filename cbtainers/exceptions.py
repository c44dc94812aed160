"""Custom exception hierarchy for cbtainers.

All cbtainers-specific exceptions inherit from CbtainersError, enabling
callers to catch every provisioning failure with a single except clause.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cbtainers.ledger import CleanupAction, CleanupLedger

_SECRET_FLAGS = frozenset({
    "--password",
    "--cluster-password",
    "--server-add-password",
})


def redact_argv(argv: Sequence[str]) -> list[str]:
    """Replace the value following any password flag with ``***``."""
    redacted: list[str] = []
    hide_next = False
    for arg in argv:
        redacted.append("***" if hide_next else arg)
        hide_next = arg in _SECRET_FLAGS
    return redacted


class CbtainersError(Exception):
    """Base exception for all cbtainers errors."""


class ConfigurationError(CbtainersError):
    """Raised for invalid configuration or missing required settings."""


class FabricError(CbtainersError):
    """Raised when the compute fabric rejects an operation."""


class ResourceNotFound(FabricError):
    """Raised when a unit or network does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name} not found")


class ResourceConflict(FabricError):
    """Raised when a unit or network with the same name already exists."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name} already exists")


class ImagePullFailed(FabricError):
    """Raised when an image cannot be pulled."""

    def __init__(self, image: str, reason: str) -> None:
        self.image = image
        self.reason = reason
        super().__init__(f"Failed to pull {image}: {reason}")


class ExecFailed(CbtainersError):
    """Raised when a remote command exits with a non-zero status."""

    def __init__(
        self,
        argv: Sequence[str],
        exit_code: int,
        stderr: str,
        stdout: str = "",
    ) -> None:
        self.argv = tuple(argv)
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            f"{' '.join(redact_argv(argv))} failed (exit {exit_code}): {stderr.strip()}"
        )


class ExecCancelled(CbtainersError):
    """Raised when a remote command is abandoned before its output drained."""

    def __init__(self, argv: Sequence[str], reason: str = "cancelled") -> None:
        self.argv = tuple(argv)
        self.reason = reason
        super().__init__(f"{' '.join(redact_argv(argv))} {reason}")


class ServiceNotReady(CbtainersError):
    """Raised when a readiness probe does not answer with HTTP 200."""

    def __init__(self, url: str, status: int | None = None) -> None:
        self.url = url
        self.status = status
        detail = f"HTTP {status}" if status is not None else "unreachable"
        super().__init__(f"{url} not ready: {detail}")


class TeardownFailed(CbtainersError):
    """Raised when one or more cleanup actions failed.

    Every action is attempted; ``failures`` pairs each failed action with
    the exception it raised.
    """

    def __init__(self, failures: Sequence[tuple[CleanupAction, BaseException]]) -> None:
        self.failures = tuple(failures)
        details = "; ".join(f"{action}: {exc}" for action, exc in self.failures)
        super().__init__(f"{len(self.failures)} cleanup action(s) failed: {details}")


class ProvisioningFailed(CbtainersError):
    """Raised when a provisioning step fails.

    The ledger holds every cleanup action registered before the failure;
    the caller is responsible for running it.
    """

    def __init__(self, step: str, ledger: CleanupLedger, cause: BaseException) -> None:
        self.step = step
        self.ledger = ledger
        super().__init__(f"Provisioning failed at {step}: {cause}")
