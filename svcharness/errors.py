"""
SvcHarness Error Hierarchy

Base error and specific error types for all harness phases.
Errors carry metadata for structured logging plus the summary line and
exit code the run ends with when they abort it.
"""

from typing import Any, Dict, Optional

from svcharness.logging import (
    EXIT_BOOT_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_DEP_MISSING,
    EXIT_RUNTIME_ERROR,
    EXIT_SETUP_ERROR,
)


class HarnessError(RuntimeError):
    """
    Base error for harness components. Carries metadata for structured logging.

    Attributes:
        category: Error category for classification (e.g., "boot", "workspace")
        retryable: Whether the operation can be retried
        exit_code: Exit code the harness terminates with
        summary: One-line run summary (defaults to the message)
        metadata: Additional context for logging and debugging
    """

    category: str = "runtime"
    retryable: bool = False
    exit_code: int = EXIT_RUNTIME_ERROR

    def __init__(
        self,
        message: str,
        *,
        summary: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.summary = summary or message
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


class ConfigError(HarnessError):
    """Raised when configuration is invalid or missing."""

    category = "config"
    exit_code = EXIT_CONFIG_ERROR


class DependencyMissingError(HarnessError):
    """Raised when local tooling the run depends on is not installed."""

    category = "environment"
    exit_code = EXIT_DEP_MISSING


class WorkspaceError(HarnessError):
    """Raised when the per-run workspace cannot be created."""

    category = "workspace"
    exit_code = EXIT_SETUP_ERROR


class CertificateError(HarnessError):
    """Raised when TLS material cannot be generated."""

    category = "certificate"
    exit_code = EXIT_SETUP_ERROR


class SpawnError(HarnessError):
    """Raised when the service process cannot be started."""

    category = "spawn"
    exit_code = EXIT_SETUP_ERROR


class BootFailedError(HarnessError):
    """Raised when the service never became ready."""

    category = "boot"
    exit_code = EXIT_BOOT_FAILURE


class HarnessInterrupted(BaseException):
    """
    Raised from the signal handler to unwind the run.

    Derives from BaseException like KeyboardInterrupt so that
    ``except Exception`` blocks along the way cannot swallow it.
    """

    def __init__(self, signum: int, name: str) -> None:
        super().__init__(f"interrupted by {name}")
        self.signum = signum
        self.name = name
