"""
SvcHarness Domain Models

Value types shared by the harness phases and the HarnessRun aggregate
that carries one invocation's state from start to cleanup.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from svcharness.logging import EXIT_RUNTIME_ERROR, get_logger

if TYPE_CHECKING:
    from svcharness.config import Config
    from svcharness.supervisor import ServiceProcess
    from svcharness.workspace import Workspace

logger = get_logger(__name__)


class TransportMode(str, Enum):
    """Transport the service exposes to the test suite."""
    PLAIN = "plain"
    SECURE = "secure"

    @property
    def scheme(self) -> str:
        return "https" if self is TransportMode.SECURE else "http"


class ReadinessState(str, Enum):
    """Boot state machine states."""
    BOOTING = "booting"
    REACHABLE_UNAUTHENTICATED = "reachable_unauthenticated"
    READY = "ready"
    FAILED = "failed"


class ProbeResult(str, Enum):
    """Outcome of one control-plane connection attempt."""
    REFUSED = "refused"
    REACHABLE = "reachable"


class ProvisionStatus(str, Enum):
    """Classification of one credential provisioning attempt."""
    READY = "ready"
    TRANSIENT = "transient"
    MISSING_DEPENDENCY = "missing_dependency"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProvisionOutcome:
    """Tagged result of a provisioning attempt; detail is the tool output, verbatim."""
    status: ProvisionStatus
    detail: str = ""

    @classmethod
    def ready(cls) -> "ProvisionOutcome":
        return cls(ProvisionStatus.READY)

    @classmethod
    def transient(cls, detail: str) -> "ProvisionOutcome":
        return cls(ProvisionStatus.TRANSIENT, detail)

    @classmethod
    def missing_dependency(cls, detail: str) -> "ProvisionOutcome":
        return cls(ProvisionStatus.MISSING_DEPENDENCY, detail)

    @classmethod
    def unknown(cls, detail: str) -> "ProvisionOutcome":
        return cls(ProvisionStatus.UNKNOWN, detail)


@dataclass(frozen=True)
class BindAddress:
    """Loopback address the service binds every listener to."""
    host: str

    def __str__(self) -> str:
        return self.host


@dataclass
class PollResult:
    """Final state of a readiness wait."""
    state: ReadinessState
    summary: Optional[str] = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def ready(self) -> bool:
        return self.state == ReadinessState.READY


# Run summaries
SUMMARY_TESTS_PASS = "tests pass"
SUMMARY_TESTS_FAILURE = "tests failure"


def boot_failed_summary(returncode: Optional[int]) -> str:
    return f"failed to boot (service exited with code {returncode})"


def boot_timeout_summary(seconds: float) -> str:
    return f"boot timeout after {seconds:g} seconds"


def missing_dependency_summary(detail: str) -> str:
    return f"missing dependency: {detail.strip()}"


def unknown_error_summary(detail: str) -> str:
    return f"unknown error: {detail.strip()}"


@dataclass
class HarnessRun:
    """
    Everything one invocation owns.

    Phases fill in address, workspace and process as they go; the cleanup
    coordinator releases them. Summary and exit code are set once through
    record_outcome().
    """
    config: "Config"
    pid: int
    transport: TransportMode = TransportMode.PLAIN
    passthrough: List[str] = field(default_factory=list)
    address: Optional[BindAddress] = None
    workspace: Optional["Workspace"] = None
    process: Optional["ServiceProcess"] = None
    summary: Optional[str] = None
    exit_code: int = EXIT_RUNTIME_ERROR

    @property
    def run_id(self) -> str:
        return f"svcharness-{self.pid}"

    @property
    def secure(self) -> bool:
        return self.transport == TransportMode.SECURE

    @property
    def port(self) -> int:
        return self.config.service_port(self.transport)

    @property
    def url(self) -> str:
        if self.address is None:
            raise RuntimeError("Bind address not allocated yet")
        return f"{self.transport.scheme}://{self.address.host}:{self.port}"

    @property
    def finished(self) -> bool:
        return self.summary is not None

    def record_outcome(self, summary: str, exit_code: int) -> bool:
        """Record the final summary and exit code. First writer wins."""
        if self.summary is not None:
            logger.debug(
                "outcome_already_recorded",
                extra={"kept": self.summary, "ignored": summary},
            )
            return False
        self.summary = summary
        self.exit_code = exit_code
        return True
