"""
SvcHarness Readiness Polling

Drives the boot state machine: probe the control-plane port until it
accepts connections, then provision credentials, retrying transient
failures until the service is ready, has died, or the timeout expires.
"""

import socket
import time
from typing import Callable, Optional, Protocol

from svcharness.logging import get_logger, log_context, log_extra
from svcharness.models import (
    PollResult,
    ProbeResult,
    ProvisionOutcome,
    ProvisionStatus,
    ReadinessState,
    boot_failed_summary,
    boot_timeout_summary,
    missing_dependency_summary,
    unknown_error_summary,
)

logger = get_logger(__name__)

# Floor for per-attempt timeouts; a zero socket timeout would mean non-blocking.
MIN_ATTEMPT_SECONDS = 0.1


class Pollable(Protocol):
    def poll(self) -> Optional[int]: ...


def probe_control_plane(host: str, port: int, timeout: float = 1.0) -> ProbeResult:
    """
    Try one TCP connection to the control-plane port.

    Only a refused connection means "still booting"; a successful connect or
    any other transport error (reset, timeout) counts as reachable.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            pass
    except ConnectionRefusedError:
        return ProbeResult.REFUSED
    except OSError as e:
        logger.debug("probe_error", extra={"error": str(e)})
    return ProbeResult.REACHABLE


class ReadinessPoller:
    """
    Waits for a service to become ready.

    Args:
        probe: one control-plane connection attempt, given the seconds left
        provision: one credential provisioning attempt, given the seconds left
        timeout: overall bound in seconds; elapsed == timeout is still allowed
        interval: sleep between attempts
        clock: monotonic time source
        sleep: sleep function
        on_tick: called once per sleep, for progress output
    """

    def __init__(
        self,
        *,
        probe: Callable[[float], ProbeResult],
        provision: Callable[[float], ProvisionOutcome],
        timeout: float = 200.0,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        on_tick: Optional[Callable[[], None]] = None,
    ) -> None:
        self.probe = probe
        self.provision = provision
        self.timeout = timeout
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.on_tick = on_tick

    def _pause(self) -> None:
        if self.on_tick is not None:
            self.on_tick()
        self.sleep(self.interval)

    def _transition(self, old: ReadinessState, new: ReadinessState) -> ReadinessState:
        if old != new:
            logger.info("readiness_transition", extra=log_extra(state=new.value, previous=old.value))
        return new

    def wait(self, process: Pollable) -> PollResult:
        start = self.clock()
        state = ReadinessState.BOOTING
        attempts = 0

        def elapsed() -> float:
            return self.clock() - start

        def failed(summary: str) -> PollResult:
            self._transition(state, ReadinessState.FAILED)
            logger.error("boot_failed", extra=log_extra(state=ReadinessState.FAILED.value, reason=summary))
            return PollResult(ReadinessState.FAILED, summary, attempts, elapsed())

        while True:
            with log_context(state=state.value):
                # A dead process wins over any probe result and over the timeout.
                returncode = process.poll()
                if returncode is not None:
                    return failed(boot_failed_summary(returncode))

                if elapsed() > self.timeout:
                    return failed(boot_timeout_summary(self.timeout))

                attempts += 1
                if state == ReadinessState.BOOTING:
                    if self.probe(self._remaining(elapsed())) == ProbeResult.REFUSED:
                        self._pause()
                        continue
                    state = self._transition(state, ReadinessState.REACHABLE_UNAUTHENTICATED)

            with log_context(state=state.value):
                outcome = self.provision(self._remaining(elapsed()))
                # An attempt may not stretch the boot past its bound, whatever it reported.
                if elapsed() > self.timeout:
                    return failed(boot_timeout_summary(self.timeout))
                if outcome.status == ProvisionStatus.READY:
                    self._transition(state, ReadinessState.READY)
                    return PollResult(ReadinessState.READY, None, attempts, elapsed())
                if outcome.status == ProvisionStatus.TRANSIENT:
                    logger.debug("provision_not_ready", extra={"detail": outcome.detail.strip()})
                    state = self._transition(state, ReadinessState.BOOTING)
                    self._pause()
                    continue
                if outcome.status == ProvisionStatus.MISSING_DEPENDENCY:
                    return failed(missing_dependency_summary(outcome.detail))
                return failed(unknown_error_summary(outcome.detail))

    def _remaining(self, elapsed: float) -> float:
        return max(self.timeout - elapsed, MIN_ATTEMPT_SECONDS)
