"""
SvcHarness Cleanup Coordination

Guarantees a run's teardown happens exactly once on every exit path:
normal return, a harness error, an unexpected exception, a handled
signal, or interpreter exit.
"""

import atexit
import shutil
import signal
import sys
from types import FrameType, TracebackType
from typing import Any, Dict, Optional, TextIO, Type

from svcharness.errors import HarnessError, HarnessInterrupted
from svcharness.logging import EXIT_RUNTIME_ERROR, EXIT_SIGNAL_BASE, get_logger, log_extra
from svcharness.models import HarnessRun

logger = get_logger(__name__)

HANDLED_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP")


class CleanupCoordinator:
    """
    Context manager owning a run's teardown.

    Enter it before any resource is allocated. On exit (or on a handled
    signal, or at interpreter exit) fire() runs once and, in order: kills
    the service, streams its log to ``out``, removes the workspace, prints
    the run summary. The recorded exit code is left on the run for the
    caller to exit with.

    Example:
        with CleanupCoordinator(run):
            run.workspace = Workspace.create(...)
            ...
        sys.exit(run.exit_code)
    """

    def __init__(self, run: HarnessRun, out: Optional[TextIO] = None) -> None:
        self.run = run
        self.out = out
        self.fired = False
        self._closing = False
        self._original_handlers: Dict[int, Any] = {}

    # ------------------------------------------------------------------ scope
    def __enter__(self) -> "CleanupCoordinator":
        atexit.register(self.fire)
        try:
            self._install_signal_handlers()
        except BaseException:
            # A signal landed while arming; __exit__ will not run for us.
            self._closing = True
            self._restore_signal_handlers()
            atexit.unregister(self.fire)
            raise
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        self._closing = True
        suppress = False
        if isinstance(exc, HarnessInterrupted):
            self.run.record_outcome(str(exc), EXIT_SIGNAL_BASE + exc.signum)
            suppress = True
        elif isinstance(exc, HarnessError):
            logger.error(
                "run_aborted",
                extra={"error": str(exc), "error_category": exc.category, **exc.metadata},
            )
            self.run.record_outcome(exc.summary, exc.exit_code)
            suppress = True
        elif isinstance(exc, SystemExit):
            code = exc.code if isinstance(exc.code, int) else EXIT_RUNTIME_ERROR
            self.run.record_outcome(f"exited with code {code}", code)
        elif isinstance(exc, KeyboardInterrupt):
            # Only reachable when handlers could not be installed (non-main thread)
            self.run.record_outcome("interrupted by SIGINT", EXIT_SIGNAL_BASE + signal.SIGINT)
        elif exc is not None:
            logger.exception("run_crashed", exc_info=(exc_type, exc, tb))
            self.run.record_outcome(f"internal error: {exc!r}", EXIT_RUNTIME_ERROR)

        try:
            self.fire()
        finally:
            atexit.unregister(self.fire)
            self._restore_signal_handlers()
        return suppress

    # ---------------------------------------------------------------- signals
    def _install_signal_handlers(self) -> None:
        for name in HANDLED_SIGNALS:
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                self._original_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except (ValueError, OSError):
                # Not the main thread, or the platform refuses the signal
                continue

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._original_handlers.items():
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError):
                continue
        self._original_handlers.clear()

    def _handle_signal(self, signum: int, frame: Optional[FrameType]) -> None:
        # Signals arriving once teardown has begun are ignored.
        if self.fired or self._closing:
            return
        name = signal.Signals(signum).name
        logger.warning("signal_received", extra={"signal": name})
        raise HarnessInterrupted(signum, name)

    # --------------------------------------------------------------- teardown
    def fire(self) -> int:
        """Tear the run down. Only the first call does anything."""
        if self.fired:
            return self.run.exit_code
        self.fired = True
        out = self.out or sys.stdout

        if self.run.summary is None:
            self.run.record_outcome("harness exited before recording an outcome", EXIT_RUNTIME_ERROR)

        self._stop_service()
        self._emit_log(out)
        self._remove_workspace()
        out.write(f"\nsvcharness: {self.run.summary}\n")
        out.flush()
        logger.info(
            "run_finished",
            extra=log_extra(run_id=self.run.run_id, summary=self.run.summary, exit_code=self.run.exit_code),
        )
        return self.run.exit_code

    def _stop_service(self) -> None:
        process = self.run.process
        if process is None:
            return
        try:
            process.kill()
        except OSError as e:
            logger.error("service_kill_failed", extra=log_extra(service_pid=process.pid, error=str(e)))
        else:
            logger.info("service_stopped", extra=log_extra(service_pid=process.pid, returncode=process.returncode))

    def _emit_log(self, out: TextIO) -> None:
        workspace = self.run.workspace
        if workspace is None or not workspace.log_path.exists():
            return
        out.write(f"--- service log ({workspace.log_path}) ---\n")
        try:
            with open(workspace.log_path, "r", encoding="utf-8", errors="replace") as handle:
                shutil.copyfileobj(handle, out)
        except OSError as e:
            logger.error("service_log_unreadable", extra={"error": str(e)})
        out.write("--- end of service log ---\n")
        out.flush()

    def _remove_workspace(self) -> None:
        workspace = self.run.workspace
        if workspace is None:
            return
        try:
            workspace.remove()
        except OSError as e:
            logger.error("workspace_remove_failed", extra={"workspace": str(workspace.root), "error": str(e)})
