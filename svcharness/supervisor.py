"""
SvcHarness Process Supervisor

Builds the service command line, launches the service through a
per-run alias and tracks the resulting process.
"""

import ctypes
import os
import shutil
import signal
import subprocess
import sys
from pathlib import Path
from typing import IO, Callable, List, Optional

from svcharness.config import Config
from svcharness.errors import SpawnError
from svcharness.logging import get_logger, log_extra
from svcharness.models import BindAddress, HarnessRun, TransportMode
from svcharness.workspace import Workspace

logger = get_logger(__name__)

_PR_SET_PDEATHSIG = 1


def build_service_args(
    address: BindAddress,
    workspace: Workspace,
    transport: TransportMode,
    config: Config,
) -> List[str]:
    """
    Flags the service is started with; every listener binds to ``address``.
    """
    host = address.host
    args = [
        "--listen-address", host,
        "--rpc-address", host,
        "--api-address", host,
        "--prometheus-address", host,
        "--seed-provider-parameters", f"seeds={host}",
        "--workdir", str(workspace.data_dir),
        "--enforce-authorization", "1",
        "--http-address", host,
    ]
    if transport == TransportMode.SECURE:
        args += [
            "--https-port", str(config.https_port),
            "--tls-keyfile", str(workspace.key_path),
            "--tls-certfile", str(workspace.cert_path),
        ]
    else:
        args += ["--http-port", str(config.http_port)]
    args += list(config.service_extra_args)
    return args


def resolve_service_binary(config: Config) -> Path:
    """Locate the real service executable from a path or a name on PATH."""
    if not config.service_binary:
        raise SpawnError("No service binary configured (set SVCHARNESS_SERVICE_BINARY)")
    found = shutil.which(config.service_binary)
    if found is None:
        raise SpawnError(
            f"Service binary not found or not executable: {config.service_binary}",
            metadata={"service_binary": config.service_binary},
        )
    return Path(found).resolve()


def _die_with_parent() -> Optional[Callable[[], None]]:
    """preexec_fn that makes the kernel SIGKILL the child when the harness dies."""
    if not sys.platform.startswith("linux"):
        return None
    try:
        libc = ctypes.CDLL(None, use_errno=True)
    except OSError:
        return None

    def _arm() -> None:
        libc.prctl(_PR_SET_PDEATHSIG, int(signal.SIGKILL))

    return _arm


class ServiceProcess:
    """The one spawned service instance of a run."""

    def __init__(self, popen: subprocess.Popen, argv: List[str], log_handle: IO[bytes]) -> None:
        self._popen = popen
        self.argv = argv
        self.log_handle = log_handle

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._popen.returncode

    def poll(self) -> Optional[int]:
        """Return the exit code if the process has exited, else None."""
        return self._popen.poll()

    def is_alive(self) -> bool:
        return self.poll() is None

    def kill(self, timeout: float = 10.0) -> None:
        """SIGKILL the service and reap it. A process that is already gone is fine."""
        if self._popen.poll() is None:
            try:
                self._popen.kill()
            except ProcessLookupError:
                pass
            try:
                self._popen.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.error("service_kill_timeout", extra=log_extra(service_pid=self.pid))
        if not self.log_handle.closed:
            self.log_handle.close()


class ProcessSupervisor:
    """
    Starts the service for a run.

    The service is exec'd through a symlink named after ``process_alias``
    inside the workspace, so ps/pgrep/pkill show the alias rather than the
    real binary name.
    """

    def __init__(self, config: Config) -> None:
        self.config = config

    def create_alias(self, workspace: Workspace, binary: Path) -> Path:
        alias = workspace.root / self.config.process_alias
        try:
            os.symlink(binary, alias)
        except OSError as e:
            raise SpawnError(f"Cannot create process alias {alias}: {e}")
        return alias

    def start(self, run: HarnessRun) -> ServiceProcess:
        """
        Launch the service with output appended to the workspace log.

        Raises:
            SpawnError: if a process is already running for this run or the
                binary cannot be started
        """
        if run.process is not None:
            raise SpawnError("Service process already started for this run")
        if run.workspace is None or run.address is None:
            raise SpawnError("Workspace and bind address must exist before spawn")

        binary = resolve_service_binary(self.config)
        alias = self.create_alias(run.workspace, binary)
        argv = [str(alias)] + build_service_args(run.address, run.workspace, run.transport, self.config)

        log_handle = open(run.workspace.log_path, "ab")
        try:
            popen = subprocess.Popen(
                argv,
                cwd=str(run.workspace.root),
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                preexec_fn=_die_with_parent(),
            )
        except OSError as e:
            log_handle.close()
            raise SpawnError(f"Cannot start service {binary}: {e}", metadata={"binary": str(binary)})

        process = ServiceProcess(popen, argv, log_handle)
        run.process = process
        logger.info(
            "service_started",
            extra=log_extra(
                service_pid=process.pid,
                address=run.address.host,
                binary=str(binary),
                alias=str(alias),
            ),
        )
        return process
