"""
SvcHarness Orchestration

Runs one harness invocation: allocate an address, create the workspace,
generate TLS material if needed, start the service, wait for readiness,
run the tests. Teardown is owned by the CleanupCoordinator, which is
entered before anything is allocated.
"""

import os
from typing import Callable, Optional, Sequence, TextIO

from svcharness.address import allocate_address
from svcharness.certs import provision_certificate
from svcharness.cleanup import CleanupCoordinator
from svcharness.config import Config
from svcharness.credentials import CredentialProvisioner, check_admin_tool
from svcharness.errors import BootFailedError
from svcharness.executor import TestExecutor
from svcharness.logging import get_logger, log_context, log_extra, register_secret
from svcharness.models import HarnessRun, TransportMode
from svcharness.readiness import ReadinessPoller, probe_control_plane
from svcharness.supervisor import ProcessSupervisor
from svcharness.workspace import Workspace

logger = get_logger(__name__)


def wait_until_ready(
    run: HarnessRun,
    config: Config,
    progress: Optional[Callable[[], None]] = None,
) -> None:
    """Block until the service is ready; raise BootFailedError otherwise."""
    provisioner = CredentialProvisioner(config)
    poller = ReadinessPoller(
        probe=lambda remaining: probe_control_plane(
            run.address.host, run.port, min(config.probe_timeout_seconds, remaining)
        ),
        provision=lambda remaining: provisioner.provision(
            run, timeout=min(config.provision_timeout_seconds, remaining)
        ),
        timeout=config.boot_timeout_seconds,
        interval=config.poll_interval_seconds,
        on_tick=progress,
    )
    result = poller.wait(run.process)
    if not result.ready:
        raise BootFailedError(result.summary, metadata={"attempts": result.attempts})
    logger.info(
        "service_ready",
        extra=log_extra(attempts=result.attempts, elapsed=round(result.elapsed, 2), url=run.url),
    )


def run_harness(
    config: Config,
    passthrough: Sequence[str] = (),
    *,
    secure: bool = False,
    out: Optional[TextIO] = None,
    progress: Optional[Callable[[], None]] = None,
    pid: Optional[int] = None,
) -> HarnessRun:
    """
    Execute one full harness run.

    Returns:
        The finished HarnessRun; its exit_code is what the process should exit with.
    """
    run = HarnessRun(
        config=config,
        pid=pid if pid is not None else os.getpid(),
        transport=TransportMode.SECURE if secure else TransportMode.PLAIN,
        passthrough=list(passthrough),
    )

    register_secret(config.admin_password)
    with log_context(run_id=run.run_id), CleanupCoordinator(run, out=out):
        check_admin_tool(config)

        run.address = allocate_address(run.pid)
        run.workspace = Workspace.create(config.tmp_dir, run.pid)
        with log_context(address=run.address.host):
            if run.secure:
                provision_certificate(run.workspace, config)

            process = ProcessSupervisor(config).start(run)
            with log_context(service_pid=process.pid):
                wait_until_ready(run, config, progress)
                TestExecutor(config).run(run, run.passthrough)

    return run
