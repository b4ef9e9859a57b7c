"""
SvcHarness Credential Provisioning

Creates the identity the test suite authenticates as by running the
configured administrative command against the booting service, and
classifies every attempt into a ProvisionOutcome.
"""

import os
import shutil
import subprocess
from typing import List, Optional

from svcharness.config import Config
from svcharness.errors import DependencyMissingError
from svcharness.logging import get_logger
from svcharness.models import HarnessRun, ProvisionOutcome

logger = get_logger(__name__)

# Output fragments meaning "the service is not accepting control connections yet"
TRANSIENT_MARKERS = (
    "NoHostAvailable",
    "Connection refused",
    "Unable to connect",
    "Could not connect",
    "not accepting",
)

# Output fragments meaning the admin tool itself is broken on this host
MISSING_DEPENDENCY_MARKERS = (
    "No module named",
    "ModuleNotFoundError",
    "ImportError",
    "command not found",
)


def check_admin_tool(config: Config) -> str:
    """
    Verify the admin tool is installed before any workspace or process exists.

    Returns:
        Resolved path of the tool

    Raises:
        DependencyMissingError: if the tool cannot be found
    """
    tool = config.admin_tool
    found = shutil.which(tool) if tool else None
    if found is None:
        raise DependencyMissingError(
            f"Admin tool {tool!r} is not installed; it is needed to provision credentials",
            metadata={"tool": tool},
        )
    return found


def classify_admin_output(returncode: Optional[int], output: str) -> ProvisionOutcome:
    """Turn one admin command result into a tagged outcome."""
    if returncode == 0:
        return ProvisionOutcome.ready()
    for marker in MISSING_DEPENDENCY_MARKERS:
        if marker in output:
            return ProvisionOutcome.missing_dependency(output)
    for marker in TRANSIENT_MARKERS:
        if marker in output:
            return ProvisionOutcome.transient(output)
    return ProvisionOutcome.unknown(output or f"admin command exited with code {returncode}")


class CredentialProvisioner:
    """
    Runs the admin command for a run.

    The default command is an upsert, so repeating it across boot-loop
    iterations is harmless.
    """

    def __init__(self, config: Config) -> None:
        self.config = config

    def build_command(self, run: HarnessRun) -> List[str]:
        values = {
            "address": run.address.host if run.address else "",
            "port": str(run.port),
            "url": run.url if run.address else "",
            "username": self.config.admin_username,
            "password": self.config.admin_password,
        }
        return [part.format(**values) for part in self.config.admin_command]

    def provision(self, run: HarnessRun, timeout: Optional[float] = None) -> ProvisionOutcome:
        """Run the admin command once, bounded by timeout (default: the configured one)."""
        if timeout is None:
            timeout = self.config.provision_timeout_seconds
        cmd = self.build_command(run)
        env = os.environ.copy()
        if run.secure and run.workspace is not None:
            env["SVCHARNESS_CA_CERT"] = str(run.workspace.cert_path)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=timeout,
                env=env,
            )
        except FileNotFoundError as e:
            return ProvisionOutcome.missing_dependency(str(e))
        except subprocess.TimeoutExpired:
            return ProvisionOutcome.transient(
                f"admin command timed out after {timeout:g}s"
            )

        output = (proc.stdout or "") + (proc.stderr or "")
        outcome = classify_admin_output(proc.returncode, output)
        logger.debug(
            "provision_attempt",
            extra={"exit_code": proc.returncode, "outcome": outcome.status.value},
        )
        return outcome
