"""
SvcHarness Test Execution

Runs the external test suite once against the ready service.
"""

import os
import subprocess
from typing import Dict, List, Sequence

from svcharness.config import Config
from svcharness.errors import DependencyMissingError
from svcharness.logging import get_logger
from svcharness.models import SUMMARY_TESTS_FAILURE, SUMMARY_TESTS_PASS, HarnessRun

logger = get_logger(__name__)


class TestExecutor:
    """Invokes the configured runner with ``--url <service url>`` plus passthrough args."""

    __test__ = False  # not a pytest test class

    def __init__(self, config: Config) -> None:
        self.config = config

    def build_command(self, run: HarnessRun, passthrough: Sequence[str]) -> List[str]:
        return [*self.config.test_runner, "--url", run.url, *passthrough]

    def build_env(self, run: HarnessRun) -> Dict[str, str]:
        env = os.environ.copy()
        env["SVCHARNESS_URL"] = run.url
        env["SVCHARNESS_USERNAME"] = self.config.admin_username
        env["SVCHARNESS_PASSWORD"] = self.config.admin_password
        if run.secure and run.workspace is not None:
            env["SVCHARNESS_CA_CERT"] = str(run.workspace.cert_path)
        return env

    def run(self, run: HarnessRun, passthrough: Sequence[str]) -> int:
        """
        Run the suite and record its outcome on the run.

        Returns:
            The runner's exit code
        """
        cmd = self.build_command(run, passthrough)
        logger.info("tests_started", extra={"cmd": cmd[:3], "url": run.url})
        try:
            proc = subprocess.run(cmd, env=self.build_env(run))
        except FileNotFoundError as e:
            raise DependencyMissingError(
                f"Test runner not found: {self.config.test_runner[0]}",
                metadata={"error": str(e)},
            )

        summary = SUMMARY_TESTS_PASS if proc.returncode == 0 else SUMMARY_TESTS_FAILURE
        run.record_outcome(summary, proc.returncode)
        logger.info("tests_finished", extra={"exit_code": proc.returncode, "summary": summary})
        return proc.returncode
