"""
SvcHarness Configuration

Pydantic-backed configuration loaded from environment variables.
Uses SVCHARNESS_ prefix for all environment variables.
"""

import os
import shlex
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from svcharness.errors import ConfigError
from svcharness.models import TransportMode

DEFAULT_ADMIN_COMMAND = [
    "cqlsh",
    "{address}",
    "-e",
    "INSERT INTO system_auth.roles (role, salted_hash) VALUES ('{username}', '{password}')",
]
DEFAULT_CERT_SUBJECT = "/C=US/ST=None/L=None/O=None/OU=None/CN=svcharness.local"


class Config(BaseModel):
    """
    Pydantic-backed configuration loaded from environment variables.

    Key env vars:
    - SVCHARNESS_SERVICE_BINARY (service executable; path or name on PATH)
    - SVCHARNESS_TMPDIR (base directory for workspaces; default: TMPDIR)
    - SVCHARNESS_HTTP_PORT / SVCHARNESS_HTTPS_PORT (default: 8000 / 8043)
    - SVCHARNESS_BOOT_TIMEOUT_SECONDS (default: 200)
    - SVCHARNESS_ADMIN_COMMAND (credential provisioning command template)
    - SVCHARNESS_TEST_RUNNER (default: pytest)
    - SVCHARNESS_LOG_LEVEL (default: INFO)
    """

    # Service under test
    service_binary: Optional[str] = Field(default=None)
    service_extra_args: List[str] = Field(default_factory=list)
    process_alias: str = Field(default="test_service")
    http_port: int = Field(default=8000)
    https_port: int = Field(default=8043)

    # Workspace
    tmp_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))

    # Boot wait
    boot_timeout_seconds: float = Field(default=200.0)
    poll_interval_seconds: float = Field(default=1.0)
    probe_timeout_seconds: float = Field(default=1.0)
    provision_timeout_seconds: float = Field(default=30.0)

    # Credential provisioning
    admin_command: List[str] = Field(default_factory=lambda: list(DEFAULT_ADMIN_COMMAND))
    admin_username: str = Field(default="svcharness")
    admin_password: str = Field(default="secret_pass")

    # TLS material
    openssl_path: str = Field(default="openssl")
    cert_days: int = Field(default=365)
    cert_subject: str = Field(default=DEFAULT_CERT_SUBJECT)

    # Test suite
    test_runner: List[str] = Field(default_factory=lambda: ["pytest"])

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def admin_tool(self) -> str:
        return self.admin_command[0] if self.admin_command else ""

    def service_port(self, transport: TransportMode) -> int:
        """Control-plane port for the given transport."""
        return self.https_port if transport == TransportMode.SECURE else self.http_port


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_command(name: str) -> Optional[List[str]]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return shlex.split(raw)
    except ValueError as e:
        raise ConfigError(f"{name} is not a valid command line: {e}")


def load_config() -> Config:
    """
    Load harness configuration from environment.
    """
    tmp_dir = os.environ.get("SVCHARNESS_TMPDIR") or tempfile.gettempdir()
    admin_command = _env_command("SVCHARNESS_ADMIN_COMMAND") or list(DEFAULT_ADMIN_COMMAND)
    test_runner = _env_command("SVCHARNESS_TEST_RUNNER") or ["pytest"]
    extra_args = _env_command("SVCHARNESS_SERVICE_EXTRA_ARGS") or []

    return Config(
        service_binary=os.environ.get("SVCHARNESS_SERVICE_BINARY") or None,
        service_extra_args=extra_args,
        process_alias=os.environ.get("SVCHARNESS_PROCESS_ALIAS", "test_service"),
        http_port=_env_number("SVCHARNESS_HTTP_PORT", "8000", int),
        https_port=_env_number("SVCHARNESS_HTTPS_PORT", "8043", int),
        tmp_dir=Path(tmp_dir).expanduser(),
        boot_timeout_seconds=_env_number("SVCHARNESS_BOOT_TIMEOUT_SECONDS", "200", float),
        poll_interval_seconds=_env_number("SVCHARNESS_POLL_INTERVAL_SECONDS", "1", float),
        probe_timeout_seconds=_env_number("SVCHARNESS_PROBE_TIMEOUT_SECONDS", "1", float),
        provision_timeout_seconds=_env_number("SVCHARNESS_PROVISION_TIMEOUT_SECONDS", "30", float),
        admin_command=admin_command,
        admin_username=os.environ.get("SVCHARNESS_ADMIN_USERNAME", "svcharness"),
        admin_password=os.environ.get("SVCHARNESS_ADMIN_PASSWORD", "secret_pass"),
        openssl_path=os.environ.get("SVCHARNESS_OPENSSL", "openssl"),
        cert_days=_env_number("SVCHARNESS_CERT_DAYS", "365", int),
        cert_subject=os.environ.get("SVCHARNESS_CERT_SUBJECT", DEFAULT_CERT_SUBJECT),
        test_runner=test_runner,
        log_level=os.environ.get("SVCHARNESS_LOG_LEVEL", "INFO"),
        log_json=_env_flag("SVCHARNESS_LOG_JSON"),
    )
