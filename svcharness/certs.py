"""
SvcHarness TLS Material

Generates the self-signed key/certificate pair the service reads at
startup when secure transport is requested.
"""

import shutil
import subprocess
from typing import List

from svcharness.config import Config
from svcharness.errors import CertificateError
from svcharness.logging import get_logger
from svcharness.workspace import Workspace

logger = get_logger(__name__)


def build_openssl_command(workspace: Workspace, config: Config) -> List[str]:
    return [
        config.openssl_path,
        "req",
        "-x509",
        "-newkey", "rsa:2048",
        "-nodes",
        "-days", str(config.cert_days),
        "-subj", config.cert_subject,
        "-keyout", str(workspace.key_path),
        "-out", str(workspace.cert_path),
    ]


def provision_certificate(workspace: Workspace, config: Config) -> None:
    """
    Write server.key and server.crt into the workspace.

    Raises:
        CertificateError: if openssl is missing, fails, or leaves no files behind
    """
    if shutil.which(config.openssl_path) is None:
        raise CertificateError(
            f"Certificate tool not found: {config.openssl_path}",
            metadata={"tool": config.openssl_path},
        )

    cmd = build_openssl_command(workspace, config)
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
            timeout=60,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise CertificateError(f"Certificate generation failed: {e}")

    if proc.returncode != 0:
        raise CertificateError(
            f"Certificate generation failed (exit {proc.returncode}): {proc.stderr.strip()}",
            metadata={"exit_code": proc.returncode},
        )
    if not workspace.key_path.exists() or not workspace.cert_path.exists():
        raise CertificateError("Certificate generation produced no key/certificate files")

    logger.info(
        "certificate_generated",
        extra={"cert": str(workspace.cert_path), "key": str(workspace.key_path)},
    )
