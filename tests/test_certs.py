import shutil
from pathlib import Path

import pytest

from svcharness.certs import build_openssl_command, provision_certificate
from svcharness.config import Config
from svcharness.errors import CertificateError
from svcharness.workspace import Workspace


def test_command_writes_into_workspace(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path, 1)
    cmd = build_openssl_command(ws, Config(cert_days=30))

    assert cmd[:3] == ["openssl", "req", "-x509"]
    assert cmd[cmd.index("-keyout") + 1] == str(ws.key_path)
    assert cmd[cmd.index("-out") + 1] == str(ws.cert_path)
    assert cmd[cmd.index("-days") + 1] == "30"
    assert "-nodes" in cmd


@pytest.mark.skipif(shutil.which("openssl") is None, reason="openssl not installed")
def test_generates_key_and_certificate(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path, 1)
    provision_certificate(ws, Config())

    assert "PRIVATE KEY" in ws.key_path.read_text()
    assert "BEGIN CERTIFICATE" in ws.cert_path.read_text()


def test_missing_tool_is_fatal(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path, 1)
    with pytest.raises(CertificateError):
        provision_certificate(ws, Config(openssl_path=str(tmp_path / "no-openssl")))
    assert not ws.cert_path.exists()


def test_failing_tool_is_fatal(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path, 1)
    false = shutil.which("false")
    if false is None:
        pytest.skip("false not available")
    with pytest.raises(CertificateError) as excinfo:
        provision_certificate(ws, Config(openssl_path=false))
    assert excinfo.value.exit_code == 102
