import os
import sys
import time
from pathlib import Path

import pytest

from svcharness.address import allocate_address
from svcharness.config import Config
from svcharness.errors import SpawnError
from svcharness.models import BindAddress, HarnessRun, TransportMode
from svcharness.supervisor import ProcessSupervisor, build_service_args
from svcharness.workspace import Workspace

pytestmark = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs 127.0.0.0/8 loopback")


def _wait_for(predicate, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


def _value(args, flag):
    return args[args.index(flag) + 1]


def test_plain_args(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path, 1)
    config = Config(http_port=8000, https_port=8043, service_extra_args=["--smp", "1"])
    args = build_service_args(BindAddress("127.1.0.9"), ws, TransportMode.PLAIN, config)

    for flag in ("--listen-address", "--rpc-address", "--api-address", "--prometheus-address", "--http-address"):
        assert _value(args, flag) == "127.1.0.9"
    assert _value(args, "--seed-provider-parameters") == "seeds=127.1.0.9"
    assert _value(args, "--http-port") == "8000"
    assert _value(args, "--enforce-authorization") == "1"
    assert _value(args, "--workdir") == str(ws.data_dir)
    assert "--https-port" not in args
    assert "--tls-certfile" not in args
    assert args[-2:] == ["--smp", "1"]


def test_secure_args(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path, 1)
    args = build_service_args(BindAddress("127.1.0.9"), ws, TransportMode.SECURE, Config())

    assert _value(args, "--https-port") == "8043"
    assert _value(args, "--tls-keyfile") == str(ws.key_path)
    assert _value(args, "--tls-certfile") == str(ws.cert_path)
    assert "--http-port" not in args


def test_start_launches_through_alias(harness_config: Config, workspace_base: Path) -> None:
    run = HarnessRun(config=harness_config, pid=os.getpid())
    run.address = allocate_address(run.pid)
    run.workspace = Workspace.create(workspace_base, run.pid)

    process = ProcessSupervisor(harness_config).start(run)
    try:
        alias = run.workspace.root / "test_service"
        assert alias.is_symlink()
        assert alias.resolve() == Path(harness_config.service_binary).resolve()
        assert process.argv[0] == str(alias)
        assert run.process is process
        assert _wait_for(lambda: "listening" in run.workspace.log_path.read_text())
        assert "argv0=test_service" in run.workspace.log_path.read_text()
        assert process.is_alive()

        with pytest.raises(SpawnError):
            ProcessSupervisor(harness_config).start(run)
    finally:
        process.kill()

    assert not process.is_alive()
    assert process.log_handle.closed
    # Killing again is harmless.
    process.kill()


def test_start_without_binary(harness_config: Config, workspace_base: Path) -> None:
    config = harness_config.model_copy(update={"service_binary": None})
    run = HarnessRun(config=config, pid=os.getpid())
    run.address = allocate_address(run.pid)
    run.workspace = Workspace.create(workspace_base, run.pid)

    with pytest.raises(SpawnError):
        ProcessSupervisor(config).start(run)
    assert run.process is None


def test_start_with_missing_binary(harness_config: Config, workspace_base: Path, tmp_path: Path) -> None:
    config = harness_config.model_copy(update={"service_binary": str(tmp_path / "nope")})
    run = HarnessRun(config=config, pid=os.getpid())
    run.address = allocate_address(run.pid)
    run.workspace = Workspace.create(workspace_base, run.pid)

    with pytest.raises(SpawnError) as excinfo:
        ProcessSupervisor(config).start(run)
    assert excinfo.value.exit_code == 102
