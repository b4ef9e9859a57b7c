import os
import socket
import stat
import sys
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so the in-tree package imports cleanly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from svcharness.address import allocate_address  # noqa: E402
from svcharness.config import Config  # noqa: E402


FAKE_SERVICE = '''
import os
import socket
import sys
import time


def opt(name):
    args = sys.argv[1:]
    if name in args:
        return args[args.index(name) + 1]
    return None


print("fake-service pid=%d argv0=%s" % (os.getpid(), os.path.basename(sys.argv[0])), flush=True)
if os.environ.get("FAKE_SERVICE_MODE") == "crash":
    print("fake-service crashing", flush=True)
    sys.exit(3)

certfile = opt("--tls-certfile")
keyfile = opt("--tls-keyfile")
if certfile is not None:
    if not (os.path.exists(certfile) and os.path.exists(keyfile)):
        print("fake-service missing tls material", flush=True)
        sys.exit(2)
    print("fake-service tls material present", flush=True)

time.sleep(float(os.environ.get("FAKE_SERVICE_DELAY", "0")))
host = opt("--http-address")
port = int(opt("--https-port") or opt("--http-port"))
sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
sock.bind((host, port))
sock.listen(16)
print("fake-service listening on %s:%d" % (host, port), flush=True)
while True:
    conn, _ = sock.accept()
    conn.close()
'''

FAKE_RUNNER = '''
import json
import os
import sys

ca_cert = os.environ.get("SVCHARNESS_CA_CERT")
with open(os.environ["FAKE_RUNNER_RECORD"], "w") as fh:
    json.dump(
        {
            "argv": sys.argv[1:],
            "url": os.environ.get("SVCHARNESS_URL"),
            "username": os.environ.get("SVCHARNESS_USERNAME"),
            "ca_cert": ca_cert,
            "ca_cert_exists": bool(ca_cert) and os.path.exists(ca_cert),
        },
        fh,
    )
sys.exit(int(os.environ.get("FAKE_RUNNER_EXIT", "0")))
'''


def _write_script(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def free_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


@pytest.fixture
def fake_service(tmp_path: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return _write_script(bin_dir / "fake-service", FAKE_SERVICE)


@pytest.fixture
def fake_runner(tmp_path: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return _write_script(bin_dir / "fake-runner", FAKE_RUNNER)


@pytest.fixture
def runner_record(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    record = tmp_path / "runner.json"
    monkeypatch.setenv("FAKE_RUNNER_RECORD", str(record))
    return record


@pytest.fixture
def workspace_base(tmp_path: Path) -> Path:
    base = tmp_path / "workspaces"
    base.mkdir()
    return base


@pytest.fixture
def harness_config(
    workspace_base: Path,
    fake_service: Path,
    fake_runner: Path,
    runner_record: Path,
) -> Config:
    host = allocate_address(os.getpid()).host
    return Config(
        service_binary=str(fake_service),
        tmp_dir=workspace_base,
        http_port=free_port(host),
        https_port=free_port(host),
        boot_timeout_seconds=20,
        poll_interval_seconds=0.05,
        probe_timeout_seconds=0.5,
        provision_timeout_seconds=10,
        admin_command=[sys.executable, "-c", "import sys; sys.exit(0)"],
        test_runner=[sys.executable, str(fake_runner)],
    )
