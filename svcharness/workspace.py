"""
SvcHarness Workspace

Per-run temporary directory holding the service log, its data directory,
generated TLS material and the process alias.
"""

import shutil
import tempfile
from pathlib import Path

from svcharness.errors import WorkspaceError
from svcharness.logging import get_logger

logger = get_logger(__name__)

LOG_FILE_NAME = "service.log"
DATA_DIR_NAME = "data"
CERT_FILE_NAME = "server.crt"
KEY_FILE_NAME = "server.key"


class Workspace:
    """A uniquely named directory scoped to one harness run."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @classmethod
    def create(cls, base_dir: Path, pid: int) -> "Workspace":
        """
        Create a fresh workspace under base_dir whose name embeds pid.

        Raises:
            WorkspaceError: if the directory cannot be created
        """
        root = None
        try:
            root = Path(tempfile.mkdtemp(prefix=f"svcharness-{pid}-", dir=str(base_dir)))
            (root / DATA_DIR_NAME).mkdir()
        except OSError as e:
            if root is not None:
                shutil.rmtree(root, ignore_errors=True)
            raise WorkspaceError(
                f"Cannot create workspace under {base_dir}: {e}",
                metadata={"base_dir": str(base_dir)},
            )
        logger.info("workspace_created", extra={"workspace": str(root)})
        return cls(root)

    @property
    def log_path(self) -> Path:
        return self.root / LOG_FILE_NAME

    @property
    def data_dir(self) -> Path:
        return self.root / DATA_DIR_NAME

    @property
    def cert_path(self) -> Path:
        return self.root / CERT_FILE_NAME

    @property
    def key_path(self) -> Path:
        return self.root / KEY_FILE_NAME

    def exists(self) -> bool:
        return self.root.exists()

    def remove(self) -> None:
        """Delete the whole tree. A workspace that is already gone is fine."""
        if not self.root.exists():
            return
        shutil.rmtree(self.root)
        logger.info("workspace_removed", extra={"workspace": str(self.root)})

    def __repr__(self) -> str:
        return f"Workspace({str(self.root)!r})"
