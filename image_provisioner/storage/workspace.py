"""Temporary staging directory bound to the lifetime of one pipeline run.

Usage:
    from image_provisioner.storage.workspace import Workspace

    with Workspace.acquire(tmp_root) as ws:
        staged = ws.path_for("image.wic")
        ...
    # ws.path no longer exists here, whatever happened inside the block
"""

from __future__ import annotations

import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from image_provisioner.logging import LoggerFactory

from .exceptions import WorkspaceError


log = LoggerFactory.for_workspace()


class Workspace:
    """A uniquely named directory owned by exactly one pipeline run."""

    def __init__(self, path: Path):
        self.path = path
        self._released = False

    @classmethod
    def acquire(cls, tmp_root: Optional[Path] = None) -> Workspace:
        """Create ``<tmp_root>/<uuid4>`` and return a guard for it.

        Raises:
            WorkspaceError: If the directory cannot be created
        """
        root = Path(tmp_root) if tmp_root is not None else Path(tempfile.gettempdir())
        path = root / uuid.uuid4().hex
        try:
            # exist_ok=False: a collision must fail rather than share a directory
            path.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise WorkspaceError("create_workspace", path, str(e)) from e
        log.debug(f"Created workspace {path}")
        return cls(path)

    def path_for(self, name: str) -> Path:
        return self.path / name

    def release(self) -> None:
        """Remove the directory tree. Failures are logged, never raised."""
        if self._released:
            return
        self._released = True
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning(f"cannot remove tmp dir {self.path}: {e}")
        else:
            log.debug(f"Removed workspace {self.path}")

    def __enter__(self) -> Workspace:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"Workspace({str(self.path)!r})"


@contextmanager
def workspace(tmp_root: Optional[Path] = None) -> Generator[Workspace, None, None]:
    """Function-style equivalent of ``with Workspace.acquire(...)``."""
    ws = Workspace.acquire(tmp_root)
    try:
        yield ws
    finally:
        ws.release()
