"""
Request-scoped scratch directories.
"""

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from ..config import WORKSPACE_PREFIX, WORKSPACE_ROOT
from ..errors import WorkspaceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workspace:
    path: str

    def path_for(self, name: str) -> str:
        return os.path.join(self.path, name)

    def exists(self) -> bool:
        return os.path.isdir(self.path)


def acquire(root: Optional[str] = None, prefix: str = WORKSPACE_PREFIX) -> Workspace:
    """
    Create a uniquely named scratch directory owned by a single request.

    Args:
        root: Parent directory (defaults to WORKSPACE_ROOT)
        prefix: Directory name prefix

    Returns:
        The new Workspace

    Raises:
        WorkspaceError: If the directory cannot be created
    """
    root = root or WORKSPACE_ROOT
    try:
        os.makedirs(root, exist_ok=True)
        path = tempfile.mkdtemp(prefix=prefix, dir=root)
    except OSError as e:
        raise WorkspaceError(f"Could not create workspace under {root}: {e}") from e
    logger.info(f"Acquired workspace: {path}")
    return Workspace(path)


def release(workspace: Workspace) -> None:
    """Recursively delete a workspace. Failures are logged, never raised."""
    try:
        if os.path.exists(workspace.path):
            shutil.rmtree(workspace.path)
            logger.info(f"Cleaned up workspace: {workspace.path}")
    except Exception as e:
        logger.warning(f"Failed to clean up workspace {workspace.path}: {e}")


@contextmanager
def workspace_scope(root: Optional[str] = None) -> Iterator[Workspace]:
    """Acquire a workspace and release it on every exit path."""
    workspace = acquire(root)
    try:
        yield workspace
    finally:
        release(workspace)
