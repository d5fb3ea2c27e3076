"""
Storage areas for the conversion gateway.

All files the gateway writes live under one root with three areas:

- ``intake/``: raw uploads, one file per storage id
- ``converted/``: published artifacts awaiting download (``claimed/`` holds
  artifacts currently being streamed)
- ``scratch/``: per-job working directories

Only this layer unlinks files. The lifecycle manager and the artifact store
are its sole callers.
"""

import os
import shutil
import time
import uuid
from pathlib import Path
from typing import Union

from .logging_config import get_logger

logger = get_logger(__name__)

INTAKE_DIR = "intake"
CONVERTED_DIR = "converted"
CLAIMED_DIR = "claimed"
SCRATCH_DIR = "scratch"


class StorageError(Exception):
    """Raised when the storage root cannot be prepared."""
    pass


def new_storage_id() -> str:
    """Generate a server-side identifier for a stored file."""
    return uuid.uuid4().hex


class StorageLayout:
    """Directory layout rooted at the configured storage root."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.intake_dir = self.root / INTAKE_DIR
        self.converted_dir = self.root / CONVERTED_DIR
        self.claimed_dir = self.converted_dir / CLAIMED_DIR
        self.scratch_dir = self.root / SCRATCH_DIR

    def bootstrap(self) -> None:
        """
        Create every storage area and check that it is writable.

        Called once at startup; any failure aborts startup.

        Raises:
            StorageError: If an area cannot be created or written
        """
        for directory in (self.intake_dir, self.converted_dir, self.claimed_dir, self.scratch_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
                canary = directory / f".write-check-{new_storage_id()}"
                with open(canary, "xb") as f:
                    f.write(b"ok")
                canary.unlink()
            except OSError as e:
                raise StorageError(f"Storage area {directory} is not writable: {e}") from e

        logger.info(f"Storage ready at {self.root}")

    def intake_path(self, storage_id: str) -> Path:
        return self.intake_dir / storage_id

    def converted_path(self, token: str) -> Path:
        return self.converted_dir / token

    def create_scratch_dir(self, job_id: str) -> Path:
        """Create the private working directory for a job; it must not exist yet."""
        path = self.scratch_dir / job_id
        path.mkdir(parents=False, exist_ok=False)
        return path

    def remove_file(self, path: Union[str, Path]) -> bool:
        """
        Remove a file if it exists.

        Errors are logged and not propagated.

        Returns:
            True if a file was removed
        """
        try:
            os.remove(path)
            logger.debug(f"Removed {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
            return False

    def remove_tree(self, path: Union[str, Path]) -> None:
        """Remove a directory tree, logging instead of raising."""
        try:
            shutil.rmtree(path)
            logger.debug(f"Removed directory {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove directory {path}: {e}")

    def sweep(self, area: Union[str, Path], max_age_seconds: float) -> int:
        """
        Delete entries of a storage area older than the given age.

        Only direct children are considered; the ``claimed`` subdirectory of
        the converted area is skipped and must be swept explicitly.

        Returns:
            Number of entries removed
        """
        area = Path(area)
        cutoff = time.time() - max_age_seconds
        removed = 0

        try:
            entries = list(os.scandir(area))
        except FileNotFoundError:
            return 0

        for entry in entries:
            if entry.name == CLAIMED_DIR and area == self.converted_dir:
                continue
            try:
                mtime = entry.stat(follow_symlinks=False).st_mtime
            except FileNotFoundError:
                continue
            if mtime >= cutoff:
                continue
            if entry.is_dir(follow_symlinks=False):
                self.remove_tree(entry.path)
                removed += 1
            elif self.remove_file(entry.path):
                removed += 1

        if removed:
            logger.info(f"Swept {removed} stale entries from {area.name}/")
        return removed
