# jobview/exports/storage.py

"""
Artifact storage for generated export files.

Layout under the storage root:

    .partial/   files being written by a worker; never served
    artifacts/  committed files, addressed by artifact reference

A partial file only becomes visible through ``StagedFile.commit``, which
renames it into ``artifacts/`` in one step. Leaving the staging context
without committing removes the partial file.
"""

import os
import time
import uuid
from datetime import timedelta
from pathlib import Path
from typing import IO, Optional

from jobview.exports.exceptions import ArtifactNotFoundError, StorageError
from jobview.utils.logger import get_logger

logger = get_logger(__name__)

PARTIAL_DIR = ".partial"
ARTIFACT_DIR = "artifacts"


class StagedFile:
    """
    Exclusively owned partial artifact.

    Use as a context manager:

        with storage.stage(task_id, "csv") as staged:
            writer = CsvWriter(staged.stream, fields)
            ...
            artifact_ref = staged.commit()
    """

    def __init__(self, storage: "ExportStorage", partial_path: Path, artifact_ref: str):
        self._storage = storage
        self.partial_path = partial_path
        self.artifact_ref = artifact_ref
        self.stream: Optional[IO[bytes]] = None
        self.size: Optional[int] = None
        self.committed = False
        self.discarded = False

    def __enter__(self) -> "StagedFile":
        try:
            self.stream = open(self.partial_path, "xb")
        except OSError as e:
            raise StorageError(f"Unable to stage export file: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self.committed:
            self.discard()
        return False

    def commit(self) -> str:
        """Publish the partial file and return its artifact reference."""
        if self.committed or self.discarded:
            raise StorageError("staged file is no longer open for commit")

        target = self._storage.path_for(self.artifact_ref)
        try:
            self.stream.flush()
            os.fsync(self.stream.fileno())
            self.size = os.fstat(self.stream.fileno()).st_size
            self.stream.close()
            os.replace(self.partial_path, target)
        except OSError as e:
            raise StorageError(f"Unable to commit export file: {e}") from e

        self.committed = True
        logger.info("Committed export artifact", artifact_ref=self.artifact_ref)
        return self.artifact_ref

    def discard(self) -> None:
        """Close and delete the partial file. Safe to call more than once."""
        if self.discarded or self.committed:
            return
        self.discarded = True
        if self.stream is not None and not self.stream.closed:
            self.stream.close()
        try:
            self.partial_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove partial export file", path=str(self.partial_path), error=str(e))
        else:
            logger.info("Discarded partial export file", path=str(self.partial_path))


class ExportStorage:
    """Local filesystem store for export artifacts."""

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)
        self.partial_root = self.root / PARTIAL_DIR
        self.artifact_root = self.root / ARTIFACT_DIR
        self.partial_root.mkdir(parents=True, exist_ok=True)
        self.artifact_root.mkdir(parents=True, exist_ok=True)
        logger.info("ExportStorage initialized", root=str(self.root))

    def stage(self, task_id: str, extension: str) -> StagedFile:
        """Reserve a partial file for ``task_id``; commit or discard it later."""
        token = uuid.uuid4().hex[:8]
        artifact_ref = f"{task_id}_{token}.{extension}"
        partial_path = self.partial_root / f"{artifact_ref}.part"
        return StagedFile(self, partial_path, artifact_ref)

    def path_for(self, artifact_ref: str) -> Path:
        """Resolve a reference to its committed path, rejecting path tricks."""
        if not artifact_ref or Path(artifact_ref).name != artifact_ref or artifact_ref.startswith("."):
            raise ArtifactNotFoundError(artifact_ref)
        return self.artifact_root / artifact_ref

    def exists(self, artifact_ref: str) -> bool:
        try:
            return self.path_for(artifact_ref).is_file()
        except ArtifactNotFoundError:
            return False

    def size(self, artifact_ref: str) -> int:
        try:
            return self.path_for(artifact_ref).stat().st_size
        except FileNotFoundError:
            raise ArtifactNotFoundError(artifact_ref)

    def open(self, artifact_ref: str) -> IO[bytes]:
        """Open a committed artifact for reading."""
        try:
            return open(self.path_for(artifact_ref), "rb")
        except FileNotFoundError:
            raise ArtifactNotFoundError(artifact_ref)

    def delete(self, artifact_ref: str) -> bool:
        """Delete a committed artifact. Returns False if it was already gone."""
        path = self.path_for(artifact_ref)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Unable to delete artifact {artifact_ref}: {e}") from e
        logger.info("Deleted export artifact", artifact_ref=artifact_ref)
        return True

    def sweep_partials(self, older_than: timedelta = None) -> int:
        """
        Remove partial files left behind by a crashed process.

        With ``older_than``, only files untouched for that long are removed,
        so live workers of other processes sharing the root are left alone.
        """
        cutoff = time.time() - older_than.total_seconds() if older_than else None
        removed = 0
        for path in self.partial_root.glob("*.part"):
            try:
                if cutoff is not None and path.stat().st_mtime > cutoff:
                    continue
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Failed to remove orphaned partial file", path=str(path), error=str(e))
        if removed:
            logger.info("Removed orphaned partial export files", count=removed)
        return removed
