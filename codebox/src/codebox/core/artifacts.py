"""
Artifact Collector

Inventories the files an execution left in its working directory. Checksums are
always computed from the bytes on disk at collection time.
"""

import hashlib
import os
from pathlib import Path
from typing import Iterator, List, Optional

from codebox.core.models import ENTRYPOINT_NAMES, MAX_ARTIFACT_BYTES, Artifact, new_id
from codebox.monitoring.logging import get_logger

logger = get_logger(__name__)

HASH_CHUNK_BYTES = 1024 * 1024


def file_checksum(path: Path) -> str:
    """SHA-256 hex digest of the full file content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_type(name: str) -> Optional[str]:
    suffix = Path(name).suffix
    return suffix[1:].lower() if suffix else None


class ArtifactCollector:
    """
    Discovers produced files after an execution.

    By default only top-level regular files are considered. With ``recursive``
    set, nested directories are walked as well; the size ceiling and the
    entry-point exclusion apply either way. Symbolic links are never followed.
    """

    def __init__(self, max_bytes: int = MAX_ARTIFACT_BYTES, recursive: bool = False):
        self.max_bytes = max_bytes
        self.recursive = recursive

    def _candidates(self, root: Path) -> Iterator[Path]:
        if not self.recursive:
            yield from sorted(root.iterdir(), key=lambda p: p.name)
            return
        for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
            dirnames.sort()
            for name in sorted(filenames):
                yield Path(dirpath) / name

    def collect(self, session_id: str, working_dir: Path) -> List[Artifact]:
        """
        Inventory ``working_dir``.

        Errors are logged and never raised; a file vanishing mid-scan only
        drops that file from the list.
        """
        root = Path(working_dir)
        artifacts: List[Artifact] = []

        try:
            candidates = list(self._candidates(root))
        except OSError as e:
            logger.error("artifact_scan_failed", session_id=session_id, error=str(e))
            return artifacts

        for path in candidates:
            relative = path.relative_to(root).as_posix()
            # Entry points are excluded only at the top level
            if relative in ENTRYPOINT_NAMES:
                continue
            try:
                artifact = self._inspect(session_id, path, relative)
            except OSError as e:
                logger.warning(
                    "artifact_skipped",
                    session_id=session_id,
                    file_path=relative,
                    error=str(e),
                )
                continue
            if artifact is not None:
                artifacts.append(artifact)

        return artifacts

    def _inspect(self, session_id: str, path: Path, relative: str) -> Optional[Artifact]:
        if path.is_symlink():
            return None
        stat = path.lstat()
        if not path.is_file() or stat.st_size >= self.max_bytes:
            return None

        return Artifact(
            id=new_id(),
            session_id=session_id,
            file_path=relative,
            file_type=file_type(path.name),
            file_size=stat.st_size,
            checksum=file_checksum(path),
            storage_path=str(path.resolve()),
        )
