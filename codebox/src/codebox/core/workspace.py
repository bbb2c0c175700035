"""
Session working directories.

Every path that comes from a caller (auxiliary input files, file-tool paths) is
resolved through ``resolve_workspace_path`` before anything touches the disk.
"""

import shutil
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Sequence

from codebox.core.errors import (
    PathTraversalError,
    ValidationError,
    WorkspaceFileNotFoundError,
)
from codebox.core.models import AuxFile
from codebox.monitoring.logging import get_logger

logger = get_logger(__name__)


def check_relative_path(relative: str) -> str:
    """
    Lexical validation of a caller-supplied relative path.

    Usable before any working directory exists. Returns the path with
    forward slashes.
    """
    if not isinstance(relative, str) or not relative.strip():
        raise ValidationError("File path is required")
    if "\x00" in relative:
        raise PathTraversalError("File path contains a NUL byte")

    normalized = relative.replace("\\", "/")
    if PurePosixPath(normalized).is_absolute() or PureWindowsPath(relative).drive:
        raise PathTraversalError(f"Absolute paths are not allowed: {relative}")
    if ".." in PurePosixPath(normalized).parts:
        raise PathTraversalError(f"Path escapes the working directory: {relative}")
    return normalized


def resolve_workspace_path(root: Path, relative: str) -> Path:
    """
    Resolve a caller-supplied relative path inside ``root``.

    Symlinks are followed, so a link pointing outside the working directory is
    rejected the same way as ``../`` segments are.

    Raises:
        ValidationError: empty or non-string path
        PathTraversalError: absolute path, or one that resolves outside ``root``
    """
    normalized = check_relative_path(relative)

    root_resolved = Path(root).resolve()
    target = (root_resolved / normalized).resolve()
    if target != root_resolved and root_resolved not in target.parents:
        raise PathTraversalError(f"Path escapes the working directory: {relative}")
    return target


def _encode(text: str, path: str) -> bytes:
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError:
        raise ValidationError(f"Content of {path} is not valid UTF-8 text")


def _check_target(root: Path, target: Path, relative: str) -> None:
    if target.is_dir():
        raise ValidationError(f"Cannot write to a directory: {relative}")
    parent = target.parent
    while parent != root:
        if parent.exists() and not parent.is_dir():
            raise ValidationError(f"Parent of {relative} is not a directory")
        parent = parent.parent


def write_inputs(
    working_dir: Path,
    entrypoint: str,
    code: str,
    files: Sequence[AuxFile] = (),
) -> Path:
    """
    Write the entry-point source and auxiliary files into a working directory.

    All auxiliary paths and contents are validated before the first write, so
    a rejected request leaves the directory untouched.

    Returns:
        Host path of the entry-point file
    """
    root = Path(working_dir).resolve()
    entry_path = root / entrypoint
    entry_bytes = _encode(code, entrypoint)
    if entry_path.is_dir():
        raise ValidationError(f"Entry point {entrypoint} is a directory in the working directory")

    targets = []
    for aux in files:
        target = resolve_workspace_path(root, aux.path)
        if target == root:
            raise ValidationError(f"Invalid file path: {aux.path}")
        if target == entry_path:
            raise ValidationError(f"File path collides with the entry point: {aux.path}")
        _check_target(root, target, aux.path)
        targets.append((target, _encode(aux.content, aux.path)))

    # one input may not be the parent directory of another
    written = {target for target, _ in targets}
    for target, _ in targets:
        if any(parent in written for parent in target.parents):
            raise ValidationError(f"File path is nested under another input file: {target.relative_to(root)}")

    entry_path.write_bytes(entry_bytes)
    for target, data in targets:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    return entry_path


def remove_working_dir(working_dir: Path) -> bool:
    """Delete a working directory. A missing directory counts as already clean."""
    try:
        shutil.rmtree(working_dir)
    except FileNotFoundError:
        return False
    return True


class WorkspaceFiles:
    """File-system tool scoped to one session's working directory."""

    def __init__(self, working_dir: Path, max_read_bytes: int = 10 * 1024 * 1024):
        self.root = Path(working_dir).resolve()
        self.max_read_bytes = max_read_bytes

    def read_file(self, path: str) -> Dict[str, Any]:
        target = resolve_workspace_path(self.root, path)
        if not target.is_file():
            raise WorkspaceFileNotFoundError(path)
        if target.stat().st_size > self.max_read_bytes:
            raise ValidationError(f"File too large to read: {path}")
        content = target.read_bytes().decode("utf-8", errors="replace")
        return {"path": path, "content": content}

    def write_file(self, path: str, content: str) -> Dict[str, Any]:
        if not isinstance(content, str):
            raise ValidationError("content must be a string")
        target = resolve_workspace_path(self.root, path)
        if target == self.root or target.is_dir():
            raise ValidationError(f"Cannot write to a directory: {path}")
        data = _encode(content, path)
        _check_target(self.root, target, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return {"success": True, "path": path, "size": target.stat().st_size}

    def list_dir(self, path: str = "") -> Dict[str, Any]:
        target = self.root if path in ("", ".", "/") else resolve_workspace_path(self.root, path)
        if not target.is_dir():
            raise WorkspaceFileNotFoundError(path)

        entries: List[Dict[str, Any]] = []
        for entry in sorted(target.iterdir(), key=lambda p: p.name):
            is_dir = entry.is_dir() and not entry.is_symlink()
            entries.append({
                "name": entry.name,
                "path": entry.relative_to(self.root).as_posix(),
                "type": "directory" if is_dir else "file",
                "size": None if is_dir else entry.lstat().st_size,
            })
        return {"path": path, "entries": entries}

    def delete_file(self, path: str) -> Dict[str, Any]:
        target = resolve_workspace_path(self.root, path)
        if target == self.root:
            raise ValidationError("Cannot delete the working directory")
        if target.is_dir():
            raise ValidationError(f"Not a file: {path}")
        try:
            target.unlink()
        except FileNotFoundError:
            raise WorkspaceFileNotFoundError(path)
        logger.debug("workspace_file_deleted", root=str(self.root), path=path)
        return {"success": True, "path": path}
