"""File helpers that refuse to read or write outside a given root."""

import shutil
import sys
from pathlib import Path
from typing import BinaryIO, List, Tuple, Union

from provbuild.kernel.errors import UnsafePathError


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def safe_read_file(path: Union[str, Path], root: Union[str, Path]) -> bytes:
    """Read a file, refusing paths (including symlinks) that resolve outside root.

    Args:
        path: File to read, absolute or relative to root
        root: Directory the file must live under

    Returns:
        File contents
    """
    root_path = Path(root).resolve()
    file_path = Path(path)
    if not file_path.is_absolute():
        file_path = root_path / file_path
    resolved = file_path.resolve()
    if not _is_within(resolved, root_path):
        raise UnsafePathError(f"path {str(path)!r} resolves outside of {str(root_path)!r}")
    return resolved.read_bytes()


def create_new_file_under_directory(
    rel_path: Union[str, Path],
    directory: Union[str, Path],
) -> BinaryIO:
    """Create a new file at ``directory/rel_path`` and open it for binary writing.

    Parent directories are created as needed. Existing files are never
    overwritten.

    Raises:
        UnsafePathError: If rel_path is absolute or escapes directory
        FileExistsError: If the file already exists
    """
    rel = Path(rel_path)
    if rel.is_absolute():
        raise UnsafePathError(f"expected a relative path, got {str(rel_path)!r}")
    base = Path(directory).resolve()
    target = (base / rel).resolve()
    if target == base or not _is_within(target, base):
        raise UnsafePathError(f"path {str(rel_path)!r} escapes {str(base)!r}")
    target.parent.mkdir(parents=True, exist_ok=True)
    return open(target, "xb")


def remove_tree_best_effort(path: Union[str, Path]) -> List[Tuple[str, BaseException]]:
    """Remove a directory tree, continuing past entries that resist removal.

    Build toolchains sometimes leave files behind that cannot be deleted, so
    failures are collected and returned instead of raised.

    Returns:
        (path, exception) pairs for every entry that could not be removed
    """
    failures: List[Tuple[str, BaseException]] = []
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=lambda func, p, exc: failures.append((p, exc)))
    else:
        shutil.rmtree(path, onerror=lambda func, p, exc_info: failures.append((p, exc_info[1])))
    return failures
