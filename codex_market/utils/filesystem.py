"""Filesystem utilities for codex-market."""

import os
import shutil
import tempfile
from pathlib import Path


def ensure_directory(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The directory path
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def copy_file(src: Path, dest: Path) -> Path:
    """Copy a file to a destination.

    Args:
        src: Source file path
        dest: Destination path (file or directory)

    Returns:
        Path to the copied file
    """
    if dest.is_dir():
        dest = dest / src.name
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dest)
    return dest


def copy_directory(src: Path, dest: Path, ignore_git: bool = False) -> Path:
    """Copy a directory recursively, replacing any existing destination.

    Args:
        src: Source directory path
        dest: Destination directory path
        ignore_git: Skip ``.git`` directories while copying

    Returns:
        Path to the copied directory
    """
    if dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    ignore = shutil.ignore_patterns(".git") if ignore_git else None
    shutil.copytree(src, dest, ignore=ignore)
    return dest


def remove_directory(path: Path) -> bool:
    """Remove a directory and its contents.

    Args:
        path: Directory path to remove

    Returns:
        True if the directory was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


def remove_file(path: Path) -> bool:
    """Remove a file.

    Args:
        path: File path to remove

    Returns:
        True if the file was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    path.unlink()
    return True


def read_text_file(path: Path, missing_ok: bool = False) -> str:
    """Read a text file.

    Args:
        path: Path to the file
        missing_ok: Return an empty string when the file does not exist

    Returns:
        File contents as a string
    """
    if missing_ok and not path.exists():
        return ""
    return path.read_text(encoding="utf-8")


def write_text_file_atomic(path: Path, content: str) -> None:
    """Replace a text file in one step via a sibling temp file.

    Readers never observe a half-written file.

    Args:
        path: Path to the file
        content: Content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
