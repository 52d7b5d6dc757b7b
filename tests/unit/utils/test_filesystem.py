"""Tests for codex_market.utils.filesystem module."""

from pathlib import Path
from unittest.mock import patch

import pytest

from codex_market.utils.filesystem import (
    copy_directory,
    copy_file,
    ensure_directory,
    read_text_file,
    remove_directory,
    remove_file,
    write_text_file_atomic,
)


class TestEnsureDirectory:
    """Tests for ensure_directory function."""

    def test_creates_nested_directories(self, temp_dir: Path):
        """Creates nested directories."""
        nested_dir = temp_dir / "a" / "b" / "c"

        result = ensure_directory(nested_dir)

        assert nested_dir.is_dir()
        assert result == nested_dir

    def test_handles_existing_directory(self, temp_dir: Path):
        """Handles existing directory without error."""
        assert ensure_directory(temp_dir) == temp_dir


class TestCopyFile:
    """Tests for copy_file function."""

    def test_copies_to_file_path(self, temp_dir: Path):
        """Copies to an explicit path, creating parents."""
        src = temp_dir / "greet.md"
        src.write_text("hello")

        dest = copy_file(src, temp_dir / "out" / "greet-1.md")

        assert dest.read_text() == "hello"

    def test_copies_into_directory(self, temp_dir: Path):
        """Copies into an existing directory under the same name."""
        src = temp_dir / "greet.md"
        src.write_text("hello")
        (temp_dir / "out").mkdir()

        dest = copy_file(src, temp_dir / "out")

        assert dest == temp_dir / "out" / "greet.md"


class TestCopyDirectory:
    """Tests for copy_directory function."""

    def test_copies_recursively(self, temp_dir: Path):
        """Copies nested files."""
        src = temp_dir / "src"
        (src / "nested").mkdir(parents=True)
        (src / "nested" / "file.txt").write_text("content")

        copy_directory(src, temp_dir / "dest")

        assert (temp_dir / "dest" / "nested" / "file.txt").read_text() == "content"

    def test_replaces_existing_destination(self, temp_dir: Path):
        """Stale files in the destination are removed."""
        src = temp_dir / "src"
        src.mkdir()
        (src / "new.txt").write_text("new")
        dest = temp_dir / "dest"
        dest.mkdir()
        (dest / "stale.txt").write_text("old")

        copy_directory(src, dest)

        assert (dest / "new.txt").exists()
        assert not (dest / "stale.txt").exists()

    def test_ignore_git(self, temp_dir: Path):
        """.git directories are skipped when asked."""
        src = temp_dir / "src"
        (src / ".git").mkdir(parents=True)
        (src / ".git" / "HEAD").write_text("ref")
        (src / "README.md").write_text("readme")

        copy_directory(src, temp_dir / "dest", ignore_git=True)

        assert (temp_dir / "dest" / "README.md").exists()
        assert not (temp_dir / "dest" / ".git").exists()


class TestRemove:
    """Tests for remove_directory and remove_file."""

    def test_remove_directory(self, temp_dir: Path):
        """Removes a directory tree and reports it."""
        target = temp_dir / "target"
        (target / "sub").mkdir(parents=True)

        assert remove_directory(target) is True
        assert not target.exists()
        assert remove_directory(target) is False

    def test_remove_file(self, temp_dir: Path):
        """Removes a file and reports it."""
        target = temp_dir / "file.txt"
        target.write_text("x")

        assert remove_file(target) is True
        assert remove_file(target) is False


class TestReadTextFile:
    """Tests for read_text_file function."""

    def test_reads_content(self, temp_dir: Path):
        path = temp_dir / "a.txt"
        path.write_text("hello")
        assert read_text_file(path) == "hello"

    def test_missing_ok(self, temp_dir: Path):
        """Missing file reads as empty when allowed."""
        assert read_text_file(temp_dir / "missing.txt", missing_ok=True) == ""

    def test_missing_raises(self, temp_dir: Path):
        """Missing file raises by default."""
        with pytest.raises(FileNotFoundError):
            read_text_file(temp_dir / "missing.txt")


class TestWriteTextFileAtomic:
    """Tests for write_text_file_atomic function."""

    def test_writes_and_creates_parents(self, temp_dir: Path):
        """Writes content, creating parent directories."""
        path = temp_dir / "a" / "config.toml"

        write_text_file_atomic(path, "x = 1\n")

        assert path.read_text() == "x = 1\n"

    def test_leaves_no_temp_files(self, temp_dir: Path):
        """Only the target file remains after writing."""
        path = temp_dir / "config.toml"
        write_text_file_atomic(path, "one")
        write_text_file_atomic(path, "two")

        assert path.read_text() == "two"
        assert [p.name for p in temp_dir.iterdir()] == ["config.toml"]

    def test_failed_replace_keeps_original(self, temp_dir: Path):
        """If the rename fails the old content survives and the temp file is cleaned up."""
        path = temp_dir / "config.toml"
        path.write_text("original")

        with patch("codex_market.utils.filesystem.os.replace", side_effect=OSError("boom")):
            with pytest.raises(OSError):
                write_text_file_atomic(path, "new")

        assert path.read_text() == "original"
        assert [p.name for p in temp_dir.iterdir()] == ["config.toml"]
