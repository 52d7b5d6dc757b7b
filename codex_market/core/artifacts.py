"""Copying plugin skills and command prompts into Codex directories.

Artifacts never overwrite something already present at the destination:
on a name collision the copy gets a random suffix instead, so a user's own
``reviewer`` skill survives a plugin that ships one with the same name.
"""

import logging
import secrets
from pathlib import Path

from codex_market.config.schemas import CommandEntry, SkillEntry
from codex_market.utils.filesystem import (
    copy_directory,
    copy_file,
    ensure_directory,
    remove_directory,
    remove_file,
)

logger = logging.getLogger(__name__)

SKILL_MARKER_FILE = "SKILL.md"
COMMAND_SUFFIX = ".md"
SUFFIX_BYTES = 4  # 8 hex characters


class ArtifactError(Exception):
    """Error copying or removing an artifact."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def _random_suffix() -> str:
    return secrets.token_hex(SUFFIX_BYTES)


def unique_directory_path(dest_dir: Path, name: str) -> Path:
    """Pick a directory path under dest_dir that doesn't exist yet.

    Args:
        dest_dir: Parent directory
        name: Preferred directory name

    Returns:
        ``dest_dir/name``, or ``dest_dir/name-xxxxxxxx`` if that is taken
    """
    candidate = dest_dir / name
    while candidate.exists():
        candidate = dest_dir / f"{name}-{_random_suffix()}"
    return candidate


def unique_file_path(dest_dir: Path, filename: str) -> Path:
    """Pick a file path under dest_dir that doesn't exist yet.

    The suffix goes before the extension: ``greet.md`` becomes
    ``greet-xxxxxxxx.md``.

    Args:
        dest_dir: Parent directory
        filename: Preferred file name

    Returns:
        A path that does not exist
    """
    candidate = dest_dir / filename
    stem, ext = Path(filename).stem, Path(filename).suffix
    while candidate.exists():
        candidate = dest_dir / f"{stem}-{_random_suffix()}{ext}"
    return candidate


def discover_skills(source_dir: Path) -> list[Path]:
    """List skill directories (subdirectories with a SKILL.md), sorted by name."""
    if not source_dir.is_dir():
        return []
    return sorted(
        (p for p in source_dir.iterdir() if p.is_dir() and (p / SKILL_MARKER_FILE).is_file()),
        key=lambda p: p.name,
    )


def discover_commands(source_dir: Path) -> list[Path]:
    """List command prompt files, sorted by name."""
    if not source_dir.is_dir():
        return []
    return sorted(
        (p for p in source_dir.iterdir() if p.is_file() and p.suffix == COMMAND_SUFFIX),
        key=lambda p: p.name,
    )


def install_skills(source_dir: Path, dest_dir: Path) -> list[SkillEntry]:
    """Copy every skill under source_dir into dest_dir.

    Each skill is copied as a unit: if a copy fails its partial destination
    is removed and ArtifactError is raised. Skills copied before the failure
    stay in place.

    Args:
        source_dir: The plugin's ``skills/`` directory
        dest_dir: Codex skills directory for the target scope

    Returns:
        Entries for the installed skills (empty if source_dir is missing)

    Raises:
        ArtifactError: If a skill cannot be copied
    """
    skills = discover_skills(source_dir)
    if not skills:
        return []

    ensure_directory(dest_dir)
    installed: list[SkillEntry] = []
    for skill_dir in skills:
        dest = unique_directory_path(dest_dir, skill_dir.name)
        try:
            copy_directory(skill_dir, dest)
        except OSError as e:
            remove_directory(dest)
            raise ArtifactError(f"Failed to copy skill '{skill_dir.name}': {e}", dest) from e

        if dest.name != skill_dir.name:
            logger.info("Skill '%s' already exists, installed as '%s'", skill_dir.name, dest.name)
        installed.append(SkillEntry(name=dest.name, path=str(dest)))
    return installed


def install_commands(source_dir: Path, dest_dir: Path) -> list[CommandEntry]:
    """Copy every ``*.md`` command prompt under source_dir into dest_dir.

    Args:
        source_dir: The plugin's ``commands/`` directory
        dest_dir: Codex prompts directory for the target scope

    Returns:
        Entries for the installed commands, named by file stem

    Raises:
        ArtifactError: If a command file cannot be copied
    """
    commands = discover_commands(source_dir)
    if not commands:
        return []

    ensure_directory(dest_dir)
    installed: list[CommandEntry] = []
    for command_file in commands:
        dest = unique_file_path(dest_dir, command_file.name)
        try:
            copy_file(command_file, dest)
        except OSError as e:
            remove_file(dest)
            raise ArtifactError(f"Failed to copy command '{command_file.name}': {e}", dest) from e

        installed.append(CommandEntry(name=dest.stem, path=str(dest)))
    return installed


def remove_skill(entry: SkillEntry) -> bool:
    """Delete an installed skill directory.

    Returns:
        True if something was removed

    Raises:
        ArtifactError: If the directory exists but cannot be removed
    """
    try:
        return remove_directory(Path(entry.path))
    except OSError as e:
        raise ArtifactError(f"Failed to remove skill '{entry.name}': {e}", Path(entry.path)) from e


def remove_command(entry: CommandEntry) -> bool:
    """Delete an installed command prompt file.

    Returns:
        True if something was removed

    Raises:
        ArtifactError: If the file exists but cannot be removed
    """
    try:
        return remove_file(Path(entry.path))
    except OSError as e:
        raise ArtifactError(
            f"Failed to remove command '{entry.name}': {e}", Path(entry.path)
        ) from e
