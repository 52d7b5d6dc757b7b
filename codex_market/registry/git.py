"""Thin wrapper over the system git binary.

Uses the ``git`` command for all operations (no gitpython dependency).
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

AUTH_FAILURE_PATTERNS = re.compile(
    r"authentication failed|could not read username|permission denied"
    r"|terminal prompts disabled|invalid username or password"
    r"|repository not found|access denied|403",
    re.IGNORECASE,
)

COMMIT_SHORT_LENGTH = 12


class GitError(Exception):
    """Error running a git command."""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message)


class GitAuthError(GitError):
    """The remote rejected our credentials or asked for them."""


class GitClient:
    """Clone, pull, and inspect git repositories."""

    def __init__(self, executable: str = "git"):
        self._executable = executable

    def _run_git(
        self, args: list[str], cwd: Path | None = None, url: str | None = None
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command.

        Args:
            args: Git command arguments (without 'git')
            cwd: Working directory
            url: Remote involved, for error reporting

        Returns:
            Completed process

        Raises:
            GitAuthError: If the failure looks like an authentication problem
            GitError: If the command fails
        """
        cmd = [self._executable] + args
        logger.debug("Running git command: %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            logger.debug("Git command failed: %s - %s", " ".join(cmd), stderr)
            if AUTH_FAILURE_PATTERNS.search(stderr):
                raise GitAuthError(
                    f"Authentication failed for {url or 'repository'}: {stderr}", url=url
                ) from e
            raise GitError(f"Git command failed: {' '.join(cmd)}\n{stderr}", url=url) from e
        except FileNotFoundError as e:
            raise GitError("Git is not installed or not in PATH", url=url) from e

    def clone(self, url: str, dest: Path, depth: int | None = 1) -> Path:
        """Clone a repository.

        Args:
            url: Repository URL
            dest: Destination directory (must not exist)
            depth: Shallow clone depth, or None for full history

        Returns:
            Path to the clone
        """
        logger.info("Cloning %s to %s", url, dest)
        args = ["clone"]
        if depth:
            args.extend(["--depth", str(depth)])
        args.extend([url, str(dest)])
        dest.parent.mkdir(parents=True, exist_ok=True)
        self._run_git(args, url=url)
        return dest

    def pull(self, repo: Path) -> None:
        """Fast-forward a clone to its upstream."""
        logger.info("Pulling %s", repo)
        self._run_git(["pull", "--ff-only"], cwd=repo)

    def current_commit(self, repo: Path) -> str:
        """Get the full SHA of HEAD.

        Raises:
            GitError: If repo is not a git repository
        """
        result = self._run_git(["rev-parse", "HEAD"], cwd=repo)
        return result.stdout.strip()
