"""Shared fixtures for codex-market tests."""

import json
import shutil
import tempfile
from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from codex_market.config.paths import ConfigPaths
from codex_market.core.installer import PluginInstaller
from codex_market.core.ledger import InstallLedger
from codex_market.core.marketplace import MarketplaceRegistry
from codex_market.registry.git import GitClient, GitError

FORMATTER_MCP = {
    "mcpServers": {
        "fmt-server": {
            "command": "npx",
            "args": ["-y", "@acme/fmt-server"],
            "env": {"TOKEN": "${FMT_TOKEN}"},
        }
    }
}


class FakeGitClient(GitClient):
    """GitClient that never runs git.

    Clones copy from ``remotes`` (url -> local directory) and record their
    destination. Pulls are recorded and fail for URLs/paths listed in
    ``failing``.
    """

    def __init__(self, commit: str | None = None):
        super().__init__()
        self.commit = commit
        self.remotes: dict[str, Path] = {}
        self.failing: set[str] = set()
        self.cloned: list[str] = []
        self.clone_dirs: list[Path] = []
        self.pulled: list[Path] = []

    def clone(self, url: str, dest: Path, depth: int | None = 1) -> Path:
        if url in self.failing or url not in self.remotes:
            raise GitError(f"Git command failed: git clone {url}", url=url)
        shutil.copytree(self.remotes[url], dest)
        self.cloned.append(url)
        self.clone_dirs.append(dest)
        return dest

    def pull(self, repo: Path) -> None:
        if str(repo) in self.failing:
            raise GitError(f"Git command failed: git pull in {repo}")
        self.pulled.append(repo)

    def current_commit(self, repo: Path) -> str:
        if self.commit is None:
            raise GitError(f"Not a git repository: {repo}")
        return self.commit


def write_plugin(
    root: Path,
    skills: dict[str, str] | None = None,
    commands: dict[str, str] | None = None,
    mcp: dict[str, Any] | None = None,
) -> Path:
    """Create a plugin source tree.

    Args:
        root: Plugin directory to create
        skills: Skill name -> SKILL.md content
        commands: Command file name -> content
        mcp: .mcp.json content
    """
    root.mkdir(parents=True, exist_ok=True)
    for name, content in (skills or {}).items():
        skill_dir = root / "skills" / name
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.md").write_text(content)
    for filename, content in (commands or {}).items():
        (root / "commands").mkdir(exist_ok=True)
        (root / "commands" / filename).write_text(content)
    if mcp is not None:
        (root / ".mcp.json").write_text(json.dumps(mcp))
    return root


def write_marketplace(root: Path, name: str, plugins: list[dict[str, Any]], **extra: Any) -> Path:
    """Create a marketplace directory with a .claude-plugin/marketplace.json."""
    manifest_dir = root / ".claude-plugin"
    manifest_dir.mkdir(parents=True, exist_ok=True)
    manifest = {"name": name, "owner": {"name": "Acme"}, "plugins": plugins, **extra}
    (manifest_dir / "marketplace.json").write_text(json.dumps(manifest, indent=2))
    return root


@dataclass
class Env:
    """A fully wired codex-market environment rooted in a temp directory."""

    root: Path
    paths: ConfigPaths
    git: FakeGitClient
    ledger: InstallLedger
    registry: MarketplaceRegistry
    installer: PluginInstaller
    marketplace_dir: Path

    @property
    def config_toml(self) -> Path:
        return self.paths.mcp_config_path("global")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="codex_market_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def paths(temp_dir: Path) -> ConfigPaths:
    """Paths rooted in the temp directory."""
    return ConfigPaths(codex_home=temp_dir / "codex", market_home=temp_dir / "market")


@pytest.fixture
def acme_marketplace(temp_dir: Path) -> Path:
    """An 'acme' marketplace offering formatter, reviewer-a and reviewer-b."""
    root = temp_dir / "sources" / "acme"
    write_plugin(
        root / "plugins" / "formatter",
        skills={"fmt": "# fmt\nFormat code."},
        commands={"fmt-check.md": "Check formatting."},
        mcp=FORMATTER_MCP,
    )
    write_plugin(root / "plugins" / "reviewer-a", skills={"reviewer": "# reviewer A"})
    write_plugin(root / "plugins" / "reviewer-b", skills={"reviewer": "# reviewer B"})
    write_plugin(root / "plugins" / "undated", commands={"hello.md": "Say hello."})
    return write_marketplace(
        root,
        "acme",
        [
            {"name": "formatter", "source": "./plugins/formatter", "version": "1.0.0"},
            {"name": "reviewer-a", "source": "./plugins/reviewer-a", "version": "0.1.0"},
            {"name": "reviewer-b", "source": {"source": "path", "path": "./plugins/reviewer-b"}},
            {"name": "undated", "source": "./plugins/undated"},
        ],
    )


@pytest.fixture
def env(temp_dir: Path, paths: ConfigPaths, git: FakeGitClient, acme_marketplace: Path) -> Env:
    """Installer wired to a registered 'acme' directory marketplace and a fake git."""
    ledger = InstallLedger(paths.ledger_path)
    registry = MarketplaceRegistry(paths, git)
    registry.add(str(acme_marketplace))
    installer = PluginInstaller(ledger, registry, git, paths)
    return Env(temp_dir, paths, git, ledger, registry, installer, acme_marketplace)


@pytest.fixture
def project_dir(temp_dir: Path) -> Path:
    """An empty project directory."""
    path = temp_dir / "project"
    path.mkdir()
    return path


@pytest.fixture
def git() -> FakeGitClient:
    """A git client that copies from local directories instead of cloning."""
    return FakeGitClient()


@pytest.fixture
def make_plugin():
    """Factory for plugin source trees (see write_plugin)."""
    return write_plugin


@pytest.fixture
def make_marketplace():
    """Factory for marketplace directories (see write_marketplace)."""
    return write_marketplace
