"""File locations used by codex-market.

Two roots are involved:

- Codex's home (``$CODEX_HOME`` or ``~/.codex``) receives global skills,
  prompts, and ``config.toml``. Project installs use ``<project>/.codex``.
- codex-market's own home (``$CODEX_MARKET_HOME`` or
  ``~/.config/codex-market``) holds the ledger, config, marketplace clones,
  and the plugin cache.
"""

from pathlib import Path

from codex_market.config.schemas import Scope
from codex_market.utils.platform import get_env, get_home_directory

CODEX_HOME_ENV = "CODEX_HOME"
MARKET_HOME_ENV = "CODEX_MARKET_HOME"


class ConfigPaths:
    """Resolves every path codex-market reads or writes."""

    LEDGER_FILE = "installed.json"
    CONFIG_FILE = "config.yaml"
    CODEX_CONFIG_FILE = "config.toml"

    def __init__(self, codex_home: Path | None = None, market_home: Path | None = None):
        """Initialize the path provider.

        Args:
            codex_home: Codex home directory (defaults to $CODEX_HOME or ~/.codex)
            market_home: codex-market home (defaults to $CODEX_MARKET_HOME or
                ~/.config/codex-market)
        """
        home = Path(get_home_directory())
        if codex_home is None:
            env_home = get_env(CODEX_HOME_ENV)
            codex_home = Path(env_home) if env_home else home / ".codex"
        if market_home is None:
            env_home = get_env(MARKET_HOME_ENV)
            market_home = Path(env_home) if env_home else home / ".config" / "codex-market"
        self.codex_home = codex_home.expanduser()
        self.market_home = market_home.expanduser()

    # =========================================================================
    # codex-market state
    # =========================================================================

    @property
    def ledger_path(self) -> Path:
        return self.market_home / self.LEDGER_FILE

    @property
    def config_path(self) -> Path:
        return self.market_home / self.CONFIG_FILE

    @property
    def marketplaces_dir(self) -> Path:
        return self.market_home / "marketplaces"

    @property
    def cache_dir(self) -> Path:
        return self.market_home / "cache"

    def plugin_cache_path(self, marketplace: str, plugin_name: str, version: str) -> Path:
        """Cache copy location for one plugin version."""
        return self.cache_dir / marketplace / plugin_name / version

    # =========================================================================
    # Codex directories, by scope
    # =========================================================================

    def codex_dir(self, scope: Scope, project_path: str | Path | None = None) -> Path:
        """Get the Codex directory for a scope.

        Args:
            scope: "global" or "project"
            project_path: Project root (defaults to the current directory)

        Returns:
            ``codex_home`` for global scope, ``<project>/.codex`` otherwise
        """
        if scope == "project":
            root = Path(project_path) if project_path else Path.cwd()
            return root / ".codex"
        return self.codex_home

    def skills_dir(self, scope: Scope, project_path: str | Path | None = None) -> Path:
        return self.codex_dir(scope, project_path) / "skills"

    def prompts_dir(self, scope: Scope, project_path: str | Path | None = None) -> Path:
        """Codex reads custom slash commands from ``prompts/``."""
        return self.codex_dir(scope, project_path) / "prompts"

    def mcp_config_path(self, scope: Scope, project_path: str | Path | None = None) -> Path:
        return self.codex_dir(scope, project_path) / self.CODEX_CONFIG_FILE
