"""Known marketplaces and their manifests."""

import logging
from datetime import datetime, timezone
from pathlib import Path

from codex_market.config.parser import (
    ConfigError,
    load_app_config,
    load_marketplace_manifest,
    save_app_config,
)
from codex_market.config.paths import ConfigPaths
from codex_market.config.schemas import (
    AppConfig,
    Marketplace,
    MarketplaceManifest,
    MarketplaceSource,
)
from codex_market.registry.git import GitClient
from codex_market.utils.filesystem import remove_directory
from codex_market.utils.locking import lock_for

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Error managing a marketplace."""

    def __init__(self, message: str, name: str | None = None):
        self.name = name
        super().__init__(message)


def now_timestamp() -> str:
    """Current time as an RFC 3339 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def extract_repo_name(url: str) -> str:
    """Derive a directory name from a git URL or local path.

    ``https://github.com/org/tools.git``, ``git@github.com:org/tools`` and
    ``/srv/tools`` all give ``tools``.
    """
    trimmed = url.rstrip("/").removesuffix(".git")
    return trimmed.replace(":", "/").rsplit("/", 1)[-1]


class MarketplaceRegistry:
    """Manages the marketplaces listed in codex-market's config.yaml.

    Git marketplaces are cloned under ``<market_home>/marketplaces``; a local
    directory is registered in place.
    """

    def __init__(self, paths: ConfigPaths, git: GitClient):
        """Initialize the registry.

        Args:
            paths: Path provider
            git: Git client used to clone and pull marketplaces
        """
        self._paths = paths
        self._git = git
        self._lock = lock_for(paths.config_path)

    def _load(self) -> AppConfig:
        with self._lock.read():
            return load_app_config(self._paths.config_path)

    def _save(self, config: AppConfig) -> None:
        with self._lock.write():
            save_app_config(self._paths.config_path, config)

    def list(self) -> dict[str, Marketplace]:
        """Get every registered marketplace, keyed by name."""
        return dict(self._load().marketplaces)

    def get(self, name: str) -> Marketplace | None:
        """Get a marketplace by name, or None if it isn't registered."""
        return self._load().marketplaces.get(name)

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def add(self, url: str) -> tuple[str, MarketplaceManifest]:
        """Register a marketplace.

        Git URLs are shallow-cloned; an existing local directory is used as is.
        The marketplace is registered under the name from its manifest.

        Args:
            url: Git URL or local directory

        Returns:
            Tuple of (registered name, manifest)

        Raises:
            MarketplaceError: If the marketplace already exists or has no
                valid manifest
            GitError: If cloning fails
        """
        repo_name = extract_repo_name(url)
        if not repo_name:
            raise MarketplaceError(f"Cannot derive a marketplace name from: {url}")

        local = Path(url).expanduser()
        if local.is_dir():
            location = local.resolve()
            source = MarketplaceSource(source="directory", path=str(location))
            cloned = False
        else:
            location = self._paths.marketplaces_dir / repo_name
            if location.exists():
                raise MarketplaceError(
                    f"Marketplace directory already exists: {location}", repo_name
                )
            self._git.clone(url, location)
            source = MarketplaceSource(source="git", url=url)
            cloned = True

        try:
            manifest = load_marketplace_manifest(location)
        except ConfigError as e:
            if cloned:
                remove_directory(location)
            raise MarketplaceError(f"Invalid marketplace at {location}: {e}", repo_name) from e

        name = manifest.name or repo_name
        with self._lock.write():
            config = self._load()
            if name in config.marketplaces:
                if cloned:
                    remove_directory(location)
                raise MarketplaceError(f"Marketplace '{name}' already exists", name)
            config.marketplaces[name] = Marketplace(
                source=source,
                install_location=str(location),
                last_updated=now_timestamp(),
            )
            self._save(config)

        logger.info("Added marketplace %s (%d plugins)", name, len(manifest.plugins))
        return name, manifest

    def remove(self, name: str) -> Marketplace:
        """Unregister a marketplace and delete its clone.

        Directories registered in place are left on disk.

        Returns:
            The removed marketplace

        Raises:
            MarketplaceError: If the marketplace isn't registered
        """
        with self._lock.write():
            config = self._load()
            marketplace = config.marketplaces.pop(name, None)
            if marketplace is None:
                raise MarketplaceError(f"Marketplace '{name}' not found", name)
            self._save(config)

        if marketplace.source.source == "git" and marketplace.install_location:
            try:
                remove_directory(Path(marketplace.install_location))
            except OSError as e:
                logger.warning(
                    "Failed to remove directory %s: %s", marketplace.install_location, e
                )
        logger.info("Removed marketplace %s", name)
        return marketplace

    def update(self, name: str) -> None:
        """Pull the latest marketplace content and refresh its timestamp.

        Raises:
            MarketplaceError: If the marketplace isn't registered
            GitError: If the pull fails
        """
        marketplace = self.get(name)
        if marketplace is None:
            raise MarketplaceError(f"Marketplace '{name}' not found", name)
        if marketplace.source.source == "git":
            self._git.pull(Path(marketplace.install_location))
        self.update_timestamp(name)

    def update_timestamp(self, name: str) -> None:
        with self._lock.write():
            config = self._load()
            marketplace = config.marketplaces.get(name)
            if marketplace is None:
                return
            marketplace.last_updated = now_timestamp()
            self._save(config)

    def marketplace_dir(self, name: str) -> Path:
        """Get the local directory of a marketplace.

        Raises:
            MarketplaceError: If the marketplace isn't registered
        """
        marketplace = self.get(name)
        if marketplace is None:
            raise MarketplaceError(f"Marketplace '{name}' not found", name)
        return Path(marketplace.install_location)

    def load_manifest(self, name: str) -> MarketplaceManifest:
        """Load a registered marketplace's manifest.

        Raises:
            MarketplaceError: If the marketplace isn't registered
            ConfigError: If the manifest is missing or invalid
        """
        return load_marketplace_manifest(self.marketplace_dir(name))
