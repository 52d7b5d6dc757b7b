"""Plugin installation orchestrator.

This module contains the PluginInstaller which sequences an install:

    resolve source -> fetch if remote -> copy skills -> copy commands
    -> write MCP servers -> cache copy -> ledger upsert

and the reverse for uninstall. Update is uninstall followed by install
with the record's original scope and project path.

Failure policy: any step before the ledger upsert aborts the install and no
record is written. Artifacts copied before the failing step stay in place.
Uninstall removes the ledger records first, then cleans up artifacts on a
best-effort basis, reporting failures as warnings.
"""

import logging
import tempfile
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from codex_market.config.parser import ConfigError, load_mcp_servers
from codex_market.config.paths import ConfigPaths
from codex_market.config.schemas import (
    InstallRecord,
    Marketplace,
    MarketplaceManifest,
    MCPServerEntry,
    PluginEntry,
    PluginSource,
    RemovalScope,
    Scope,
)
from codex_market.core.artifacts import (
    ArtifactError,
    install_commands,
    install_skills,
    remove_command,
    remove_skill,
)
from codex_market.core.conflicts import find_conflicts
from codex_market.core.ledger import InstallLedger
from codex_market.core.marketplace import MarketplaceError, MarketplaceRegistry, now_timestamp
from codex_market.registry.git import COMMIT_SHORT_LENGTH, GitClient, GitError
from codex_market.utils.filesystem import copy_directory, read_text_file, remove_directory
from codex_market.utils.markers import MarkerError, add_servers, remove_servers

logger = logging.getLogger("codex_market.installer")

DEFAULT_VERSION = "latest"


class InstallError(Exception):
    """Error during plugin installation."""

    def __init__(self, message: str, plugin_id: str | None = None):
        self.plugin_id = plugin_id
        super().__init__(message)


class PluginNotFoundError(InstallError):
    """The marketplace, the plugin, or its ledger entry doesn't exist."""


class AlreadyInstalledError(InstallError):
    """The plugin is already installed with the requested scope and project."""

    def __init__(self, plugin_id: str, scope: str, project_path: str | None = None):
        self.scope = scope
        self.project_path = project_path
        location = f"project:{project_path}" if scope == "project" else scope
        super().__init__(
            f"{plugin_id} is already installed ({location}). Uninstall it first or run update.",
            plugin_id,
        )


class SourceUnavailableError(InstallError):
    """The plugin's source could not be fetched or doesn't exist."""


def parse_plugin_id(identifier: str) -> tuple[str, str]:
    """Split a ``name@marketplace`` identifier.

    Args:
        identifier: Plugin identifier

    Returns:
        Tuple of (plugin name, marketplace name)

    Raises:
        InstallError: If the identifier isn't ``name@marketplace``
    """
    parts = identifier.split("@")
    if len(parts) != 2 or not all(parts) or any(ch.isspace() for ch in identifier):
        raise InstallError(
            f"Invalid plugin identifier '{identifier}' (expected <plugin>@<marketplace>)",
            identifier,
        )
    return parts[0], parts[1]


@dataclass
class InstallResult:
    """Result of a plugin installation."""

    plugin_id: str
    record: InstallRecord
    warnings: list[str] = field(default_factory=list)
    skipped_servers: list[str] = field(default_factory=list)

    @property
    def version(self) -> str:
        return self.record.version


@dataclass
class UninstallResult:
    """Result of a plugin uninstall."""

    plugin_id: str
    removed: list[InstallRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


UpdateStatus = Literal["updated", "up_to_date", "skipped", "failed"]


@dataclass
class UpdateResult:
    """Outcome for one install record during an update."""

    plugin_id: str
    location: str
    old_version: str
    status: UpdateStatus
    new_version: str = ""
    message: str = ""


@dataclass
class UpdateSummary:
    """Summary of an update operation."""

    results: list[UpdateResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return sum(1 for r in self.results if r.status == "updated")

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if r.status in ("failed", "skipped"))

    @property
    def all_successful(self) -> bool:
        return self.failure_count == 0


def _project_key(scope: str, project_path: str | Path | None) -> str | None:
    """Normalize the project path used as part of a record's key."""
    if scope != "project":
        return None
    return str(Path(project_path).absolute()) if project_path else str(Path.cwd())


class PluginInstaller:
    """Installs, uninstalls, and updates plugins.

    Collaborators are passed in by the command entry point; the installer
    holds no global state of its own.
    """

    def __init__(
        self,
        ledger: InstallLedger,
        registry: MarketplaceRegistry,
        git: GitClient,
        paths: ConfigPaths,
    ):
        """Initialize the installer.

        Args:
            ledger: Install ledger to record installations in
            registry: Known marketplaces
            git: Git client for remote sources and commit versions
            paths: Path provider for Codex and codex-market directories
        """
        self.ledger = ledger
        self.registry = registry
        self.git = git
        self.paths = paths

    # =========================================================================
    # Install
    # =========================================================================

    def install(
        self,
        plugin_id: str,
        scope: Scope = "global",
        project_path: str | Path | None = None,
        installed_at: str | None = None,
    ) -> InstallResult:
        """Install a plugin.

        Args:
            plugin_id: Plugin identifier (``name@marketplace``)
            scope: "global" or "project"
            project_path: Project root for project scope (defaults to the
                current directory)
            installed_at: Original install time to keep (used by update)

        Returns:
            InstallResult with the stored record and any warnings

        Raises:
            PluginNotFoundError: If the marketplace or plugin doesn't exist
            AlreadyInstalledError: If the plugin is installed with this key
            SourceUnavailableError: If the plugin source can't be fetched
            InstallError: If copying artifacts or writing config fails
            ConfigError: If the marketplace manifest is malformed
        """
        if scope not in ("global", "project"):
            raise InstallError(f"Invalid scope '{scope}' (must be global or project)", plugin_id)

        name, marketplace_name = parse_plugin_id(plugin_id)
        key_path = _project_key(scope, project_path)
        if key_path is not None and not Path(key_path).is_dir():
            raise InstallError(f"Project directory does not exist: {key_path}", plugin_id)

        marketplace = self.registry.get(marketplace_name)
        if marketplace is None:
            raise PluginNotFoundError(f"Marketplace '{marketplace_name}' not found", plugin_id)
        marketplace_dir = Path(marketplace.install_location)
        manifest = self.registry.load_manifest(marketplace_name)
        entry = manifest.find_plugin(name)
        if entry is None:
            raise PluginNotFoundError(
                f"Plugin '{name}' not found in marketplace '{marketplace_name}'", plugin_id
            )

        if self.ledger.query(plugin_id, scope, key_path):
            raise AlreadyInstalledError(plugin_id, scope, key_path)

        version = self._resolve_version(entry, marketplace_dir)
        logger.info("Installing %s (%s) version %s", plugin_id, scope, version)

        warnings: list[str] = []
        skipped: list[str] = []
        with self._plugin_source(plugin_id, manifest, marketplace_dir, entry) as source_dir:
            try:
                skills = install_skills(
                    source_dir / "skills", self.paths.skills_dir(scope, key_path)
                )
                commands = install_commands(
                    source_dir / "commands", self.paths.prompts_dir(scope, key_path)
                )
            except ArtifactError as e:
                raise InstallError(str(e), plugin_id) from e

            mcp_servers = self._install_mcp_servers(
                plugin_id,
                marketplace_name,
                source_dir,
                self.paths.mcp_config_path(scope, key_path),
                warnings,
                skipped,
            )

            if not (skills or commands or mcp_servers):
                warnings.append("No skills, commands, or MCP servers found in plugin")

            cache_path = self.paths.plugin_cache_path(marketplace_name, name, version)
            try:
                copy_directory(source_dir, cache_path, ignore_git=True)
            except OSError as e:
                remove_directory(cache_path)
                raise InstallError(f"Failed to cache plugin files: {e}", plugin_id) from e

        now = now_timestamp()
        record = InstallRecord(
            scope=scope,
            project_path=key_path,
            version=version,
            installed_at=installed_at or now,
            last_updated=now,
            source=PluginSource(
                marketplace=marketplace_name,
                url=self._origin_url(entry, marketplace),
                cache_path=str(cache_path),
            ),
            skills=skills,
            commands=commands,
            mcp_servers=mcp_servers,
        )
        self.ledger.upsert(plugin_id, record)

        for warning in warnings:
            logger.warning("%s: %s", plugin_id, warning)
        return InstallResult(
            plugin_id=plugin_id, record=record, warnings=warnings, skipped_servers=skipped
        )

    def _resolve_version(self, entry: PluginEntry, marketplace_dir: Path) -> str:
        """Declared version, else the marketplace's short HEAD commit."""
        if entry.version:
            return entry.version
        try:
            commit = self.git.current_commit(marketplace_dir)
        except GitError as e:
            logger.debug("No commit for %s: %s", marketplace_dir, e)
            return DEFAULT_VERSION
        if len(commit) > COMMIT_SHORT_LENGTH:
            return commit[:COMMIT_SHORT_LENGTH]
        return DEFAULT_VERSION

    @staticmethod
    def _origin_url(entry: PluginEntry, marketplace: Marketplace) -> str:
        if entry.remote_url:
            return entry.remote_url
        return marketplace.source.url or marketplace.source.path or ""

    @contextmanager
    def _plugin_source(
        self,
        plugin_id: str,
        manifest: MarketplaceManifest,
        marketplace_dir: Path,
        entry: PluginEntry,
    ) -> Iterator[Path]:
        """Yield a local directory holding the plugin's files.

        Remote sources are shallow-cloned into a temporary directory that is
        removed when the context exits, whatever the outcome.
        """
        source = manifest.source_path(marketplace_dir, entry)
        if not entry.is_remote:
            local = Path(source)
            if not local.is_dir():
                raise SourceUnavailableError(f"Plugin source not found: {local}", plugin_id)
            yield local
            return

        with tempfile.TemporaryDirectory(prefix="codex-plugin-") as temp_dir:
            clone_dir = Path(temp_dir) / entry.name
            try:
                self.git.clone(source, clone_dir)
            except GitError as e:
                raise SourceUnavailableError(f"Failed to fetch {source}: {e}", plugin_id) from e
            yield clone_dir

    def _install_mcp_servers(
        self,
        plugin_id: str,
        marketplace_name: str,
        source_dir: Path,
        config_path: Path,
        warnings: list[str],
        skipped: list[str],
    ) -> list[MCPServerEntry]:
        """Write the plugin's MCP servers into Codex's config.toml.

        Servers whose names are already declared outside this plugin's block
        are dropped with a warning; the rest are installed.
        """
        try:
            servers = load_mcp_servers(source_dir)
        except ConfigError as e:
            warnings.append(f"Skipped MCP servers: {e}")
            return []
        if not servers:
            return []

        try:
            existing = read_text_file(config_path, missing_ok=True)
            conflicts = find_conflicts(existing, list(servers), plugin_id)
        except MarkerError as e:
            warnings.append(f"Skipped MCP servers, {config_path} needs manual repair: {e}")
            return []

        for name in sorted(conflicts):
            warnings.append(f"MCP server '{name}' already exists in {config_path}, skipped")
            skipped.append(name)
            del servers[name]
        if not servers:
            return []

        try:
            mismatches = add_servers(config_path, plugin_id, marketplace_name, servers)
        except OSError as e:
            raise InstallError(f"Failed to update {config_path}: {e}", plugin_id) from e

        for mismatch in mismatches:
            warnings.append(
                f"MCP server '{mismatch.server}': env '{mismatch.key}' references "
                f"${mismatch.var_name}, but Codex forwards ${mismatch.key}"
            )
        return [MCPServerEntry(name=name, owner_plugin=plugin_id) for name in sorted(servers)]

    # =========================================================================
    # Uninstall
    # =========================================================================

    def uninstall(
        self,
        plugin_id: str,
        scope: RemovalScope = "global",
        project_path: str | Path | None = None,
    ) -> UninstallResult:
        """Uninstall a plugin from one scope, or from everywhere.

        Args:
            plugin_id: Plugin identifier
            scope: "global", "project", or "all"
            project_path: Project for project scope (defaults to the current
                directory)

        Returns:
            UninstallResult with the removed records and cleanup warnings

        Raises:
            PluginNotFoundError: If nothing is installed for that scope
        """
        if scope not in ("global", "project", "all"):
            raise InstallError(
                f"Invalid scope '{scope}' (must be global, project, or all)", plugin_id
            )

        key_path = _project_key(scope, project_path)
        removed = self.ledger.remove_by_scope(plugin_id, scope, key_path)
        if not removed:
            if scope == "all":
                raise PluginNotFoundError(f"{plugin_id} is not installed", plugin_id)
            raise PluginNotFoundError(
                f"{plugin_id} is not installed with scope '{scope}'", plugin_id
            )

        result = UninstallResult(plugin_id=plugin_id, removed=removed)
        remaining_caches = {r.source.cache_path for r in self.ledger.get(plugin_id)}
        for record in removed:
            self._remove_artifacts(plugin_id, record, remaining_caches, result.warnings)

        for warning in result.warnings:
            logger.warning("%s: %s", plugin_id, warning)
        return result

    def _remove_artifacts(
        self,
        plugin_id: str,
        record: InstallRecord,
        remaining_caches: set[str],
        warnings: list[str],
    ) -> None:
        logger.info("Removing %s from %s", plugin_id, record.location)
        if record.scope == "project" and not Path(record.project_path or "").is_dir():
            warnings.append(f"Project directory no longer exists: {record.project_path}")

        for skill in record.skills:
            try:
                remove_skill(skill)
            except ArtifactError as e:
                warnings.append(str(e))

        for command in record.commands:
            try:
                remove_command(command)
            except ArtifactError as e:
                warnings.append(str(e))

        if record.mcp_servers:
            config_path = self.paths.mcp_config_path(record.scope, record.project_path)
            try:
                remove_servers(config_path, plugin_id)
            except (MarkerError, OSError) as e:
                warnings.append(f"Failed to remove MCP servers from {config_path}: {e}")

        cache_path = record.source.cache_path
        if cache_path and cache_path not in remaining_caches:
            try:
                remove_directory(Path(cache_path))
            except OSError as e:
                warnings.append(f"Failed to remove cache {cache_path}: {e}")

    # =========================================================================
    # Update
    # =========================================================================

    def check_update(self, plugin_id: str, record: InstallRecord) -> tuple[bool, str]:
        """Compare an installed record with what its marketplace now offers.

        Returns:
            Tuple of (needs update, available version)

        Raises:
            PluginNotFoundError: If the marketplace or plugin is gone
            ConfigError: If the marketplace manifest is malformed
        """
        name, marketplace_name = parse_plugin_id(plugin_id)
        marketplace = self.registry.get(marketplace_name)
        if marketplace is None:
            raise PluginNotFoundError(f"Marketplace '{marketplace_name}' not found", plugin_id)
        manifest = self.registry.load_manifest(marketplace_name)
        entry = manifest.find_plugin(name)
        if entry is None:
            raise PluginNotFoundError(
                f"Plugin '{name}' not found in marketplace '{marketplace_name}'", plugin_id
            )

        new_version = self._resolve_version(entry, Path(marketplace.install_location))
        return record.version != new_version, new_version

    def reinstall(self, plugin_id: str, record: InstallRecord) -> InstallResult:
        """Uninstall then install a record, keeping its scope and project.

        The working directory is never consulted, so this behaves the same
        wherever it is called from.
        """
        uninstalled = self.uninstall(plugin_id, record.scope, record.project_path)
        result = self.install(
            plugin_id,
            record.scope,
            record.project_path,
            installed_at=record.installed_at,
        )
        result.warnings[:0] = uninstalled.warnings
        return result

    def update(
        self,
        plugin_id: str | None = None,
        force: bool = False,
        progress: Callable[[str], AbstractContextManager[object]] | None = None,
    ) -> UpdateSummary:
        """Update one installed plugin, or all of them.

        Each affected marketplace is pulled first; plugins from a marketplace
        that fails to update are skipped. A failure on one record doesn't stop
        the others.

        Args:
            plugin_id: Plugin to update, or None for every installed plugin
            force: Reinstall even when the version hasn't changed
            progress: Optional factory for a context manager wrapped around
                each reinstall (e.g. a spinner), called with the plugin id

        Returns:
            UpdateSummary with one result per install record

        Raises:
            PluginNotFoundError: If plugin_id is given but not installed
        """
        installed = self.ledger.list()
        if plugin_id is not None:
            parse_plugin_id(plugin_id)
            if not installed.get(plugin_id):
                raise PluginNotFoundError(f"{plugin_id} is not installed", plugin_id)
            installed = {plugin_id: installed[plugin_id]}

        summary = UpdateSummary()
        failed_marketplaces = self._pull_marketplaces(installed, summary)

        for pid in sorted(installed):
            marketplace_name = parse_plugin_id(pid)[1]
            for record in installed[pid]:
                if marketplace_name in failed_marketplaces:
                    summary.results.append(
                        UpdateResult(
                            plugin_id=pid,
                            location=record.location,
                            old_version=record.version,
                            status="skipped",
                            message=f"marketplace '{marketplace_name}' could not be updated",
                        )
                    )
                    continue
                summary.results.append(self._update_record(pid, record, force, progress, summary))
        return summary

    def _pull_marketplaces(
        self, installed: dict[str, list[InstallRecord]], summary: UpdateSummary
    ) -> set[str]:
        failed: set[str] = set()
        for name in sorted({parse_plugin_id(pid)[1] for pid in installed}):
            try:
                self.registry.update(name)
            except (MarketplaceError, GitError) as e:
                summary.warnings.append(f"Failed to update marketplace '{name}': {e}")
                failed.add(name)
        return failed

    def _update_record(
        self,
        plugin_id: str,
        record: InstallRecord,
        force: bool,
        progress: Callable[[str], AbstractContextManager[object]] | None,
        summary: UpdateSummary,
    ) -> UpdateResult:
        result = UpdateResult(
            plugin_id=plugin_id,
            location=record.location,
            old_version=record.version,
            status="up_to_date",
        )
        try:
            needs_update, new_version = self.check_update(plugin_id, record)
        except (InstallError, ConfigError) as e:
            result.status = "failed"
            result.message = str(e)
            return result

        result.new_version = new_version
        if not needs_update and not force:
            return result

        wrapper = progress(plugin_id) if progress is not None else nullcontext()
        try:
            with wrapper:
                installed = self.reinstall(plugin_id, record)
        except (InstallError, ConfigError, OSError) as e:
            logger.debug("Reinstall of %s failed", plugin_id, exc_info=True)
            result.status = "failed"
            result.message = str(e)
            return result

        summary.warnings.extend(f"{plugin_id}: {w}" for w in installed.warnings)
        result.status = "updated"
        result.new_version = installed.version
        return result
