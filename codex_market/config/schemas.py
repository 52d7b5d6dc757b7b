"""Pydantic schemas for codex-market data files.

This module defines the data models for:
- installed.json (the install ledger)
- config.yaml (codex-market's own configuration and known marketplaces)
- .claude-plugin/marketplace.json (marketplace manifest)
- .mcp.json (MCP server declarations shipped by a plugin)
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# =============================================================================
# Common Types
# =============================================================================

Scope = Literal["global", "project"]
RemovalScope = Literal["global", "project", "all"]
MarketplaceSourceType = Literal["git", "directory"]

LEDGER_VERSION = 1


def check_name(value: str) -> str:
    """Reject names that can't appear inside a plugin identifier or marker line."""
    if "@" in value or any(ch.isspace() for ch in value):
        raise ValueError(f"Name '{value}' must not contain whitespace or '@'")
    return value


class CamelModel(BaseModel):
    """Base model for JSON documents that use camelCase keys on disk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Install Ledger (installed.json)
# =============================================================================


class SkillEntry(CamelModel):
    """An installed skill directory."""

    name: str
    path: str


class CommandEntry(CamelModel):
    """An installed command prompt file."""

    name: str
    path: str


class MCPServerEntry(CamelModel):
    """An MCP server written to config.toml by a plugin."""

    name: str
    owner_plugin: str


class PluginSource(CamelModel):
    """Where an installed plugin came from."""

    marketplace: str
    url: str = ""
    cache_path: str = ""


class InstallRecord(CamelModel):
    """One installation of a plugin in one scope.

    A plugin may be installed globally and in any number of projects; each
    installation is a separate record keyed by (scope, project_path).
    """

    scope: Scope
    project_path: str | None = None
    version: str
    installed_at: str
    last_updated: str
    source: PluginSource
    skills: list[SkillEntry] = Field(default_factory=list)
    commands: list[CommandEntry] = Field(default_factory=list)
    mcp_servers: list[MCPServerEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_project_path(self) -> "InstallRecord":
        """Project records need a path; global records must not have one."""
        if self.scope == "project" and not self.project_path:
            raise ValueError("Project-scoped records must have a projectPath")
        if self.scope == "global" and self.project_path:
            raise ValueError("Global records cannot have a projectPath")
        return self

    def matches(self, scope: str, project_path: str | None) -> bool:
        """Check whether this record is the one for a (scope, project) key."""
        if self.scope != scope:
            return False
        return scope != "project" or self.project_path == project_path

    @property
    def location(self) -> str:
        """Human-readable scope, e.g. ``global`` or ``project:/path``."""
        if self.scope == "project":
            return f"project:{self.project_path}"
        return self.scope


class Ledger(CamelModel):
    """The installed.json document."""

    version: int = LEDGER_VERSION
    plugins: dict[str, list[InstallRecord]] = Field(default_factory=dict)


# =============================================================================
# codex-market configuration (config.yaml)
# =============================================================================


class MarketplaceSource(BaseModel):
    """How a marketplace was added."""

    source: MarketplaceSourceType = "git"
    url: str | None = None
    path: str | None = None


class Marketplace(BaseModel):
    """A registered marketplace."""

    source: MarketplaceSource
    install_location: str
    last_updated: str = ""


class AppConfig(BaseModel):
    """codex-market's own configuration file."""

    marketplaces: dict[str, Marketplace] = Field(default_factory=dict)


# =============================================================================
# Marketplace manifest (.claude-plugin/marketplace.json)
# =============================================================================


class Owner(BaseModel):
    """Marketplace or plugin owner."""

    name: str
    email: str | None = None
    url: str | None = None


class MarketplaceMetadata(CamelModel):
    """Optional marketplace metadata."""

    description: str | None = None
    version: str | None = None
    plugin_root: str | None = None


class PluginSourceSpec(BaseModel):
    """Object form of a plugin's ``source``.

    - ``{"source": "url", "url": "https://..."}``
    - ``{"source": "github", "repo": "owner/repo"}``
    - ``{"source": "path", "path": "./plugins/foo"}``
    """

    source: Literal["url", "github", "path"]
    url: str | None = None
    repo: str | None = None
    path: str | None = None

    @model_validator(mode="after")
    def validate_source(self) -> "PluginSourceSpec":
        """Each source type needs its own field."""
        if self.source == "url" and not self.url:
            raise ValueError("URL plugin sources must specify 'url'")
        if self.source == "github" and not self.repo:
            raise ValueError("GitHub plugin sources must specify 'repo'")
        if self.source == "path" and not self.path:
            raise ValueError("Path plugin sources must specify 'path'")
        return self


class PluginEntry(BaseModel):
    """A plugin listed in a marketplace manifest."""

    model_config = ConfigDict(extra="allow")

    name: str
    source: str | PluginSourceSpec
    version: str | None = None
    description: str | None = None
    author: Owner | None = None
    homepage: str | None = None
    repository: str | None = None
    license: str | None = None
    keywords: list[str] = Field(default_factory=list)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return check_name(v)

    @property
    def is_remote(self) -> bool:
        """True when the plugin must be cloned rather than read from the marketplace."""
        return isinstance(self.source, PluginSourceSpec) and self.source.source in ("url", "github")

    @property
    def remote_url(self) -> str | None:
        """Clone URL for remote sources, None for local ones."""
        if not isinstance(self.source, PluginSourceSpec):
            return None
        if self.source.source == "url":
            return self.source.url
        if self.source.source == "github":
            repo = (self.source.repo or "").removesuffix(".git")
            return f"https://github.com/{repo}.git"
        return None

    @property
    def relative_path(self) -> str:
        """Path of a local source relative to the plugin root."""
        if isinstance(self.source, PluginSourceSpec):
            return self.source.path or ""
        return self.source


class MarketplaceManifest(CamelModel):
    """The marketplace.json document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str
    owner: Owner | None = None
    metadata: MarketplaceMetadata | None = None
    plugins: list[PluginEntry] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return check_name(v)

    def find_plugin(self, name: str) -> PluginEntry | None:
        """Find a plugin by name.

        Args:
            name: Plugin name

        Returns:
            The plugin entry, or None if the marketplace doesn't list it
        """
        for entry in self.plugins:
            if entry.name == name:
                return entry
        return None

    def source_path(self, marketplace_dir: Path, entry: PluginEntry) -> str:
        """Resolve where a plugin's files come from.

        Args:
            marketplace_dir: Local clone of the marketplace
            entry: Plugin entry from this manifest

        Returns:
            The clone URL for remote sources, otherwise an absolute local path
            (honouring ``metadata.pluginRoot``)
        """
        url = entry.remote_url
        if url:
            return url

        base = marketplace_dir
        if self.metadata and self.metadata.plugin_root:
            base = marketplace_dir / self.metadata.plugin_root
        return str((base / entry.relative_path).resolve())


# =============================================================================
# MCP server declarations (.mcp.json)
# =============================================================================


class MCPServerDeclaration(BaseModel):
    """An MCP server as declared in a plugin's .mcp.json."""

    model_config = ConfigDict(extra="ignore")

    type: str | None = None
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    url: str | None = None
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        """Accept numbers and booleans as env values."""
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items()}
        return v

    @property
    def is_usable(self) -> bool:
        """A server needs a command or a URL to be started."""
        return bool(self.command or self.url)


class EnvVarMismatch(BaseModel):
    """An env binding whose key differs from the variable it references.

    Codex forwards the shell variable named by the key, so ``TOKEN =
    "${FMT_TOKEN}"`` forwards ``$TOKEN``, not ``$FMT_TOKEN``.
    """

    server: str
    key: str
    var_name: str
