"""Configuration file parsing utilities."""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from codex_market.config.schemas import (
    AppConfig,
    Ledger,
    MarketplaceManifest,
    MCPServerDeclaration,
)
from codex_market.utils.filesystem import write_text_file_atomic

MARKETPLACE_MANIFEST_DIR = ".claude-plugin"
MARKETPLACE_MANIFEST_FILE = "marketplace.json"
MCP_JSON_FILE = ".mcp.json"


class ConfigError(Exception):
    """Error loading or parsing configuration."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


class ParseError(ConfigError):
    """A file exists but its content is malformed.

    Persisted state is never silently coerced; callers fail the command.
    """


def load_json(path: Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        Parsed JSON as a dictionary

    Raises:
        ConfigError: If the file cannot be read
        ParseError: If the file is not a JSON object
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = json.load(f)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    if not isinstance(result, dict):
        raise ParseError(f"JSON file must contain an object: {path}", path)
    return result


def save_json(path: Path, data: dict[str, Any], indent: int = 2) -> None:
    """Save data to a JSON file, replacing it atomically.

    Args:
        path: Path to write to
        data: Data to serialize
        indent: JSON indentation level
    """
    write_text_file_atomic(path, json.dumps(data, indent=indent, default=str) + "\n")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigError: If the file cannot be read
        ParseError: If the file is not a YAML mapping
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ParseError(f"YAML file must contain a mapping: {path}", path)
    return result


def save_yaml(path: Path, data: dict[str, Any]) -> None:
    """Save data to a YAML file, replacing it atomically.

    Args:
        path: Path to write to
        data: Data to serialize
    """
    content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    write_text_file_atomic(path, content)


def load_ledger(path: Path) -> Ledger | None:
    """Load the install ledger if it exists.

    Args:
        path: Path to installed.json

    Returns:
        Parsed Ledger or None if the file doesn't exist

    Raises:
        ParseError: If the file exists but is invalid
    """
    if not path.exists():
        return None

    data = load_json(path)

    try:
        return Ledger.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Invalid install ledger: {e}", path) from e


def save_ledger(path: Path, ledger: Ledger) -> None:
    """Save the install ledger.

    Args:
        path: Path to installed.json
        ledger: Ledger to save
    """
    save_json(path, ledger.model_dump(by_alias=True, exclude_none=True))


def load_app_config(path: Path) -> AppConfig:
    """Load codex-market's configuration, defaulting when the file is absent.

    Args:
        path: Path to config.yaml

    Returns:
        Parsed AppConfig

    Raises:
        ParseError: If the file exists but is invalid
    """
    if not path.exists():
        return AppConfig()

    data = load_yaml(path)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Invalid config: {e}", path) from e


def save_app_config(path: Path, config: AppConfig) -> None:
    """Save codex-market's configuration.

    Args:
        path: Path to config.yaml
        config: AppConfig to save
    """
    save_yaml(path, config.model_dump(mode="json", exclude_none=True))


def load_marketplace_manifest(marketplace_dir: Path) -> MarketplaceManifest:
    """Load a marketplace manifest from .claude-plugin/marketplace.json.

    Args:
        marketplace_dir: Path to the marketplace clone

    Returns:
        Parsed MarketplaceManifest

    Raises:
        ConfigError: If the file is missing
        ParseError: If the file is invalid
    """
    manifest_path = marketplace_dir / MARKETPLACE_MANIFEST_DIR / MARKETPLACE_MANIFEST_FILE
    data = load_json(manifest_path)

    try:
        return MarketplaceManifest.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Invalid marketplace manifest: {e}", manifest_path) from e


def parse_mcp_servers(data: dict[str, Any]) -> dict[str, MCPServerDeclaration]:
    """Extract server declarations from parsed .mcp.json data.

    Two layouts are accepted:
    1. Wrapped: ``{"mcpServers": {"name": {...}}}``
    2. Direct: ``{"name": {...}}``

    Entries without a command or URL are ignored in both layouts.

    Args:
        data: Parsed JSON object

    Returns:
        Server declarations keyed by name

    Raises:
        ValueError: If a server entry has an invalid shape
    """
    wrapped = data.get("mcpServers")
    if isinstance(wrapped, dict) and wrapped:
        entries = wrapped
    else:
        entries = {k: v for k, v in data.items() if k != "mcpServers" and isinstance(v, dict)}

    servers: dict[str, MCPServerDeclaration] = {}
    for name, config in entries.items():
        server = MCPServerDeclaration.model_validate(config)
        if server.is_usable:
            servers[name] = server
    return servers


def load_mcp_servers(plugin_dir: Path) -> dict[str, MCPServerDeclaration]:
    """Load the MCP servers a plugin declares in its .mcp.json.

    Args:
        plugin_dir: Plugin source directory

    Returns:
        Server declarations keyed by name (empty if the plugin has no .mcp.json)

    Raises:
        ConfigError: If the file cannot be read
        ParseError: If the file is invalid
    """
    mcp_path = plugin_dir / MCP_JSON_FILE
    if not mcp_path.exists():
        return {}

    data = load_json(mcp_path)

    try:
        return parse_mcp_servers(data)
    except ValidationError as e:
        raise ParseError(f"Invalid MCP server declaration: {e}", mcp_path) from e
