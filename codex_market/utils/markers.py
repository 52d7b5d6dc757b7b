"""Marker-based management of MCP server blocks in Codex's config.toml.

Codex reads MCP servers from ``[mcp_servers.<name>]`` tables in a TOML file
that users also edit by hand. Rather than parsing and re-serializing the whole
file (which would reformat user content), each plugin's servers live in one
generated block wrapped in comment markers:

    # [codex-market:start] plugin={plugin-id} marketplace={marketplace}
    [mcp_servers.{name}]
    command = "npx"
    ...
    # [codex-market:end] plugin={plugin-id}

Blocks are located by the plugin id carried in the markers, so other
plugins' blocks and hand-written tables around them are left untouched. The
marker lines are a stable format; external tooling may grep for them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import tomli_w

from codex_market.config.schemas import EnvVarMismatch, MCPServerDeclaration
from codex_market.utils.filesystem import read_text_file, write_text_file_atomic

logger = logging.getLogger(__name__)

MARKER_START_PREFIX = "# [codex-market:start]"
MARKER_END_PREFIX = "# [codex-market:end]"

# ${VAR} or $VAR and nothing else
ENV_REFERENCE_PATTERN = re.compile(r"^\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))$")


class MarkerError(ValueError):
    """A plugin's start marker has no matching end marker."""

    def __init__(self, message: str, plugin_id: str, line: int):
        self.plugin_id = plugin_id
        self.line = line
        super().__init__(message)


def make_start_marker(plugin_id: str, marketplace: str) -> str:
    """Create the start marker line for a plugin's block.

    Args:
        plugin_id: Plugin identifier (``name@marketplace``)
        marketplace: Marketplace the plugin was installed from

    Returns:
        Start marker line without a trailing newline
    """
    return f"{MARKER_START_PREFIX} plugin={plugin_id} marketplace={marketplace}"


def make_end_marker(plugin_id: str) -> str:
    """Create the end marker line for a plugin's block.

    Args:
        plugin_id: Plugin identifier

    Returns:
        End marker line without a trailing newline
    """
    return f"{MARKER_END_PREFIX} plugin={plugin_id}"


def parse_marker(line: str) -> tuple[str, dict[str, str]] | None:
    """Parse a marker line.

    Args:
        line: A single line of the config file

    Returns:
        ("start" | "end", attributes) for marker lines, None otherwise
    """
    stripped = line.strip()
    if stripped.startswith(MARKER_START_PREFIX):
        kind, rest = "start", stripped[len(MARKER_START_PREFIX) :]
    elif stripped.startswith(MARKER_END_PREFIX):
        kind, rest = "end", stripped[len(MARKER_END_PREFIX) :]
    else:
        return None

    attrs: dict[str, str] = {}
    for token in rest.split():
        key, sep, value = token.partition("=")
        if sep:
            attrs[key] = value
    return kind, attrs


def parse_env_reference(value: str) -> str | None:
    """Return the variable name if a value is a bare ``${VAR}``/``$VAR`` reference."""
    match = ENV_REFERENCE_PATTERN.match(value)
    if not match:
        return None
    return match.group(1) or match.group(2)


@dataclass
class ManagedBlock:
    """A plugin's block within the config file."""

    plugin_id: str
    marketplace: str
    content: str
    start_line: int
    end_line: int


def _locate_block(lines: list[str], plugin_id: str) -> tuple[int, int] | None:
    """Find the (start, end) line indexes of a plugin's block.

    Raises:
        MarkerError: If the start marker is not closed before the next start
            marker or the end of the file
    """
    for start, line in enumerate(lines):
        marker = parse_marker(line)
        if marker is None or marker[0] != "start" or marker[1].get("plugin") != plugin_id:
            continue

        for end in range(start + 1, len(lines)):
            inner = parse_marker(lines[end])
            if inner is None:
                continue
            kind, attrs = inner
            if kind == "end" and attrs.get("plugin") == plugin_id:
                return start, end
            if kind == "start":
                break

        raise MarkerError(
            f"Start marker for '{plugin_id}' on line {start + 1} has no matching end marker",
            plugin_id,
            start + 1,
        )
    return None


def find_block(text: str, plugin_id: str) -> ManagedBlock | None:
    """Find a plugin's block in config text.

    Args:
        text: The full config file content
        plugin_id: Plugin identifier to look for

    Returns:
        ManagedBlock if a complete block exists, None otherwise
    """
    lines = text.splitlines(keepends=True)
    try:
        span = _locate_block(lines, plugin_id)
    except MarkerError:
        return None
    if span is None:
        return None

    start, end = span
    marker = parse_marker(lines[start])
    assert marker is not None
    return ManagedBlock(
        plugin_id=plugin_id,
        marketplace=marker[1].get("marketplace", ""),
        content="".join(lines[start + 1 : end]),
        start_line=start,
        end_line=end,
    )


def list_blocks(text: str) -> list[ManagedBlock]:
    """List every complete managed block in config text, in file order."""
    blocks: list[ManagedBlock] = []
    seen: set[str] = set()
    for line in text.splitlines():
        marker = parse_marker(line)
        if marker is None or marker[0] != "start":
            continue
        plugin_id = marker[1].get("plugin")
        if not plugin_id or plugin_id in seen:
            continue
        seen.add(plugin_id)
        block = find_block(text, plugin_id)
        if block is not None:
            blocks.append(block)
    return blocks


def has_block(text: str, plugin_id: str) -> bool:
    """Check whether a plugin has a complete block in config text."""
    return find_block(text, plugin_id) is not None


def _server_table(
    name: str, server: MCPServerDeclaration
) -> tuple[dict[str, object], list[EnvVarMismatch]]:
    """Build the TOML table for one server.

    ``cwd`` is dropped because Codex has no equivalent setting. Environment
    bindings that are bare references become ``env_vars`` entries (Codex
    forwards the caller's shell variable with that key), everything else goes
    to the literal ``env`` sub-table.
    """
    table: dict[str, object] = {}
    if server.type:
        table["type"] = server.type
    if server.command:
        table["command"] = server.command
    if server.url:
        table["url"] = server.url
    if server.args:
        table["args"] = list(server.args)

    mismatches: list[EnvVarMismatch] = []
    forwarded: list[str] = []
    literal: dict[str, str] = {}
    for key, value in server.env.items():
        var_name = parse_env_reference(value)
        if var_name is None:
            literal[key] = value
            continue
        forwarded.append(key)
        if var_name != key:
            mismatches.append(EnvVarMismatch(server=name, key=key, var_name=var_name))

    if forwarded:
        table["env_vars"] = sorted(forwarded)
    if literal:
        table["env"] = {key: literal[key] for key in sorted(literal)}

    return table, mismatches


def encode_block(
    plugin_id: str,
    marketplace: str,
    servers: dict[str, MCPServerDeclaration],
) -> tuple[str, list[EnvVarMismatch]]:
    """Generate a plugin's marker-wrapped block.

    Servers are emitted in name order so identical input always produces
    identical text.

    Args:
        plugin_id: Plugin identifier
        marketplace: Marketplace name recorded in the start marker
        servers: Server declarations keyed by server name

    Returns:
        Tuple of (block text ending in a newline, env var mismatches)
    """
    tables: dict[str, object] = {}
    mismatches: list[EnvVarMismatch] = []
    for name in sorted(servers):
        table, server_mismatches = _server_table(name, servers[name])
        tables[name] = table
        mismatches.extend(server_mismatches)

    body = tomli_w.dumps({"mcp_servers": tables}) if tables else ""
    if body and not body.endswith("\n"):
        body += "\n"

    block = make_start_marker(plugin_id, marketplace) + "\n" + body
    block += make_end_marker(plugin_id) + "\n"
    return block, mismatches


def remove_block(text: str, plugin_id: str) -> str:
    """Remove a plugin's block from config text.

    The block's lines and the blank line directly above its start marker are
    removed. Text without a block for ``plugin_id`` is returned unchanged.

    Args:
        text: The full config file content
        plugin_id: Plugin identifier

    Returns:
        Updated text

    Raises:
        MarkerError: If the plugin's start marker is not closed; the caller
            decides how to report it and the text must be left as is
    """
    lines = text.splitlines(keepends=True)
    span = _locate_block(lines, plugin_id)
    if span is None:
        return text

    start, end = span
    if start > 0 and not lines[start - 1].strip():
        start -= 1
    return "".join(lines[:start] + lines[end + 1 :])


def replace_block(text: str, plugin_id: str, block: str) -> str:
    """Replace (or add) a plugin's block.

    The old block is removed and the new one appended after one blank line,
    so applying the same block twice gives byte-identical text.

    Args:
        text: The full config file content
        plugin_id: Plugin identifier
        block: New block from encode_block, or "" to only remove

    Returns:
        Updated text

    Raises:
        MarkerError: If the plugin's existing start marker is not closed
    """
    remaining = remove_block(text, plugin_id)
    if not block:
        return remaining

    head = remaining.rstrip("\n")
    if not head:
        return block
    return head + "\n\n" + block


# =============================================================================
# File helpers
# =============================================================================


def add_servers(
    config_path: Path,
    plugin_id: str,
    marketplace: str,
    servers: dict[str, MCPServerDeclaration],
) -> list[EnvVarMismatch]:
    """Write a plugin's servers into a config file, replacing its old block.

    A missing file is treated as empty and created.

    Returns:
        Env var mismatches found while encoding
    """
    existing = read_text_file(config_path, missing_ok=True)
    block, mismatches = encode_block(plugin_id, marketplace, servers)
    updated = replace_block(existing, plugin_id, block)
    if updated != existing:
        write_text_file_atomic(config_path, updated)
        logger.debug("Wrote %d MCP server(s) for %s to %s", len(servers), plugin_id, config_path)
    return mismatches


def remove_servers(config_path: Path, plugin_id: str) -> bool:
    """Remove a plugin's block from a config file.

    Returns:
        True if the file changed, False if there was nothing to remove

    Raises:
        MarkerError: If the plugin's block is malformed (file left unchanged)
    """
    if not config_path.exists():
        return False
    existing = read_text_file(config_path)
    updated = remove_block(existing, plugin_id)
    if updated == existing:
        return False
    write_text_file_atomic(config_path, updated)
    logger.debug("Removed MCP block for %s from %s", plugin_id, config_path)
    return True
