"""Detection of MCP server names already taken in config.toml.

The scan is textual: only ``[mcp_servers.<name>]`` table headers count as
declarations. Sub-tables like ``[mcp_servers.<name>.env]`` don't declare a
new name.
"""

import re

from codex_market.utils.markers import remove_block

SERVER_HEADER_PATTERN = re.compile(
    r"""^\s*\[\s*mcp_servers\s*\.\s*
        (?:"((?:[^"\\]|\\.)*)"|'([^']*)'|([A-Za-z0-9_-]+))
        \s*\]\s*(?:\#.*)?$""",
    re.VERBOSE,
)


def find_existing_names(text: str) -> set[str]:
    """Collect the MCP server names declared in config text.

    Args:
        text: config.toml content

    Returns:
        Server names (bare, double-quoted, or single-quoted headers)
    """
    names: set[str] = set()
    for line in text.splitlines():
        match = SERVER_HEADER_PATTERN.match(line)
        if match:
            names.add(next(group for group in match.groups() if group is not None))
    return names


def find_conflicts(text: str, proposed: list[str] | set[str], plugin_id: str) -> set[str]:
    """Find proposed server names that someone else already declares.

    The plugin's own block is ignored, so reinstalling over it never
    conflicts with itself. Names from other plugins' blocks and hand-written
    tables do conflict.

    Args:
        text: config.toml content
        proposed: Server names the plugin wants to add
        plugin_id: Plugin that owns the proposed servers

    Returns:
        The conflicting names

    Raises:
        MarkerError: If the plugin's own block is malformed
    """
    outside = remove_block(text, plugin_id)
    return set(proposed) & find_existing_names(outside)
