"""codex-market: install marketplace plugins into the Codex CLI."""

__version__ = "0.4.0"
