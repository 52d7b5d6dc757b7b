"""Command-line interface for codex-market."""
