"""Allow ``python -m codex_market``."""

from codex_market.cli.main import app

app()
