"""Terminal spinner shown while a plugin is being reinstalled."""

from typing import Any, Literal

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner as RichSpinner
from rich.text import Text


class Spinner:
    """Transient spinner line that reports success or failure when it stops.

    rich's Live redraws the line from its own refresh thread; stop() joins
    that thread before returning.
    """

    def __init__(self, console: Console, text: str, spinner: str = "dots"):
        self.console = console
        self.text = text
        self._live: Live | None = None
        self._renderable = RichSpinner(spinner, text=Text(text, style="cyan"), style="cyan")

    def start(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            self._renderable,
            console=self.console,
            transient=True,
            refresh_per_second=12,
        )
        self._live.start()

    def stop(self, success: bool | None = None) -> None:
        """Stop the spinner and optionally print a result line."""
        if self._live is None:
            return
        try:
            self._live.stop()
        finally:
            self._live = None
        if success is True:
            self.console.print(f"[green]✓[/green] {self.text}")
        elif success is False:
            self.console.print(f"[red]✗[/red] {self.text}")

    @property
    def is_running(self) -> bool:
        return self._live is not None

    def __enter__(self) -> "Spinner":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> Literal[False]:
        self.stop(success=exc_type is None)
        return False
