"""Shared rich console for operator-facing output."""

from rich.console import Console
from rich.theme import Theme

RALPH_THEME = Theme(
    {
        "success": "bold green",
        "error": "bold red",
        "warning": "yellow",
        "info": "cyan",
        "muted": "dim",
    }
)

_console: Console | None = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console(theme=RALPH_THEME, highlight=False)
    return _console
