from ralph_loop.ui.console import get_console

__all__ = ["get_console"]
