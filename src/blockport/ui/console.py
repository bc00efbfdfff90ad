"""
Centralized console configuration for blockport.

- console: main console for progress and summaries
- error_console: application errors (writes to stderr)
"""

from rich.console import Console

console = Console(color_system="auto")

error_console = Console(
    stderr=True,
    style="bold red",
)
