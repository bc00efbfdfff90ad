"""Render integration stage events on the console."""

from __future__ import annotations

from rich.console import Console
from rich.text import Text

from blockport.event_progress import StageAction, StageEvent
from blockport.ui.console import console as default_console

_ACTION_STYLES: dict[StageAction, tuple[str, str]] = {
    StageAction.STARTED: ("▶", "blue"),
    StageAction.SUCCEEDED: ("✔", "green"),
    StageAction.FAILED: ("✖", "red"),
    StageAction.SKIPPED: ("–", "dim"),
    StageAction.INFO: ("•", "dim"),
    StageAction.WARNING: ("!", "yellow"),
}


class ConsoleStageDisplay:
    """Stage event sink that prints one line per event."""

    def __init__(self, console: Console | None = None, *, show_details: bool = False) -> None:
        self.console = console or default_console
        self.show_details = show_details
        self._current: dict[str, str] = {}

    def __call__(self, event: StageEvent) -> None:
        if event.action == StageAction.STARTED:
            self._current[event.stage] = event.message

        marker, style = _ACTION_STYLES[event.action]
        message = event.message or self._current.get(event.stage, event.stage)
        line = Text()
        line.append(f"▎{marker} ", style=style)
        line.append(message, style="bold" if event.action == StageAction.STARTED else style)
        self.console.print(line)

        if event.details and (self.show_details or event.action != StageAction.INFO):
            self.console.print(Text(f"    {event.details}", style="dim"))
        if self.show_details and event.data:
            for key, value in event.data.items():
                self.console.print(Text(f"    {key}: {value}", style="dim"))
