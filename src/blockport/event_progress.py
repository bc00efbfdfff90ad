"""Module for converting integration pipeline progress into stage events."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class StageAction(str, Enum):
    """Lifecycle of a single pipeline stage."""

    STARTED = "Started"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"
    INFO = "Info"
    WARNING = "Warning"


@dataclass(frozen=True)
class StageEvent:
    """Represents one progress update emitted by the integrator."""

    stage: str
    action: StageAction
    message: str = ""
    details: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        base = f"{self.action.value}: {self.stage}"
        if self.message:
            base += f" - {self.message}"
        if self.details:
            base += f" ({self.details})"
        return base


StageEventSink = Callable[[StageEvent], None]


class StageRecorder:
    """Collects events in order and forwards them to an optional downstream sink.

    ``logs`` keeps the human-readable description of every started stage, which
    is what a host UI shows as the step list of one integration.
    """

    def __init__(self, sink: StageEventSink | None = None) -> None:
        self._sink = sink
        self.events: list[StageEvent] = []
        self.logs: list[str] = []

    def emit(self, event: StageEvent) -> None:
        self.events.append(event)
        if event.action == StageAction.STARTED and event.message:
            self.logs.append(event.message)
        if self._sink is not None:
            self._sink(event)

    def started(self, stage: str, message: str, **data: Any) -> None:
        self.emit(StageEvent(stage, StageAction.STARTED, message, data=data))

    def succeeded(self, stage: str, message: str = "", **data: Any) -> None:
        self.emit(StageEvent(stage, StageAction.SUCCEEDED, message, data=data))

    def failed(self, stage: str, message: str, details: str | None = None) -> None:
        self.emit(StageEvent(stage, StageAction.FAILED, message, details=details))

    def skipped(self, stage: str, message: str) -> None:
        self.emit(StageEvent(stage, StageAction.SKIPPED, message))

    def info(self, stage: str, message: str, **data: Any) -> None:
        self.emit(StageEvent(stage, StageAction.INFO, message, data=data))

    def warning(self, stage: str, message: str, details: str | None = None) -> None:
        self.emit(StageEvent(stage, StageAction.WARNING, message, details=details))

    def actions_for(self, stage: str) -> list[StageAction]:
        return [event.action for event in self.events if event.stage == stage]
