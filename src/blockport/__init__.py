"""blockport - fetch page and component blocks and integrate them into a host project."""

from blockport.blocks.integrator import (
    BlockIntegrator,
    IntegrateOptions,
    IntegrationResult,
)
from blockport.config import Settings, get_settings
from blockport.core.exceptions import BlockportError
from blockport.event_progress import StageAction, StageEvent

__all__ = [
    "BlockIntegrator",
    "BlockportError",
    "IntegrateOptions",
    "IntegrationResult",
    "Settings",
    "StageAction",
    "StageEvent",
    "get_settings",
]
