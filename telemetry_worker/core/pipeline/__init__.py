"""Pipeline layer - Composición y publicación de eventos."""

from .composer import EventComposer
from .processor import TelemetryProcessor

__all__ = ["EventComposer", "TelemetryProcessor"]
