"""Core infrastructure modules."""

from .bus import Bus, BusEvent, EventPayload
from .config import RuntimeConfig, SessionOptions
from .global_paths import GlobalPath
from .id import Identifier

__all__ = ["Bus", "BusEvent", "EventPayload", "GlobalPath", "Identifier", "RuntimeConfig", "SessionOptions"]
