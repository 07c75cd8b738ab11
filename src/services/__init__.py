"""Services package.

Keep this module lightweight: importing `services` should not trigger heavy
imports or start threads.
"""

from .event_bus import EventBus, Events, event_bus
from .logger import PerformanceLogger, cleanup_logging, setup_logging

__all__ = ["EventBus", "Events", "PerformanceLogger", "cleanup_logging", "event_bus", "setup_logging"]
