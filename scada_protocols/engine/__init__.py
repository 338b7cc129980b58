"""Polling and event delivery engines."""

from scada_protocols.engine.events import EventBus, Subscription, OverflowPolicy
from scada_protocols.engine.polling import PollingEngine, PollingStats, PollingStopped

__all__ = [
    'EventBus',
    'Subscription',
    'OverflowPolicy',
    'PollingEngine',
    'PollingStats',
    'PollingStopped',
]
