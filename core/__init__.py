"""
Core utilities and modules.

Public API:
    - EventBus, Subscription: typed in-process publish/subscribe
    - StateMachine, TransitionError: table-driven transition validation
    - setup_logging: root logger configuration

Usage:
    from core import EventBus

    bus = EventBus()
    bus.subscribe(SomeEvent, handler, owner_id="u1")
"""

from core.event_bus import EventBus, Subscription
from core.logging_setup import setup_logging
from core.state_machine import StateMachine, TransitionError

__all__ = [
    "EventBus",
    "StateMachine",
    "Subscription",
    "TransitionError",
    "setup_logging",
]
