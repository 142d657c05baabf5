"""
Lifecycle hooks registry for strataorm sessions.
"""

from .dispatcher import EVENTS, HookDispatcher, hooks

__all__ = ["EVENTS", "HookDispatcher", "hooks"]
