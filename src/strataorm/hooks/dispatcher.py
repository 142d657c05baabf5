"""
Hook dispatcher coordinating persistence lifecycle events.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Type

from ..errors import ConfigurationError

HookHandler = Callable[..., None]

EVENTS = frozenset(
    {
        "before_flush",
        "after_flush",
        "before_insert",
        "after_insert",
        "before_update",
        "after_update",
        "before_delete",
        "after_delete",
        "after_commit",
        "after_rollback",
    }
)


class HookDispatcher:
    """
    Maintains global and per-entity-type hook handlers.

    Entity events receive the entity as first argument; session-level events
    (``before_flush``, ``after_flush``, ``after_commit``, ``after_rollback``)
    receive ``None``. Every handler gets ``session=`` as keyword context.
    """

    def __init__(self) -> None:
        self._global_handlers: Dict[str, List[HookHandler]] = defaultdict(list)
        self._entity_handlers: Dict[Type, Dict[str, List[HookHandler]]] = defaultdict(
            lambda: defaultdict(list)
        )

    def register(self, event: str, handler: HookHandler, *, entity_type: Optional[Type] = None) -> None:
        if event not in EVENTS:
            raise ConfigurationError(f"Unknown hook event '{event}'")
        if entity_type:
            self._entity_handlers[entity_type][event].append(handler)
        else:
            self._global_handlers[event].append(handler)

    def unregister(self, event: str, handler: HookHandler, *, entity_type: Optional[Type] = None) -> None:
        handlers = (
            self._entity_handlers.get(entity_type, {}).get(event, [])
            if entity_type
            else self._global_handlers.get(event, [])
        )
        if handler in handlers:
            handlers.remove(handler)

    def on(self, event: str, *, entity_type: Optional[Type] = None) -> Callable[[HookHandler], HookHandler]:
        def decorator(handler: HookHandler) -> HookHandler:
            self.register(event, handler, entity_type=entity_type)
            return handler

        return decorator

    def fire(self, event: str, instance: Optional[Any], **context: Any) -> None:
        handlers = list(self._global_handlers.get(event, []))
        entity_type = instance.__class__ if instance is not None else None
        if entity_type:
            handlers.extend(self._entity_handlers.get(entity_type, {}).get(event, []))
        for handler in handlers:
            handler(instance, **context)

    def clear(self) -> None:
        self._global_handlers.clear()
        self._entity_handlers.clear()


hooks = HookDispatcher()
