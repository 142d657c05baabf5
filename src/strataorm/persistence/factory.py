"""
Session factory creating one adapter connection per session.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from ..adapters.base import DatabaseAdapter
from ..adapters.config import ConnectionConfig
from ..adapters.postgres import PostgresAdapter
from ..adapters.sqlite import SQLiteAdapter
from ..errors import AdapterConfigurationError
from ..hooks import HookDispatcher
from ..mapping.registry import SchemaRegistry
from ..utils import get_logger
from .options import SessionOptions
from .session import Session

ADAPTERS = {
    "sqlite": SQLiteAdapter,
    "postgres": PostgresAdapter,
    "postgresql": PostgresAdapter,
}


class SessionFactory:
    """
    Produces independent sessions sharing one frozen schema registry.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        adapter_factory: Callable[[], DatabaseAdapter],
        config: ConnectionConfig,
        *,
        options: Optional[SessionOptions] = None,
        hooks: Optional[HookDispatcher] = None,
    ) -> None:
        registry.freeze()
        self.registry = registry
        self.adapter_factory = adapter_factory
        self.config = config
        self.options = options or SessionOptions.from_env()
        self.hooks = hooks
        self.logger = get_logger("persistence.factory")

    @classmethod
    def from_dsn(cls, registry: SchemaRegistry, dsn: str, **kwargs) -> "SessionFactory":
        config = ConnectionConfig.from_dsn(dsn)
        driver = config.dsn.driver.split("+", 1)[0] if config.dsn else ""
        adapter_cls = ADAPTERS.get(driver)
        if adapter_cls is None:
            raise AdapterConfigurationError(f"No adapter registered for driver '{driver}'")
        return cls(registry, adapter_cls, config, **kwargs)

    def __call__(self) -> Session:
        self.logger.debug("Opening session on %s", self.config.descriptive_label())
        return Session(
            self.adapter_factory(),
            self.registry,
            connection_config=self.config,
            options=self.options,
            hooks=self.hooks,
        )

    @contextmanager
    def scope(self) -> Iterator[Session]:
        """
        Session that commits on success, rolls back on error, and always closes.
        """
        session = self()
        try:
            yield session
            session.commit()
        except BaseException:
            if not session.closed:
                session.rollback()
            raise
        finally:
            session.close()
