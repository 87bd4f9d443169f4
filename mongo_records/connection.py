"""
Memoized document store connections.

This module provides a registry that opens one client per distinct
(connection string, options) pair and hands the same client to every
caller asking for that pair. Concurrent first requests share a single
connect attempt.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorClient

from .config import ConnectionOptions, redact_connection_string

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., AsyncIOMotorClient]
ConnectionKey = Tuple[str, Hashable]
Options = Union[ConnectionOptions, Mapping[str, Any]]


def _freeze(value: Any) -> Hashable:
    """Turn option values into a hashable form for use in registry keys."""
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(v) for v in value)
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


def connection_key(connection_string: str, options: Optional[Options] = None) -> ConnectionKey:
    """
    Build the registry key for a connection string and its options.

    ConnectionOptions key on every field, including those the driver
    never receives.
    """
    if isinstance(options, ConnectionOptions):
        return connection_string, options
    return connection_string, _freeze(options or {})


def client_kwargs(options: Optional[Options] = None) -> Dict[str, Any]:
    """Driver keyword arguments for ConnectionOptions or a raw mapping."""
    if isinstance(options, ConnectionOptions):
        return options.to_client_kwargs()
    return dict(options or {})


class ConnectionRegistry:
    """
    Registry of shared document store clients.

    Features:
    - One client per distinct configuration
    - Coalescing of concurrent first-time connects
    - Failed connect attempts are evicted so the next caller retries
    """

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        """
        Initialize an empty registry.

        Args:
            client_factory: Callable creating a client from a connection string
                and driver keyword arguments, defaults to AsyncIOMotorClient
        """
        self._client_factory = client_factory or AsyncIOMotorClient
        self._connections: Dict[ConnectionKey, "asyncio.Future[AsyncIOMotorClient]"] = {}
        self._connect_attempts = 0

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def connect_attempts(self) -> int:
        """Number of physical connect attempts made by this registry."""
        return self._connect_attempts

    async def acquire(
        self, connection_string: str, options: Optional[Options] = None
    ) -> AsyncIOMotorClient:
        """
        Get the shared client for a configuration, connecting on first use.

        Args:
            connection_string: Document store connection string
            options: ConnectionOptions or raw driver keyword arguments

        Returns:
            AsyncIOMotorClient: Connected client

        Raises:
            PyMongoError: If the connect attempt fails
        """
        key = connection_key(connection_string, options)
        future = self._connections.get(key)

        if future is None:
            future = asyncio.ensure_future(self._connect(connection_string, client_kwargs(options)))
            self._connections[key] = future
            future.add_done_callback(lambda done: self._evict_failed(key, done))

        # A cancelled caller must not cancel the connect other callers wait on
        return await asyncio.shield(future)

    async def _connect(self, connection_string: str, options: Dict[str, Any]) -> AsyncIOMotorClient:
        self._connect_attempts += 1
        redacted = redact_connection_string(connection_string)
        logger.info(f"Connecting to document store {redacted} (attempt {self._connect_attempts})")

        client = self._client_factory(connection_string, **options)
        try:
            await client.admin.command("ping")
        except Exception as e:
            logger.warning(f"Connection to {redacted} failed: {e}")
            client.close()
            raise

        logger.info(f"Connected to document store {redacted}")
        return client

    def _evict_failed(self, key: ConnectionKey, future: "asyncio.Future[AsyncIOMotorClient]") -> None:
        if not future.cancelled() and future.exception() is None:
            return
        if self._connections.get(key) is future:
            del self._connections[key]

    async def release(
        self, connection_string: str, options: Optional[Options] = None
    ) -> bool:
        """
        Close and forget the client for a configuration.

        Returns:
            bool: True if a connected client was closed
        """
        future = self._connections.pop(connection_key(connection_string, options), None)
        return await self._close(future)

    async def close_all(self) -> None:
        """Close and forget every client held by the registry."""
        futures = list(self._connections.values())
        self._connections.clear()
        for future in futures:
            await self._close(future)

    async def _close(self, future: Optional["asyncio.Future[AsyncIOMotorClient]"]) -> bool:
        if future is None:
            return False

        try:
            client = await asyncio.shield(future)
        except Exception:
            # The failed attempt has nothing to close
            return False

        client.close()
        logger.info("Closed document store connection")
        return True


# Global registry instance for convenience
_global_registry: Optional[ConnectionRegistry] = None


def get_registry() -> ConnectionRegistry:
    """
    Get or create the process-wide connection registry.

    Returns:
        ConnectionRegistry: Global registry instance
    """
    global _global_registry

    if _global_registry is None:
        _global_registry = ConnectionRegistry()

    return _global_registry


async def close_global_registry() -> None:
    """Close every connection held by the global registry."""
    global _global_registry

    if _global_registry is not None:
        await _global_registry.close_all()
        _global_registry = None
