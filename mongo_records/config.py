"""
Connection configuration for the document store.

This module provides the connection option classes passed to the driver,
the derivation of default options from a bare connection string, and
environment-based settings loaded from an optional .env file.
"""

import os
import logging
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit, unquote

from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_MS = 2000
DEFAULT_KEEP_ALIVE_MS = 300
DEFAULT_DATABASE = "test"

REPLICA_SET_PARAM = "replicaSet"


@dataclass(frozen=True)
class ReplicaSetOptions:
    """Replica set registration split out of a connection string."""

    name: str
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    keep_alive_ms: int = DEFAULT_KEEP_ALIVE_MS


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Driver options for a document store connection.

    Frozen so that identical configurations compare and hash equal, which
    lets the connection registry share one client between them.
    """

    auto_reconnect: bool = True
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    keep_alive_ms: int = DEFAULT_KEEP_ALIVE_MS
    replica_set: Optional[ReplicaSetOptions] = None

    def to_client_kwargs(self) -> Dict[str, Any]:
        """
        Convert options to driver client keyword arguments.

        Returns:
            Dict[str, Any]: Keyword arguments for AsyncIOMotorClient
        """
        connect_timeout = self.connect_timeout_ms
        if self.replica_set:
            connect_timeout = self.replica_set.connect_timeout_ms

        # TCP keep-alive is always enabled by the driver, so keep_alive_ms
        # only distinguishes configurations.
        kwargs = {
            "connectTimeoutMS": connect_timeout,
            "serverSelectionTimeoutMS": connect_timeout,
            "retryReads": self.auto_reconnect,
            "retryWrites": self.auto_reconnect,
        }

        if self.replica_set:
            kwargs["replicaSet"] = self.replica_set.name

        return kwargs

    def __str__(self) -> str:
        replica_set = self.replica_set.name if self.replica_set else "None"
        return (
            f"ConnectionOptions(auto_reconnect={self.auto_reconnect}, "
            f"connect_timeout_ms={self.connect_timeout_ms}, "
            f"keep_alive_ms={self.keep_alive_ms}, replica_set={replica_set})"
        )


def default_options(connection_string: str) -> Tuple[str, ConnectionOptions]:
    """
    Derive connection options for a connection string given without options.

    A ``replicaSet`` query parameter is moved out of the string and into
    the options; every other query parameter is kept as written.

    Args:
        connection_string: Document store connection string

    Returns:
        Tuple of the (possibly rewritten) connection string and its options
    """
    parts = urlsplit(connection_string)
    replica_set = None
    kept = []

    for pair in parts.query.split("&") if parts.query else []:
        key, _, value = pair.partition("=")
        if key == REPLICA_SET_PARAM:
            if value:
                replica_set = unquote(value)
            continue
        kept.append(pair)

    if replica_set is None:
        return connection_string, ConnectionOptions()

    rewritten = urlunsplit(
        (parts.scheme, parts.netloc, parts.path, "&".join(kept), parts.fragment)
    )
    logger.debug(f"Registered replica set {replica_set} from connection string")
    return rewritten, ConnectionOptions(replica_set=ReplicaSetOptions(name=replica_set))


def redact_connection_string(connection_string: str) -> str:
    """Hide the password of a connection string for logs and reprs."""
    scheme, sep, rest = connection_string.partition("://")
    if not sep:
        return connection_string

    credentials, at, hosts = rest.rpartition("@")
    if not at or ":" not in credentials:
        return connection_string

    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{hosts}"


class StoreSettings(BaseModel):
    """Environment settings for the document store with validation."""

    mongodb_uri: str = Field(
        default="mongodb://localhost:27017", description="Document store connection string"
    )
    mongodb_database: Optional[str] = Field(
        default=None, description="Database used when the URI names none"
    )
    connect_timeout_ms: int = Field(
        default=DEFAULT_CONNECT_TIMEOUT_MS, ge=1, description="Connect timeout in milliseconds"
    )
    keep_alive_ms: int = Field(
        default=DEFAULT_KEEP_ALIVE_MS, ge=0, description="Keep-alive interval in milliseconds"
    )

    @field_validator("mongodb_uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        """Validate the connection string scheme."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("MONGODB_URI must start with mongodb:// or mongodb+srv://")
        return v


def load_config(env_file: Optional[str] = None) -> StoreSettings:
    """
    Load settings from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        StoreSettings: Validated settings object

    Raises:
        ValueError: If a setting is missing or invalid
    """
    if env_file is None:
        env_file = ".env"

    if os.path.exists(env_file):
        load_dotenv(env_file)

    try:
        config_data: Dict[str, Any] = {
            "mongodb_uri": os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
            "mongodb_database": os.getenv("MONGODB_DATABASE") or None,
            "connect_timeout_ms": int(
                os.getenv("MONGODB_CONNECT_TIMEOUT_MS", str(DEFAULT_CONNECT_TIMEOUT_MS))
            ),
            "keep_alive_ms": int(os.getenv("MONGODB_KEEP_ALIVE_MS", str(DEFAULT_KEEP_ALIVE_MS))),
        }
        return StoreSettings(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e


# Global settings instance
_config: Optional[StoreSettings] = None


def get_config() -> StoreSettings:
    """
    Get the global settings instance, loading it if necessary.

    Returns:
        StoreSettings: The global settings object
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config
