"""
Record access layer for MongoDB collections.

Provides collection-scoped create, read, update and delete operations with
a small error taxonomy, on top of memoized, lazily established connections.
"""

from .config import (
    ConnectionOptions,
    ReplicaSetOptions,
    StoreSettings,
    default_options,
    get_config,
    load_config,
    redact_connection_string,
)
from .connection import ConnectionRegistry, close_global_registry, get_registry
from .errors import (
    ArgumentError,
    FaultClassifier,
    MongoFaultClassifier,
    NotFoundError,
    RecordProviderError,
    ValidationError,
)
from .provider import MongoRecordProvider

__version__ = "0.1.0"

__all__ = [
    # Provider
    "MongoRecordProvider",

    # Connections
    "ConnectionRegistry",
    "get_registry",
    "close_global_registry",

    # Configuration
    "ConnectionOptions",
    "ReplicaSetOptions",
    "StoreSettings",
    "default_options",
    "load_config",
    "get_config",
    "redact_connection_string",

    # Errors
    "RecordProviderError",
    "ArgumentError",
    "NotFoundError",
    "ValidationError",
    "FaultClassifier",
    "MongoFaultClassifier",
]
