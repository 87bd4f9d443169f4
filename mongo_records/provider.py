"""
Collection-scoped record access over a document store.

Each provider operation acquires the shared connection from a registry,
issues a single driver call and translates the outcome into a record or
a domain error.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import (
    DEFAULT_DATABASE,
    ConnectionOptions,
    ReplicaSetOptions,
    default_options,
    load_config,
    redact_connection_string,
)
from .connection import ConnectionRegistry, get_registry
from .errors import ArgumentError, FaultClassifier, MongoFaultClassifier, NotFoundError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
ID_FIELD = "_id"


class MongoRecordProvider:
    """
    Record provider backed by a memoized MongoDB connection.

    Usage:
        provider = MongoRecordProvider("mongodb://localhost:27017/app")
        user = await provider.create("users", {"name": "Jane"})
        await provider.update("users", user["_id"], {"nickname": "jane"})
    """

    def __init__(
        self,
        connection_string: str,
        options: Optional[Union[ConnectionOptions, Mapping[str, Any]]] = None,
        *,
        database: Optional[str] = None,
        registry: Optional[ConnectionRegistry] = None,
        classifier: Optional[FaultClassifier] = None,
    ):
        """
        Initialize the provider. No connection is made until the first operation.

        Args:
            connection_string: Document store connection string
            options: ConnectionOptions or raw driver keyword arguments; derived
                from the connection string when omitted
            database: Database used when the connection string names none
            registry: Connection registry, defaults to the global registry
            classifier: Driver fault classifier, defaults to MongoFaultClassifier

        Raises:
            ArgumentError: If the connection string is missing or not a non-empty string
        """
        if connection_string is None:
            raise ArgumentError("Must provide a connection_string")

        if not isinstance(connection_string, str) or not connection_string:
            raise ArgumentError(f"The provided connection_string is invalid: {connection_string!r}")

        if options is None:
            connection_string, options = default_options(connection_string)

        self.connection_string = connection_string
        self.options = options
        self.database = database
        self._registry = registry if registry is not None else get_registry()
        self._classifier = classifier if classifier is not None else MongoFaultClassifier()

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **kwargs: Any) -> "MongoRecordProvider":
        """
        Create a provider from environment settings.

        Args:
            env_file: Optional path to .env file
            **kwargs: Extra constructor arguments such as registry

        Returns:
            MongoRecordProvider: Provider configured from the environment
        """
        config = load_config(env_file)
        connection_string, options = default_options(config.mongodb_uri)
        replica_set = None
        if options.replica_set:
            replica_set = ReplicaSetOptions(
                name=options.replica_set.name,
                connect_timeout_ms=config.connect_timeout_ms,
                keep_alive_ms=config.keep_alive_ms,
            )
        options = ConnectionOptions(
            auto_reconnect=options.auto_reconnect,
            connect_timeout_ms=config.connect_timeout_ms,
            keep_alive_ms=config.keep_alive_ms,
            replica_set=replica_set,
        )
        kwargs.setdefault("database", config.mongodb_database)
        return cls(connection_string, options, **kwargs)

    def __repr__(self) -> str:
        return f"MongoRecordProvider({redact_connection_string(self.connection_string)!r})"

    async def get_db(self) -> AsyncIOMotorDatabase:
        """
        Get the database handle, connecting on first use.

        Raises:
            PyMongoError: If the connection cannot be established
        """
        client = await self._registry.acquire(self.connection_string, self.options)
        return client.get_default_database(self.database or DEFAULT_DATABASE)

    def _not_found(self, collection_name: str, identifier: Any) -> NotFoundError:
        return NotFoundError(f"The record {identifier} in {collection_name} does not exist.")

    async def get_all(self, collection_name: str) -> List[Record]:
        """
        Get all records for a collection.

        Returns an empty list for a collection that was never written.
        """
        db = await self.get_db()
        records = await db[collection_name].find({}).to_list(length=None)
        logger.debug(f"Fetched {len(records)} records from {collection_name}")
        return records

    async def get(self, collection_name: str, identifier: Any) -> Record:
        """
        Get a single record from a collection.

        Raises:
            NotFoundError: If no record has the identifier
        """
        db = await self.get_db()
        record = await db[collection_name].find_one({ID_FIELD: identifier})
        if record is None:
            raise self._not_found(collection_name, identifier)
        return record

    async def create(self, collection_name: str, record: Mapping[str, Any]) -> Record:
        """
        Create a record in a collection.

        A record without an identifier is given a random UUID. Falsy
        identifiers such as 0 or "" count as missing and are replaced too.

        Args:
            collection_name: Name of the collection
            record: Field values of the new record

        Returns:
            Record: The inserted record, identifier included

        Raises:
            ValidationError: If a record with the same identifier exists
        """
        if not isinstance(record, Mapping):
            raise ArgumentError(f"The record must be a mapping, got {type(record).__name__}")

        db = await self.get_db()

        document = dict(record)
        if not document.get(ID_FIELD):
            document[ID_FIELD] = str(uuid.uuid4())

        try:
            await db[collection_name].insert_one(document)
        except Exception as e:
            error_type = self._classifier.classify(e)
            if error_type is None:
                raise
            raise error_type(
                f"The record {document[ID_FIELD]} in {collection_name} already exists."
            ) from e

        logger.debug(f"Created record {document[ID_FIELD]} in {collection_name}")
        return document

    async def update(
        self,
        collection_name: str,
        identifier: Any,
        record: Mapping[str, Any],
        upsert: bool = False,
    ) -> Record:
        """
        Update a record in a collection.

        Fields in ``record`` overwrite the stored ones; fields it does not
        mention are kept.

        Args:
            collection_name: Name of the collection
            identifier: Identifier of the record to update
            record: Fields to set
            upsert: Create the record when it does not exist

        Returns:
            Record: The full record as stored after the update

        Raises:
            NotFoundError: If the record does not exist and upsert is False
        """
        if not isinstance(record, Mapping):
            raise ArgumentError(f"The record must be a mapping, got {type(record).__name__}")

        fields = dict(record)
        if fields.get(ID_FIELD) and fields[ID_FIELD] != identifier:
            raise ArgumentError(
                f"The record identifier {fields[ID_FIELD]} does not match {identifier}"
            )
        fields[ID_FIELD] = identifier

        db = await self.get_db()
        collection = db[collection_name]

        try:
            result = await collection.update_one(
                {ID_FIELD: identifier}, {"$set": fields}, upsert=bool(upsert)
            )
        except Exception as e:
            error_type = self._classifier.classify(e)
            if error_type is None:
                raise
            raise error_type(
                f"The record {identifier} in {collection_name} conflicts with an existing record."
            ) from e

        if result.matched_count == 0 and result.upserted_id is None:
            raise self._not_found(collection_name, identifier)

        stored = await collection.find_one({ID_FIELD: identifier})
        if stored is None:
            raise self._not_found(collection_name, identifier)

        logger.debug(f"Updated record {identifier} in {collection_name}")
        return stored

    async def delete(self, collection_name: str, identifier: Any) -> bool:
        """
        Delete a record in a collection.

        Returns:
            bool: True if a record was removed, False if none matched
        """
        db = await self.get_db()
        result = await db[collection_name].delete_one({ID_FIELD: identifier})
        deleted = result.deleted_count == 1
        logger.debug(f"Delete of {identifier} in {collection_name} removed={deleted}")
        return deleted

    async def close_connection(self) -> None:
        """
        Close the connection to the database.

        The client stays registered, so later operations through any provider
        sharing it fail with the driver's closed-client error.
        """
        client = await self._registry.acquire(self.connection_string, self.options)
        client.close()
        logger.info(f"Closed connection to {redact_connection_string(self.connection_string)}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.get_db()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit, closing and forgetting the shared client."""
        await self._registry.release(self.connection_string, self.options)
