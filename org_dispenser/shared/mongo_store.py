"""MongoDB-backed persistence implementing the Persistence interface.

The wrapper is deliberately thin: no retries, one round trip per call.
Upsert failures are reported as CannotAddOrgRecordError so allocation logic
only ever branches on that one error; remove failures pass through untouched.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection

from org_dispenser.shared.config import ServiceBindings
from org_dispenser.shared.exceptions import (
    CannotAddOrgRecordError,
    ConfigurationError,
    RecordNotFoundError,
)
from org_dispenser.shared.logging import get_logger
from org_dispenser.shared.store import Persistence

log = get_logger()


class MongoCollectionWrapper(Persistence):
    """Adapts a pymongo collection to the Persistence interface.

    Usage:
        store = MongoCollectionWrapper(client["pez"]["org_records"])
    """

    def __init__(self, collection: Collection) -> None:
        self._col = collection

    def find_one(self, query: dict[str, Any]) -> dict[str, Any]:
        doc = self._col.find_one(query)
        if doc is None:
            raise RecordNotFoundError(f"no document matches {query}")
        return doc

    def upsert(self, selector: dict[str, Any], update: dict[str, Any]) -> None:
        try:
            self._col.replace_one(selector, update, upsert=True)
        except Exception as e:
            log.error("org_upsert_failed", selector=str(selector), error=str(e))
            raise CannotAddOrgRecordError() from None

    def remove(self, selector: dict[str, Any]) -> None:
        result = self._col.delete_one(selector)
        if result.deleted_count == 0:
            raise RecordNotFoundError(f"no document matches {selector}")

    def ensure_indexes(self) -> None:
        """One record per owning user."""
        self._col.create_index([("email", ASCENDING)], unique=True)


class MongoIntegration:
    """Connects to the Mongo service bound to the app and hands out wrappers."""

    def __init__(self, uri: str, collection_name: str, client: MongoClient | None = None) -> None:
        self._uri = uri
        self._collection_name = collection_name
        self._db_name = _db_name_from_uri(uri)
        self._client = client or MongoClient(uri, serverSelectionTimeoutMS=3000, tz_aware=True)
        log.info("mongo_connected", database=self._db_name, collection=collection_name)

    @classmethod
    def from_bindings(
        cls,
        bindings: ServiceBindings,
        service_name: str,
        uri_name: str,
        collection_name: str,
    ) -> MongoIntegration:
        creds = bindings.with_name(service_name)
        uri = creds.get(uri_name)
        if not uri:
            raise ConfigurationError(f"mongo service {service_name!r} has no {uri_name!r} credential")
        return cls(uri, collection_name)

    @property
    def db_name(self) -> str:
        return self._db_name

    def collection(self) -> MongoCollectionWrapper:
        return MongoCollectionWrapper(self._client[self._db_name][self._collection_name])

    def close(self) -> None:
        self._client.close()


def _db_name_from_uri(uri: str) -> str:
    """Database name is the last path segment of the connection URI."""
    name = urlparse(uri).path.rstrip("/").rsplit("/", 1)[-1]
    if not name:
        raise ConfigurationError(f"mongo uri has no database name: {uri!r}")
    return name
