"""Persistence interface for org records, plus an in-memory backend."""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any

from org_dispenser.shared.exceptions import RecordNotFoundError


class Persistence(ABC):
    """Narrow document-store interface. Swap implementation for Mongo, etc."""

    @abstractmethod
    def find_one(self, query: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def upsert(self, selector: dict[str, Any], update: dict[str, Any]) -> None: ...

    @abstractmethod
    def remove(self, selector: dict[str, Any]) -> None: ...


def _matches(doc: dict[str, Any], selector: dict[str, Any]) -> bool:
    return all(doc.get(k) == v for k, v in selector.items())


class InMemoryPersistence(Persistence):
    """Thread-safe in-memory document collection.

    Mirrors the Mongo wrapper: misses raise RecordNotFoundError, upsert
    replaces the whole document matched by the selector.
    """

    def __init__(self) -> None:
        self._docs: list[dict[str, Any]] = []
        self._lock = threading.RLock()

    def find_one(self, query: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            for doc in self._docs:
                if _matches(doc, query):
                    return copy.deepcopy(doc)
        raise RecordNotFoundError(f"no document matches {query}")

    def upsert(self, selector: dict[str, Any], update: dict[str, Any]) -> None:
        doc = copy.deepcopy(update)
        with self._lock:
            for i, existing in enumerate(self._docs):
                if _matches(existing, selector):
                    self._docs[i] = doc
                    return
            self._docs.append(doc)

    def remove(self, selector: dict[str, Any]) -> None:
        with self._lock:
            for i, doc in enumerate(self._docs):
                if _matches(doc, selector):
                    del self._docs[i]
                    return
        raise RecordNotFoundError(f"no document matches {selector}")

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._docs)
