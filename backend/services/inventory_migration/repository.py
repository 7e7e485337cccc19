"""
Inventory Migration - Repository Adapter

The migration never touches a database client directly. Every component
receives a MigrationRepository, so the same code runs against MongoDB
(MotorRepository) or an in-memory store (InMemoryRepository) in tests and
dry runs.

Operations:
- scan_all(collection): every document in a collection
- query(collection, filters): equality and simple range filters
- upsert(collection, key, document): replace-or-insert by key
- append(collection, document): insert with a generated key
- commit(operations): apply several writes atomically
"""

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient

from .exceptions import RepositoryUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class WriteOperation:
    """A single write staged for an atomic commit."""
    collection: str
    document: Dict[str, Any]
    key: Optional[str] = None  # None means append with a generated key

    @property
    def is_upsert(self) -> bool:
        return self.key is not None


def _with_id(document: Dict[str, Any]) -> Dict[str, Any]:
    """Expose the store key as `id` and drop `_id`."""
    result = dict(document)
    key = result.pop("_id", None)
    if key is not None:
        result.setdefault("id", str(key))
    return result


class MigrationRepository(ABC):
    """
    Abstract document store used by the migration.

    Read operations yield plain dicts with the store key under `id`.
    """

    @abstractmethod
    async def ping(self) -> None:
        """Raise RepositoryUnavailableError if the store cannot be reached."""
        pass

    @abstractmethod
    def scan_all(self, collection: str) -> AsyncIterator[Dict[str, Any]]:
        """Iterate every document of a collection."""
        pass

    @abstractmethod
    def query(self, collection: str, filters: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """
        Iterate documents matching all filters.

        A filter value is either a literal (equality) or a dict of
        "$gt", "$gte", "$lt", "$lte", "$in" operators.
        """
        pass

    @abstractmethod
    async def upsert(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        """Replace the document stored under key, creating it if missing."""
        pass

    @abstractmethod
    async def append(self, collection: str, document: Dict[str, Any]) -> str:
        """Insert a document under a generated key and return the key."""
        pass

    @abstractmethod
    async def commit(self, operations: List[WriteOperation]) -> None:
        """Apply all operations or none of them."""
        pass

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        pass


# =============================================================================
# MONGODB
# =============================================================================

class MotorRepository(MigrationRepository):
    """
    MongoDB implementation over an AsyncIOMotorClient.

    Keys map to `_id`. Atomic commits use a multi-document transaction, which
    needs a replica set or sharded cluster.
    """

    def __init__(self, client: AsyncIOMotorClient, db_name: str):
        self.client = client
        self.db = client[db_name]

    async def ping(self) -> None:
        try:
            await self.client.admin.command("ping")
        except Exception as e:
            raise RepositoryUnavailableError(f"Cannot connect to MongoDB: {e}")

    async def scan_all(self, collection: str) -> AsyncIterator[Dict[str, Any]]:
        async for doc in self.db[collection].find({}):
            yield _with_id(doc)

    async def query(self, collection: str, filters: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        async for doc in self.db[collection].find(dict(filters)):
            yield _with_id(doc)

    async def upsert(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        await self.db[collection].replace_one({"_id": key}, dict(document), upsert=True)

    async def append(self, collection: str, document: Dict[str, Any]) -> str:
        # insert_one adds _id to the dict it is given
        result = await self.db[collection].insert_one(dict(document))
        return str(result.inserted_id)

    async def commit(self, operations: List[WriteOperation]) -> None:
        if not operations:
            return
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                for op in operations:
                    target = self.db[op.collection]
                    if op.is_upsert:
                        await target.replace_one(
                            {"_id": op.key}, dict(op.document), upsert=True, session=session
                        )
                    else:
                        await target.insert_one(dict(op.document), session=session)
        logger.debug(f"Committed {len(operations)} operations in one transaction")

    async def count(self, collection: str) -> int:
        return await self.db[collection].count_documents({})


# =============================================================================
# IN-MEMORY
# =============================================================================

_RANGE_OPERATORS = {
    "$gt": lambda actual, expected: actual > expected,
    "$gte": lambda actual, expected: actual >= expected,
    "$lt": lambda actual, expected: actual < expected,
    "$lte": lambda actual, expected: actual <= expected,
    "$in": lambda actual, expected: actual in expected,
}


def _matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for field_name, expected in filters.items():
        actual = document.get(field_name)
        if isinstance(expected, dict) and expected and all(op in _RANGE_OPERATORS for op in expected):
            if actual is None:
                return False
            try:
                if not all(_RANGE_OPERATORS[op](actual, value) for op, value in expected.items()):
                    return False
            except TypeError:
                return False
        elif actual != expected:
            return False
    return True


class InMemoryRepository(MigrationRepository):
    """
    In-memory document store for tests and local dry runs.

    Documents are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self, name: str = "in_memory"):
        self.name = name
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def seed(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        """Load documents, keyed by their `id` (or `_id`) when present."""
        store = self._collections.setdefault(collection, {})
        for doc in documents:
            data = copy.deepcopy(doc)
            key = data.pop("id", None) or data.pop("_id", None) or uuid.uuid4().hex
            store[str(key)] = data

    def documents(self, collection: str) -> List[Dict[str, Any]]:
        """Snapshot of a collection, each document carrying its key as `id`."""
        return [
            {**copy.deepcopy(doc), "id": key}
            for key, doc in self._collections.get(collection, {}).items()
        ]

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        doc = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def ping(self) -> None:
        return None

    async def scan_all(self, collection: str) -> AsyncIterator[Dict[str, Any]]:
        for doc in self.documents(collection):
            yield doc

    async def query(self, collection: str, filters: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        for doc in self.documents(collection):
            if _matches(doc, filters):
                yield doc

    async def upsert(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(document)

    async def append(self, collection: str, document: Dict[str, Any]) -> str:
        key = uuid.uuid4().hex
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(document)
        return key

    async def commit(self, operations: List[WriteOperation]) -> None:
        staged = copy.deepcopy(self._collections)
        for op in operations:
            key = op.key if op.is_upsert else uuid.uuid4().hex
            staged.setdefault(op.collection, {})[key] = copy.deepcopy(op.document)
        self._collections = staged

    async def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))
