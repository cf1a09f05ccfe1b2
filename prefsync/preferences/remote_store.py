"""
Remote Document Store
Boundary to the managed document database holding user profiles, tasks and expenses
"""
import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.exceptions import RemoteStoreError
from ..monitoring.structured_logger import StructuredLogger


@dataclass
class Document:
    """A document returned by a collection query"""
    id: str
    data: Dict[str, Any] = field(default_factory=dict)


_CLOSED = object()


class DocumentSubscription:
    """Live snapshots of one document as an async iterator

    Yields the current document (None when it does not exist) and then every
    subsequent change until ``close()`` is called.
    """

    def __init__(self, collection: str, doc_id: str,
                 on_close: Optional[Callable[["DocumentSubscription"], None]] = None):
        self.collection = collection
        self.doc_id = doc_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: Optional[Dict[str, Any]]) -> None:
        if not self._closed:
            self._queue.put_nowait(copy.deepcopy(snapshot))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Optional[Dict[str, Any]]:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "DocumentSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class DocumentStore(ABC):
    """Abstract remote document database"""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Point read; None when the document does not exist"""
        pass

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any],
                           merge: bool = True) -> None:
        """Write fields; with merge, fields not mentioned are kept"""
        pass

    @abstractmethod
    async def query(self, collection: str, **equals: Any) -> List[Document]:
        """Documents whose fields equal every given filter"""
        pass

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> bool:
        """Delete a document, returning whether it existed"""
        pass

    @abstractmethod
    def watch(self, collection: str, doc_id: str) -> DocumentSubscription:
        """Subscribe to live snapshots of a document"""
        pass


class InMemoryDocumentStore(DocumentStore):
    """In-memory document store for testing and development

    ``fail_reads`` / ``fail_writes`` make every read or write raise
    :class:`RemoteStoreError`, which is how tests simulate an unreachable
    backend.
    """

    def __init__(self, logger: StructuredLogger):
        super().__init__(logger)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._watchers: Dict[Tuple[str, str], List[DocumentSubscription]] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.write_count = 0
        self.read_count = 0

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        if collection not in self._collections:
            self._collections[collection] = {}
        return self._collections[collection]

    def _check_read(self, collection: str):
        if self.fail_reads:
            raise RemoteStoreError(f"Read from '{collection}' failed: backend unavailable")

    def _check_write(self, collection: str):
        if self.fail_writes:
            raise RemoteStoreError(f"Write to '{collection}' failed: backend unavailable")

    def _notify(self, collection: str, doc_id: str):
        snapshot = self._collection(collection).get(doc_id)
        for subscription in list(self._watchers.get((collection, doc_id), [])):
            subscription.push(snapshot)

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self._check_read(collection)
        self.read_count += 1
        document = self._collection(collection).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any],
                           merge: bool = True) -> None:
        self._check_write(collection)
        self.write_count += 1
        documents = self._collection(collection)
        if merge and doc_id in documents:
            documents[doc_id].update(copy.deepcopy(fields))
        else:
            documents[doc_id] = copy.deepcopy(fields)

        self.logger.debug("Document written",
                          collection=collection, doc_id=doc_id, fields=list(fields.keys()))
        self._notify(collection, doc_id)

    async def query(self, collection: str, **equals: Any) -> List[Document]:
        self._check_read(collection)
        self.read_count += 1
        result = []
        for doc_id, data in self._collection(collection).items():
            if all(data.get(name) == expected for name, expected in equals.items()):
                result.append(Document(id=doc_id, data=copy.deepcopy(data)))
        return result

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        self._check_write(collection)
        existed = self._collection(collection).pop(doc_id, None) is not None
        if existed:
            self._notify(collection, doc_id)
        return existed

    def watch(self, collection: str, doc_id: str) -> DocumentSubscription:
        key = (collection, doc_id)
        subscription = DocumentSubscription(collection, doc_id, on_close=self._unwatch)
        self._watchers.setdefault(key, []).append(subscription)
        subscription.push(self._collection(collection).get(doc_id))
        return subscription

    def _unwatch(self, subscription: DocumentSubscription):
        key = (subscription.collection, subscription.doc_id)
        watchers = self._watchers.get(key, [])
        if subscription in watchers:
            watchers.remove(subscription)
        if not watchers:
            self._watchers.pop(key, None)

    def active_subscriptions(self) -> int:
        return sum(len(subs) for subs in self._watchers.values())


class RemoteProfileStore:
    """Per-user profile documents keyed by authenticated user id"""

    def __init__(self, document_store: DocumentStore, collection: str = "users"):
        self.document_store = document_store
        self.collection = collection

    async def read(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Point read of the profile; None when not found"""
        return await self.document_store.get_document(self.collection, user_id)

    async def write(self, user_id: str, partial_fields: Dict[str, Any], merge: bool = True) -> None:
        """Merge write; fields not mentioned are never deleted"""
        await self.document_store.set_document(self.collection, user_id, partial_fields, merge=merge)

    def watch(self, user_id: str) -> DocumentSubscription:
        return self.document_store.watch(self.collection, user_id)
