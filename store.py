"""Document store used by the ride services.

Services talk to a ``DocumentCollection``: point reads, filtered queries,
create-if-absent inserts and conditional updates. ``FirestoreCollection`` backs
it with the async Firestore client; every call is bounded by a timeout and
infrastructure failures surface as ``UpstreamUnavailable``.
"""
from abc import ABC, abstractmethod
import asyncio
import logging

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class DocumentCollection(ABC):
    """A named collection of JSON documents keyed by id"""

    @abstractmethod
    async def get(self, doc_id: str) -> dict | None:
        pass

    @abstractmethod
    async def query(self, filters=(), order_by: str | None = None,
                    descending: bool = False, limit: int | None = None) -> list[dict]:
        """``filters`` is a sequence of ``(field, op, value)`` with Firestore operators"""

    @abstractmethod
    async def create(self, doc_id: str, data: dict) -> bool:
        """Insert unless the document exists. Returns False when it already did."""

    @abstractmethod
    async def update(self, doc_id: str, updates: dict) -> dict | None:
        """Apply ``updates`` and return the new document, or None if it is missing"""

    @abstractmethod
    async def compare_and_set(self, doc_id: str, expected: dict, updates: dict) -> tuple[bool, dict | None]:
        """Atomically apply ``updates`` if every ``expected`` field still holds.

        Returns ``(applied, document)``; the document is the updated one when
        applied, the current one otherwise, and None if it does not exist.
        """

    @abstractmethod
    async def increment(self, doc_id: str, field: str, amount: float) -> None:
        pass


class FirestoreCollection(DocumentCollection):
    def __init__(self, client, name: str, timeout: float = 10):
        self._client = client
        self._ref = client.collection(name)
        self.name = name
        self.timeout = timeout

    async def _call(self, operation):
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error(f"Firestore call on {self.name} timed out after {self.timeout}s")
            raise UpstreamUnavailable(f"Store timeout on {self.name}") from exc
        except google_exceptions.GoogleAPICallError as exc:
            logger.error(f"Firestore call on {self.name} failed: {exc}")
            raise UpstreamUnavailable(f"Store failure on {self.name}") from exc

    async def get(self, doc_id):
        snapshot = await self._call(self._ref.document(doc_id).get())
        return snapshot.to_dict() if snapshot.exists else None

    async def query(self, filters=(), order_by=None, descending=False, limit=None):
        query = self._ref
        for field, op, value in filters:
            query = query.where(filter=FieldFilter(field, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit:
            query = query.limit(limit)

        async def collect():
            return [doc.to_dict() async for doc in query.stream()]

        return await self._call(collect())

    async def create(self, doc_id, data):
        try:
            await self._call(self._ref.document(doc_id).create(data))
            return True
        except UpstreamUnavailable as exc:
            if isinstance(exc.__cause__, google_exceptions.AlreadyExists):
                return False
            raise

    async def update(self, doc_id, updates):
        doc_ref = self._ref.document(doc_id)
        try:
            await self._call(doc_ref.update(updates))
        except UpstreamUnavailable as exc:
            if isinstance(exc.__cause__, google_exceptions.NotFound):
                return None
            raise
        return await self.get(doc_id)

    async def compare_and_set(self, doc_id, expected, updates):
        doc_ref = self._ref.document(doc_id)
        transaction = self._client.transaction()

        @firestore.async_transactional
        async def apply(transaction):
            snapshot = await doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return False, None
            current = snapshot.to_dict()
            if any(current.get(field) != value for field, value in expected.items()):
                return False, current
            transaction.update(doc_ref, updates)
            current.update(updates)
            return True, current

        return await self._call(apply(transaction))

    async def increment(self, doc_id, field, amount):
        await self._call(self._ref.document(doc_id).update({field: firestore.Increment(amount)}))
