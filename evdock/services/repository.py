import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Type, TypeVar
from pydantic import BaseModel
from evdock.core.exceptions import ConcurrencyConflictError
from evdock.services.storage_service import StorageService

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R")

MAX_RETRIES = 3


def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


class CollectionRepository(Generic[T]):
    """
    A JSON array of records stored under one key.

    load() reads the array and indexes it by id; mutations only touch the
    in-memory index until flush() writes the whole array back, guarded by
    the version token read at load time.
    """

    def __init__(self, store: StorageService, key: str, model: Type[T]):
        self.store = store
        self.key = key
        self.model = model
        self._records: Dict[str, T] = {}
        self._version = 0
        self._loaded = False

    async def load(self) -> "CollectionRepository[T]":
        raw, version = await self.store.get_versioned(self.key)
        records = raw if isinstance(raw, list) else []
        self._records = {}
        for record in records:
            item = self.model.model_validate(record)
            self._records[item.id] = item
        self._version = version
        self._loaded = True
        return self

    async def flush(self) -> None:
        if not self._loaded:
            raise RuntimeError(f"Repository {self.key} flushed before load()")
        payload = [record.model_dump(mode="json", by_alias=True) for record in self._records.values()]
        self._version = await self.store.set_versioned(self.key, payload, expected_version=self._version)

    @property
    def version(self) -> int:
        return self._version

    def all(self) -> List[T]:
        return list(self._records.values())

    def get(self, record_id: str) -> Optional[T]:
        return self._records.get(record_id)

    def add(self, record: T) -> T:
        """Insert newest first"""
        self._records = {record.id: record, **self._records}
        return record

    def put(self, record: T) -> T:
        self._records[record.id] = record
        return record

    def remove(self, record_id: str) -> Optional[T]:
        return self._records.pop(record_id, None)

    def find(self, predicate: Callable[[T], bool]) -> Optional[T]:
        for record in self._records.values():
            if predicate(record):
                return record
        return None

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [record for record in self._records.values() if predicate(record)]

    def __len__(self) -> int:
        return len(self._records)


async def run_with_retry(operation: Callable[[], Awaitable[R]], max_retries: int = MAX_RETRIES) -> R:
    """
    Run a load/mutate/flush operation, retrying on concurrency conflicts.

    The operation must reload its repositories on every call.
    """
    for attempt in range(max_retries):
        try:
            return await operation()
        except ConcurrencyConflictError:
            if attempt == max_retries - 1:
                raise
            logger.warning(f"Concurrency conflict on attempt {attempt + 1}, retrying...")
            await asyncio.sleep(0.01 * (attempt + 1))
    raise ConcurrencyConflictError("Retries exhausted")
