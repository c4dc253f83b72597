import asyncio
import functools
import logging
from typing import Optional
from evdock.core.config import SERVICE_LATENCY_MS
from evdock.core.exceptions import ConcurrencyConflictError, LedgerError, StorageError
from evdock.models.schemas import ServiceResult
from evdock.services.repository import run_with_retry
from evdock.services.storage_service import StorageService


class BaseService:
    """Common plumbing for the storage-backed ledgers"""

    def __init__(self, store: StorageService, latency_ms: Optional[int] = None):
        self.store = store
        if latency_ms is None:
            latency_ms = SERVICE_LATENCY_MS
        self.latency = latency_ms / 1000.0

    async def delay(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)


def service_call(error_message: str, retry: bool = False):
    """
    Turn a service coroutine into one that returns a ServiceResult.

    Domain errors (LedgerError) become failed results carrying their own
    message and code. Storage and unresolved concurrency failures are logged
    and reported with the generic error_message. With retry=True the whole
    coroutine is re-run on a concurrency conflict.
    """

    def decorator(func):
        logger = logging.getLogger(func.__module__)

        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs) -> ServiceResult:
            await self.delay()
            try:
                if retry:
                    data = await run_with_retry(lambda: func(self, *args, **kwargs))
                else:
                    data = await func(self, *args, **kwargs)
            except LedgerError as e:
                logger.warning(f"{func.__name__} rejected: {e.message}")
                return ServiceResult.fail(e.message, e.code)
            except (StorageError, ConcurrencyConflictError) as e:
                logger.error(f"Error in {func.__name__}: {str(e)}")
                return ServiceResult.fail(error_message, "storage_failure")
            return ServiceResult.ok(data)

        return wrapper

    return decorator
