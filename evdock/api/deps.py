from fastapi import HTTPException
from evdock.models.schemas import ServiceResult
from evdock.services.allocation_saga import LockRegistry

# Shared by every request so concurrent allocations see each other's locks
APP_LOCKS = LockRegistry()

ERROR_STATUS = {
    "not_found": 404,
    "validation": 400,
    "insufficient_stock": 409,
    "duplicate": 409,
    "locked": 409,
    "compensation_failed": 500,
    "storage_failure": 503,
}


def unwrap(result: ServiceResult):
    """Return the payload of a successful result, or raise the matching HTTP error"""
    if result.success:
        return result.data
    raise HTTPException(status_code=ERROR_STATUS.get(result.error_code, 400), detail=result.error)
