class LedgerError(Exception):
    """Domain failure reported back to callers as a failed ServiceResult"""

    code = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    code = "not_found"


class InsufficientStockError(LedgerError):
    code = "insufficient_stock"


class ValidationError(LedgerError):
    code = "validation"


class DuplicateError(LedgerError):
    code = "duplicate"


class AllocationLockedError(LedgerError):
    """Raised when another allocation holds the inventory row lock"""

    code = "locked"


class StorageError(Exception):
    """Raised when the underlying key/value store fails"""
    pass


class ConcurrencyConflictError(Exception):
    """Raised when a concurrency conflict is detected"""
    pass
