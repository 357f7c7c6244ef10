from .models import ErrorKind


class LedgerServiceError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_FAILURE


class NotFoundError(LedgerServiceError):
    kind = ErrorKind.NOT_FOUND


class AlreadyClaimedError(LedgerServiceError):
    kind = ErrorKind.ALREADY_CLAIMED


class InsufficientFundsError(LedgerServiceError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class ValidationFailureError(LedgerServiceError):
    kind = ErrorKind.VALIDATION_FAILURE


class InvalidStateTransitionError(LedgerServiceError):
    kind = ErrorKind.ALREADY_RESOLVED


class AlreadyResolvedError(InvalidStateTransitionError):
    pass


class StorageError(LedgerServiceError):
    """The backing store rejected a read or write."""

    kind = ErrorKind.STORAGE_FAILURE


class ConcurrentModificationError(StorageError):
    """A committed row changed after it was loaded."""


_ERRORS_BY_KIND = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.ALREADY_CLAIMED: AlreadyClaimedError,
    ErrorKind.VALIDATION_FAILURE: ValidationFailureError,
}


def error_for_kind(kind: ErrorKind, message: str) -> LedgerServiceError:
    return _ERRORS_BY_KIND.get(kind, LedgerServiceError)(message)
