import os
from contextlib import contextmanager

from fastapi import HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..errors import NotFoundError, PermissionDenied, ProofLedgerError, StoreIOError, ValidationError

limiter = Limiter(key_func=get_remote_address)
testing = os.getenv("TESTING") == "1"

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (PermissionDenied, 403),
    (NotFoundError, 404),
    (StoreIOError, 500),
)


def rate_limit(limit: str):
    if testing:
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)


@contextmanager
def domain_errors():
    """Translate proof ledger errors raised inside the block into HTTP errors."""

    try:
        yield
    except ProofLedgerError as exc:
        for error_type, status_code in STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                raise HTTPException(status_code=status_code, detail=str(exc)) from exc
        raise HTTPException(status_code=500, detail=str(exc)) from exc
