"""
FastAPI dependencies (DB session, family scope, ledger locks)
"""
from fastapi import Header, HTTPException, status

from famledger.application.ledger_locks import get_lock_table as _get_lock_table
from famledger.infrastructure.db.session import get_db as _get_db


# Re-export get_db and the process lock table
get_db = _get_db
get_lock_table = _get_lock_table


def get_family_id(x_family_id: str | None = Header(default=None)) -> int:
    """
    Family scope of the request, taken from the ``X-Family-Id`` header

    Authentication happens in front of this service; the header is trusted.

    Raises:
        HTTPException(400): header missing or not a positive integer
    """
    if x_family_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Family-Id header is required")
    try:
        family_id = int(x_family_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Family-Id must be an integer")
    if family_id <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Family-Id must be positive")
    return family_id
