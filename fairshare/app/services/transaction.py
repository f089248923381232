"""
services/transaction.py — Atomic write scope for coordinator operations.

Every multi-record write (expense + obligations + balance increments +
group aggregate, or settlement + two balance increments) runs inside
exactly one atomic_write() block:

    with atomic_write(session, "create_expense"):
        session.add(expense)
        ledger.apply_expense_create(...)

On normal exit the block commits. On any exception it rolls back, so a
failure part-way through leaves no record and no balance changed.

  - AppError raised inside the block is re-raised unchanged.
  - SQLAlchemyError (constraint race, lost optimistic lock, dropped
    connection) becomes AppError(WRITE_CONFLICT, 409). Nothing was
    persisted and the whole operation may be retried by the caller.
    There is no automatic retry here.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fairshare.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


@contextmanager
def atomic_write(session: Session, operation: str) -> Iterator[Session]:
    try:
        yield session
        session.flush()
        session.commit()
    except AppError:
        session.rollback()
        raise
    except StaleDataError as exc:
        session.rollback()
        logger.warning("%s lost an optimistic lock: %s", operation, exc)
        raise AppError(
            ErrorCode.WRITE_CONFLICT,
            "The record was modified by another request. Reload and retry.",
            409,
        ) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("%s rejected by the database: %s", operation, exc)
        raise AppError(
            ErrorCode.WRITE_CONFLICT,
            "The write could not be committed. Nothing was saved; retry the request.",
            409,
        ) from exc
    except Exception:
        session.rollback()
        raise
    logger.debug("%s committed", operation)
