"""
tests/unit/test_transaction_units.py — Unit tests for atomic_write().

What this file proves:
  - A clean block flushes then commits, and never rolls back
  - AppError inside the block rolls back and propagates unchanged
  - A lost optimistic lock (StaleDataError) or any SQLAlchemyError rolls back
    and surfaces as WRITE_CONFLICT (409), chained to the original error
  - A failure during commit itself is handled the same way
  - Any other exception rolls back and propagates unchanged
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from fairshare.app.errors import AppError, ErrorCode
from fairshare.app.services.transaction import atomic_write


def test_success_flushes_and_commits():
    session = MagicMock()

    with atomic_write(session, "op") as s:
        assert s is session

    session.flush.assert_called_once()
    session.commit.assert_called_once()
    session.rollback.assert_not_called()


def test_app_error_rolls_back_and_propagates():
    session = MagicMock()
    original = AppError(ErrorCode.MEMBER_NOT_FOUND, "gone", 404)

    with pytest.raises(AppError) as exc_info:
        with atomic_write(session, "op"):
            raise original

    assert exc_info.value is original
    session.rollback.assert_called_once()
    session.commit.assert_not_called()


def test_stale_data_becomes_write_conflict():
    session = MagicMock()

    with pytest.raises(AppError) as exc_info:
        with atomic_write(session, "delete_expense"):
            raise StaleDataError("UPDATE statement on table 'expenses' expected to update 1 row(s)")

    err = exc_info.value
    assert err.code == ErrorCode.WRITE_CONFLICT
    assert err.http_status == 409
    assert isinstance(err.__cause__, StaleDataError)
    session.rollback.assert_called_once()


def test_integrity_error_on_flush_becomes_write_conflict():
    session = MagicMock()
    session.flush.side_effect = IntegrityError("INSERT", {}, Exception("unique"))

    with pytest.raises(AppError) as exc_info:
        with atomic_write(session, "create_expense"):
            pass

    assert exc_info.value.code == ErrorCode.WRITE_CONFLICT
    session.commit.assert_not_called()
    session.rollback.assert_called_once()


def test_commit_failure_becomes_write_conflict():
    session = MagicMock()
    session.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection lost"))

    with pytest.raises(AppError) as exc_info:
        with atomic_write(session, "create_settlement"):
            pass

    assert exc_info.value.code == ErrorCode.WRITE_CONFLICT
    session.rollback.assert_called_once()


def test_unexpected_exception_rolls_back_and_propagates():
    session = MagicMock()

    with pytest.raises(RuntimeError, match="boom"):
        with atomic_write(session, "op"):
            raise RuntimeError("boom")

    session.rollback.assert_called_once()
    session.commit.assert_not_called()


def test_commit_logged_at_debug(caplog):
    session = MagicMock()

    with caplog.at_level(logging.DEBUG, logger="fairshare.app.services.transaction"):
        with atomic_write(session, "create_settlement"):
            pass

    [record] = caplog.records
    assert record.levelno == logging.DEBUG
    assert record.getMessage() == "create_settlement committed"


def test_conflict_logged_at_warning(caplog):
    session = MagicMock()
    session.commit.side_effect = OperationalError("COMMIT", {}, Exception("locked"))

    with caplog.at_level(logging.DEBUG, logger="fairshare.app.services.transaction"):
        with pytest.raises(AppError):
            with atomic_write(session, "delete_expense"):
                pass

    [record] = caplog.records
    assert record.levelno == logging.WARNING
    assert record.getMessage().startswith("delete_expense rejected by the database")
