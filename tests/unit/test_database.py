"""Unit tests for the optimistic transaction primitive.

Tests cover:
- run_in_transaction(): commits what the unit of work wrote
- run_in_transaction(): re-runs the unit of work after a commit conflict
- run_in_transaction(): raises TransientConflictError when the budget is spent
- run_in_transaction(): workflow errors and integrity errors are not retried
- run_in_transaction(): a stale version_id on flush is detected and retried
- is_retryable_conflict(): which driver errors count as a lost race
"""

from __future__ import annotations

import sqlite3

import pytest
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from capstone_portal.core.database import is_retryable_conflict, run_in_transaction
from capstone_portal.core.exceptions import InvalidStateError, TransientConflictError
from capstone_portal.core.models import Supervisor


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


# ---------------------------------------------------------------------------
# run_in_transaction
# ---------------------------------------------------------------------------


class TestRunInTransaction:
    async def test_commits_work(self, session_factory, create_supervisor, fetch) -> None:
        supervisor = await create_supervisor(current_capacity=0)

        async def work(session):
            row = await session.get(Supervisor, supervisor.id)
            row.current_capacity = 2
            return "done"

        result = await run_in_transaction(session_factory, work, operation="test_commit")

        assert result == "done"
        assert (await fetch(Supervisor, supervisor.id)).current_capacity == 2

    async def test_retries_after_conflict(self, session_factory) -> None:
        attempts = []

        async def work(session):
            attempts.append(1)
            if len(attempts) < 3:
                raise StaleDataError("lost the race")
            return len(attempts)

        result = await run_in_transaction(
            session_factory, work, operation="test_retry", max_attempts=5
        )

        assert result == 3

    async def test_exhausted_budget_raises_transient_conflict(self, session_factory) -> None:
        calls = []

        async def work(session):
            calls.append(1)
            raise StaleDataError("always stale")

        with pytest.raises(TransientConflictError) as exc_info:
            await run_in_transaction(
                session_factory, work, operation="test_exhausted", max_attempts=3
            )

        assert exc_info.value.attempts == 3
        assert len(calls) == 3

    async def test_workflow_error_is_not_retried(self, session_factory) -> None:
        calls = []

        async def work(session):
            calls.append(1)
            raise InvalidStateError("nope")

        with pytest.raises(InvalidStateError):
            await run_in_transaction(session_factory, work, operation="test_workflow")

        assert len(calls) == 1

    async def test_integrity_error_is_not_retried(self, session_factory) -> None:
        calls = []

        async def work(session):
            calls.append(1)
            raise IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            await run_in_transaction(session_factory, work, operation="test_integrity")

        assert len(calls) == 1

    async def test_failed_attempt_is_rolled_back(
        self, session_factory, create_supervisor, fetch
    ) -> None:
        supervisor = await create_supervisor(current_capacity=1)

        async def work(session):
            row = await session.get(Supervisor, supervisor.id)
            row.current_capacity = 4
            await session.flush()
            raise InvalidStateError("abort")

        with pytest.raises(InvalidStateError):
            await run_in_transaction(session_factory, work, operation="test_rollback")

        assert (await fetch(Supervisor, supervisor.id)).current_capacity == 1

    async def test_concurrent_write_is_detected_by_version(
        self, session_factory, create_supervisor, fetch
    ) -> None:
        """A row changed behind the unit of work's back forces a re-run on fresh data."""
        supervisor = await create_supervisor(current_capacity=0, max_capacity=5)
        seen = []

        async def work(session):
            row = await session.get(Supervisor, supervisor.id, populate_existing=True)
            seen.append(row.current_capacity)
            if len(seen) == 1:
                # Another writer commits between our read and our write.
                async with session_factory() as other:
                    async with other.begin():
                        await other.execute(
                            update(Supervisor)
                            .where(Supervisor.id == supervisor.id)
                            .values(current_capacity=3, version_id=Supervisor.version_id + 1)
                        )
            row.current_capacity += 1

        await run_in_transaction(session_factory, work, operation="test_version")

        assert seen == [0, 3]
        assert (await fetch(Supervisor, supervisor.id)).current_capacity == 4


# ---------------------------------------------------------------------------
# is_retryable_conflict
# ---------------------------------------------------------------------------


class TestIsRetryableConflict:
    def test_stale_data_is_retryable(self) -> None:
        assert is_retryable_conflict(StaleDataError("stale"))

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
    def test_postgres_serialization_and_deadlock_are_retryable(self, sqlstate: str) -> None:
        exc = DBAPIError("UPDATE supervisors", {}, _PgError(sqlstate))

        assert is_retryable_conflict(exc)

    def test_sqlite_lock_is_retryable(self) -> None:
        exc = OperationalError("UPDATE", {}, sqlite3.OperationalError("database is locked"))

        assert is_retryable_conflict(exc)

    def test_unique_violation_is_not_retryable(self) -> None:
        exc = IntegrityError("INSERT", {}, _PgError("23505"))

        assert not is_retryable_conflict(exc)

    def test_arbitrary_exception_is_not_retryable(self) -> None:
        assert not is_retryable_conflict(RuntimeError("boom"))
