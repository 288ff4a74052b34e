"""Unit tests for BatchRepository over a mocked session."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from takeoff.core.exceptions import DatabaseError
from takeoff.repositories.job_repository import BatchRepository


@pytest.fixture
def session():
    session = MagicMock()
    session.execute = AsyncMock(return_value=MagicMock())
    session.flush = AsyncMock()
    return session


def _outcome_kwargs():
    return {"status": "completed", "metrics": {}, "outputs": [], "error": None}


class TestRecordOutcome:

    @pytest.mark.asyncio
    async def test_update_is_guarded_on_status(self, session):
        session.execute.return_value.first.return_value = (uuid.uuid4(),)

        recorded = await BatchRepository(session).record_outcome(uuid.uuid4(), **_outcome_kwargs())

        assert recorded is True
        statement = str(session.execute.call_args.args[0])
        assert statement.startswith("UPDATE takeoff_batches")
        assert "takeoff_batches.status NOT IN" in statement

    @pytest.mark.asyncio
    async def test_already_terminal_batch_is_not_recorded(self, session):
        session.execute.return_value.first.return_value = None

        recorded = await BatchRepository(session).record_outcome(uuid.uuid4(), **_outcome_kwargs())

        assert recorded is False

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self, session):
        session.execute.side_effect = OperationalError("UPDATE", {}, Exception("connection refused"))

        with pytest.raises(DatabaseError):
            await BatchRepository(session).record_outcome(uuid.uuid4(), **_outcome_kwargs())


class TestMarkProcessing:

    @pytest.mark.asyncio
    async def test_updates_loaded_row(self, session):
        batch = MagicMock(status="pending", started_at=None)
        session.execute.return_value.scalar_one_or_none.return_value = batch

        updated = await BatchRepository(session).mark_processing(uuid.uuid4())

        assert updated is batch
        assert batch.status == "processing"
        assert batch.started_at is not None
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_row(self, session):
        session.execute.return_value.scalar_one_or_none.return_value = None

        assert await BatchRepository(session).mark_processing(uuid.uuid4()) is None
        session.flush.assert_not_awaited()
