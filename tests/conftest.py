# tests/conftest.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.unit.test_support.event_audit_fakes import FakeSession


@pytest.fixture
def db_result() -> MagicMock:
    """
    The result every `execute()` on `mock_db_session` returns.
    Modules override this fixture to script the rows their repository reads.
    """
    return MagicMock()


@pytest.fixture
def mock_db_session(db_result) -> AsyncMock:
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.add_all = MagicMock()
    session.execute.return_value = db_result
    return session


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
