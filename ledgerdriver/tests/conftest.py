"""
Shared pytest fixtures.
"""

import pytest

from ledgerdriver.tests.fakes import FakeLedgerSession, FakeSessionFactory


@pytest.fixture
def fake_session() -> FakeLedgerSession:
    return FakeLedgerSession()


@pytest.fixture
def factory() -> FakeSessionFactory:
    return FakeSessionFactory()
