"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from faber_runner.connection import Session
from faber_runner.progress import ProgressLog
from tests.fake_ssh import TARGET, FakeConnection


@pytest.fixture
def progress_path(tmp_path):
    return tmp_path / "progress.log"


@pytest.fixture
def sink(progress_path):
    """An open ProgressLog writing to a temp file."""
    log = ProgressLog(progress_path)
    log.open()
    yield log
    log.close()


@pytest.fixture
def make_session():
    """Build a Session around a FakeConnection."""

    def _make(connection: FakeConnection) -> Session:
        return Session(target=TARGET, connection=connection)

    return _make
