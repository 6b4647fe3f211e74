"""Shared test fixtures for the agenda planner tests."""

import sys
from pathlib import Path

import pytest

# Ensure the repo root (agenda package, agenda_server module) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from agenda.local_store import LocalStorage
from agenda.planner import Planner
from agenda.repository import LocalStorageRepository


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "agenda.db"))


@pytest.fixture
def local_repo(storage):
    return LocalStorageRepository(storage)


@pytest.fixture
def planner(local_repo):
    p = Planner(local_repo)
    p.start()
    yield p
    p.close()
