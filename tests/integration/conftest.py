"""
Shared fixtures for catalog integration tests.

Each test gets a fresh SQLite catalog in a temporary directory. Fixtures are
synchronous; tests call ``await catalog.start()`` before using it.
"""

import tempfile

import pytest

from catalogdb.catalog import Catalog
from catalogdb.config import Settings
from catalogdb.directory import (
    InMemoryStudyDirectory,
    InMemoryVariableSetProvider,
    Variable,
    VariableSet,
    VariableType,
)

CLINICAL = VariableSet(
    id=3,
    name="clinical",
    variables=(
        Variable("age", VariableType.INTEGER),
        Variable("phenotype", VariableType.CATEGORICAL, ("cancer", "healthy")),
    ),
)


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def directory():
    """Study 1 with three users and a group; study 2 with one user."""
    directory = InMemoryStudyDirectory()
    directory.add_study(1, users=["alice", "bob", "carol"], groups={"@team": ["alice", "bob"]})
    directory.add_study(2, users=["dave"])
    return directory


@pytest.fixture
def variable_sets():
    return InMemoryVariableSetProvider([CLINICAL])


@pytest.fixture
def settings(data_dir):
    return Settings(data_dir=data_dir, wal_mode=False, log_format="text", log_level="INFO")


@pytest.fixture
def catalog(settings, directory, variable_sets):
    """Catalog over a fresh database (not started)."""
    return Catalog(settings, directory, variable_sets)
