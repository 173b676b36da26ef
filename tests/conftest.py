"""Shared fixtures: identities and stores in temporary directories."""
import pytest

from envkey.identity import Identity
from envkey.storage import EnvkeyStore
from envkey.vault import init_store


@pytest.fixture
def alice():
    return Identity.generate()


@pytest.fixture
def bob():
    return Identity.generate()


@pytest.fixture
def carol():
    return Identity.generate()


@pytest.fixture
def store(tmp_path):
    """An EnvkeyStore that has not been initialized yet."""
    return EnvkeyStore.in_directory(tmp_path)


@pytest.fixture
def team_store(store, alice):
    """A store initialized with alice as the sole admin."""
    init_store(store, alice, "alice")
    return store
