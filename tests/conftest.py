"""Shared fixtures for SLURM Manager tests."""

import pytest

from slurm_manager.config import Config
from slurm_manager.services.cache import MemoryStore
from tests.samples import FakeClock


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return Config(user="alice", cache_dir=tmp_path / "cache")
