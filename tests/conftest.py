"""Shared fixtures."""

from __future__ import annotations

import pytest
from fakes import FakeClock, FakeRemoteStore

from repodb.cache import Cache
from repodb.config import CacheConfig
from repodb.provisioner import RepoFiles, RepositoryProvisioner
from repodb.timeline.journal import JournalTimelineStore


@pytest.fixture
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def files(store: FakeRemoteStore) -> RepoFiles:
    handle = store.add_repo()
    return RepoFiles(store, handle, RepositoryProvisioner(store, handle.name))


@pytest.fixture
def journal(files: RepoFiles) -> JournalTimelineStore:
    return JournalTimelineStore(files)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> Cache:
    return Cache.from_config(CacheConfig(max_entries=3), clock=clock)
