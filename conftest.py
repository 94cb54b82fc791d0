"""
Shared pytest fixtures.

Every store-level test runs against each storage backend: the in-memory one,
Redis (through an in-process fake client) and SQL (in-memory SQLite).
"""

from __future__ import annotations

import threading
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from app.backends import MemoryBackend, RedisBackend
from app.database import SqlBackend
from app.deps import get_store
from app.main import app
from app.store import SessionStore


class FakePipeline:
  def __init__(self, client: 'FakeRedis') -> None:
    self.client = client
    self.calls: list[tuple[str, tuple]] = []

  def set(self, *args):
    self.calls.append(('set', args))
    return self

  def sadd(self, *args):
    self.calls.append(('sadd', args))
    return self

  def execute(self) -> list:
    results = [getattr(self.client, name)(*args) for name, args in self.calls]
    self.calls.clear()
    return results


class FakeRedis:
  """Implements the few commands RedisBackend issues, with decode_responses semantics."""

  def __init__(self) -> None:
    self.values: dict[str, str] = {}
    self.sets: dict[str, set[str]] = {}
    self.locks: dict[str, threading.Lock] = {}
    self._locks_guard = threading.Lock()

  def get(self, key: str) -> str | None:
    return self.values.get(key)

  def set(self, key: str, value: str) -> bool:
    self.values[key] = value
    return True

  def sadd(self, key: str, *members: str) -> int:
    members_set = self.sets.setdefault(key, set())
    before = len(members_set)
    members_set.update(members)
    return len(members_set) - before

  def smembers(self, key: str) -> set[str]:
    return set(self.sets.get(key, set()))

  def mget(self, keys: list[str]) -> list[str | None]:
    return [self.values.get(key) for key in keys]

  def delete(self, key: str) -> int:
    return 1 if self.values.pop(key, None) is not None else 0

  def pipeline(self) -> FakePipeline:
    return FakePipeline(self)

  def lock(self, name: str, timeout: float | None = None) -> threading.Lock:
    with self._locks_guard:
      return self.locks.setdefault(name, threading.Lock())


class SlowFakeRedis(FakeRedis):
  """Widens the window between reading a session and writing it back."""

  def get(self, key: str) -> str | None:
    value = super().get(key)
    time.sleep(0.001)
    return value


def sqlite_engine():
  return create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)


@pytest.fixture
def fake_redis() -> FakeRedis:
  return FakeRedis()


@pytest.fixture(params=['memory', 'redis', 'sql'])
def backend(request, fake_redis):
  if request.param == 'memory':
    return MemoryBackend()
  if request.param == 'redis':
    return RedisBackend(fake_redis, prefix='test:')
  return SqlBackend(sqlite_engine())


@pytest.fixture
def store(backend) -> SessionStore:
  return SessionStore(backend)


@pytest.fixture
def memory_store() -> SessionStore:
  return SessionStore(MemoryBackend())


@pytest.fixture
def client(memory_store):
  app.dependency_overrides[get_store] = lambda: memory_store
  yield TestClient(app)
  app.dependency_overrides.clear()
