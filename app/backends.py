import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

from redis import Redis

from .models import ChatSession


class SessionBackend(Protocol):
  """Keyed record storage behind the session store.

  Implementations hand out detached copies: changing a returned session has no
  effect until it is passed back to ``save``. ``locked`` excludes every other
  holder of the same session id, including stores in other processes when the
  backend is shared, so a get/mutate/save cycle inside it cannot lose updates.
  """

  def insert(self, session: ChatSession) -> None: ...

  def get(self, session_id: str) -> ChatSession | None: ...

  def save(self, session: ChatSession) -> None: ...

  def list_all(self) -> Iterator[ChatSession]: ...

  def locked(self, session_id: str) -> AbstractContextManager[None]: ...


class MemoryBackend:
  """Process-local storage; lives as long as the interpreter."""

  def __init__(self) -> None:
    self._sessions: dict[str, ChatSession] = {}
    self._locks: dict[str, threading.Lock] = {}
    self._locks_guard = threading.Lock()

  def insert(self, session: ChatSession) -> None:
    self._sessions[session.id] = session.model_copy(deep=True)

  def get(self, session_id: str) -> ChatSession | None:
    session = self._sessions.get(session_id)
    return session.model_copy(deep=True) if session else None

  def save(self, session: ChatSession) -> None:
    self._sessions[session.id] = session.model_copy(deep=True)

  def list_all(self) -> Iterator[ChatSession]:
    for session in list(self._sessions.values()):
      yield session.model_copy(deep=True)

  def locked(self, session_id: str) -> AbstractContextManager[None]:
    with self._locks_guard:
      lock = self._locks.setdefault(session_id, threading.Lock())
    return lock  # type: ignore[return-value]


class RedisBackend:
  """Stores each session as one JSON document plus a set of known ids."""

  def __init__(self, client: Redis, prefix: str = 'chat:', lock_timeout: float = 10.0) -> None:
    self.redis = client
    self.prefix = prefix
    # Upper bound on how long a crashed holder keeps a session locked.
    self.lock_timeout = lock_timeout

  @property
  def _index_key(self) -> str:
    return f'{self.prefix}sessions'

  def _session_key(self, session_id: str) -> str:
    return f'{self.prefix}session:{session_id}'

  def insert(self, session: ChatSession) -> None:
    pipe = self.redis.pipeline()
    pipe.set(self._session_key(session.id), session.model_dump_json())
    pipe.sadd(self._index_key, session.id)
    pipe.execute()

  def get(self, session_id: str) -> ChatSession | None:
    raw = self.redis.get(self._session_key(session_id))
    if not raw:
      return None
    return ChatSession.model_validate_json(raw)

  def save(self, session: ChatSession) -> None:
    self.redis.set(self._session_key(session.id), session.model_dump_json())

  def list_all(self) -> Iterator[ChatSession]:
    ids = sorted(self.redis.smembers(self._index_key))
    if not ids:
      return
    for raw in self.redis.mget([self._session_key(sid) for sid in ids]):
      # Ids whose document was removed out of band are skipped.
      if raw:
        yield ChatSession.model_validate_json(raw)

  @contextmanager
  def locked(self, session_id: str) -> Iterator[None]:
    with self.redis.lock(f'{self.prefix}lock:{session_id}', timeout=self.lock_timeout):
      yield
