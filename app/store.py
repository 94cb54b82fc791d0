import logging
import threading
import typing
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from .backends import MemoryBackend, SessionBackend
from .models import ChatMessage, ChatSession, Role, SessionSummary

logger = logging.getLogger(__name__)


def default_title(created_at: datetime) -> str:
  return f'Chat - {created_at.astimezone().strftime("%H:%M:%S")}'


class SessionStore:
  """Session and message lifecycle on top of a storage backend.

  Every public operation holds one re-entrant lock for its whole
  read-modify-write cycle, so concurrent requests never observe each other's
  intermediate state. Mutations additionally hold the backend's lock on the
  session, which keeps stores in other processes sharing the backend out.
  Unknown ids are reported as ``None``/``False``, never raised.
  """

  def __init__(self, backend: SessionBackend | None = None) -> None:
    self.backend: SessionBackend = backend or MemoryBackend()
    self._lock = threading.RLock()
    # Sessions whose backend lock this store currently holds.
    self._held: set[str] = set()
    self._last_timestamp: datetime | None = None
    # message id -> owning session id
    self._message_owner: dict[str, str] = {}
    self._refresh_index()

  @contextmanager
  def transaction(self, session_id: str) -> Iterator[None]:
    """Hold the session exclusively; nested use on the same session is allowed."""
    with self._lock:
      if session_id in self._held:
        yield
        return
      with self.backend.locked(session_id):
        self._held.add(session_id)
        try:
          yield
        finally:
          self._held.discard(session_id)

  def create_session(self, title: str | None = None) -> ChatSession:
    with self._lock:
      created_at = self._now()
      session = ChatSession(
        id=self._new_id(lambda candidate: self.backend.get(candidate) is not None),
        title=title or default_title(created_at),
        created_at=created_at,
      )
      self.backend.insert(session)
      logger.info('created session id=%s title=%s', session.id, session.title)
      return session

  def list_sessions(self) -> list[SessionSummary]:
    with self._lock:
      summaries = [session.summary() for session in self.backend.list_all()]
    # Newest first; the id keeps sessions sharing a timestamp in a stable order.
    return sorted(summaries, key=lambda s: (s.created_at, s.id), reverse=True)

  def get_session(self, session_id: str) -> ChatSession | None:
    with self._lock:
      return self.backend.get(session_id)

  def append_message(
    self,
    session_id: str,
    role: Role,
    text: str,
    structured: dict[str, typing.Any] | None = None,
    feedback: str | None = None,
  ) -> ChatMessage | None:
    with self.transaction(session_id):
      session = self.backend.get(session_id)
      if session is None:
        return None
      message = ChatMessage(
        id=self._new_id(self._message_id_taken),
        role=role,
        text=text,
        structured=structured,
        feedback=feedback,
        created_at=self._now(),
      )
      session.messages.append(message)
      self.backend.save(session)
      self._message_owner[message.id] = session.id
      logger.debug('appended %s message id=%s to session=%s', role, message.id, session.id)
      return message

  def set_feedback(self, message_id: str, feedback: str) -> bool:
    with self._lock:
      owner = self._message_owner.get(message_id)
      if owner is None:
        # Not indexed here, possibly written by another process sharing the backend.
        self._refresh_index()
        owner = self._message_owner.get(message_id)
      if owner is None:
        return False
      with self.transaction(owner):
        session = self.backend.get(owner)
        message = session.find_message(message_id) if session else None
        if session is None or message is None or message.role != 'assistant':
          return False
        message.feedback = feedback
        self.backend.save(session)
      logger.info('feedback=%s recorded for message id=%s', feedback, message_id)
      return True

  def _refresh_index(self) -> None:
    for session in self.backend.list_all():
      for message in session.messages:
        self._message_owner[message.id] = session.id

  def _message_id_taken(self, candidate: str) -> bool:
    return candidate in self._message_owner

  @staticmethod
  def _new_id(taken: typing.Callable[[str], bool]) -> str:
    candidate = str(uuid4())
    while taken(candidate):
      candidate = str(uuid4())
    return candidate

  def _now(self) -> datetime:
    now = datetime.now(UTC)
    if self._last_timestamp is not None and now <= self._last_timestamp:
      now = self._last_timestamp + timedelta(microseconds=1)
    self._last_timestamp = now
    return now
