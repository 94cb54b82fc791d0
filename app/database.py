import threading
import typing
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from functools import lru_cache

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint, asc
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .config import get_settings
from .models import ChatMessage, ChatSession


class SessionRow(SQLModel, table=True):  # type: ignore[misc]
  __tablename__ = 'chatsession'

  id: str = Field(primary_key=True)
  title: str
  created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class MessageRow(SQLModel, table=True):  # type: ignore[misc]
  __tablename__ = 'chatmessage'
  __table_args__ = (UniqueConstraint('session_id', 'position'),)

  id: str = Field(primary_key=True)
  session_id: str = Field(index=True, foreign_key='chatsession.id')
  position: int
  role: str
  text: str
  structured: dict[str, typing.Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
  feedback: str | None = None
  created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


@lru_cache(maxsize=1)
def get_engine() -> Engine:
  url = get_settings().database_url
  connect_args = {'check_same_thread': False} if url.startswith('sqlite') else {}
  return create_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args)


def init_db(engine: Engine | None = None) -> None:
  """Create database tables if they do not exist."""
  SQLModel.metadata.create_all(engine or get_engine())


@contextmanager
def session_scope(engine: Engine | None = None) -> Iterator[Session]:
  """Provide a transactional scope around a series of operations."""
  with Session(engine or get_engine()) as session:
    yield session


def _aware(value: datetime) -> datetime:
  # SQLite hands timestamps back without tzinfo.
  return value if value.tzinfo else value.replace(tzinfo=UTC)


def _to_message(row: MessageRow) -> ChatMessage:
  return ChatMessage(
    id=row.id,
    role=row.role,  # type: ignore[arg-type]
    text=row.text,
    structured=row.structured,
    feedback=row.feedback,
    created_at=_aware(row.created_at),
  )


def _to_session(row: SessionRow, messages: list[MessageRow]) -> ChatSession:
  return ChatSession(
    id=row.id,
    title=row.title,
    created_at=_aware(row.created_at),
    messages=[_to_message(m) for m in sorted(messages, key=lambda m: m.position)],
  )


class SqlBackend:
  """Relational storage: one row per session, one row per message."""

  def __init__(self, engine: Engine | None = None) -> None:
    self.engine = engine or get_engine()
    self._locks: dict[str, threading.Lock] = {}
    self._locks_guard = threading.Lock()
    init_db(self.engine)

  def insert(self, session: ChatSession) -> None:
    with session_scope(self.engine) as db:
      db.add(SessionRow(id=session.id, title=session.title, created_at=session.created_at))
      db.commit()
      self._write_messages(db, session)

  def get(self, session_id: str) -> ChatSession | None:
    with session_scope(self.engine) as db:
      row = db.get(SessionRow, session_id)
      if not row:
        return None
      statement = select(MessageRow).where(MessageRow.session_id == session_id)
      return _to_session(row, list(db.exec(statement)))

  def save(self, session: ChatSession) -> None:
    with session_scope(self.engine) as db:
      self._write_messages(db, session)

  def list_all(self) -> Iterator[ChatSession]:
    with session_scope(self.engine) as db:
      rows = list(db.exec(select(SessionRow)))
      grouped: dict[str, list[MessageRow]] = {row.id: [] for row in rows}
      for message in db.exec(select(MessageRow).order_by(asc(MessageRow.position))):
        grouped.setdefault(message.session_id, []).append(message)
      sessions = [_to_session(row, grouped[row.id]) for row in rows]
    yield from sessions

  @contextmanager
  def locked(self, session_id: str) -> Iterator[None]:
    with self._locks_guard:
      local = self._locks.setdefault(session_id, threading.Lock())
    with local:
      if self.engine.dialect.name == 'sqlite':
        # No row locks across processes; the (session_id, position) constraint rejects a colliding append.
        yield
        return
      with session_scope(self.engine) as db:
        db.exec(select(SessionRow.id).where(SessionRow.id == session_id).with_for_update())
        yield
        db.commit()

  def _write_messages(self, db: Session, session: ChatSession) -> None:
    statement = select(MessageRow).where(MessageRow.session_id == session.id)
    existing = {row.id: row for row in db.exec(statement)}
    for position, message in enumerate(session.messages):
      row = existing.get(message.id)
      if row is None:
        db.add(
          MessageRow(
            id=message.id,
            session_id=session.id,
            position=position,
            role=message.role,
            text=message.text,
            structured=message.structured,
            feedback=message.feedback,
            created_at=message.created_at,
          )
        )
      elif row.feedback != message.feedback:
        # Feedback is the only field a stored message may change.
        row.feedback = message.feedback
        db.add(row)
    db.commit()
