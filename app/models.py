import typing
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

Role = typing.Literal['user', 'assistant']


def _uuid() -> str:
  return str(uuid4())


class ChatMessage(BaseModel):
  """One turn in a session."""

  id: str = Field(default_factory=_uuid)
  role: Role
  text: str
  # Opaque document produced by the reply generator (headers/rows/meta for tables).
  structured: dict[str, typing.Any] | None = None
  feedback: str | None = None
  created_at: datetime


class ChatSession(BaseModel):
  """A chat session grouping multiple messages."""

  id: str = Field(default_factory=_uuid)
  title: str
  created_at: datetime
  messages: list[ChatMessage] = Field(default_factory=list)

  def find_message(self, message_id: str) -> ChatMessage | None:
    return next((m for m in self.messages if m.id == message_id), None)

  def summary(self) -> 'SessionSummary':
    return SessionSummary(
      id=self.id,
      title=self.title,
      created_at=self.created_at,
      message_count=len(self.messages),
    )


class SessionSummary(BaseModel):
  id: str
  title: str
  created_at: datetime
  message_count: int
