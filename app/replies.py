import random
import typing
from datetime import UTC, datetime

if typing.TYPE_CHECKING:
  from .models import ChatMessage
  from .store import SessionStore

TABLE_HEADERS = ['Metric', 'Value', 'Note']


def structured_reply(query: str) -> dict[str, typing.Any]:
  """Build the placeholder assistant reply: a short description plus a metrics table."""
  now = datetime.now(UTC).isoformat().replace('+00:00', 'Z')
  return {
    'description': f'Processed your query: "{query[:20]}..."',
    'table': {
      'headers': list(TABLE_HEADERS),
      'rows': [
        ['Query Length', len(query), 'Characters'],
        ['Random Score (%)', f'{random.random() * 100:.2f}', 'Demo'],
        ['Latency (ms)', f'{random.random() * 300 + 100:.0f}', 'Mock'],
      ],
      'meta': {'generatedAt': now},
    },
  }


def run_chat_turn(store: 'SessionStore', session_id: str, question: str) -> 'ChatMessage | None':
  """Record the user's question and the generated reply; ``None`` for an unknown session.

  The pair is written under one transaction so concurrent turns on a session
  never interleave.
  """
  with store.transaction(session_id):
    if store.append_message(session_id, 'user', question) is None:
      return None
    reply = structured_reply(question)
    return store.append_message(session_id, 'assistant', reply['description'], structured=reply)
