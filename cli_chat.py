from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

from app.deps import get_store
from app.models import ChatMessage
from app.replies import run_chat_turn
from app.store import SessionStore

HELP = 'Commands: /like, /dislike (rate the last reply), /history, /sessions, /new, /quit'


def print_reply(message: ChatMessage) -> None:
  print(f'\nAssistant: {message.text}')
  table = (message.structured or {}).get('table')
  if not table:
    return
  print('  ' + ' | '.join(str(h) for h in table['headers']))
  for row in table['rows']:
    print('  ' + ' | '.join(str(cell) for cell in row))


def print_history(store: SessionStore, session_id: str) -> None:
  session = store.get_session(session_id)
  if session is None:
    print('Session not found')
    return
  print(f'\n{session.title} ({session.id})')
  for message in session.messages:
    rating = f' [{message.feedback}]' if message.feedback else ''
    print(f'  {message.created_at.isoformat()} {message.role}: {message.text}{rating}')


def print_sessions(store: SessionStore) -> None:
  for summary in store.list_sessions():
    print(f'  {summary.created_at.isoformat()} {summary.title} ({summary.message_count} messages) {summary.id}')


def main() -> None:
  store = get_store()
  session = store.create_session()
  last_reply: ChatMessage | None = None
  print(f'CLI chat on session {session.id}. {HELP}')
  while True:
    try:
      line = input('\nYou: ').strip()
    except (KeyboardInterrupt, EOFError):
      print('\nBye')
      break
    if not line:
      continue
    if line == '/quit':
      break
    if line in ('/like', '/dislike'):
      if last_reply is None:
        print('Nothing to rate yet')
      elif store.set_feedback(last_reply.id, line[1:]):
        print(f'Recorded {line[1:]}')
      else:
        print('Message not found')
      continue
    if line == '/history':
      print_history(store, session.id)
      continue
    if line == '/sessions':
      print_sessions(store)
      continue
    if line == '/new':
      session = store.create_session()
      last_reply = None
      print(f'Started {session.title} ({session.id})')
      continue
    last_reply = run_chat_turn(store, session.id, line)
    if last_reply is not None:
      print_reply(last_reply)


if __name__ == '__main__':
  main()
