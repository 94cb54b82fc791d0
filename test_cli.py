import cli_chat


def _run(monkeypatch, store, lines: list[str]) -> None:
  feed = iter(lines)
  monkeypatch.setattr(cli_chat, 'get_store', lambda: store)
  monkeypatch.setattr('builtins.input', lambda prompt='': next(feed))
  cli_chat.main()


def test_like_records_feedback_on_last_reply(monkeypatch, capsys, memory_store):
  _run(monkeypatch, memory_store, ['hello', '/like', '/quit'])

  assert 'Recorded like' in capsys.readouterr().out
  session = memory_store.get_session(memory_store.list_sessions()[0].id)
  assert [m.feedback for m in session.messages] == [None, 'like']


def test_rating_a_vanished_reply_reports_not_found(monkeypatch, capsys, memory_store):
  monkeypatch.setattr(memory_store, 'set_feedback', lambda message_id, feedback: False)

  _run(monkeypatch, memory_store, ['hello', '/dislike', '/quit'])

  assert 'Message not found' in capsys.readouterr().out


def test_rating_before_any_reply(monkeypatch, capsys, memory_store):
  _run(monkeypatch, memory_store, ['/like', '/quit'])

  assert 'Nothing to rate yet' in capsys.readouterr().out
