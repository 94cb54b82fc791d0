import json
import logging
import typing
from datetime import datetime
from typing import Annotated

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import get_settings
from app.deps import get_store
from app.models import ChatMessage
from app.replies import run_chat_turn
from app.store import SessionStore

settings = get_settings()
app = FastAPI(title='Chat Session API')
logger = logging.getLogger(__name__)
logging.basicConfig(level=settings.log_level.upper(), format='[%(asctime)s] %(levelname)s %(message)s')

app.add_middleware(
  CORSMiddleware,
  allow_origins=['*'],
  allow_methods=['*'],
  allow_headers=['*'],
)

StoreDep = Annotated[SessionStore, Depends(get_store)]


class CamelModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionOut(CamelModel):
  id: str
  title: str
  created_at: datetime
  message_count: int


class NewChatOut(CamelModel):
  session_id: str
  created_at: datetime


class MessageOut(CamelModel):
  id: str
  type: str
  content: str
  tabular_data: dict[str, typing.Any] | None = None
  timestamp: datetime
  feedback: str | None = None


class ChatOut(MessageOut):
  new_title: str


class FeedbackOut(BaseModel):
  success: bool
  feedback: str


def _message_fields(message: ChatMessage) -> dict[str, typing.Any]:
  fields: dict[str, typing.Any] = {
    'id': message.id,
    'type': message.role,
    'content': message.text,
    'timestamp': message.created_at,
    'feedback': message.feedback,
  }
  if message.structured is not None and 'table' in message.structured:
    fields['tabular_data'] = message.structured.get('table')
  return fields


async def json_body(request: Request) -> dict[str, typing.Any] | None:
  """Decode the request body; ``None`` when it is not valid JSON, ``{}`` when empty."""
  raw = await request.body()
  if not raw.strip():
    return {}
  try:
    payload = json.loads(raw)
  except ValueError:
    return None
  return payload if isinstance(payload, dict) else {}


BodyDep = Annotated[dict[str, typing.Any] | None, Depends(json_body)]

router = APIRouter()


@router.get('/sessions')
def list_sessions(store: StoreDep) -> list[SessionOut]:
  return [SessionOut(**summary.model_dump()) for summary in store.list_sessions()]


@router.get('/new-chat')
def new_chat(store: StoreDep, title: str | None = None) -> NewChatOut:
  session = store.create_session(title)
  return NewChatOut(session_id=session.id, created_at=session.created_at)


@router.get('/session/{session_id}')
def get_session_history(session_id: str, store: StoreDep) -> list[dict[str, typing.Any]]:
  session = store.get_session(session_id)
  if session is None:
    raise HTTPException(status_code=404, detail='Session not found')
  # tabularData is left out entirely for messages whose payload carries no table.
  history = [MessageOut(**_message_fields(message)) for message in session.messages]
  return [item.model_dump(mode='json', by_alias=True, exclude_unset=True) for item in history]


@router.post('/chat/{session_id}')
def chat(session_id: str, store: StoreDep, body: BodyDep) -> ChatOut:
  session = store.get_session(session_id)
  if session is None:
    raise HTTPException(status_code=400, detail='Invalid session')
  if body is None:
    raise HTTPException(status_code=400, detail='Invalid JSON')
  question = body.get('question')
  if not question:
    raise HTTPException(status_code=400, detail='Missing question')

  logger.info('chat session_id=%s question=%s', session_id, question)
  assistant = run_chat_turn(store, session_id, str(question))
  if assistant is None:
    raise HTTPException(status_code=400, detail='Invalid session')
  return ChatOut(**_message_fields(assistant), new_title=session.title)


@router.post('/messages/{message_id}/feedback')
def message_feedback(message_id: str, store: StoreDep, body: BodyDep) -> FeedbackOut:
  if body is None:
    raise HTTPException(status_code=400, detail='Invalid JSON')
  feedback = body.get('feedback')
  if not feedback:
    raise HTTPException(status_code=400, detail='Missing feedback')
  if not store.set_feedback(message_id, str(feedback)):
    raise HTTPException(status_code=404, detail='Message not found')
  return FeedbackOut(success=True, feedback=str(feedback))


app.include_router(router)
app.include_router(router, prefix='/api')


@app.get('/')
async def health() -> dict[str, str]:
  return {'status': 'ok'}


@app.api_route('/{path:path}', methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'], include_in_schema=False)
async def fallback(request: Request, path: str) -> Response:
  # Bare OPTIONS requests (no CORS preflight headers) are answered for every path.
  if request.method == 'OPTIONS':
    return Response(status_code=200)
  raise HTTPException(status_code=404, detail='Route not found')


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={'error': exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
  return JSONResponse(status_code=400, content={'error': 'Invalid request'})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
  logger.exception('unhandled error on %s %s', request.method, request.url.path)
  return JSONResponse(status_code=500, content={'error': 'Internal Server Error'})


def run() -> None:
  uvicorn.run('app.main:app', host=settings.server_host, port=settings.server_port)


if __name__ == '__main__':
  run()
