from functools import lru_cache

import redis

from .backends import MemoryBackend, RedisBackend, SessionBackend
from .config import get_settings
from .database import SqlBackend
from .store import SessionStore


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
  settings = get_settings()
  return redis.Redis(host=settings.redis_host, port=settings.redis_port, db=settings.redis_db, decode_responses=True)


def build_backend(name: str) -> SessionBackend:
  if name == 'memory':
    return MemoryBackend()
  if name == 'redis':
    return RedisBackend(get_redis_client(), prefix=get_settings().redis_key_prefix)
  if name == 'sql':
    return SqlBackend()
  msg = f'Unknown storage backend: {name}'
  raise ValueError(msg)


@lru_cache(maxsize=1)
def get_store() -> SessionStore:
  return SessionStore(build_backend(get_settings().storage_backend))
