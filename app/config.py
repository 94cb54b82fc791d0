from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  """Centralized application settings loaded from environment variables."""

  server_host: str = Field(default='0.0.0.0', alias='FASTAPI_HOST')
  server_port: int = Field(default=8000, alias='FASTAPI_PORT')
  log_level: str = Field(default='INFO', alias='LOG_LEVEL')

  storage_backend: Literal['memory', 'redis', 'sql'] = Field(default='memory', alias='STORAGE_BACKEND')

  database_url: str = Field(default='sqlite:///./chat.db', alias='DATABASE_URL')

  redis_host: str = Field(default='127.0.0.1', alias='REDIS_HOST')
  redis_port: int = Field(default=6379, alias='REDIS_PORT')
  redis_db: int = Field(default=0, alias='REDIS_DB')
  redis_key_prefix: str = Field(default='chat:', alias='REDIS_KEY_PREFIX')

  model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore', populate_by_name=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  settings = Settings()

  # Ensure SQLAlchemy uses the psycopg (v3) driver even if the URL is missing it.
  if settings.database_url.startswith('postgresql://'):
    settings.database_url = 'postgresql+psycopg://' + settings.database_url[len('postgresql://') :]
  elif settings.database_url.startswith('postgres://'):
    settings.database_url = 'postgresql+psycopg://' + settings.database_url[len('postgres://') :]

  return settings
