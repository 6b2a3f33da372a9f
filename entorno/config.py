"""
Settings for Entorno.

Values come from the process environment, optionally seeded from a `.env`
file at the project root:

    OPENAI_API_KEY=sk-...
    ENTORNO_STORAGE=file            # or "firestore"
    ENTORNO_DATA_DIR=~/.entorno

A key pasted into the settings screen is stored next to the vocabulary and
takes precedence over OPENAI_API_KEY.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from entorno.logger import logger
from entorno.storage import FileStorage, FirestoreStorage, Storage, StorageError

API_KEY_ENV = "OPENAI_API_KEY"
CUSTOM_API_KEY_STORAGE_KEY = "entorno_api_key"

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_TTS_MODEL = "tts-1"
DEFAULT_TTS_VOICE = "nova"          # Clear voice, good for Romance languages
DEFAULT_STT_MODEL = "whisper-1"


@dataclass
class Settings:
    openai_api_key: str = ""
    chat_model: str = DEFAULT_CHAT_MODEL
    tts_model: str = DEFAULT_TTS_MODEL
    tts_voice: str = DEFAULT_TTS_VOICE
    stt_model: str = DEFAULT_STT_MODEL
    request_timeout: float = 30.0   # Seconds, per request
    max_retries: int = 2
    data_dir: Path = Path("~/.entorno").expanduser()
    storage_backend: str = "file"
    firebase_credentials_path: str = ""


def _get_env(name: str, default: str = "") -> str:
    value = os.getenv(name)
    if value is None:
        return default
    # Strip BOM and stray whitespace left by copy/paste
    return value.replace("\ufeff", "").strip()


def _mask(key: str) -> str:
    return f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """Load settings from `.env` and the environment."""
    logger.env("Loading environment variables from .env file...")
    if load_dotenv(dotenv_path):
        logger.env_success("dotenv file loaded")
    else:
        logger.warning("No .env file found or file is empty")

    api_key = _get_env(API_KEY_ENV)
    if api_key:
        logger.env_success(f"{API_KEY_ENV} found: {_mask(api_key)}")
    else:
        logger.env_error(f"{API_KEY_ENV} not found in environment")

    try:
        timeout = float(_get_env("ENTORNO_REQUEST_TIMEOUT", "30"))
    except ValueError:
        logger.warning("ENTORNO_REQUEST_TIMEOUT is not a number, using 30s")
        timeout = 30.0
    try:
        retries = int(_get_env("ENTORNO_MAX_RETRIES", "2"))
    except ValueError:
        logger.warning("ENTORNO_MAX_RETRIES is not an integer, using 2")
        retries = 2

    settings = Settings(
        openai_api_key=api_key,
        chat_model=_get_env("ENTORNO_CHAT_MODEL", DEFAULT_CHAT_MODEL),
        tts_model=_get_env("ENTORNO_TTS_MODEL", DEFAULT_TTS_MODEL),
        tts_voice=_get_env("ENTORNO_TTS_VOICE", DEFAULT_TTS_VOICE),
        stt_model=_get_env("ENTORNO_STT_MODEL", DEFAULT_STT_MODEL),
        request_timeout=timeout,
        max_retries=retries,
        data_dir=Path(_get_env("ENTORNO_DATA_DIR", "~/.entorno")).expanduser(),
        storage_backend=_get_env("ENTORNO_STORAGE", "file").lower(),
        firebase_credentials_path=_get_env("FIREBASE_CREDENTIALS_PATH"),
    )
    logger.env(f"Chat model: {settings.chat_model}, TTS: {settings.tts_model}/{settings.tts_voice}")
    logger.env(f"Storage backend: {settings.storage_backend}")
    return settings


def create_storage(settings: Settings) -> Storage:
    """Build the configured backend, falling back to local files."""
    if settings.storage_backend == "firestore":
        storage = FirestoreStorage()
        if storage.initialize(settings.firebase_credentials_path or None):
            return storage
        logger.warning(f"[DB] Firestore unavailable, using local files in {settings.data_dir}")
    return FileStorage(settings.data_dir)


def get_custom_api_key(storage: Storage) -> str:
    try:
        raw = storage.get_item(CUSTOM_API_KEY_STORAGE_KEY)
        value = json.loads(raw) if raw else ""
        return value.strip() if isinstance(value, str) else ""
    except (StorageError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read saved API key: {e}")
        return ""


def save_custom_api_key(storage: Storage, key: str) -> None:
    """Persist a key from the settings screen; an empty key clears it."""
    key = key.strip()
    if key:
        storage.set_item(CUSTOM_API_KEY_STORAGE_KEY, json.dumps(key))
        logger.env_success(f"Custom API key saved: {_mask(key)}")
    else:
        storage.remove_item(CUSTOM_API_KEY_STORAGE_KEY)
        logger.env("Custom API key cleared")


def resolve_api_key(settings: Settings, storage: Optional[Storage] = None) -> str:
    """The custom key if one was saved, otherwise the environment key."""
    custom = get_custom_api_key(storage) if storage is not None else ""
    return custom or settings.openai_api_key.strip()
