"""
OpenAI-backed generation client for Entorno.

This module handles:
- Lesson generation (scenario -> chunked A2 dialogue, JSON mode)
- Speech synthesis (text -> base64 raw PCM, 24 kHz 16-bit mono)
- Tutor chat sessions (structured JSON replies)
- Speech-to-text for the pronunciation review (Whisper)

Every SDK failure leaves this module as a `GenerationError` whose `kind`
was decided here, from the exception type, at the point it was caught.
"""

import base64
import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import openai
from openai import OpenAI

from entorno.config import API_KEY_ENV, Settings, resolve_api_key
from entorno.errors import ErrorKind, GenerationError
from entorno.logger import logger, Timer
from entorno.models import ChatReply, LessonData, MalformedDataError
from entorno.schemas import CHAT_SYSTEM_PROMPT, LESSON_SYSTEM_PROMPT, lesson_user_prompt
from entorno.storage import Storage

T = TypeVar("T")


def validate_api_key(key: Optional[str]) -> str:
    """Return the trimmed key or raise KEY_MISSING / KEY_FORMAT_INVALID."""
    key = (key or "").strip()
    if not key:
        raise GenerationError(ErrorKind.KEY_MISSING, f"{API_KEY_ENV} is not set")
    # Common mistake: pasting "OPENAI_API_KEY=sk-..." instead of the value
    if key.startswith(API_KEY_ENV) or "=" in key:
        raise GenerationError(ErrorKind.KEY_FORMAT_INVALID, "API key contains the variable name prefix")
    return key


def classify_error(exc: Exception) -> GenerationError:
    """Map an SDK exception to a GenerationError."""
    if isinstance(exc, GenerationError):
        return exc
    # APITimeoutError subclasses APIConnectionError, check it first
    if isinstance(exc, openai.APITimeoutError):
        return GenerationError(ErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, openai.APIConnectionError):
        return GenerationError(ErrorKind.NETWORK_ERROR, str(exc))
    if isinstance(exc, openai.RateLimitError):
        return GenerationError(ErrorKind.RATE_LIMITED, str(exc))
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return GenerationError(ErrorKind.INVALID_KEY, str(exc))
    return GenerationError(ErrorKind.GENERIC_FAILURE, str(exc))


def _parse_json_object(raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, f"Response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "Response is not a JSON object")
    return data


class ChatSession:
    """
    A tutor conversation. The SDK is stateless, so the session keeps the
    message history and replays it on every turn.
    """

    def __init__(self, client: "GenerationClient"):
        self._client = client
        self._history: List[Dict[str, str]] = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
        self.closed = False

    @property
    def turns(self) -> int:
        """Completed user/tutor exchanges."""
        return (len(self._history) - 1) // 2

    def send(self, text: str) -> ChatReply:
        if self.closed:
            raise GenerationError(ErrorKind.GENERIC_FAILURE, "Chat session is closed")

        user_message = {"role": "user", "content": text}
        raw, data = self._client._complete_json(self._history + [user_message], temperature=0.7)
        try:
            reply = ChatReply.from_dict(data)
        except MalformedDataError as e:
            raise GenerationError(ErrorKind.MALFORMED_RESPONSE, str(e)) from e

        # Only successful turns become part of the context
        self._history.append(user_message)
        self._history.append({"role": "assistant", "content": raw})
        logger.api(f"Chat turn {self.turns} complete")
        return reply

    def close(self) -> None:
        self.closed = True
        self._history = self._history[:1]


class GenerationClient:
    """
    Wraps the OpenAI SDK for lessons, speech, chat and transcription.

    The SDK client is built by `open()` (or on first use) from the saved
    custom key or OPENAI_API_KEY, with explicit timeout and retry settings.
    """

    def __init__(self, settings: Settings, storage: Optional[Storage] = None, client: Any = None):
        self.settings = settings
        self.storage = storage
        self._client = client
        self._owns_client = client is None

    # --- lifecycle -----------------------------------------------------------

    def open(self) -> None:
        self._sdk()

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def reset(self) -> None:
        """Forget the current SDK client so the next call re-reads the key."""
        if self._owns_client:
            self.close()

    def __enter__(self) -> "GenerationClient":
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def is_available(self) -> bool:
        try:
            self._sdk()
        except GenerationError:
            return False
        return True

    def _sdk(self) -> Any:
        if self._client is None:
            key = validate_api_key(resolve_api_key(self.settings, self.storage))
            logger.env("Initializing OpenAI client...")
            self._client = OpenAI(
                api_key=key,
                timeout=self.settings.request_timeout,
                max_retries=self.settings.max_retries,
            )
            self._owns_client = True
            logger.env_success("OpenAI client initialized")
        return self._client

    # --- calls ---------------------------------------------------------------

    def _complete_json(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.5,
    ) -> Tuple[str, Dict[str, Any]]:
        sdk = self._sdk()
        model = self.settings.chat_model
        logger.api_call("chat.completions.create", model=model)
        try:
            with Timer() as timer:
                completion = sdk.chat.completions.create(
                    model=model,
                    response_format={"type": "json_object"},
                    messages=messages,
                    temperature=temperature,
                )
        except openai.OpenAIError as e:
            error = classify_error(e)
            logger.api_error(f"chat.completions.create failed [{error.kind.value}]: {e}")
            raise error from e
        logger.api_response("chat.completions.create", duration_ms=timer.duration_ms)

        if not completion.choices:
            raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "Response has no choices")
        raw = completion.choices[0].message.content or ""
        return raw, _parse_json_object(raw)

    def generate_lesson_content(self, scenario: str) -> LessonData:
        """Generate a chunked A2 dialogue for `scenario`."""
        logger.api(f"generate_lesson_content() - scenario: {scenario[:50]}")
        messages = [
            {"role": "system", "content": LESSON_SYSTEM_PROMPT},
            {"role": "user", "content": lesson_user_prompt(scenario)},
        ]
        _, data = self._complete_json(messages, temperature=0.5)
        try:
            lesson = LessonData.from_dict(data)
        except MalformedDataError as e:
            logger.api_error(f"Lesson JSON did not match the schema: {e}")
            raise GenerationError(ErrorKind.MALFORMED_RESPONSE, str(e)) from e

        for i, sentence in enumerate(lesson.sentences):
            if not sentence.is_lossless():
                logger.warning(
                    f"Sentence {i + 1} chunks do not rebuild the sentence: "
                    f"{sentence.chunks_text()!r} != {sentence.spanish!r}"
                )
        logger.success(f"Lesson generated: {len(lesson.sentences)} sentences")
        return lesson

    def generate_lesson_audio(self, text: str) -> str:
        """
        Synthesize `text` and return base64-encoded raw PCM
        (signed 16-bit LE, 24 kHz, mono). Empty text gives "".
        """
        if not text:
            return ""

        sdk = self._sdk()
        model = self.settings.tts_model
        logger.api(f"generate_lesson_audio() - {len(text)} chars, voice={self.settings.tts_voice}")
        logger.api_call("audio.speech.create", model=model)
        try:
            with Timer() as timer:
                response = sdk.audio.speech.create(
                    model=model,
                    voice=self.settings.tts_voice,
                    input=text,
                    response_format="pcm",
                )
                pcm = response.read()
        except openai.OpenAIError as e:
            error = classify_error(e)
            logger.api_error(f"audio.speech.create failed [{error.kind.value}]: {e}")
            raise error from e
        logger.api_response("audio.speech.create", duration_ms=timer.duration_ms)

        if not pcm:
            raise GenerationError(ErrorKind.AUDIO_GENERATION_FAILED, "Failed to generate audio")
        return base64.b64encode(pcm).decode("ascii")

    def start_chat_session(self) -> ChatSession:
        # Surface key problems when the chat opens, not on the first message
        self._sdk()
        return ChatSession(self)

    def send_chat_message(self, session: ChatSession, text: str) -> ChatReply:
        return session.send(text)

    def transcribe(self, audio_path: str, language: str = "es") -> Optional[str]:
        """Whisper transcription of a recording. None on failure."""
        try:
            sdk = self._sdk()
        except GenerationError as e:
            logger.error(f"Cannot transcribe: {e.message}")
            return None

        logger.api_call("audio.transcriptions.create", model=self.settings.stt_model)
        try:
            with open(audio_path, "rb") as audio_file, Timer() as timer:
                transcription = sdk.audio.transcriptions.create(
                    model=self.settings.stt_model,
                    file=audio_file,
                    language=language,
                    response_format="text",
                )
        except (openai.OpenAIError, OSError) as e:
            logger.error(f"Transcription failed: {e}")
            return None
        logger.api_response("audio.transcriptions.create", duration_ms=timer.duration_ms)

        if isinstance(transcription, str):
            return transcription.strip()
        return str(getattr(transcription, "text", transcription)).strip()

    def test_connection(self) -> None:
        """Round trip used by the settings screen to verify a key."""
        self.generate_lesson_content("Test connection")


def run_in_background(
    task_name: str,
    work: Callable[[], T],
    callback: Callable[[Optional[T], Optional[GenerationError]], None],
) -> threading.Thread:
    """
    Run `work` on a daemon thread, then call `callback(result, None)` or
    `callback(None, error)`. Unexpected exceptions are reported as
    GENERIC_FAILURE so the caller always hears back.
    """
    logger.task_start(task_name)

    def _run() -> None:
        start_time = time.perf_counter()
        try:
            result = work()
        except GenerationError as e:
            logger.task_error(task_name, e.kind.value)
            callback(None, e)
            return
        except Exception as e:
            logger.task_error(task_name, str(e), exc_info=True)
            callback(None, GenerationError(ErrorKind.GENERIC_FAILURE, str(e)))
            return
        logger.task_complete(task_name, duration_ms=(time.perf_counter() - start_time) * 1000)
        callback(result, None)

    thread = threading.Thread(target=_run, name=task_name, daemon=True)
    thread.start()
    return thread
