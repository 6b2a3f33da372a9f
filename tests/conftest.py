"""
Shared fixtures and fakes for the Entorno tests.

Nothing here touches the network, the sound card or the microphone: the
OpenAI SDK, the audio output and the recognizer are replaced by small fakes.
"""

import base64
import json
import os
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

# Keep test output readable
os.environ.setdefault("ENTORNO_DEBUG", "0")

import numpy as np
import pytest

from entorno.audio import AudioPlayer
from entorno.config import Settings
from entorno.errors import ErrorKind, GenerationError
from entorno.models import Chunk, LessonData, Sentence
from entorno.storage import FileStorage


def pcm_base64(samples: List[int]) -> str:
    return base64.b64encode(np.array(samples, dtype="<i2").tobytes()).decode("ascii")


SAMPLE_LESSON = {
    "scenario": "En la cafetería",
    "tips": "点单时可以用 quería 表示礼貌。",
    "sentences": [
        {
            "spanish": "Hola, quería un café.",
            "chinese": "你好，我想要一杯咖啡。",
            "chunks": [
                {"text": "Hola", "isWord": True, "meaning": "你好", "lemma": "hola"},
                {"text": ", ", "isWord": False},
                {"text": "quería", "isWord": True, "meaning": "我想要", "lemma": "querer"},
                {"text": " ", "isWord": False},
                {"text": "un", "isWord": True, "meaning": "一个", "lemma": "uno"},
                {"text": " ", "isWord": False},
                {"text": "café", "isWord": True, "meaning": "咖啡", "lemma": "café"},
                {"text": ".", "isWord": False},
            ],
        },
        {
            "spanish": "¿Algo más?",
            "chinese": "还要别的吗？",
            "chunks": [
                {"text": "¿", "isWord": False},
                {"text": "Algo", "isWord": True, "meaning": "某物", "lemma": "algo"},
                {"text": " ", "isWord": False},
                {"text": "más", "isWord": True, "meaning": "更多", "lemma": "más"},
                {"text": "?", "isWord": False},
            ],
        },
    ],
}


# ---------------------------------------------------------------------------
# Audio output
# ---------------------------------------------------------------------------

class FakeVoice:
    def __init__(self, buffer: Any) -> None:
        self.buffer = buffer
        self.busy = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True
        self.busy = False

    def is_busy(self) -> bool:
        return self.busy

    def finish(self) -> None:
        self.busy = False


class FakeOutput:
    def __init__(self) -> None:
        self.is_open = False
        self.suspended = False
        self.open_calls = 0
        self.resume_calls = 0
        self.voices: List[FakeVoice] = []

    def open(self) -> None:
        self.is_open = True
        self.open_calls += 1

    def close(self) -> None:
        self.is_open = False

    def suspend(self) -> None:
        self.suspended = True

    def resume(self) -> None:
        self.suspended = False
        self.resume_calls += 1

    def play(self, buffer: Any) -> FakeVoice:
        voice = FakeVoice(buffer)
        self.voices.append(voice)
        return voice


# ---------------------------------------------------------------------------
# OpenAI SDK
# ---------------------------------------------------------------------------

NO_CHOICES = object()


class FakeSDK:
    """Just enough of `openai.OpenAI` for GenerationClient."""

    def __init__(self) -> None:
        self.chat_responses: List[Any] = []
        self.chat_calls: List[Dict[str, Any]] = []
        self.speech_payload: Any = b"\x01\x00\x02\x00"
        self.speech_calls: List[Dict[str, Any]] = []
        self.transcript: Any = "hola"
        self.transcription_calls: List[Dict[str, Any]] = []
        self.closed = False

        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat_create))
        self.audio = SimpleNamespace(
            speech=SimpleNamespace(create=self._speech_create),
            transcriptions=SimpleNamespace(create=self._transcribe),
        )

    def queue_json(self, payload: Any) -> None:
        self.chat_responses.append(json.dumps(payload, ensure_ascii=False))

    def queue_raw(self, content: Any) -> None:
        self.chat_responses.append(content)

    def queue_no_choices(self) -> None:
        self.chat_responses.append(NO_CHOICES)

    def _chat_create(self, **kwargs: Any) -> Any:
        self.chat_calls.append({**kwargs, "messages": list(kwargs["messages"])})
        response = self.chat_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if response is NO_CHOICES:
            return SimpleNamespace(choices=[])
        message = SimpleNamespace(content=response)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    def _speech_create(self, **kwargs: Any) -> Any:
        self.speech_calls.append(kwargs)
        if isinstance(self.speech_payload, Exception):
            raise self.speech_payload
        payload = self.speech_payload
        return SimpleNamespace(read=lambda: payload)

    def _transcribe(self, **kwargs: Any) -> Any:
        self.transcription_calls.append(kwargs)
        if isinstance(self.transcript, Exception):
            raise self.transcript
        return self.transcript

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Collaborators used by the screen state classes
# ---------------------------------------------------------------------------

class FakeGenerator:
    def __init__(self) -> None:
        self.lesson = LessonData.from_dict(SAMPLE_LESSON)
        self.audio = pcm_base64([0, 1000, -1000, 0])
        self.lesson_error: Optional[GenerationError] = None
        self.audio_error: Optional[GenerationError] = None
        self.chat_error: Optional[GenerationError] = None
        self.spoken: List[str] = []
        self.sent: List[str] = []
        self.sessions: List[Any] = []
        self.connection_tests = 0
        self.resets = 0

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def reset(self) -> None:
        self.resets += 1

    def generate_lesson_content(self, scenario: str) -> LessonData:
        if self.lesson_error:
            raise self.lesson_error
        return self.lesson

    def generate_lesson_audio(self, text: str) -> str:
        self.spoken.append(text)
        if self.audio_error:
            raise self.audio_error
        return self.audio

    def start_chat_session(self) -> Any:
        session = SimpleNamespace(closed=False)
        session.close = lambda: setattr(session, "closed", True)
        self.sessions.append(session)
        return session

    def send_chat_message(self, session: Any, text: str) -> Any:
        self.sent.append(text)
        if self.chat_error:
            raise self.chat_error
        from entorno.models import ChatReply

        return ChatReply(
            spanish="¡Qué bien!",
            chinese="太好了！",
            chunks=[Chunk("¡", False), Chunk("Qué", True, "多么", "qué"), Chunk(" ", False),
                    Chunk("bien", True, "好", "bien"), Chunk("!", False)],
        )

    def test_connection(self) -> None:
        self.connection_tests += 1
        if self.lesson_error:
            raise self.lesson_error

    def transcribe(self, path: str, language: str = "es") -> Optional[str]:
        return "hola"


class FakeRecognizer:
    def __init__(self) -> None:
        self.callbacks: Optional[Dict[str, Callable]] = None
        self.stopped = 0
        self.aborted = 0

    def start_listening(self, on_result: Callable, on_end: Callable, on_error: Callable) -> None:
        self.callbacks = {"result": on_result, "end": on_end, "error": on_error}

    def stop_listening(self) -> None:
        self.stopped += 1

    def abort(self) -> None:
        self.aborted += 1


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def storage(tmp_path: Any) -> FileStorage:
    return FileStorage(tmp_path / "data")


@pytest.fixture
def fake_output() -> FakeOutput:
    return FakeOutput()


@pytest.fixture
def player(fake_output: FakeOutput) -> AudioPlayer:
    return AudioPlayer(output=fake_output, watch=False)


@pytest.fixture
def fake_sdk() -> FakeSDK:
    return FakeSDK()


@pytest.fixture
def settings(tmp_path: Any) -> Settings:
    return Settings(openai_api_key="sk-test-key-1234567890", data_dir=tmp_path / "data")


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def fake_recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def lesson_error() -> Callable[[ErrorKind], GenerationError]:
    return lambda kind: GenerationError(kind, kind.value)


@pytest.fixture
def sample_lesson() -> LessonData:
    return LessonData.from_dict(SAMPLE_LESSON)


@pytest.fixture
def sample_sentence() -> Sentence:
    return Sentence.from_dict(SAMPLE_LESSON["sentences"][0])
