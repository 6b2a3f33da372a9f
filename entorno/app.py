"""
Composition root for Entorno.

`LanguageBuddy` builds and owns every long-lived resource (storage, the
vocabulary store, the audio output, the generation client, the microphone
recognizer) and holds the state of the lesson screen. A host UI creates one,
calls `open()`, drives it from its event handlers and calls `close()` on exit.

Flow:
1. Home: the learner types (or picks) a scenario.
2. Loading: lesson JSON, then whole-lesson audio, are generated.
3. Lesson: sentences with chunk taps, per-sentence audio, translations.
4. Vocabulary: saved words, progress, spoken review.
5. Chat: free conversation with the tutor.
"""

import threading
from enum import Enum
from typing import Callable, List, Optional, Set, Tuple

from entorno.api import GenerationClient, run_in_background
from entorno.audio import AudioPlayer, call_now
from entorno.chat import ChatConversation
from entorno.config import Settings, create_storage, load_settings, save_custom_api_key
from entorno.errors import SETTINGS_KINDS, GenerationError
from entorno.logger import logger
from entorno.models import Chunk, LessonData, ProgressStats, SavedWord
from entorno.review import ReviewSession
from entorno.speech import SpeechRecognizer, is_speech_supported
from entorno.storage import Storage, StorageError
from entorno.vocabulary import VocabularyStore

SUGGESTIONS = [
    "去药店买感冒药",
    "在咖啡馆点一杯拿铁",
    "去超市询问牛奶在哪里",
    "去邮局寄包裹回国",
    "办理银行卡丢失",
    "房东沟通退房事宜",
]


class View(str, Enum):
    HOME = "HOME"
    LOADING = "LOADING"
    LESSON = "LESSON"
    VOCABULARY = "VOCABULARY"
    CHAT = "CHAT"
    SETTINGS = "SETTINGS"


class LanguageBuddy:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[Storage] = None,
        generator: Optional[GenerationClient] = None,
        player: Optional[AudioPlayer] = None,
        recognizer: Optional[SpeechRecognizer] = None,
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
    ):
        # Hands worker-thread results to the host's UI thread
        self.dispatch = dispatch or call_now
        self.settings = settings or load_settings()
        self.storage = storage or create_storage(self.settings)
        self.vocabulary = VocabularyStore(self.storage)
        self.generator = generator or GenerationClient(self.settings, self.storage)
        self.player = player or AudioPlayer(dispatch=self.dispatch)
        self.recognizer = recognizer or SpeechRecognizer(self.generator.transcribe, dispatch=self.dispatch)

        self.view = View.HOME
        self.show_key_setup = False
        self.lesson: Optional[LessonData] = None
        self.lesson_audio: Optional[str] = None
        self.is_playing_lesson = False
        self.playing_sentence: Optional[int] = None
        self.loading_sentence: Optional[int] = None
        self.visible_translations: Set[int] = set()

    # --- lifecycle -----------------------------------------------------------

    def open(self) -> None:
        logger.separator("Entorno - Starting")
        self.player.open()
        try:
            self.generator.open()
        except GenerationError as e:
            # The learner can still add a key from the settings screen
            logger.warning(f"Generation client not ready: {e.kind.value}")

    def close(self) -> None:
        self.recognizer.abort()
        self.player.close()
        self.generator.close()
        logger.separator("Entorno - Stopped")

    def __enter__(self) -> "LanguageBuddy":
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _set_view(self, view: View) -> None:
        if view != self.view:
            logger.ui_transition(self.view.value, view.value)
            self.view = view

    def _stop_all_audio(self) -> None:
        self.player.stop_audio()
        self.is_playing_lesson = False
        self.playing_sentence = None
        self.loading_sentence = None

    # --- lesson screen -------------------------------------------------------

    def generate_lesson(self, scenario: str) -> Optional[LessonData]:
        """
        Generate a lesson and its audio. On failure the screen goes back home
        and the GenerationError is re-raised for the host to display.
        """
        if not scenario.strip():
            return None

        self._begin_lesson()
        try:
            result = self._build_lesson(scenario)
        except GenerationError as e:
            self._finish_lesson(None, e)
            raise
        return self._finish_lesson(result, None)

    def generate_lesson_async(
        self,
        scenario: str,
        callback: Callable[[Optional[LessonData], Optional[GenerationError]], None],
    ) -> Optional[threading.Thread]:
        """
        Same as `generate_lesson` without blocking the caller. The screen
        state is updated, and `callback` runs, through `dispatch`.
        """
        if not scenario.strip():
            return None

        self._begin_lesson()

        def done(result: Optional[Tuple[LessonData, str]], error: Optional[GenerationError]) -> None:
            def apply() -> None:
                callback(self._finish_lesson(result, error), error)

            self.dispatch(apply)

        return run_in_background("lesson_generation", lambda: self._build_lesson(scenario), done)

    def _begin_lesson(self) -> None:
        self._stop_all_audio()
        self.visible_translations = set()
        self.show_key_setup = False
        self._set_view(View.LOADING)

    def _build_lesson(self, scenario: str) -> Tuple[LessonData, str]:
        lesson = self.generator.generate_lesson_content(scenario)
        return lesson, self.generator.generate_lesson_audio(lesson.full_text())

    def _finish_lesson(
        self,
        result: Optional[Tuple[LessonData, str]],
        error: Optional[GenerationError],
    ) -> Optional[LessonData]:
        if error is not None or result is None:
            if error is not None:
                logger.error(f"Generation failed [{error.kind.value}]: {error.message}")
                self.show_key_setup = error.kind in SETTINGS_KINDS
            self._set_view(View.HOME)
            return None

        self.lesson, self.lesson_audio = result
        self._set_view(View.LESSON)
        return self.lesson

    def toggle_lesson_audio(self) -> None:
        if self.is_playing_lesson:
            self._stop_all_audio()
            return

        self._stop_all_audio()
        if not self.lesson_audio:
            return
        self.is_playing_lesson = True
        self.player.play_raw_audio(
            self.lesson_audio,
            self._on_lesson_audio_ended,
            on_interrupted=self._on_lesson_audio_ended,
        )

    def _on_lesson_audio_ended(self) -> None:
        self.is_playing_lesson = False

    def play_sentence(self, index: int) -> None:
        """Speak one sentence, or stop it if it is already playing."""
        if self.playing_sentence == index:
            self._stop_all_audio()
            return
        if self.lesson is None or not 0 <= index < len(self.lesson.sentences):
            return

        self._stop_all_audio()
        self.loading_sentence = index
        try:
            audio = self.generator.generate_lesson_audio(self.lesson.sentences[index].spanish)
        except GenerationError:
            self.loading_sentence = None
            self.playing_sentence = None
            raise

        self.loading_sentence = None
        self.playing_sentence = index
        self.player.play_raw_audio(
            audio,
            lambda: self._on_sentence_ended(index),
            on_interrupted=lambda: self._on_sentence_ended(index),
        )

    def _on_sentence_ended(self, index: int) -> None:
        if self.playing_sentence == index:
            self.playing_sentence = None

    def toggle_translation(self, index: int) -> bool:
        if index in self.visible_translations:
            self.visible_translations.discard(index)
            return False
        self.visible_translations.add(index)
        return True

    def reset(self) -> None:
        """Back to the home screen with a clean slate."""
        self._stop_all_audio()
        self.lesson = None
        self.lesson_audio = None
        self.visible_translations = set()
        self._set_view(View.HOME)

    # --- words ---------------------------------------------------------------

    def play_word(self, text: str, on_ended: Callable[[], None]) -> None:
        """
        Speak a single word from the word sheet or the vocabulary list.
        `on_ended` fires once the word finishes, fails or is cut short.
        """
        self._stop_all_audio()
        try:
            audio = self.generator.generate_lesson_audio(text)
        except GenerationError as e:
            logger.warning(f"Could not voice '{text}': {e.kind.value}")
            on_ended()
            return
        self.player.play_raw_audio(audio, on_ended, on_interrupted=on_ended)

    def save_word(self, chunk: Chunk) -> bool:
        """Save a tapped word. Returns whether it is saved afterwards."""
        if not chunk.is_word:
            return False
        self.vocabulary.save_word(chunk)
        return self.vocabulary.is_word_saved(chunk.text)

    def is_word_saved(self, text: str) -> bool:
        return self.vocabulary.is_word_saved(text)

    def open_vocabulary(self) -> List[SavedWord]:
        self._stop_all_audio()
        self._set_view(View.VOCABULARY)
        return self.vocabulary.get_saved_words()

    def remove_word(self, text: str) -> List[SavedWord]:
        return self.vocabulary.remove_word(text)

    def progress(self) -> ProgressStats:
        return self.vocabulary.get_progress_stats()

    @property
    def speech_available(self) -> bool:
        return is_speech_supported()

    def start_review(self, on_mic_error: Optional[Callable[[str], None]] = None) -> Optional[ReviewSession]:
        words = self.vocabulary.get_saved_words()
        if not words:
            return None
        logger.ui_transition(self.view.value, "REVIEW")
        return ReviewSession(
            words,
            store=self.vocabulary,
            player=self.player,
            recognizer=self.recognizer,
            generator=self.generator,
            on_mic_error=on_mic_error,
            speech_supported=self.speech_available,
        )

    # --- chat ----------------------------------------------------------------

    def start_chat(self) -> ChatConversation:
        self._stop_all_audio()
        conversation = ChatConversation(self.generator, self.player)
        self._set_view(View.CHAT)
        return conversation

    # --- settings ------------------------------------------------------------

    def save_api_key(self, key: str) -> Optional[GenerationError]:
        """
        Store a key from the settings screen and verify it with a test
        generation. Returns the failure, or None when the key works (or was
        cleared).
        """
        try:
            save_custom_api_key(self.storage, key)
        except StorageError as e:
            logger.error(f"Could not store API key: {e}")
        self.generator.reset()
        if not key.strip():
            return None

        try:
            self.generator.test_connection()
        except GenerationError as e:
            logger.warning(f"API key check failed [{e.kind.value}]")
            return e
        logger.success("API key verified")
        return None
