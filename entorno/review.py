"""Spoken review of saved words."""

from enum import Enum
from typing import Callable, List, Optional

from entorno.errors import GenerationError
from entorno.logger import logger
from entorno.models import SavedWord
from entorno.speech import check_pronunciation


class Feedback(str, Enum):
    IDLE = "idle"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class ReviewSession:
    """
    Walks through saved words one at a time. The learner says the word, the
    transcript is checked, and a correct answer plays the chime and bumps
    the word's review count.
    """

    def __init__(
        self,
        words: List[SavedWord],
        store,
        player,
        recognizer,
        generator,
        on_mic_error: Optional[Callable[[str], None]] = None,
        speech_supported: bool = True,
    ):
        self.words = [w for w in words if w]
        self.store = store
        self.player = player
        self.recognizer = recognizer
        self.generator = generator
        self.on_mic_error = on_mic_error
        self.speech_supported = speech_supported

        self.index = 0
        self.feedback = Feedback.IDLE
        self.spoken_text = ""
        self.is_listening = False
        self.is_playing_audio = False
        self.finished = not self.words

    @property
    def current_word(self) -> Optional[SavedWord]:
        if self.finished or self.index >= len(self.words):
            return None
        return self.words[self.index]

    @property
    def progress(self) -> int:
        if not self.words:
            return 100
        return round((self.index + 1) / len(self.words) * 100)

    def submit_transcript(self, transcript: str) -> bool:
        word = self.current_word
        self.is_listening = False
        if word is None:
            return False

        self.spoken_text = transcript
        if check_pronunciation(word.text, transcript):
            self.feedback = Feedback.CORRECT
            self.player.play_success_sound()
            self.store.increment_review_count(word.text)
            logger.ui(f"'{word.text}' pronounced correctly")
            return True

        self.feedback = Feedback.INCORRECT
        logger.ui(f"'{word.text}' != '{transcript}'")
        return False

    def toggle_mic(self) -> None:
        if self.is_listening:
            self.recognizer.stop_listening()
            self.is_listening = False
            return

        if not self.speech_supported:
            self._on_listen_error("Speech recognition is not available on this device")
            return

        self.feedback = Feedback.IDLE
        self.spoken_text = ""
        self.is_listening = True
        self.recognizer.start_listening(self.submit_transcript, self._on_listen_end, self._on_listen_error)

    def _on_listen_end(self) -> None:
        self.is_listening = False

    def _on_listen_error(self, label: str) -> None:
        self.is_listening = False
        logger.warning(f"Microphone error: {label}")
        if self.on_mic_error:
            self.on_mic_error(label)

    def play_word(self) -> None:
        """Speak the current word. Ignored while a previous request is in flight."""
        word = self.current_word
        if word is None or self.is_playing_audio:
            return

        self.is_playing_audio = True
        try:
            audio = self.generator.generate_lesson_audio(word.text)
        except GenerationError as e:
            logger.warning(f"Could not voice '{word.text}': {e.kind.value}")
            self.is_playing_audio = False
            return
        self.player.play_raw_audio(audio, self._on_audio_ended, on_interrupted=self._on_audio_ended)

    def _on_audio_ended(self) -> None:
        self.is_playing_audio = False

    def next_word(self) -> bool:
        """Advance; returns False once the last word has been passed."""
        if self.is_listening:
            self.recognizer.abort()
            self.is_listening = False
        self.feedback = Feedback.IDLE
        self.spoken_text = ""
        if self.index < len(self.words) - 1:
            self.index += 1
            return True
        self.finished = True
        logger.ui_transition("REVIEW", "VOCABULARY")
        return False

    def skip(self) -> bool:
        return self.next_word()
