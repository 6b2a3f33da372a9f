"""
Pronunciation checking and microphone speech recognition.

The recognizer records the learner with sounddevice, saves a 16 kHz WAV with
soundfile and hands it to a transcription function (Whisper through
`GenerationClient.transcribe`). Only final transcripts are reported.
"""

import functools
import os
import re
import tempfile
import threading
import time
from typing import Callable, List, Optional

import numpy as np

from entorno.audio import call_now
from entorno.logger import logger

_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()¿?¡]")


def normalize_utterance(text: str) -> str:
    """Lowercase, drop punctuation, trim. Accents are significant and kept."""
    return _PUNCTUATION.sub("", text.lower()).strip()


def check_pronunciation(target: str, spoken: str) -> bool:
    """True when `spoken` matches `target` once both are normalized."""
    return normalize_utterance(target) == normalize_utterance(spoken)


def is_speech_supported() -> bool:
    """Whether at least one microphone is available."""
    try:
        import sounddevice as sd

        devices = sd.query_devices()
    except Exception as e:
        logger.mic(f"Recording unavailable: {e}")
        return False
    return any(d["max_input_channels"] > 0 for d in devices)


class _Capture:
    def __init__(self, on_result, on_end, on_error):
        self.on_result = on_result
        self.on_end = on_end
        self.on_error = on_error
        self.stop_event = threading.Event()
        self.aborted = False
        self.chunks: List[np.ndarray] = []


class SpeechRecognizer:
    """
    One microphone capture at a time, transcribed in Spanish.

    Callbacks are handed to `dispatch` (by default they run on the capture
    thread; a Tk host passes `lambda fn: root.after(0, fn)`):
    - on_result(transcript) for a recognized utterance
    - on_error(label) for a real failure (no microphone, transcription error)
    - on_end() always, last

    Silence or a too-short recording is not an error: only on_end fires and
    the caller can simply try again.
    """

    SAMPLE_RATE = 16000  # Whisper prefers 16kHz
    CHANNELS = 1

    def __init__(
        self,
        transcribe: Callable[[str, str], Optional[str]],
        language: str = "es",
        max_seconds: float = 10.0,
        min_seconds: float = 0.5,
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
    ):
        self.transcribe = transcribe
        self.language = language
        self.max_seconds = max_seconds
        self.min_seconds = min_seconds
        self.dispatch = dispatch or call_now

        self._lock = threading.Lock()
        self._capture: Optional[_Capture] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_listening(self) -> bool:
        with self._lock:
            return self._capture is not None

    def start_listening(
        self,
        on_result: Callable[[str], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        self.abort()

        capture = _Capture(on_result, on_end, on_error)
        with self._lock:
            self._capture = capture
        logger.mic(f"Listening ({self.language})...")
        self._thread = threading.Thread(target=self._run, args=(capture,), name="speech-capture", daemon=True)
        self._thread.start()

    def stop_listening(self) -> None:
        """Finish the current capture and transcribe what was heard."""
        with self._lock:
            capture = self._capture
        if capture is not None:
            capture.stop_event.set()

    def abort(self) -> None:
        """Drop the current capture without transcribing it."""
        with self._lock:
            capture, self._capture = self._capture, None
        if capture is not None:
            capture.aborted = True
            capture.stop_event.set()
            logger.mic("Previous capture aborted")

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the current capture thread to deliver its callbacks."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    # --- capture thread -------------------------------------------------------

    def _record(self, capture: _Capture) -> np.ndarray:
        import sounddevice as sd

        def callback(indata, frames, time_info, status):
            if status:
                logger.warning(f"Audio status: {status}")
            capture.chunks.append(indata.copy())

        started = time.monotonic()
        with sd.InputStream(samplerate=self.SAMPLE_RATE, channels=self.CHANNELS, callback=callback):
            while not capture.stop_event.wait(0.1):
                if time.monotonic() - started >= self.max_seconds:
                    break
        if not capture.chunks:
            return np.zeros((0, self.CHANNELS), dtype=np.float32)
        return np.concatenate(capture.chunks, axis=0)

    def _recognize(self, audio: np.ndarray) -> Optional[str]:
        import soundfile as sf

        fd, path = tempfile.mkstemp(suffix=".wav", prefix="entorno_recording_")
        os.close(fd)
        try:
            sf.write(path, audio, self.SAMPLE_RATE)
            return self.transcribe(path, self.language)
        finally:
            try:
                os.remove(path)
            except OSError:
                pass

    def _run(self, capture: _Capture) -> None:
        try:
            try:
                audio = self._record(capture)
            except Exception as e:
                logger.error(f"Recording error: {e}")
                self._deliver(capture.on_error, "Microphone access failed")
                return

            if capture.aborted:
                return
            if len(audio) < self.SAMPLE_RATE * self.min_seconds:
                logger.mic("No speech detected")
                return

            logger.mic(f"Recorded {len(audio) / self.SAMPLE_RATE:.1f}s, transcribing...")
            try:
                transcript = self._recognize(audio)
            except Exception as e:
                logger.error(f"Transcription error: {e}")
                self._deliver(capture.on_error, "Transcription failed")
                return

            if transcript is None:
                self._deliver(capture.on_error, "Transcription failed")
            elif not transcript.strip():
                logger.mic("No speech detected")
            else:
                logger.mic(f"Heard: '{transcript}'")
                self._deliver(capture.on_result, transcript.strip())
        finally:
            with self._lock:
                if self._capture is capture:
                    self._capture = None
            self._deliver(capture.on_end)

    def _deliver(self, callback: Callable, *args) -> None:
        self.dispatch(functools.partial(callback, *args))
