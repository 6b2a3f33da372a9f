"""
Audio decoding and playback.

Speech arrives from the generation service as base64-encoded raw PCM: signed
16-bit little-endian samples, 24 kHz, mono. This module turns it into a
float buffer (numpy) and plays it through the pygame mixer.

At most one speech sound plays at a time: starting a new one stops the
previous one first, and a stopped sound never reports completion.
"""

import base64
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from entorno.logger import logger

SAMPLE_RATE = 24000
CHANNELS = 1


def decode(base64_string: str) -> bytes:
    """Decode standard base64. Raises binascii.Error on malformed input."""
    # Like atob(), tolerate line breaks and spaces inside the payload
    return base64.b64decode("".join(base64_string.split()), validate=True)


@dataclass
class AudioBuffer:
    """Planar float samples in [-1.0, 1.0], shape (channels, frames)."""
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    @property
    def number_of_channels(self) -> int:
        return self.samples.shape[0]

    @property
    def length(self) -> int:
        """Number of frames."""
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        return self.length / self.sample_rate

    def get_channel_data(self, channel: int) -> np.ndarray:
        return self.samples[channel]

    def to_pcm16(self) -> np.ndarray:
        """Interleaved int16 frames, shape (frames, channels)."""
        scaled = np.clip(np.round(self.samples * 32768.0), -32768, 32767)
        return scaled.astype(np.int16).T.copy()


def decode_audio_data(
    data: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
) -> AudioBuffer:
    """
    Interpret `data` as interleaved PCM16 LE and normalize it.

    Each sample becomes int16 / 32768.0. A trailing odd byte and any trailing
    partial frame are dropped.
    """
    if channels < 1:
        raise ValueError(f"channels must be >= 1, got {channels}")

    usable = len(data) - (len(data) % 2)
    pcm = np.frombuffer(data[:usable], dtype="<i2")
    frame_count = len(pcm) // channels
    frames = pcm[: frame_count * channels].reshape(frame_count, channels)

    samples = frames.T.astype(np.float32) / 32768.0
    return AudioBuffer(samples=samples, sample_rate=sample_rate)


def synthesize_chime(
    sample_rate: int = SAMPLE_RATE,
    duration: float = 0.5,
    glide: float = 0.1,
    start_hz: float = 880.0,
    end_hz: float = 1760.0,
    start_gain: float = 0.1,
    end_gain: float = 0.01,
) -> AudioBuffer:
    """A short "ding": A5 sliding up to A6, fading out exponentially."""
    n = int(sample_rate * duration)
    t = np.arange(n) / sample_rate

    freq = np.where(t < glide, start_hz * (end_hz / start_hz) ** (t / glide), end_hz)
    phase = 2 * np.pi * np.cumsum(freq) / sample_rate
    gain = start_gain * (end_gain / start_gain) ** (t / duration)

    samples = (np.sin(phase) * gain).astype(np.float32)
    return AudioBuffer(samples=samples.reshape(1, -1), sample_rate=sample_rate)


# ---------------------------------------------------------------------------
# Output device
# ---------------------------------------------------------------------------

class PygameVoice:
    """Handle on one sound started through the pygame mixer."""

    def __init__(self, sound):
        self.sound = sound

    def stop(self) -> None:
        self.sound.stop()

    def is_busy(self) -> bool:
        return self.sound.get_num_channels() > 0


class PygameOutput:
    """
    The shared audio output, fixed at 24 kHz signed 16-bit mono.

    `suspend()`/`resume()` pause and unpause every mixer channel; the player
    resumes a suspended output before it starts a new sound.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS):
        self.sample_rate = sample_rate
        self.channels = channels
        self.is_open = False
        self.suspended = False
        self._mixer_rate = sample_rate
        self._mixer_channels = channels

    def open(self) -> None:
        import pygame

        pygame.mixer.init(frequency=self.sample_rate, size=-16, channels=self.channels)
        init = pygame.mixer.get_init()
        if init is None:
            raise RuntimeError("pygame mixer failed to initialize")
        self._mixer_rate, _, self._mixer_channels = init
        if self._mixer_rate != self.sample_rate:
            logger.warning(f"Mixer opened at {self._mixer_rate} Hz instead of {self.sample_rate} Hz, resampling")
        self.is_open = True
        self.suspended = False
        logger.audio(f"Audio output opened ({self._mixer_rate} Hz, {self._mixer_channels} ch)")

    def close(self) -> None:
        import pygame

        if self.is_open:
            pygame.mixer.quit()
            self.is_open = False
            logger.audio("Audio output closed")

    def suspend(self) -> None:
        import pygame

        pygame.mixer.pause()
        self.suspended = True

    def resume(self) -> None:
        import pygame

        pygame.mixer.unpause()
        self.suspended = False

    def _fit(self, buffer: AudioBuffer) -> np.ndarray:
        samples = buffer.samples
        if buffer.sample_rate != self._mixer_rate and buffer.length:
            target = int(round(buffer.length * self._mixer_rate / buffer.sample_rate))
            src = np.arange(buffer.length)
            dst = np.linspace(0, buffer.length - 1, target)
            samples = np.stack([np.interp(dst, src, ch) for ch in samples])
        if samples.shape[0] != self._mixer_channels:
            samples = np.repeat(samples[:1], self._mixer_channels, axis=0)
        return AudioBuffer(samples=samples, sample_rate=self._mixer_rate).to_pcm16()

    def play(self, buffer: AudioBuffer) -> PygameVoice:
        import pygame

        sound = pygame.mixer.Sound(buffer=self._fit(buffer).tobytes())
        if sound.play() is None:
            raise RuntimeError("No free mixer channel")
        return PygameVoice(sound)


# ---------------------------------------------------------------------------
# Player
# ---------------------------------------------------------------------------

def call_now(callback: Callable[[], None]) -> None:
    """Default dispatcher: run the callback on whichever thread produced it."""
    callback()


@dataclass
class _Playback:
    voice: object
    on_ended: Callable[[], None]
    on_interrupted: Optional[Callable[[], None]] = None


class AudioPlayer:
    """
    Plays generated speech with single-voice exclusivity.

    A daemon thread polls the current voice and fires its `on_ended` callback
    once it finishes on its own. A voice cut short by `stop_audio()` or by a
    newer sound fires `on_interrupted` instead, when one was given.

    Callbacks go through `dispatch`, a callable taking a zero-argument
    function. A Tk host passes `lambda fn: root.after(0, fn)` so they run on
    its UI thread. Pass `watch=False` to drive `poll()` manually.
    """

    def __init__(
        self,
        output=None,
        poll_interval: float = 0.05,
        watch: bool = True,
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
    ):
        self.output = output if output is not None else PygameOutput()
        self.poll_interval = poll_interval
        self.watch = watch
        self.dispatch = dispatch or call_now

        self._lock = threading.RLock()
        self._current: Optional[_Playback] = None
        self._stop_event = threading.Event()
        self._watcher: Optional[threading.Thread] = None

    # --- lifecycle -----------------------------------------------------------

    def open(self) -> None:
        with self._lock:
            if not self.output.is_open:
                self.output.open()
            if self.watch and self._watcher is None:
                self._stop_event.clear()
                self._watcher = threading.Thread(target=self._watch_loop, name="audio-watcher", daemon=True)
                self._watcher.start()

    def close(self) -> None:
        self.stop_audio()
        self._stop_event.set()
        watcher, self._watcher = self._watcher, None
        if watcher is not None and watcher is not threading.current_thread():
            watcher.join(timeout=1.0)
        with self._lock:
            if self.output.is_open:
                self.output.close()

    def __enter__(self) -> "AudioPlayer":
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def suspend(self) -> None:
        """Pause the output, e.g. while the host window is hidden."""
        with self._lock:
            if self.output.is_open and not self.output.suspended:
                logger.audio("Suspending audio output")
                self.output.suspend()

    def _ensure_ready(self) -> None:
        if not self.output.is_open or (self.watch and self._watcher is None):
            self.open()
        if self.output.suspended:
            # Resume before the first playback after a user gesture
            logger.audio("Resuming suspended audio output")
            self.output.resume()

    # --- playback ------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._current is not None

    def play_raw_audio(
        self,
        base64_string: str,
        on_ended: Callable[[], None],
        on_interrupted: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Stop whatever is playing, then play `base64_string` from the start.

        `on_ended` fires once when playback completes. Any failure is logged
        and reported through `on_ended` right away; nothing is raised.
        `on_interrupted` fires instead if the sound is stopped early.
        """
        self.stop_audio()
        try:
            with self._lock:
                self._ensure_ready()
                buffer = decode_audio_data(decode(base64_string), sample_rate=SAMPLE_RATE)
                voice = self.output.play(buffer)
                previous, self._current = self._current, _Playback(voice, on_ended, on_interrupted)
        except Exception as e:
            logger.audio_error(f"Error playing audio: {e}", exc_info=True)
            self._notify(on_ended)
            return

        logger.audio(f"Playing {buffer.duration:.1f}s of speech")
        if previous is not None:
            # Another thread started a sound in between
            self._interrupt(previous)

    def stop_audio(self) -> None:
        """Stop the current sound, if any. Its `on_ended` will not fire."""
        with self._lock:
            playback, self._current = self._current, None
        if playback is not None:
            self._interrupt(playback)

    def _interrupt(self, playback: _Playback) -> None:
        try:
            playback.voice.stop()
        except Exception as e:
            logger.audio_error(f"Error stopping audio: {e}")
        if playback.on_interrupted is not None:
            self._notify(playback.on_interrupted)

    def play_success_sound(self) -> None:
        """Positive feedback chime. Neither stops nor is stopped by speech."""
        try:
            with self._lock:
                self._ensure_ready()
            self.output.play(synthesize_chime())
        except Exception as e:
            logger.audio_error(f"Error playing success sound: {e}", exc_info=True)

    def poll(self) -> None:
        """Fire `on_ended` if the current sound has finished on its own."""
        with self._lock:
            playback = self._current
            if playback is None or playback.voice.is_busy():
                return
            self._current = None
        logger.audio("Playback finished")
        self._notify(playback.on_ended)

    def _notify(self, callback: Callable[[], None]) -> None:
        self.dispatch(lambda: self._run_callback(callback))

    def _run_callback(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.audio_error(f"Playback callback raised: {e}", exc_info=True)

    def _watch_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            self.poll()
