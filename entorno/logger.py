"""
Centralized diagnostic output for Entorno.

Everything that goes wrong inside the app ends up here rather than in front
of the learner: failed playback, unreadable vocabulary files, upstream
errors. Output is categorized and color-coded:

- ENV: settings and credentials
- API: generation service calls
- AUD: audio decoding and playback
- MIC: microphone capture and recognition
- DB: vocabulary persistence
- UI: screen state changes
- TASK: background threads

Usage:
    from entorno.logger import logger, Timer

    logger.api_call("chat.completions.create", model="gpt-4o-mini")
    logger.audio_error("Playback failed", exc_info=True)
"""

import os
import sys
import time
import traceback
from datetime import datetime
from typing import Optional


class ColorCodes:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_CYAN = "\033[96m"


class DebugLogger:
    """Console logger with one tag per subsystem."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._start_time = datetime.now()

    def _timestamp(self) -> str:
        now = datetime.now()
        elapsed = (now - self._start_time).total_seconds()
        return f"{now.strftime('%H:%M:%S')}.{now.microsecond // 1000:03d} (+{elapsed:>6.1f}s)"

    def _log(self, category: str, color: str, message: str, **kwargs) -> None:
        if not self.enabled:
            return

        timestamp = self._timestamp()
        padding = " " * (len(timestamp) + 8)
        tag = f"{color}{ColorCodes.BOLD}[{category:>4}]{ColorCodes.RESET}"

        first, *rest = message.split("\n")
        print(f"{ColorCodes.DIM}{timestamp}{ColorCodes.RESET} {tag} {first}", file=sys.stdout, flush=True)
        for line in rest:
            print(f"{padding}{line}", file=sys.stdout, flush=True)

        if kwargs.get("exc_info"):
            for line in traceback.format_exc().splitlines():
                if line.strip():
                    print(f"{padding}{ColorCodes.RED}{line}{ColorCodes.RESET}", file=sys.stderr, flush=True)

    # === Settings / credentials ===
    def env(self, message: str, **kwargs) -> None:
        self._log("ENV", ColorCodes.MAGENTA, message, **kwargs)

    def env_success(self, message: str, **kwargs) -> None:
        self._log("ENV", ColorCodes.GREEN, f"✓ {message}", **kwargs)

    def env_error(self, message: str, **kwargs) -> None:
        self._log("ENV", ColorCodes.RED, f"✗ {message}", **kwargs)

    # === Generation service ===
    def api(self, message: str, **kwargs) -> None:
        self._log("API", ColorCodes.CYAN, message, **kwargs)

    def api_call(self, endpoint: str, model: Optional[str] = None, **kwargs) -> None:
        """Log an outgoing call to the generation service."""
        model_info = f" (model: {model})" if model else ""
        self._log("API", ColorCodes.CYAN, f"→ Calling {endpoint}{model_info}", **kwargs)

    def api_response(self, endpoint: str, duration_ms: Optional[float] = None, **kwargs) -> None:
        duration_info = f" ({duration_ms:.0f}ms)" if duration_ms else ""
        self._log("API", ColorCodes.BRIGHT_CYAN, f"← Response from {endpoint}{duration_info}", **kwargs)

    def api_error(self, message: str, **kwargs) -> None:
        self._log("API", ColorCodes.BRIGHT_RED, f"✗ {message}", **kwargs)

    # === Audio ===
    def audio(self, message: str, **kwargs) -> None:
        self._log("AUD", ColorCodes.YELLOW, message, **kwargs)

    def audio_error(self, message: str, **kwargs) -> None:
        """Playback problems. These never reach the learner."""
        self._log("AUD", ColorCodes.BRIGHT_RED, f"✗ {message}", **kwargs)

    # === Microphone / recognition ===
    def mic(self, message: str, **kwargs) -> None:
        self._log("MIC", ColorCodes.BRIGHT_YELLOW, message, **kwargs)

    # === Persistence ===
    def db(self, message: str, **kwargs) -> None:
        self._log("DB", ColorCodes.BLUE, message, **kwargs)

    # === Screen state ===
    def ui(self, message: str, **kwargs) -> None:
        self._log("UI", ColorCodes.BRIGHT_BLUE, message, **kwargs)

    def ui_transition(self, from_state: str, to_state: str, **kwargs) -> None:
        self._log("UI", ColorCodes.BRIGHT_BLUE, f"{from_state} → {to_state}", **kwargs)

    # === Background tasks ===
    def task_start(self, task_name: str, **kwargs) -> None:
        self._log("TASK", ColorCodes.WHITE, f"⚡ Starting: {task_name}", **kwargs)

    def task_complete(self, task_name: str, duration_ms: Optional[float] = None, **kwargs) -> None:
        duration_info = f" ({duration_ms:.0f}ms)" if duration_ms else ""
        self._log("TASK", ColorCodes.BRIGHT_GREEN, f"✓ Completed: {task_name}{duration_info}", **kwargs)

    def task_error(self, task_name: str, error: str, **kwargs) -> None:
        self._log("TASK", ColorCodes.BRIGHT_RED, f"✗ Failed: {task_name} - {error}", **kwargs)

    # === General status ===
    def success(self, message: str, **kwargs) -> None:
        self._log("OK", ColorCodes.BRIGHT_GREEN, f"✓ {message}", **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log("WARN", ColorCodes.BRIGHT_YELLOW, f"⚠ {message}", **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log("ERR", ColorCodes.BRIGHT_RED, f"✗ {message}", **kwargs)

    def debug(self, message: str, **kwargs) -> None:
        self._log("DBG", ColorCodes.DIM, message, **kwargs)

    def separator(self, title: Optional[str] = None) -> None:
        if not self.enabled:
            return
        line = f"{'─' * 20} {title} {'─' * 20}" if title else "─" * 60
        print(f"\n{ColorCodes.DIM}{line}{ColorCodes.RESET}\n", file=sys.stdout, flush=True)


# Global logger instance
logger = DebugLogger(enabled=os.getenv("ENTORNO_DEBUG", "1") != "0")


class Timer:
    """Context manager measuring the wall time of a block in milliseconds."""

    def __init__(self):
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time:
            self.duration_ms = (time.perf_counter() - self.start_time) * 1000
