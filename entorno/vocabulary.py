"""
Local vocabulary store.

Saved words live in a single JSON array under one storage key, newest first.
Every mutation rewrites the whole array. There is no schema version: a change
to the SavedWord shape needs a separate migration step.
"""

import json
import math
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional

from entorno.logger import logger
from entorno.models import Chunk, MalformedDataError, ProgressStats, SavedWord
from entorno.storage import Storage, StorageError

STORAGE_KEY = "entorno_vocab_v1"
A2_TARGET_COUNT = 1000      # Estimated vocabulary size for CEFR A2
DAILY_GOAL = 10


def _now_ms() -> int:
    return int(time.time() * 1000)


def _percent(value: int, total: int) -> int:
    """Rounded (half up) percentage, capped at 100."""
    return min(int(math.floor(value / total * 100 + 0.5)), 100)


def _start_of_local_day(now: datetime) -> int:
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


class VocabularyStore:
    """
    Saved words keyed (case-insensitively) by their text.

    Mutations are read-modify-write cycles over the whole list and are
    serialized with a lock, since review callbacks may run off the UI thread.
    """

    def __init__(self, storage: Storage, clock: Optional[Callable[[], int]] = None):
        self.storage = storage
        self._clock = clock or _now_ms
        self._lock = threading.RLock()

    def get_saved_words(self) -> List[SavedWord]:
        """All saved words, newest first. Unreadable storage counts as empty."""
        try:
            raw = self.storage.get_item(STORAGE_KEY)
        except StorageError as e:
            logger.warning(f"[DB] Vocabulary storage unavailable: {e}")
            return []
        if not raw:
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[DB] Vocabulary data is corrupt, ignoring it: {e}")
            return []
        if not isinstance(data, list):
            logger.warning("[DB] Vocabulary data is not a list, ignoring it")
            return []

        words = []
        for entry in data:
            try:
                words.append(SavedWord.from_dict(entry))
            except MalformedDataError as e:
                logger.warning(f"[DB] Skipping unreadable saved word: {e}")
        return words

    def _persist(self, words: List[SavedWord]) -> None:
        payload = json.dumps([w.to_dict() for w in words], ensure_ascii=False)
        try:
            self.storage.set_item(STORAGE_KEY, payload)
        except StorageError as e:
            logger.error(f"[DB] Could not save vocabulary: {e}")

    def save_word(self, chunk: Chunk) -> List[SavedWord]:
        """
        Prepend `chunk` as a new saved word.

        Skipped when an existing entry has the same text, or the same lemma,
        ignoring case. Returns the resulting list either way.
        """
        text = chunk.text.lower()
        lemma = chunk.lemma.lower() if chunk.lemma else None

        with self._lock:
            words = self.get_saved_words()
            for w in words:
                if w.text.lower() == text or (lemma and w.lemma and w.lemma.lower() == lemma):
                    logger.db(f"'{chunk.text}' already saved as '{w.text}', skipping")
                    return words

            words = [SavedWord.from_chunk(chunk, added_at=self._clock())] + words
            self._persist(words)
        logger.db(f"Saved '{chunk.text}' ({len(words)} words)")
        return words

    def remove_word(self, text: str) -> List[SavedWord]:
        """Remove every entry whose text equals `text` exactly (case-sensitive)."""
        with self._lock:
            words = [w for w in self.get_saved_words() if w.text != text]
            self._persist(words)
        logger.db(f"Removed '{text}' ({len(words)} words left)")
        return words

    def increment_review_count(self, text: str) -> List[SavedWord]:
        with self._lock:
            words = self.get_saved_words()
            for w in words:
                if w.text == text:
                    w.review_count += 1
            self._persist(words)
        return words

    def is_word_saved(self, text: str) -> bool:
        text = text.lower()
        return any(w.text.lower() == text for w in self.get_saved_words())

    def get_progress_stats(self, now: Optional[datetime] = None) -> ProgressStats:
        """Progress toward the A2 target and today's goal, in local time."""
        words = self.get_saved_words()
        if now is None:
            now = datetime.fromtimestamp(self._clock() / 1000)
        today_start = _start_of_local_day(now)
        today_count = sum(1 for w in words if w.added_at >= today_start)

        return ProgressStats(
            total_words=len(words),
            target=A2_TARGET_COUNT,
            percentage=_percent(len(words), A2_TARGET_COUNT),
            today_count=today_count,
            daily_goal=DAILY_GOAL,
            daily_progress=_percent(today_count, DAILY_GOAL),
        )
