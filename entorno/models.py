"""
Data model for lessons, chat transcripts and saved vocabulary.

Everything maps to and from the camelCase JSON used by the model replies and
the vocabulary store through `to_dict()` / `from_dict()`.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any


class MalformedDataError(ValueError):
    """Raised when a JSON payload does not match the expected shape."""


def _require(data: Dict[str, Any], key: str, kind: type, where: str) -> Any:
    if not isinstance(data, dict):
        raise MalformedDataError(f"{where}: expected an object, got {type(data).__name__}")
    if key not in data:
        raise MalformedDataError(f"{where}: missing '{key}'")
    value = data[key]
    if not isinstance(value, kind):
        raise MalformedDataError(f"{where}: '{key}' should be {kind.__name__}, got {type(value).__name__}")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


@dataclass
class Chunk:
    """A contiguous span of generated text, optionally a tappable word."""
    text: str
    is_word: bool
    meaning: Optional[str] = None       # Chinese gloss, words only
    lemma: Optional[str] = None         # Dictionary form, e.g. "fui" -> "ser"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text, "isWord": self.is_word}
        if self.meaning is not None:
            data["meaning"] = self.meaning
        if self.lemma is not None:
            data["lemma"] = self.lemma
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        text = _require(data, "text", str, "chunk")
        is_word = _require(data, "isWord", bool, "chunk")
        if not is_word:
            # Whitespace and punctuation never carry lexical metadata
            return cls(text=text, is_word=False)
        return cls(
            text=text,
            is_word=True,
            meaning=_optional_str(data, "meaning"),
            lemma=_optional_str(data, "lemma"),
        )


def _chunks_from_list(items: Any, where: str) -> List[Chunk]:
    if not isinstance(items, list):
        raise MalformedDataError(f"{where}: 'chunks' should be a list")
    return [Chunk.from_dict(item) for item in items]


@dataclass
class Sentence:
    """One utterance of a lesson; chunks decompose `spanish` losslessly."""
    spanish: str
    chinese: str
    chunks: List[Chunk] = field(default_factory=list)

    def chunks_text(self) -> str:
        return "".join(chunk.text for chunk in self.chunks)

    def is_lossless(self) -> bool:
        return self.chunks_text() == self.spanish

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spanish": self.spanish,
            "chinese": self.chinese,
            "chunks": [c.to_dict() for c in self.chunks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sentence":
        return cls(
            spanish=_require(data, "spanish", str, "sentence"),
            chinese=_require(data, "chinese", str, "sentence"),
            chunks=_chunks_from_list(_require(data, "chunks", list, "sentence"), "sentence"),
        )


@dataclass
class LessonData:
    """A full generated lesson. Replaced wholesale on every generation."""
    scenario: str
    sentences: List[Sentence] = field(default_factory=list)
    tips: str = ""

    def full_text(self) -> str:
        """All Spanish sentences joined, as spoken by the whole-lesson audio."""
        return " ".join(s.spanish for s in self.sentences)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "sentences": [s.to_dict() for s in self.sentences],
            "tips": self.tips,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LessonData":
        sentences = _require(data, "sentences", list, "lesson")
        return cls(
            scenario=_require(data, "scenario", str, "lesson"),
            sentences=[Sentence.from_dict(s) for s in sentences],
            tips=_require(data, "tips", str, "lesson"),
        )


@dataclass
class ChatReply:
    """One structured chat turn from the tutor."""
    spanish: str
    chinese: str
    chunks: List[Chunk] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatReply":
        return cls(
            spanish=_require(data, "spanish", str, "chat reply"),
            chinese=_require(data, "chinese", str, "chat reply"),
            chunks=_chunks_from_list(_require(data, "chunks", list, "chat reply"), "chat reply"),
        )


class ChatRole(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass
class ChatMessage:
    """An entry in a chat transcript. `id` is an identity key only."""
    id: str
    role: ChatRole
    text: str
    translation: Optional[str] = None
    chunks: Optional[List[Chunk]] = None

    @classmethod
    def create(
        cls,
        role: ChatRole,
        text: str,
        translation: Optional[str] = None,
        chunks: Optional[List[Chunk]] = None,
    ) -> "ChatMessage":
        return cls(id=uuid.uuid4().hex, role=role, text=text, translation=translation, chunks=chunks)

    @classmethod
    def from_reply(cls, reply: ChatReply) -> "ChatMessage":
        return cls.create(ChatRole.MODEL, reply.spanish, translation=reply.chinese, chunks=reply.chunks)


@dataclass
class SavedWord(Chunk):
    """A chunk the learner kept, persisted in the vocabulary store."""
    added_at: int = 0                   # Epoch milliseconds
    review_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["addedAt"] = self.added_at
        data["reviewCount"] = self.review_count
        return data

    @classmethod
    def from_chunk(cls, chunk: Chunk, added_at: int) -> "SavedWord":
        return cls(
            text=chunk.text,
            is_word=chunk.is_word,
            meaning=chunk.meaning,
            lemma=chunk.lemma,
            added_at=added_at,
            review_count=0,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedWord":
        text = _require(data, "text", str, "saved word")
        added_at = data.get("addedAt", 0)
        review_count = data.get("reviewCount") or 0
        if isinstance(added_at, bool) or not isinstance(added_at, (int, float)):
            raise MalformedDataError("saved word: 'addedAt' should be a number")
        if isinstance(review_count, bool) or not isinstance(review_count, int):
            raise MalformedDataError("saved word: 'reviewCount' should be an integer")
        return cls(
            text=text,
            is_word=bool(data.get("isWord", True)),
            meaning=_optional_str(data, "meaning"),
            lemma=_optional_str(data, "lemma"),
            added_at=int(added_at),
            review_count=review_count,
        )


@dataclass
class ProgressStats:
    """Derived vocabulary progress. Never persisted."""
    total_words: int = 0
    target: int = 1000
    percentage: int = 0
    today_count: int = 0
    daily_goal: int = 10
    daily_progress: int = 0
