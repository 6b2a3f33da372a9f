"""Tutor chat screen state."""

from typing import List, Optional, Set

from entorno.errors import GenerationError
from entorno.logger import logger
from entorno.models import ChatMessage, ChatRole, Chunk

GREETING = "¡Hola! ¿De qué quieres hablar hoy?"
GREETING_TRANSLATION = "你好！今天想聊点什么？"
GREETING_CHUNKS = [
    Chunk("¡", False),
    Chunk("Hola", True, meaning="你好", lemma="hola"),
    Chunk("! ", False),
    Chunk("¿", False),
    Chunk("De", True, meaning="关于", lemma="de"),
    Chunk(" ", False),
    Chunk("qué", True, meaning="什么", lemma="qué"),
    Chunk(" ", False),
    Chunk("quieres", True, meaning="你想", lemma="querer"),
    Chunk(" ", False),
    Chunk("hablar", True, meaning="谈论", lemma="hablar"),
    Chunk(" ", False),
    Chunk("hoy", True, meaning="今天", lemma="hoy"),
    Chunk("?", False),
]


class ChatConversation:
    """
    State of the tutor chat screen: an append-only transcript, the messages
    whose translation is revealed, and which message is being spoken.
    """

    def __init__(self, generator, player):
        self.generator = generator
        self.player = player
        self.session = generator.start_chat_session()

        self.messages: List[ChatMessage] = [
            ChatMessage.create(
                ChatRole.MODEL,
                GREETING,
                translation=GREETING_TRANSLATION,
                chunks=list(GREETING_CHUNKS),
            )
        ]
        self.is_loading = False
        self.playing_message_id: Optional[str] = None
        self.revealed_translations: Set[str] = set()

    def send(self, text: str) -> Optional[ChatMessage]:
        """
        Append the learner's message, then the tutor's reply. Returns the
        reply, or None when there was nothing to send. GenerationError
        propagates so the screen can show a failure notice.
        """
        if not text.strip() or self.is_loading:
            return None

        self.messages.append(ChatMessage.create(ChatRole.USER, text))
        self.is_loading = True
        try:
            reply = self.generator.send_chat_message(self.session, text)
        finally:
            self.is_loading = False

        message = ChatMessage.from_reply(reply)
        self.messages.append(message)
        return message

    def toggle_translation(self, message_id: str) -> bool:
        if message_id in self.revealed_translations:
            self.revealed_translations.discard(message_id)
            return False
        self.revealed_translations.add(message_id)
        return True

    def _find(self, message_id: str) -> Optional[ChatMessage]:
        return next((m for m in self.messages if m.id == message_id), None)

    def toggle_playback(self, message_id: str) -> None:
        """Speak a message, or stop it if it is the one already playing."""
        if self.playing_message_id == message_id:
            self.player.stop_audio()
            self.playing_message_id = None
            return

        message = self._find(message_id)
        if message is None:
            return

        self.player.stop_audio()
        self.playing_message_id = message_id
        try:
            audio = self.generator.generate_lesson_audio(message.text)
        except GenerationError as e:
            logger.warning(f"Could not voice message: {e.kind.value}")
            self.playing_message_id = None
            return

        def reset() -> None:
            self._on_playback_ended(message_id)

        self.player.play_raw_audio(audio, reset, on_interrupted=reset)

    def _on_playback_ended(self, message_id: str) -> None:
        if self.playing_message_id == message_id:
            self.playing_message_id = None

    def close(self) -> None:
        self.player.stop_audio()
        self.playing_message_id = None
        self.session.close()
