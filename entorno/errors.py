"""
Error kinds produced at the generation service boundary.

The client converts every SDK exception into a `GenerationError` carrying one
`ErrorKind`, so screens switch on a closed set instead of reading messages.
"""

from enum import Enum


class ErrorKind(str, Enum):
    # Configuration
    KEY_MISSING = "key_missing"
    KEY_FORMAT_INVALID = "key_format_invalid"
    # Transport
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    # Upstream rejection
    INVALID_KEY = "invalid_key"
    # Content
    AUDIO_GENERATION_FAILED = "audio_generation_failed"
    MALFORMED_RESPONSE = "malformed_response"
    GENERIC_FAILURE = "generic_failure"


class GenerationError(Exception):
    """The only exception type raised by `entorno.api.GenerationClient`."""

    def __init__(self, kind: ErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value

    def __repr__(self) -> str:
        return f"GenerationError({self.kind.value!r}, {self.message!r})"


# Kinds that should send the learner to the settings screen
SETTINGS_KINDS = frozenset({
    ErrorKind.KEY_MISSING,
    ErrorKind.KEY_FORMAT_INVALID,
    ErrorKind.INVALID_KEY,
})

_USER_MESSAGES = {
    ErrorKind.KEY_MISSING: (
        "No API key configured.\n\n"
        "Open Settings and paste your OpenAI API key, or set OPENAI_API_KEY in your .env file."
    ),
    ErrorKind.KEY_FORMAT_INVALID: (
        "The API key looks wrong.\n\n"
        "It seems the text 'OPENAI_API_KEY=' was pasted along with it. "
        "Paste only the key itself (it starts with 'sk-')."
    ),
    ErrorKind.NETWORK_ERROR: (
        "Could not reach the generation service.\n\n"
        "Check your internet connection (or VPN) and try again."
    ),
    ErrorKind.TIMEOUT: (
        "The generation service took too long to answer.\n\n"
        "Please try again in a moment."
    ),
    ErrorKind.RATE_LIMITED: (
        "Too many requests right now.\n\n"
        "Wait a minute before generating again."
    ),
    ErrorKind.INVALID_KEY: (
        "The API key was rejected.\n\n"
        "Check that it was copied completely, or create a new one, then update it in Settings."
    ),
    ErrorKind.AUDIO_GENERATION_FAILED: "Could not generate audio for this text.",
    ErrorKind.MALFORMED_RESPONSE: "The lesson came back in an unexpected format. Please try again.",
    ErrorKind.GENERIC_FAILURE: "Generation failed. Check your network or try again later.",
}


def user_message(kind: ErrorKind, detail: str = "") -> str:
    """Actionable guidance shown to the learner for an error kind."""
    message = _USER_MESSAGES.get(kind, _USER_MESSAGES[ErrorKind.GENERIC_FAILURE])
    if kind == ErrorKind.GENERIC_FAILURE and detail:
        message = f"{message}\n\n({detail})"
    return message
