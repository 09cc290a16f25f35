"""Error taxonomy of the speech session manager.

Setup failures (authorization, audio, recognizer availability) end a start
attempt. `RecognitionError` describes the termination of a single
recognition attempt and carries the backend's (domain, code) pair so that
expected cancellations can be told apart from real failures.
"""

from __future__ import annotations


class ErrorDomain:
    SPEECH = "speech"
    ASSISTANT = "assistant"
    TRANSPORT = "transport"
    SERVICE = "service"


SPEECH_CANCELED = 203
ASSISTANT_BUSY = 1101
ASSISTANT_CANCELED = 1110
TRANSPORT_CANCELLED = -999

EXPECTED_CANCELLATIONS: frozenset[tuple[str, int]] = frozenset(
    {
        (ErrorDomain.SPEECH, SPEECH_CANCELED),
        (ErrorDomain.ASSISTANT, ASSISTANT_BUSY),
        (ErrorDomain.ASSISTANT, ASSISTANT_CANCELED),
        (ErrorDomain.TRANSPORT, TRANSPORT_CANCELLED),
    }
)


class SpeechServiceError(Exception):
    domain: str = ErrorDomain.SERVICE
    code: int = 0


class AuthorizationDeniedError(SpeechServiceError):
    code = -1

    def __init__(self, message: str = "Microphone or speech recognition access denied") -> None:
        super().__init__(message)


class RecognizerUnavailableError(SpeechServiceError):
    code = -2

    def __init__(self, message: str = "Speech recognizer is temporarily unavailable") -> None:
        super().__init__(message)


class AudioSetupError(SpeechServiceError):
    code = -3


class RecognitionError(SpeechServiceError):
    def __init__(self, domain: str, code: int, message: str = "") -> None:
        super().__init__(message or f"{domain} error {code}")
        self.domain = domain
        self.code = code

    def __repr__(self) -> str:
        return f"RecognitionError(domain={self.domain!r}, code={self.code}, message={str(self)!r})"


def is_expected_cancel(error: BaseException, *, user_stopping: bool) -> bool:
    if user_stopping:
        return True
    if isinstance(error, RecognitionError):
        return (error.domain, error.code) in EXPECTED_CANCELLATIONS
    return False
