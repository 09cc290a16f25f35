from __future__ import annotations

from typing import Protocol


class TranscriptSink(Protocol):
    """Receiver of transcript updates and session lifecycle notifications.

    All three callbacks are invoked on the session manager's event loop, one
    at a time and in the order they were produced.
    """

    def on_update(self, text: str) -> None: ...
    def on_finish(self) -> None: ...
    def on_fail(self, error: BaseException) -> None: ...
