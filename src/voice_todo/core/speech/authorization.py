from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from voice_todo.core.audio.source import has_input_device, resolve_sounddevice_input_device

logger = logging.getLogger(__name__)


class AuthorizationGate(Protocol):
    async def request_authorization(self) -> bool:
        """Resolve True only if both speech recognition and microphone use are allowed.

        Implementations never raise.
        """


@dataclass(frozen=True, slots=True)
class StaticAuthorizationGate:
    granted: bool = True

    async def request_authorization(self) -> bool:
        return self.granted


@dataclass(slots=True)
class MicrophoneAuthorizationGate:
    """Grants access when speech is enabled and the configured input device can be queried.

    The device is resolved from the same host API and device settings the
    audio source opens. Device enumeration can block inside PortAudio, so it
    runs in a worker thread.
    """

    speech_enabled: bool = True
    input_host_api: str = ""
    input_device: str = ""

    async def request_authorization(self) -> bool:
        if not self.speech_enabled:
            logger.info("[Speech] Speech recognition disabled in settings")
            return False
        try:
            granted = await asyncio.to_thread(self._check_device)
        except Exception as exc:
            logger.warning("[Speech] Microphone check failed: %s", exc)
            return False
        logger.info("[Speech] Microphone available = %s", granted)
        return granted

    def _check_device(self) -> bool:
        device = resolve_sounddevice_input_device(host_api=self.input_host_api, device=self.input_device)
        if device is None and (self.input_host_api.strip() or self.input_device.strip()):
            logger.warning(
                "[Speech] Configured input device not found (host_api=%r, device=%r)",
                self.input_host_api,
                self.input_device,
            )
            return False
        return has_input_device(device=device)
