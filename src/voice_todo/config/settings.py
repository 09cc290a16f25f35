from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from voice_todo import SEED_TODOS_URL


class SpeechProviderName(str, Enum):
    DEEPGRAM = "deepgram"
    VOSK = "vosk"


class SecretsBackend(str, Enum):
    KEYRING = "keyring"
    ENCRYPTED_FILE = "encrypted_file"


@dataclass(slots=True)
class SpeechSettings:
    enabled: bool = True
    provider: SpeechProviderName = SpeechProviderName.DEEPGRAM
    locale: str = "ru-RU"
    restart_interval_s: float = 5.0
    requires_on_device: bool = False

    def validate(self) -> None:
        if not isinstance(self.provider, SpeechProviderName):
            raise ValueError("invalid speech provider")
        if not self.locale:
            raise ValueError("locale must be non-empty")
        if self.restart_interval_s <= 0:
            raise ValueError("restart_interval_s must be > 0")


@dataclass(slots=True)
class AudioSettings:
    sample_rate_hz: int = 16000
    channels: int = 1
    input_host_api: str = ""
    input_device: str = ""

    def validate(self) -> None:
        if self.sample_rate_hz not in (8000, 16000):
            raise ValueError("sample_rate_hz must be 8000 or 16000")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.input_host_api is None:
            raise ValueError("input_host_api must be a string")
        if self.input_device is None:
            raise ValueError("input_device must be a string")


@dataclass(slots=True)
class DeepgramSettings:
    model: str = "nova-3"

    def validate(self) -> None:
        if not self.model:
            raise ValueError("model must be non-empty")


@dataclass(slots=True)
class VoskSettings:
    model_path: str = "vosk-model"

    def validate(self) -> None:
        if not self.model_path:
            raise ValueError("model_path must be non-empty")


@dataclass(slots=True)
class StorageSettings:
    tasks_file: str = "tasks.json"

    def validate(self) -> None:
        if not self.tasks_file:
            raise ValueError("tasks_file must be non-empty")


@dataclass(slots=True)
class SeedSettings:
    enabled: bool = True
    url: str = SEED_TODOS_URL
    timeout_s: float = 10.0

    def validate(self) -> None:
        if self.enabled and not self.url.startswith(("http://", "https://")):
            raise ValueError("seed url must be http(s)")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")


@dataclass(slots=True)
class SecretsSettings:
    backend: SecretsBackend = SecretsBackend.KEYRING
    encrypted_file_path: str = "secrets.json"

    def validate(self) -> None:
        if not isinstance(self.backend, SecretsBackend):
            raise ValueError("invalid secrets backend")
        if self.backend == SecretsBackend.ENCRYPTED_FILE and not self.encrypted_file_path:
            raise ValueError("encrypted_file_path must be set for encrypted_file backend")


@dataclass(slots=True)
class AppSettings:
    speech: SpeechSettings = field(default_factory=SpeechSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)
    deepgram: DeepgramSettings = field(default_factory=DeepgramSettings)
    vosk: VoskSettings = field(default_factory=VoskSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    seed: SeedSettings = field(default_factory=SeedSettings)
    secrets: SecretsSettings = field(default_factory=SecretsSettings)

    def validate(self) -> None:
        self.speech.validate()
        self.audio.validate()
        self.deepgram.validate()
        self.vosk.validate()
        self.storage.validate()
        self.seed.validate()
        self.secrets.validate()


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return {
        "speech": {
            "enabled": settings.speech.enabled,
            "provider": settings.speech.provider.value,
            "locale": settings.speech.locale,
            "restart_interval_s": settings.speech.restart_interval_s,
            "requires_on_device": settings.speech.requires_on_device,
        },
        "audio": {
            "sample_rate_hz": settings.audio.sample_rate_hz,
            "channels": settings.audio.channels,
            "input_host_api": settings.audio.input_host_api,
            "input_device": settings.audio.input_device,
        },
        "deepgram": {"model": settings.deepgram.model},
        "vosk": {"model_path": settings.vosk.model_path},
        "storage": {"tasks_file": settings.storage.tasks_file},
        "seed": {
            "enabled": settings.seed.enabled,
            "url": settings.seed.url,
            "timeout_s": settings.seed.timeout_s,
        },
        "secrets": {
            "backend": settings.secrets.backend.value,
            "encrypted_file_path": settings.secrets.encrypted_file_path,
        },
    }


def _parse_speech_provider(value: str) -> SpeechProviderName:
    """Unknown provider names fall back to DEEPGRAM."""
    try:
        return SpeechProviderName(value)
    except ValueError:
        return SpeechProviderName.DEEPGRAM


def from_dict(data: dict[str, Any]) -> AppSettings:
    speech = data.get("speech") or {}
    audio = data.get("audio") or {}
    seed = data.get("seed") or {}
    secrets = data.get("secrets") or {}

    input_host_api_raw = audio.get("input_host_api")
    input_device_raw = audio.get("input_device")

    settings = AppSettings(
        speech=SpeechSettings(
            enabled=bool(speech.get("enabled", True)),
            provider=_parse_speech_provider(speech.get("provider", SpeechProviderName.DEEPGRAM.value)),
            locale=str(speech.get("locale", "ru-RU")),
            restart_interval_s=float(speech.get("restart_interval_s", 5.0)),
            requires_on_device=bool(speech.get("requires_on_device", False)),
        ),
        audio=AudioSettings(
            sample_rate_hz=int(audio.get("sample_rate_hz", 16000)),
            channels=int(audio.get("channels", 1)),
            input_host_api=str(input_host_api_raw) if input_host_api_raw is not None else "",
            input_device=str(input_device_raw) if input_device_raw is not None else "",
        ),
        deepgram=DeepgramSettings(model=str((data.get("deepgram") or {}).get("model", "nova-3"))),
        vosk=VoskSettings(model_path=str((data.get("vosk") or {}).get("model_path", "vosk-model"))),
        storage=StorageSettings(tasks_file=str((data.get("storage") or {}).get("tasks_file", "tasks.json"))),
        seed=SeedSettings(
            enabled=bool(seed.get("enabled", True)),
            url=str(seed.get("url", SEED_TODOS_URL)),
            timeout_s=float(seed.get("timeout_s", 10.0)),
        ),
        secrets=SecretsSettings(
            backend=SecretsBackend(secrets.get("backend", SecretsBackend.KEYRING.value)),
            encrypted_file_path=str(secrets.get("encrypted_file_path", "secrets.json")),
        ),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
