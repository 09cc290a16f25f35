from __future__ import annotations

import logging
import os
from pathlib import Path

from voice_todo.config.paths import resolve_relative
from voice_todo.config.settings import (
    AppSettings,
    SecretsBackend,
    SecretsSettings,
    SpeechProviderName,
)
from voice_todo.core.audio.source import (
    AudioSource,
    SoundDeviceAudioSource,
    resolve_sounddevice_input_device,
)
from voice_todo.core.speech.authorization import AuthorizationGate, MicrophoneAuthorizationGate
from voice_todo.core.speech.backend import RecognitionBackend
from voice_todo.core.speech.manager import RecognitionSessionManager
from voice_todo.core.speech.sink import TranscriptSink
from voice_todo.core.storage.secrets import (
    DeepgramCredentials,
    EncryptedFileSecretStore,
    KeyringSecretStore,
    SecretStore,
    mask_secret,
)
from voice_todo.core.storage.tasks import JsonFileTaskStore, TaskStore
from voice_todo.providers.seed.dummyjson import DummyJsonSeedSource, SeedSource

logger = logging.getLogger(__name__)

SECRETS_PASSPHRASE_ENV = "VOICE_TODO_SECRETS_PASSPHRASE"


def create_secret_store(
    settings: SecretsSettings,
    *,
    config_path: Path,
    passphrase: str | None = None,
) -> SecretStore:
    passphrase = passphrase or os.getenv(SECRETS_PASSPHRASE_ENV)

    if settings.backend == SecretsBackend.KEYRING:
        return KeyringSecretStore()

    if settings.backend == SecretsBackend.ENCRYPTED_FILE:
        if not passphrase:
            raise ValueError(
                "encrypted_file secrets backend requires a passphrase; "
                f"set {SECRETS_PASSPHRASE_ENV} or pass passphrase explicitly"
            )
        path = resolve_relative(settings.encrypted_file_path, config_path=config_path)
        return EncryptedFileSecretStore(path=path, passphrase=passphrase)

    raise ValueError(f"Unsupported secrets backend: {settings.backend}")


def create_task_store(settings: AppSettings, *, config_path: Path) -> TaskStore:
    return JsonFileTaskStore(path=resolve_relative(settings.storage.tasks_file, config_path=config_path))


def create_seed_source(settings: AppSettings) -> SeedSource | None:
    if not settings.seed.enabled:
        return None
    return DummyJsonSeedSource(url=settings.seed.url, timeout_s=settings.seed.timeout_s)


def create_recognition_backend(
    settings: AppSettings,
    *,
    config_path: Path,
    secrets: SecretStore | None = None,
) -> RecognitionBackend:
    if settings.speech.provider == SpeechProviderName.VOSK:
        from voice_todo.providers.speech.vosk import VoskRecognitionBackend

        return VoskRecognitionBackend(model_path=resolve_relative(settings.vosk.model_path, config_path=config_path))

    if settings.speech.provider == SpeechProviderName.DEEPGRAM:
        from voice_todo.providers.speech.deepgram import DeepgramRecognitionBackend

        if secrets is None:
            raise ValueError("Deepgram backend requires a secret store")
        api_key = DeepgramCredentials(secrets).require_api_key()
        logger.info(f"[Speech] Using Deepgram key {mask_secret(api_key)}")
        return DeepgramRecognitionBackend(api_key=api_key, model=settings.deepgram.model)

    raise ValueError(f"Unsupported speech provider: {settings.speech.provider}")


def create_audio_factory(settings: AppSettings):
    def _open() -> AudioSource:
        device = resolve_sounddevice_input_device(
            host_api=settings.audio.input_host_api,
            device=settings.audio.input_device,
        )
        return SoundDeviceAudioSource(sample_rate_hz=None, channels=settings.audio.channels, device=device)

    return _open


def create_session_manager(
    settings: AppSettings,
    *,
    backend: RecognitionBackend,
    sink: TranscriptSink | None,
    authorization: AuthorizationGate | None = None,
) -> RecognitionSessionManager:
    if authorization is None:
        authorization = MicrophoneAuthorizationGate(
            speech_enabled=settings.speech.enabled,
            input_host_api=settings.audio.input_host_api,
            input_device=settings.audio.input_device,
        )
    manager = RecognitionSessionManager(
        backend=backend,
        audio_factory=create_audio_factory(settings),
        authorization=authorization,
        sink=sink,
        locale=settings.speech.locale,
        restart_interval_s=settings.speech.restart_interval_s,
        requires_on_device=settings.speech.requires_on_device,
        sample_rate_hz=settings.audio.sample_rate_hz,
    )
    # A backend that loses its recognizer (rejected key, broken model) ends the session.
    backend.set_availability_listener(manager.handle_availability_changed)
    return manager
