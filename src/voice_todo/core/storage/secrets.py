"""Where the Deepgram API key lives.

The OS keyring is the default store. Machines without a keyring daemon can
use a passphrase-encrypted JSON file instead. The rest of the app reads the
key only through `DeepgramCredentials`, which also honours DEEPGRAM_API_KEY.
"""

from __future__ import annotations

import base64
import contextlib
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEYRING_SERVICE_NAME = "voice-todo"
DEEPGRAM_API_KEY_SECRET = "deepgram_api_key"
DEEPGRAM_API_KEY_ENV = "DEEPGRAM_API_KEY"

SECRETS_FILE_VERSION = 1
SALT_BYTES = 16


class MissingCredentialError(ValueError):
    pass


class SecretStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


@dataclass(slots=True)
class InMemorySecretStore:
    items: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.items.get(key)

    def set(self, key: str, value: str) -> None:
        self.items[key] = value

    def delete(self, key: str) -> None:
        self.items.pop(key, None)


@dataclass(frozen=True, slots=True)
class KeyringSecretStore:
    service_name: str = KEYRING_SERVICE_NAME

    def get(self, key: str) -> str | None:
        import keyring  # type: ignore

        return keyring.get_password(self.service_name, key)

    def set(self, key: str, value: str) -> None:
        import keyring  # type: ignore

        keyring.set_password(self.service_name, key, value)

    def delete(self, key: str) -> None:
        import keyring  # type: ignore
        from keyring.errors import PasswordDeleteError  # type: ignore

        with contextlib.suppress(PasswordDeleteError):
            keyring.delete_password(self.service_name, key)


@dataclass(slots=True)
class EncryptedFileSecretStore:
    """Fernet tokens in a JSON document, keyed by a scrypt-derived passphrase key.

    Layout: {"version": 1, "salt": <base64>, "items": {name: token}}. The salt
    is generated when the file is first created and never changes.
    """

    path: Path
    passphrase: str = field(repr=False)

    _fernet: Fernet = field(init=False, repr=False)
    _salt: str = field(init=False, repr=False)
    _tokens: dict[str, str] = field(init=False, default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        document = self._read()
        if document is None:
            self._salt = base64.b64encode(os.urandom(SALT_BYTES)).decode("ascii")
            self._write()
        else:
            self._salt = str(document["salt"])
            self._tokens = {str(k): str(v) for k, v in (document.get("items") or {}).items()}
        self._fernet = Fernet(_fernet_key(self.passphrase, base64.b64decode(self._salt)))

    def get(self, key: str) -> str | None:
        token = self._tokens.get(key)
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError(f"cannot decrypt {self.path}: wrong passphrase or corrupted file") from exc

    def set(self, key: str, value: str) -> None:
        self._tokens[key] = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
        self._write()

    def delete(self, key: str) -> None:
        if self._tokens.pop(key, None) is not None:
            self._write()

    def _read(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        document = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(document, dict) or "salt" not in document:
            raise ValueError(f"{self.path} is not a secrets file")
        return document

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {"version": SECRETS_FILE_VERSION, "salt": self._salt, "items": self._tokens}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
        tmp.replace(self.path)


def _fernet_key(passphrase: str, salt: bytes) -> bytes:
    raw = Scrypt(salt=salt, length=32, n=2**14, r=8, p=1).derive(passphrase.encode("utf-8"))
    return base64.urlsafe_b64encode(raw)


def mask_secret(value: str, *, unmasked_prefix: int = 3) -> str:
    """"dg-123456" -> "dg-****". Values no longer than the prefix are fully starred."""
    if len(value) <= unmasked_prefix:
        return "*" * len(value)
    return f"{value[:unmasked_prefix]}****"


@dataclass(slots=True)
class DeepgramCredentials:
    """The Deepgram API key: the secret store first, then the environment."""

    store: SecretStore
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ, repr=False)

    def api_key(self) -> str | None:
        return self.store.get(DEEPGRAM_API_KEY_SECRET) or self.environ.get(DEEPGRAM_API_KEY_ENV) or None

    def source(self) -> str | None:
        if self.store.get(DEEPGRAM_API_KEY_SECRET):
            return "secret store"
        if self.environ.get(DEEPGRAM_API_KEY_ENV):
            return f"${DEEPGRAM_API_KEY_ENV}"
        return None

    def require_api_key(self) -> str:
        key = self.api_key()
        if not key:
            raise MissingCredentialError(
                f"Deepgram API key is not set; run `voice-todo key set <key>` or export {DEEPGRAM_API_KEY_ENV}"
            )
        return key

    def save_api_key(self, value: str) -> None:
        value = value.strip()
        if not value:
            raise ValueError("API key must be non-empty")
        self.store.set(DEEPGRAM_API_KEY_SECRET, value)

    def clear(self) -> None:
        self.store.delete(DEEPGRAM_API_KEY_SECRET)
