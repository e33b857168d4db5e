"""Storage for the in-flight PKCE ``state`` / ``code_verifier`` pair."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Callable, Protocol

from smartlaunch.config import settings
from smartlaunch.models import PendingCredential

logger = logging.getLogger(__name__)

STATE_KEY = "smart_state"
VERIFIER_KEY = "smart_code_verifier"


class SecretStoreError(Exception):
    """Raised by a secret store that cannot complete an operation."""


class SecretStore(Protocol):
    """Key/value storage for short-lived secrets.

    ``save`` and ``delete`` report success with a boolean; ``read`` returns
    ``None`` for a missing or unreadable key.
    """

    def save(self, key: str, value: str) -> bool: ...

    def read(self, key: str) -> str | None: ...

    def delete(self, key: str) -> bool: ...


class MemorySecretStore:
    """Process-local store, used as the fallback."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def save(self, key: str, value: str) -> bool:
        self._values[key] = value
        return True

    def read(self, key: str) -> str | None:
        return self._values.get(key)

    def delete(self, key: str) -> bool:
        self._values.pop(key, None)
        return True


class JsonFileSecretStore:
    """Durable store backed by a single JSON file readable only by its owner."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or settings.credential_file

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise SecretStoreError(f"Not a credential file: {self.path}")
        return data

    def _dump(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)

    def save(self, key: str, value: str) -> bool:
        try:
            data = self._load()
            data[key] = value
            self._dump(data)
        except (OSError, ValueError, SecretStoreError) as exc:
            logger.warning("Could not write %s to %s: %s", key, self.path, exc)
            return False
        return True

    def read(self, key: str) -> str | None:
        try:
            value = self._load().get(key)
        except (OSError, ValueError, SecretStoreError) as exc:
            logger.warning("Could not read %s from %s: %s", key, self.path, exc)
            return None
        return value if isinstance(value, str) else None

    def delete(self, key: str) -> bool:
        try:
            data = self._load()
            if key in data:
                del data[key]
                self._dump(data)
        except (OSError, ValueError, SecretStoreError) as exc:
            logger.warning("Could not delete %s from %s: %s", key, self.path, exc)
            return False
        return True


class CredentialCorrelator:
    """Holds the single pending ``state``/``code_verifier`` pair.

    Writes go to *primary*; when it fails the value lands in *fallback*
    instead and the stale primary entry is dropped, so a save never fails
    from the caller's point of view. Reads prefer *primary*.
    """

    def __init__(
        self,
        primary: SecretStore | None = None,
        fallback: SecretStore | None = None,
    ) -> None:
        self.primary = primary if primary is not None else JsonFileSecretStore()
        self.fallback = fallback if fallback is not None else MemorySecretStore()

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    def save_state(self, value: str) -> None:
        self._save(STATE_KEY, value)

    def load_state(self) -> str | None:
        return self._load(STATE_KEY)

    def save_code_verifier(self, value: str) -> None:
        self._save(VERIFIER_KEY, value)

    def load_code_verifier(self) -> str | None:
        return self._load(VERIFIER_KEY)

    # ------------------------------------------------------------------
    # Pair helpers
    # ------------------------------------------------------------------

    def store(self, state: str, code_verifier: str) -> None:
        """Overwrite the pending pair."""
        self.save_state(state)
        self.save_code_verifier(code_verifier)

    def load(self) -> PendingCredential | None:
        """Return the pending pair, or ``None`` if either half is missing."""
        state = self.load_state()
        verifier = self.load_code_verifier()
        if state is None or verifier is None:
            return None
        return PendingCredential(state=state, code_verifier=verifier)

    def clear(self) -> None:
        """Forget the pending pair in both stores."""
        for key in (STATE_KEY, VERIFIER_KEY):
            for store in (self.primary, self.fallback):
                if not _call_store(store.delete, key):
                    logger.warning("Could not clear %s from %s", key, type(store).__name__)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _save(self, key: str, value: str) -> None:
        if _call_store(self.primary.save, key, value):
            self.fallback.delete(key)
            return
        logger.warning("Primary secret store rejected %s; using fallback", key)
        _call_store(self.primary.delete, key)
        self.fallback.save(key, value)

    def _load(self, key: str) -> str | None:
        value = self.primary.read(key)
        if value is not None:
            return value
        return self.fallback.read(key)


def _call_store(operation: Callable[..., bool], *args: str) -> bool:
    """Run a store write, turning ``SecretStoreError`` into ``False``."""
    try:
        return bool(operation(*args))
    except SecretStoreError as exc:
        logger.warning("Secret store error: %s", exc)
        return False
