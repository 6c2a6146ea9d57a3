"""Bearer-token storage.

The client keeps exactly one credential: the bearer token issued by
POST /api/auth/login. ``KeyringCredentialStore`` persists it in the system
keychain through the `keyring` library:
  macOS: Keychain Access
  Windows: Windows Credential Manager
  Linux: Secret Service API

``MemoryCredentialStore`` keeps it for the life of the process only.

Neither store knows anything about the backend.
"""

import logging
from typing import Protocol

import keyring
import keyring.errors

logger = logging.getLogger(__name__)

SERVICE_NAME = "com.dbchat.client"
TOKEN_KEY = "token"


class CredentialStore(Protocol):
    """Single-slot store for the bearer token."""

    def get(self) -> str | None:
        """Return the stored token, or None."""
        ...

    def set(self, token: str) -> None:
        """Replace the stored token."""
        ...

    def clear(self) -> None:
        """Remove the stored token. No-op when nothing is stored."""
        ...


class KeyringCredentialStore:
    """Thin wrapper around keyring for the one bearer token."""

    def __init__(self, service_name: str = SERVICE_NAME, key: str = TOKEN_KEY) -> None:
        self._service = service_name
        self._key = key

    def get(self) -> str | None:
        try:
            return keyring.get_password(self._service, self._key)
        except Exception:
            logger.warning("Keyring read failed for %s", self._service, exc_info=True)
            return None

    def set(self, token: str) -> None:
        keyring.set_password(self._service, self._key, token)
        logger.info("Stored credential in keyring service %s", self._service)

    def clear(self) -> None:
        try:
            keyring.delete_password(self._service, self._key)
            logger.info("Deleted credential from keyring service %s", self._service)
        except keyring.errors.PasswordDeleteError:
            logger.debug("No credential stored in %s", self._service)


class MemoryCredentialStore:
    """Process-local token storage."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def get(self) -> str | None:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None
