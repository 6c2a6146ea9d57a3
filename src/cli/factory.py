"""Factories wiring the config to a credential store and gateway.

CLI commands never construct concrete implementations directly; they ask
the factory, so tests can patch one place.
"""

from src.cli.config import DbChatConfig
from src.cli.http_client import HttpClient
from src.services.credential_store import (
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
)


def get_credential_store(config: DbChatConfig | None = None) -> CredentialStore:
    """Create the credential store selected by ``credentials.backend``."""
    config = config or DbChatConfig()
    if config.credentials.backend == "memory":
        return MemoryCredentialStore()
    return KeyringCredentialStore(service_name=config.credentials.service_name)


def get_client(
    config: DbChatConfig | None = None,
    credentials: CredentialStore | None = None,
    base_url: str | None = None,
) -> HttpClient:
    """Create the HTTP gateway.

    Args:
        config: Loaded config for the backend URL and timeout.
        credentials: Token store shared with the session controller.
            Defaults to the store selected by config.
        base_url: Overrides ``api.base_url``.

    Returns:
        An HttpClient, to be used as an async context manager.
    """
    config = config or DbChatConfig()
    if credentials is None:
        credentials = get_credential_store(config)
    return HttpClient(
        credentials=credentials,
        base_url=base_url or config.api.base_url,
        timeout=config.api.timeout,
    )
