"""Typed client-side errors for the dbchat core.

Every failure the core can produce is one of four kinds. Each carries a
display-ready ``message`` so presentation code never has to inspect
transport details.

Usage:
    # In the gateway
    raise NetworkError("connection refused")

    # In a CLI command
    try:
        await session.login(username, password)
    except DbChatError as e:
        console.print(f"[red]Error:[/red] {e.message}")
"""


class DbChatError(Exception):
    """Base exception for all client errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(DbChatError):
    """Invalid user input (empty question, no connection selected).

    Reported inline and never sent to the backend.
    """


class AuthError(DbChatError):
    """Missing, invalid or expired credential."""


class NetworkError(DbChatError):
    """Request failed in transit or the backend answered non-2xx."""


class PreconditionError(DbChatError):
    """Action not allowed in the current local state.

    Raised for escalation without a correlation id, or a submission while
    another one is outstanding. Never reaches the network.
    """
