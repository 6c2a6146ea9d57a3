"""Error taxonomy for the dbchat client.

Error kinds:
- ValidationError: bad user input, rejected locally
- AuthError: credential missing, invalid or expired
- NetworkError: transport failure or non-2xx backend response
- PreconditionError: action not allowed in the current local state
"""

from src.errors.domain import (
    AuthError,
    DbChatError,
    NetworkError,
    PreconditionError,
    ValidationError,
)

__all__ = [
    "DbChatError",
    "ValidationError",
    "AuthError",
    "NetworkError",
    "PreconditionError",
]
