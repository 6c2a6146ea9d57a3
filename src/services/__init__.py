"""Service layer for the dbchat client.

Provides the stateful core: credential storage, the session controller,
the conversation engine and email escalation.
"""

from src.services.conversation import (
    ConversationEngine,
    ConversationTurn,
    Notice,
    SubmissionResult,
    SubmissionStatus,
    Transcript,
    TurnRole,
)
from src.services.credential_store import (
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
)
from src.services.escalation import EscalationResult, EscalationWorkflow
from src.services.session import InvalidSessionTransition, SessionController, SessionState

__all__ = [
    "ConversationEngine",
    "ConversationTurn",
    "Notice",
    "SubmissionResult",
    "SubmissionStatus",
    "Transcript",
    "TurnRole",
    "CredentialStore",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "EscalationResult",
    "EscalationWorkflow",
    "InvalidSessionTransition",
    "SessionController",
    "SessionState",
]
