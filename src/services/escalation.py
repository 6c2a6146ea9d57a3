"""Email escalation of a completed transcript turn.

A turn can be emailed only when the backend issued a correlation id for
it; that id is what the backend uses to find the stored result. The
workflow reads the transcript but never changes it.
"""

import logging
from dataclasses import dataclass

from src.cli.protocol import ApiGateway, EmailReceipt
from src.errors import DbChatError, PreconditionError, ValidationError
from src.services.conversation import ConversationTurn, Notice, NoticeSink

logger = logging.getLogger(__name__)


@dataclass
class EscalationResult:
    """Outcome of one ``send()`` call."""

    sent: bool
    receipt: EmailReceipt | None = None
    error: DbChatError | None = None


class EscalationWorkflow:
    """Holds the recipient input and emails turn results on request.

    The recipient is cleared only after a successful send, so a failed
    attempt can be retried without retyping the address.
    """

    def __init__(self, gateway: ApiGateway, notify: NoticeSink | None = None) -> None:
        self._gateway = gateway
        self._notify = notify
        self.recipient = ""

    def set_recipient(self, recipient: str) -> None:
        self.recipient = recipient

    @staticmethod
    def is_available(turn: ConversationTurn) -> bool:
        """True when ``turn`` carries the correlation id needed to email it."""
        return bool(turn.correlation_id)

    def _fail(self, title: str, error: DbChatError) -> EscalationResult:
        if self._notify is not None:
            self._notify(Notice(level="error", title=title, message=error.message))
        return EscalationResult(sent=False, error=error)

    async def send(self, turn: ConversationTurn) -> EscalationResult:
        """Email the result behind ``turn`` to the current recipient.

        Args:
            turn: A transcript turn with a correlation id.

        Returns:
            EscalationResult. Local precondition failures never reach the network.
        """
        return await self._send(turn.correlation_id, f"Turn '{turn.id}'")

    async def send_stored(self, correlation_id: str | None) -> EscalationResult:
        """Email a stored result by the id listed in history.

        Same preconditions as ``send()``.
        """
        return await self._send(correlation_id, "This conversation")

    async def _send(self, correlation_id: str | None, subject: str) -> EscalationResult:
        if not self.recipient.strip():
            return self._fail(
                "Email required",
                ValidationError("Please enter a recipient email address."),
            )
        if not correlation_id:
            return self._fail(
                "Email unavailable",
                PreconditionError(f"{subject} has no stored result to email."),
            )

        recipient = self.recipient
        try:
            receipt = await self._gateway.send_email(correlation_id, recipient)
        except DbChatError as exc:
            logger.warning("Email of %s failed: %s", correlation_id, exc.message)
            return self._fail("Email failed", exc)

        logger.info("Emailed result %s", correlation_id)
        self.recipient = ""
        if self._notify is not None:
            self._notify(
                Notice(
                    level="info",
                    title="Email sent",
                    message=f"Query results sent to {recipient}",
                )
            )
        return EscalationResult(sent=True, receipt=receipt)
