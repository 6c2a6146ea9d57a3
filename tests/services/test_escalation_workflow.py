"""Tests for emailing transcript turns."""

from datetime import datetime, timezone

import pytest

from src.cli.protocol import EmailReceipt
from src.errors import NetworkError, PreconditionError, ValidationError
from src.services.conversation import ConversationTurn, TurnRole
from src.services.escalation import EscalationWorkflow
from tests.helpers import make_outcome


def _turn(correlation_id: str | None = "conv-9") -> ConversationTurn:
    return ConversationTurn(
        id="assistant-1",
        role=TurnRole.assistant,
        content="Found 3 rows",
        timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc),
        query_outcome=make_outcome(),
        correlation_id=correlation_id,
    )


class TestAvailability:

    def test_available_with_correlation_id(self):
        assert EscalationWorkflow.is_available(_turn("conv-9")) is True

    @pytest.mark.parametrize("correlation_id", [None, ""])
    def test_unavailable_without_correlation_id(self, correlation_id):
        assert EscalationWorkflow.is_available(_turn(correlation_id)) is False


class TestSend:
    """Tests for EscalationWorkflow.send."""

    @pytest.mark.asyncio
    async def test_success_sends_and_clears_recipient(self, gateway):
        notices: list = []
        workflow = EscalationWorkflow(gateway, notify=notices.append)
        workflow.set_recipient("bob@example.com")

        result = await workflow.send(_turn())

        assert result.sent is True
        assert result.receipt.email_sent_to == "bob@example.com"
        assert gateway.calls == [("send_email", ("conv-9", "bob@example.com"))]
        assert workflow.recipient == ""
        assert [(n.title, n.message) for n in notices] == [
            ("Email sent", "Query results sent to bob@example.com")
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("recipient", ["", "   "])
    async def test_blank_recipient_is_rejected_locally(self, gateway, recipient):
        notices: list = []
        workflow = EscalationWorkflow(gateway, notify=notices.append)
        workflow.set_recipient(recipient)

        result = await workflow.send(_turn())

        assert result.sent is False
        assert isinstance(result.error, ValidationError)
        assert gateway.calls == []
        assert notices[0].title == "Email required"

    @pytest.mark.asyncio
    async def test_missing_correlation_id_is_rejected_locally(self, gateway):
        workflow = EscalationWorkflow(gateway)
        workflow.set_recipient("bob@example.com")

        result = await workflow.send(_turn(None))

        assert isinstance(result.error, PreconditionError)
        assert gateway.calls == []
        assert workflow.recipient == "bob@example.com"

    @pytest.mark.asyncio
    async def test_backend_failure_keeps_recipient(self, gateway):
        """A failed send can be retried without retyping the address."""
        gateway.receipt = NetworkError("SMTP unavailable")
        notices: list = []
        workflow = EscalationWorkflow(gateway, notify=notices.append)
        workflow.set_recipient("bob@example.com")

        result = await workflow.send(_turn())

        assert result.sent is False
        assert result.error.message == "SMTP unavailable"
        assert workflow.recipient == "bob@example.com"
        assert [(n.level, n.title) for n in notices] == [("error", "Email failed")]

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, gateway):
        gateway.receipt = NetworkError("SMTP unavailable")
        workflow = EscalationWorkflow(gateway)
        workflow.set_recipient("bob@example.com")
        await workflow.send(_turn())

        gateway.receipt = EmailReceipt(
            success=True, message="sent", email_sent_to="bob@example.com"
        )
        result = await workflow.send(_turn())

        assert result.sent is True
        assert gateway.count("send_email") == 2
        assert workflow.recipient == ""

    @pytest.mark.asyncio
    async def test_does_not_touch_transcript_turn(self, gateway):
        turn = _turn()
        workflow = EscalationWorkflow(gateway)
        workflow.set_recipient("bob@example.com")
        await workflow.send(turn)
        assert turn == _turn()


class TestSendStored:
    """Tests for emailing a stored result by its id."""

    @pytest.mark.asyncio
    async def test_sends_by_id(self, gateway):
        workflow = EscalationWorkflow(gateway)
        workflow.set_recipient("bob@example.com")

        result = await workflow.send_stored("c1")

        assert result.sent is True
        assert gateway.calls == [("send_email", ("c1", "bob@example.com"))]
        assert workflow.recipient == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("recipient", ["", "  "])
    async def test_blank_recipient_never_reaches_backend(self, gateway, recipient):
        workflow = EscalationWorkflow(gateway)
        workflow.set_recipient(recipient)

        result = await workflow.send_stored("c1")

        assert isinstance(result.error, ValidationError)
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_missing_id(self, gateway):
        workflow = EscalationWorkflow(gateway)
        workflow.set_recipient("bob@example.com")

        result = await workflow.send_stored("")

        assert isinstance(result.error, PreconditionError)
        assert gateway.calls == []
