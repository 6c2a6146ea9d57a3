"""Conversation engine: the ordered transcript for one page context.

The transcript merges two sources:

1. Persisted history, fetched with ``load_history()`` and expanded so that
   every stored record becomes exactly one user turn followed by exactly
   one assistant turn, in backend order.
2. Live turns appended by ``submit()``.

Submission is a two-phase append. The user turn is inserted before any
network call; then either an assistant turn (success) or a system turn
(failure) follows it. The provisional user turn is never mutated or
removed, and turns are only ever appended at the end.

At most one submission is outstanding per engine. The in-flight flag is
checked and set synchronously, before the first ``await``, so two rapid
``submit()`` calls on the event loop cannot both pass the check.

There is no request timeout here: a backend call that never answers keeps
the engine in flight until the gateway gives up.
"""

import itertools
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from src.cli.protocol import ApiGateway, DatabaseConnection, QueryOutcome
from src.errors import DbChatError, PreconditionError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_NAME = "chat"
DEFAULT_HISTORY_LIMIT = 50
REPLAY_PLACEHOLDER = "Response received"
DEFAULT_EMAIL_SUGGESTION = "This data might be useful to share via email."


class TurnRole(str, Enum):
    """Author of a transcript turn."""

    user = "user"
    assistant = "assistant"
    system = "system"


@dataclass(frozen=True)
class ConversationTurn:
    """One entry of the transcript.

    Attributes:
        id: Client-assigned identifier, unique within the transcript.
        role: Who produced the turn. Never changes.
        content: Display text.
        timestamp: Client clock for live turns, server time for replayed turns.
        query_outcome: Full backend outcome, on assistant turns only.
        correlation_id: Backend record id; required to email the result.
    """

    id: str
    role: TurnRole
    content: str
    timestamp: datetime
    query_outcome: QueryOutcome | None = None
    correlation_id: str | None = None


class Transcript:
    """Append-only, insertion-ordered turns for a single page context."""

    def __init__(self, page_name: str) -> None:
        self.page_name = page_name
        self._turns: list[ConversationTurn] = []
        self._ids: set[str] = set()

    def append(self, turn: ConversationTurn) -> None:
        if turn.id in self._ids:
            raise ValueError(f"Duplicate turn id '{turn.id}' in transcript '{self.page_name}'")
        self._ids.add(turn.id)
        self._turns.append(turn)

    def find(self, turn_id: str) -> ConversationTurn | None:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))

    def __len__(self) -> int:
        return len(self._turns)

    def __getitem__(self, index: int) -> ConversationTurn:
        return self._turns[index]


@dataclass(frozen=True)
class Notice:
    """User-facing notification raised by the engine or escalation workflow."""

    level: str  # "info" or "error"
    title: str
    message: str


NoticeSink = Callable[[Notice], None]


class SubmissionStatus(str, Enum):
    """How a ``submit()`` call ended."""

    completed = "completed"  # assistant turn appended
    failed = "failed"  # system error turn appended
    rejected = "rejected"  # precondition failed, nothing appended
    discarded = "discarded"  # engine closed before the response arrived


@dataclass
class SubmissionResult:
    """Outcome of one ``submit()`` call.

    Attributes:
        status: Terminal status of the submission.
        turns: Turns appended to the transcript by this call, in order.
        error: The ValidationError, PreconditionError or NetworkError, if any.
        outcome: Backend query outcome on success.
    """

    status: SubmissionStatus
    turns: list[ConversationTurn] = field(default_factory=list)
    error: DbChatError | None = None
    outcome: QueryOutcome | None = None

    @property
    def suggest_email(self) -> bool:
        return bool(self.outcome and self.outcome.suggest_email)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationEngine:
    """Owns the transcript, connection selection and in-flight state for one page.

    Args:
        gateway: Backend gateway. Must be authenticated for calls to succeed.
        page_name: Page context used for history and query scoping.
        history_limit: Maximum records requested by ``load_history()``.
        notify: Optional sink for user-facing notices.
        clock: Source of live-turn timestamps.
    """

    def __init__(
        self,
        gateway: ApiGateway,
        page_name: str = DEFAULT_PAGE_NAME,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        notify: NoticeSink | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._gateway = gateway
        self._notify = notify
        self._clock = clock
        self._sequence = itertools.count(1)
        self._history_loads = 0
        self._in_flight = False
        self._closed = False
        self.page_name = page_name
        self.history_limit = history_limit
        self.transcript = Transcript(page_name)
        self.connections: list[DatabaseConnection] = []
        self.selected_connection_ids: list[str] = []

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self._closed

    def _emit(self, level: str, title: str, message: str) -> None:
        if self._notify is not None:
            self._notify(Notice(level=level, title=title, message=message))

    def close(self) -> None:
        """Tear the engine down. Responses arriving later are dropped."""
        self._closed = True

    # Connections

    async def load_connections(self) -> list[DatabaseConnection]:
        """Fetch the user's connections so they can be selected."""
        try:
            connections = await self._gateway.list_connections()
        except DbChatError as exc:
            logger.warning("Loading connections failed: %s", exc.message)
            self._emit("error", "Error loading connections", exc.message)
            return []
        if not self._closed:
            self.connections = connections
        return connections

    def select_connections(self, connection_ids: list[str]) -> None:
        """Set the connections used by subsequent submissions."""
        self.selected_connection_ids = list(connection_ids)

    # History

    async def load_history(self) -> list[ConversationTurn]:
        """Replay persisted history onto the end of the transcript.

        Each call appends a fresh copy; nothing already in the transcript
        is replaced. Replayed ids are ``history<load>-user-<i>`` and
        ``history<load>-assistant-<i>``.

        Returns:
            The turns appended by this call. Empty when the fetch fails.
        """
        try:
            records = await self._gateway.fetch_history(self.page_name, self.history_limit)
        except DbChatError as exc:
            logger.error("Error loading chat history for '%s': %s", self.page_name, exc.message)
            return []
        if self._closed:
            logger.debug("Engine closed; dropping %d history records", len(records))
            return []

        self._history_loads += 1
        prefix = f"history{self._history_loads}"
        appended: list[ConversationTurn] = []
        for index, record in enumerate(records):
            outcome = record.response_data
            pair = (
                ConversationTurn(
                    id=f"{prefix}-user-{index}",
                    role=TurnRole.user,
                    content=record.user_input,
                    timestamp=record.created_at,
                ),
                ConversationTurn(
                    id=f"{prefix}-assistant-{index}",
                    role=TurnRole.assistant,
                    content=outcome.message or REPLAY_PLACEHOLDER,
                    timestamp=record.created_at,
                    query_outcome=outcome,
                    correlation_id=record.conversation_id,
                ),
            )
            for turn in pair:
                self.transcript.append(turn)
                appended.append(turn)
        logger.info(
            "Replayed %d history records into '%s'", len(records), self.page_name
        )
        return appended

    # Submission

    def _check_submission(
        self, question: str, targets: list[str]
    ) -> tuple[str, DbChatError] | None:
        if not question.strip():
            return "Question required", ValidationError("Please enter a question.")
        if self._in_flight:
            return "Query in progress", PreconditionError("A query is already in progress.")
        if not targets:
            return "No database selected", ValidationError(
                "Please select at least one database connection."
            )
        return None

    async def submit(
        self, question: str, connection_ids: list[str] | None = None
    ) -> SubmissionResult:
        """Ask a question against the selected connections.

        Precondition failures are returned, not raised, and never touch the
        network or the transcript. Rejected submissions are dropped.

        Args:
            question: Natural-language question.
            connection_ids: Target connections. Defaults to the current selection.

        Returns:
            SubmissionResult describing what was appended.
        """
        targets = list(
            self.selected_connection_ids if connection_ids is None else connection_ids
        )
        rejection = self._check_submission(question, targets)
        if rejection is not None:
            title, error = rejection
            logger.debug("Submission rejected: %s", error.message)
            self._emit("error", title, error.message)
            return SubmissionResult(status=SubmissionStatus.rejected, error=error)

        # Phase one: everything up to the first await runs synchronously.
        self._in_flight = True
        number = next(self._sequence)
        user_turn = ConversationTurn(
            id=f"user-{number}",
            role=TurnRole.user,
            content=question,
            timestamp=self._clock(),
        )
        self.transcript.append(user_turn)

        try:
            outcome = await self._gateway.submit_query(question, targets, self.page_name)
        except DbChatError as exc:
            if self._closed:
                logger.debug("Engine closed; dropping failure of submission %d", number)
                return SubmissionResult(
                    status=SubmissionStatus.discarded, turns=[user_turn], error=exc
                )
            error_turn = ConversationTurn(
                id=f"error-{number}",
                role=TurnRole.system,
                content=f"Error: {exc.message}",
                timestamp=self._clock(),
            )
            self.transcript.append(error_turn)
            logger.warning("Query failed: %s", exc.message)
            self._emit("error", "Query failed", exc.message)
            return SubmissionResult(
                status=SubmissionStatus.failed, turns=[user_turn, error_turn], error=exc
            )
        finally:
            self._in_flight = False

        if self._closed:
            logger.debug("Engine closed; dropping response of submission %d", number)
            return SubmissionResult(
                status=SubmissionStatus.discarded, turns=[user_turn], outcome=outcome
            )

        assistant_turn = ConversationTurn(
            id=f"assistant-{number}",
            role=TurnRole.assistant,
            content=outcome.message or "",
            timestamp=self._clock(),
            query_outcome=outcome,
            correlation_id=outcome.conversation_id,
        )
        self.transcript.append(assistant_turn)
        if outcome.suggest_email:
            self._emit(
                "info",
                "Email Suggestion",
                outcome.email_suggestion_message or DEFAULT_EMAIL_SUGGESTION,
            )
        return SubmissionResult(
            status=SubmissionStatus.completed,
            turns=[user_turn, assistant_turn],
            outcome=outcome,
        )
