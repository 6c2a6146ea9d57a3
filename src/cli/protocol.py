"""Backend payload models and the ApiGateway protocol.

Every response body crossing the HTTP boundary is validated into one of
the models below before the rest of the client sees it. Extra fields sent
by the backend are tolerated (and kept on ``QueryOutcome`` so replayed
history carries the full stored response).

``ApiGateway`` is the abstract interface the session, conversation and
escalation services are written against. ``HttpClient`` implements it
over HTTP; tests substitute an in-memory fake.
"""

from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Sentinel the backend places in ``sql_query`` when the question did not
# map to a database query.
SQL_NOT_APPLICABLE = "NOT_RELEVANT"


# Auth


class User(BaseModel):
    """Authenticated account profile (GET /api/auth/me)."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    user_id: str
    email: str
    username: str
    full_name: str = ""
    is_active: bool = True
    created_at: datetime


class Registration(BaseModel):
    """Request body for POST /api/auth/register."""

    email: str = Field(..., min_length=3)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)
    full_name: str = ""


class TokenResponse(BaseModel):
    """Response of POST /api/auth/login."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1, repr=False)
    token_type: str = "bearer"


# Database connections


class DatabaseConnection(BaseModel):
    """A registered database connection. The password is never returned."""

    model_config = ConfigDict(extra="ignore")

    db_id: str
    connection_name: str
    host: str
    port: int
    database_name: str
    username: str
    is_active: bool = True
    created_at: datetime
    updated_at: datetime | None = None


class DatabaseConnectionCreate(BaseModel):
    """Request body for POST /api/database-connections."""

    connection_name: str = Field(..., min_length=1)
    host: str = Field(..., min_length=1)
    port: int = Field(5432, ge=1, le=65535)
    database_name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., repr=False)


class DatabaseConnectionUpdate(BaseModel):
    """Request body for PUT /api/database-connections/{id}.

    Only fields that were explicitly set are sent.
    """

    connection_name: str | None = None
    host: str | None = None
    port: int | None = Field(None, ge=1, le=65535)
    database_name: str | None = None
    username: str | None = None
    password: str | None = Field(None, repr=False)
    is_active: bool | None = None


class ConnectionTestResult(BaseModel):
    """Response of POST /api/database-connections/{id}/test."""

    model_config = ConfigDict(extra="ignore")

    status: str
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class SchemaListing(BaseModel):
    """Response of GET /api/tables/{id}."""

    model_config = ConfigDict(extra="ignore")

    tables: dict[str, Any] = Field(default_factory=dict)


class ColumnListing(BaseModel):
    """Response of GET /api/columns/{id}."""

    model_config = ConfigDict(extra="ignore")

    columns: dict[str, Any] = Field(default_factory=dict)


# Query and history


class QueryOutcome(BaseModel):
    """Result of POST /api/query, also the stored ``response_data`` of history.

    ``results_table`` and ``visualization`` are HTML fragments produced by
    the backend. They are passed through untouched; the backend is trusted
    to have sanitized them.
    """

    model_config = ConfigDict(extra="allow")

    message: str | None = None
    explanation: str = ""
    sql_query: str | None = None
    results_table: str | None = None
    visualization: str | None = None
    is_graph_query: bool = False
    suggest_email: bool = False
    email_suggestion_message: str | None = None
    data_info: Any = None
    conversation_id: str | None = None

    @field_validator("explanation", mode="before")
    @classmethod
    def _none_explanation(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def has_sql(self) -> bool:
        """True when the backend generated an actual SQL statement."""
        return bool(self.sql_query) and self.sql_query != SQL_NOT_APPLICABLE


class HistoryRecord(BaseModel):
    """One persisted exchange from GET /api/chat/history."""

    model_config = ConfigDict(extra="ignore")

    conversation_id: str
    page_name: str = ""
    user_input: str
    response_data: QueryOutcome
    created_at: datetime

    @field_validator("response_data", mode="before")
    @classmethod
    def _empty_response(cls, value: Any) -> Any:
        return {} if value is None else value


class EmailReceipt(BaseModel):
    """Response of POST /api/send-email."""

    model_config = ConfigDict(extra="ignore")

    success: bool = True
    message: str = ""
    email_sent_to: str = ""


class HealthStatus(BaseModel):
    """Response of GET /health."""

    model_config = ConfigDict(extra="ignore")

    status: str
    message: str = ""

    @property
    def healthy(self) -> bool:
        return self.status in ("healthy", "ok")


class ApiGateway(Protocol):
    """Interface for every backend round trip.

    Implementations attach the current credential to each request and
    raise ``NetworkError`` for every failure shape. They never touch
    session or transcript state; callers apply results themselves.
    """

    async def __aenter__(self) -> "ApiGateway":
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...

    async def register(self, registration: Registration) -> User:
        """Create an account."""
        ...

    async def login(self, username: str, password: str) -> str:
        """Exchange credentials for a bearer token."""
        ...

    async def fetch_current_user(self) -> User:
        """Resolve the stored credential to a user profile."""
        ...

    async def create_connection(
        self, connection: DatabaseConnectionCreate
    ) -> DatabaseConnection:
        ...

    async def list_connections(self) -> list[DatabaseConnection]:
        ...

    async def update_connection(
        self, connection_id: str, changes: DatabaseConnectionUpdate
    ) -> dict[str, Any]:
        ...

    async def delete_connection(self, connection_id: str) -> str:
        """Delete a connection, returning the backend's confirmation message."""
        ...

    async def test_connection(self, connection_id: str) -> ConnectionTestResult:
        ...

    async def get_tables(self, connection_id: str) -> SchemaListing:
        ...

    async def get_columns(self, connection_id: str) -> ColumnListing:
        ...

    async def submit_query(
        self, question: str, connection_ids: list[str], page_name: str
    ) -> QueryOutcome:
        """Ask the backend to translate and run a natural-language question."""
        ...

    async def send_email(
        self, correlation_id: str, recipient_email: str
    ) -> EmailReceipt:
        """Email the stored result identified by ``correlation_id``."""
        ...

    async def fetch_history(
        self, page_name: str, limit: int = 50
    ) -> list[HistoryRecord]:
        """Persisted exchanges for a page context, in backend order."""
        ...

    async def health(self) -> HealthStatus:
        ...
