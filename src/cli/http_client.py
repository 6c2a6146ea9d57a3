"""HTTP implementation of ApiGateway.

Thin wrapper around httpx that talks to the dbchat backend. This is the
only module that performs network I/O. Every method is a single round
trip: no retries, no caching, no client-state mutation.

The bearer token is read from the injected CredentialStore on every
request, so a login or logout elsewhere takes effect on the next call.
Every failure (transport error, non-2xx status, malformed body) raises
NetworkError carrying a display-ready message.
"""

import json
import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PayloadValidationError

from src.cli.protocol import (
    ColumnListing,
    ConnectionTestResult,
    DatabaseConnection,
    DatabaseConnectionCreate,
    DatabaseConnectionUpdate,
    EmailReceipt,
    HealthStatus,
    HistoryRecord,
    QueryOutcome,
    Registration,
    SchemaListing,
    TokenResponse,
    User,
)
from src.errors import NetworkError
from src.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
GENERIC_NETWORK_ERROR = "Network error"
INVALID_RESPONSE_ERROR = "Invalid response from server"

ModelT = TypeVar("ModelT", bound=BaseModel)

_connection_list = TypeAdapter(list[DatabaseConnection])
_history_list = TypeAdapter(list[HistoryRecord])


def error_message_from_response(resp: httpx.Response) -> str:
    """Derive the display message for a non-2xx response.

    Args:
        resp: The failed httpx.Response.

    Returns:
        The payload's ``detail`` string when present, ``HTTP <status>``
        when the body parses but carries no detail, or the generic network
        error message when the body is not JSON at all.
    """
    try:
        payload = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return GENERIC_NETWORK_ERROR
    detail = payload.get("detail") if isinstance(payload, dict) else None
    if isinstance(detail, str) and detail:
        return detail
    if detail:
        # FastAPI validation errors arrive as a list of dicts
        return json.dumps(detail)
    return f"HTTP {resp.status_code}"


class HttpClient:
    """ApiGateway implementation that talks to the backend over HTTP."""

    def __init__(
        self,
        credentials: CredentialStore,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize with backend base URL and credential source.

        Args:
            credentials: Store read on every request for the bearer token.
            base_url: The backend's HTTP base URL.
            timeout: Per-request timeout in seconds. None waits indefinitely.
            transport: Optional httpx transport (used by tests).
        """
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        """Open httpx async client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close httpx async client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self, authenticated: bool) -> dict[str, str]:
        if not authenticated:
            return {}
        token = self._credentials.get()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        """Perform one round trip and return the decoded JSON body.

        Raises:
            NetworkError: On transport failure, non-2xx status, or a
                success body that is not JSON.
        """
        if self._client is None:
            raise RuntimeError("HttpClient must be used inside 'async with'")
        try:
            resp = await self._client.request(
                method,
                path,
                json=body,
                params=params,
                headers=self._headers(authenticated),
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed in transit: %s", method, path, exc)
            raise NetworkError(str(exc) or GENERIC_NETWORK_ERROR) from exc

        if resp.status_code >= 400:
            message = error_message_from_response(resp)
            logger.info("%s %s -> HTTP %s: %s", method, path, resp.status_code, message)
            raise NetworkError(message)

        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("%s %s returned a non-JSON body", method, path)
            raise NetworkError(INVALID_RESPONSE_ERROR) from exc

    @staticmethod
    def _parse(model: type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except PayloadValidationError as exc:
            logger.warning("Rejected %s payload: %s", model.__name__, exc)
            raise NetworkError(INVALID_RESPONSE_ERROR) from exc

    @staticmethod
    def _parse_list(adapter: TypeAdapter, data: Any) -> list:
        try:
            return adapter.validate_python(data)
        except PayloadValidationError as exc:
            logger.warning("Rejected list payload: %s", exc)
            raise NetworkError(INVALID_RESPONSE_ERROR) from exc

    # Auth

    async def register(self, registration: Registration) -> User:
        """Create an account via POST /api/auth/register."""
        data = await self._request(
            "POST",
            "/api/auth/register",
            body=registration.model_dump(),
            authenticated=False,
        )
        return self._parse(User, data)

    async def login(self, username: str, password: str) -> str:
        """Exchange credentials for a token via POST /api/auth/login.

        Returns:
            The bearer token. The caller decides where to store it.
        """
        data = await self._request(
            "POST",
            "/api/auth/login",
            body={"username": username, "password": password},
            authenticated=False,
        )
        return self._parse(TokenResponse, data).access_token

    async def fetch_current_user(self) -> User:
        """Resolve the current credential via GET /api/auth/me."""
        data = await self._request("GET", "/api/auth/me")
        return self._parse(User, data)

    # Database connections

    async def create_connection(
        self, connection: DatabaseConnectionCreate
    ) -> DatabaseConnection:
        """Register a connection via POST /api/database-connections."""
        data = await self._request(
            "POST", "/api/database-connections", body=connection.model_dump()
        )
        return self._parse(DatabaseConnection, data)

    async def list_connections(self) -> list[DatabaseConnection]:
        """List connections via GET /api/database-connections."""
        data = await self._request("GET", "/api/database-connections")
        return self._parse_list(_connection_list, data)

    async def update_connection(
        self, connection_id: str, changes: DatabaseConnectionUpdate
    ) -> dict[str, Any]:
        """Update a connection via PUT /api/database-connections/{id}.

        Only fields explicitly set on ``changes`` are sent.
        """
        data = await self._request(
            "PUT",
            f"/api/database-connections/{connection_id}",
            body=changes.model_dump(exclude_unset=True),
        )
        return data if isinstance(data, dict) else {"result": data}

    async def delete_connection(self, connection_id: str) -> str:
        """Delete a connection via DELETE /api/database-connections/{id}."""
        data = await self._request(
            "DELETE", f"/api/database-connections/{connection_id}"
        )
        if isinstance(data, dict):
            return str(data.get("message", ""))
        return ""

    async def test_connection(self, connection_id: str) -> ConnectionTestResult:
        """Probe a connection via POST /api/database-connections/{id}/test."""
        data = await self._request(
            "POST", f"/api/database-connections/{connection_id}/test"
        )
        return self._parse(ConnectionTestResult, data)

    async def get_tables(self, connection_id: str) -> SchemaListing:
        """List tables via GET /api/tables/{id}."""
        data = await self._request("GET", f"/api/tables/{connection_id}")
        return self._parse(SchemaListing, data)

    async def get_columns(self, connection_id: str) -> ColumnListing:
        """List columns via GET /api/columns/{id}."""
        data = await self._request("GET", f"/api/columns/{connection_id}")
        return self._parse(ColumnListing, data)

    # Query, email, history

    async def submit_query(
        self, question: str, connection_ids: list[str], page_name: str
    ) -> QueryOutcome:
        """Ask a question via POST /api/query."""
        data = await self._request(
            "POST",
            "/api/query",
            body={
                "question": question,
                "database_connection_ids": list(connection_ids),
                "page_name": page_name,
            },
        )
        return self._parse(QueryOutcome, data)

    async def send_email(
        self, correlation_id: str, recipient_email: str
    ) -> EmailReceipt:
        """Email a stored result via POST /api/send-email."""
        data = await self._request(
            "POST",
            "/api/send-email",
            body={
                "chat_history_id": correlation_id,
                "recipient_email": recipient_email,
            },
        )
        return self._parse(EmailReceipt, data)

    async def fetch_history(
        self, page_name: str, limit: int = 50
    ) -> list[HistoryRecord]:
        """Fetch persisted exchanges via GET /api/chat/history."""
        data = await self._request(
            "GET",
            "/api/chat/history",
            params={"page_name": page_name, "limit": limit},
        )
        return self._parse_list(_history_list, data)

    async def health(self) -> HealthStatus:
        """Check backend health via GET /health."""
        data = await self._request("GET", "/health", authenticated=False)
        return self._parse(HealthStatus, data)
