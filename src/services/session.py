"""Session controller: current-user identity and credential lifecycle.

The controller is the single writer of the bearer token. The gateway
reads the same CredentialStore on every request, so the controller and
gateway share credential state by reference rather than through a global.

State machine:

    unauthenticated --login--> authenticated
    resolving --profile ok--> authenticated
    resolving --profile failed--> unauthenticated  (credential discarded)
    authenticated --logout--> unauthenticated

Each transition is a single attempt: no retries, no background refresh.
A logout while a profile fetch is outstanding wins: the late response is
dropped and never changes state.
"""

import logging
from collections.abc import Callable
from enum import Enum

from src.cli.protocol import ApiGateway, Registration, User
from src.errors import AuthError, DbChatError
from src.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Authentication state of the client."""

    unauthenticated = "unauthenticated"
    resolving = "resolving"
    authenticated = "authenticated"


class InvalidSessionTransition(Exception):
    """Raised when code drives the session through a transition it does not allow."""

    def __init__(self, current_state: SessionState, attempted_state: SessionState) -> None:
        self.current_state = current_state
        self.attempted_state = attempted_state
        super().__init__(
            f"Cannot transition session from '{current_state.value}' "
            f"to '{attempted_state.value}'"
        )


VALID_TRANSITIONS: dict[SessionState, list[SessionState]] = {
    SessionState.unauthenticated: [SessionState.resolving, SessionState.authenticated],
    SessionState.resolving: [SessionState.authenticated, SessionState.unauthenticated],
    SessionState.authenticated: [SessionState.resolving, SessionState.unauthenticated],
}

StateListener = Callable[[SessionState], None]


class SessionController:
    """Owns the authenticated user and drives login, register and logout.

    Attributes:
        state: Current SessionState.
        user: The resolved profile while authenticated, else None.
    """

    def __init__(self, gateway: ApiGateway, credentials: CredentialStore) -> None:
        """Initialize from the stored credential.

        The initial state is ``resolving`` when a credential exists, so
        callers must ``await start()`` before trusting ``user``.

        Args:
            gateway: Backend gateway, reading the same credential store.
            credentials: The process-wide bearer token store.
        """
        self._gateway = gateway
        self._credentials = credentials
        self._listeners: list[StateListener] = []
        # Bumped by logout and by each resolution; a stale await drops its result
        self._generation = 0
        self.user: User | None = None
        self.state = (
            SessionState.resolving
            if credentials.get()
            else SessionState.unauthenticated
        )

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.authenticated

    def on_change(self, listener: StateListener) -> None:
        """Register a callback invoked with the new state after every transition."""
        self._listeners.append(listener)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidSessionTransition(self.state, new_state)
        logger.debug("Session %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        for listener in list(self._listeners):
            listener(new_state)

    async def start(self) -> SessionState:
        """Resolve a stored credential into a user profile.

        Any failure (expired, malformed or revoked token, backend down)
        discards the credential; the causes are not distinguished.

        Returns:
            The resulting state.
        """
        if self.state is not SessionState.resolving:
            return self.state
        try:
            await self._resolve_user()
        except DbChatError as exc:
            logger.warning("Stored credential could not be resolved: %s", exc.message)
        return self.state

    def _superseded(self) -> AuthError:
        logger.debug("Dropping stale profile resolution (session now %s)", self.state.value)
        return AuthError("Session ended before the user profile was resolved.")

    async def _resolve_user(self) -> User:
        if self.state is not SessionState.resolving:
            self._transition(SessionState.resolving)
        self._generation += 1
        generation = self._generation
        try:
            user = await self._gateway.fetch_current_user()
        except DbChatError as exc:
            if generation != self._generation:
                raise self._superseded() from exc
            self._credentials.clear()
            self.user = None
            self._transition(SessionState.unauthenticated)
            raise AuthError(exc.message) from exc
        if generation != self._generation:
            raise self._superseded()
        self.user = user
        self._transition(SessionState.authenticated)
        logger.info("Authenticated as %s", user.username)
        return user

    async def login(self, username: str, password: str) -> User:
        """Obtain a token, store it, then resolve the profile.

        A profile fetch that fails after a successful token exchange is a
        login failure: the freshly stored token is rolled back.

        Raises:
            NetworkError: The token exchange itself failed.
            AuthError: The profile could not be resolved with the new token.
                Also raised when logout() runs before the login completes.
        """
        generation = self._generation
        token = await self._gateway.login(username, password)
        if generation != self._generation:
            raise self._superseded()
        self._credentials.set(token)
        return await self._resolve_user()

    async def register(self, registration: Registration) -> User:
        """Create an account, then log in with the same credentials.

        A login failure after a successful registration propagates.
        """
        created = await self._gateway.register(registration)
        logger.info("Registered account %s", created.username)
        return await self.login(registration.username, registration.password)

    def logout(self) -> None:
        """Discard the credential and the user. Idempotent."""
        self._generation += 1
        self._credentials.clear()
        self.user = None
        if self.state is not SessionState.unauthenticated:
            self._transition(SessionState.unauthenticated)
            logger.info("Logged out")
