"""dbchat CLI: ask your databases questions in plain language.

Unified entry point for authentication, connection management,
one-shot questions, interactive chat and history review.

Usage:
    dbchat login                 Sign in and store the token
    dbchat connections list      List registered databases
    dbchat ask "how many users?" -c <connection-id>
    dbchat chat -c <connection-id>
    dbchat history --stats
"""

import asyncio
import logging
from typing import Optional

import typer
from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError
from rich.console import Console

from src.cli.config import DbChatConfig, configure_logging, load_config
from src.cli.factory import get_client, get_credential_store
from src.cli.http_client import HttpClient
from src.cli.output import (
    format_connection_test,
    format_connections_table,
    format_history,
    format_history_stats,
    format_notice,
    format_schema_listing,
    format_turn,
    format_user,
)
from src.cli.protocol import (
    DatabaseConnectionCreate,
    DatabaseConnectionUpdate,
    Registration,
)
from src.errors import DbChatError
from src.services.conversation import ConversationEngine, Notice, SubmissionStatus
from src.services.credential_store import CredentialStore
from src.services.escalation import EscalationWorkflow
from src.services.history import compute_stats, filter_records
from src.services.session import SessionController, SessionState

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="dbchat",
    help="Ask your databases questions in plain language",
    no_args_is_help=True,
)
connections_app = typer.Typer(help="Manage database connections")
config_app = typer.Typer(help="Configuration management")

app.add_typer(connections_app, name="connections")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


def _show(output: str) -> None:
    console.print(output.rstrip("\n"), markup=False, highlight=False, soft_wrap=True)


def _print_notice(notice: Notice) -> None:
    _show(format_notice(notice))


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def _build(model: type[BaseModel], **fields) -> BaseModel:
    try:
        return model(**fields)
    except PayloadValidationError as e:
        _fail(f"Invalid input: {e.errors()[0]['msg']} ({e.errors()[0]['loc'][0]})")


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to dbchat.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """dbchat: AI-assisted database queries from the terminal."""
    global _config_path
    _config_path = config
    cfg = _load()
    if verbose:
        cfg.logging.level = "debug"
    configure_logging(cfg.logging)


def _load() -> DbChatConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        _fail(str(e))
    except ValueError as e:
        _fail(f"Config validation failed: {e}")


def _wire() -> tuple[DbChatConfig, CredentialStore, HttpClient]:
    cfg = _load()
    store = get_credential_store(cfg)
    client = get_client(cfg, credentials=store)
    return cfg, store, client


async def _require_session(client: HttpClient, store: CredentialStore) -> SessionController:
    session = SessionController(client, store)
    if await session.start() is not SessionState.authenticated:
        _fail("Not logged in. Run 'dbchat login' first.")
    return session


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except DbChatError as e:
        _log.debug("Command failed with %s", type(e).__name__)
        _fail(e.message)


# --- Version / health ---


@app.command()
def version():
    """Show dbchat client version."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as pkg_version

    try:
        v = pkg_version("dbchat-client")
    except PackageNotFoundError:
        v = "unknown"
    console.print(f"[bold]dbchat[/bold] v{v}")


@app.command()
def health():
    """Check that the backend is reachable."""
    _, _, client = _wire()

    async def _go():
        async with client:
            status = await client.health()
        if status.healthy:
            console.print(f"[green]Backend healthy[/green] {status.message}")
        else:
            _fail(f"Backend reports '{status.status}': {status.message}")

    _run(_go())


# --- Auth commands ---


@app.command()
def login(
    username: str = typer.Option(..., "--username", "-u", prompt=True),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
):
    """Sign in and store the bearer token."""
    _, store, client = _wire()

    async def _go():
        async with client:
            session = SessionController(client, store)
            user = await session.login(username, password)
        console.print(f"[green]Logged in as {user.username}.[/green]")

    _run(_go())


@app.command()
def register(
    email: str = typer.Option(..., "--email", prompt=True),
    username: str = typer.Option(..., "--username", "-u", prompt=True),
    full_name: str = typer.Option("", "--full-name", prompt="Full name"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True
    ),
):
    """Create an account and sign in with it."""
    _, store, client = _wire()
    registration = _build(
        Registration,
        email=email,
        username=username,
        password=password,
        full_name=full_name,
    )

    async def _go():
        async with client:
            session = SessionController(client, store)
            user = await session.register(registration)
        console.print(f"[green]Account created. Logged in as {user.username}.[/green]")

    _run(_go())


@app.command()
def logout():
    """Forget the stored token."""
    _, store, client = _wire()
    SessionController(client, store).logout()
    console.print("Logged out.")


@app.command()
def whoami(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the signed-in user."""
    _, store, client = _wire()

    async def _go():
        async with client:
            session = await _require_session(client, store)
        _show(format_user(session.user, as_json=json_output))

    _run(_go())


# --- Connection commands ---


@connections_app.command("list")
def connections_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List registered database connections."""
    _, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            connections = await client.list_connections()
        _show(format_connections_table(connections, as_json=json_output))

    _run(_go())


@connections_app.command("add")
def connections_add(
    name: str = typer.Option(..., "--name", "-n", help="Display name"),
    host: str = typer.Option(..., "--host"),
    port: int = typer.Option(5432, "--port"),
    database: str = typer.Option(..., "--database", "-d"),
    username: str = typer.Option(..., "--username", "-u"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
):
    """Register a new database connection."""
    _, store, client = _wire()
    payload = _build(
        DatabaseConnectionCreate,
        connection_name=name,
        host=host,
        port=port,
        database_name=database,
        username=username,
        password=password,
    )

    async def _go():
        async with client:
            await _require_session(client, store)
            created = await client.create_connection(payload)
        console.print(
            f"[green]Connection created:[/green] {created.connection_name} ({created.db_id})"
        )

    _run(_go())


@connections_app.command("update")
def connections_update(
    connection_id: str = typer.Argument(help="Connection ID"),
    name: Optional[str] = typer.Option(None, "--name", "-n"),
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    database: Optional[str] = typer.Option(None, "--database", "-d"),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    password: Optional[str] = typer.Option(None, "--password", "-p"),
    active: Optional[bool] = typer.Option(None, "--active/--inactive"),
):
    """Change fields of an existing connection. Only given options are sent."""
    fields = {
        "connection_name": name,
        "host": host,
        "port": port,
        "database_name": database,
        "username": username,
        "password": password,
        "is_active": active,
    }
    changes = _build(
        DatabaseConnectionUpdate, **{k: v for k, v in fields.items() if v is not None}
    )
    if not changes.model_fields_set:
        _fail("Nothing to update.")
    _, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            await client.update_connection(connection_id, changes)
        console.print(f"[green]Connection {connection_id} updated.[/green]")

    _run(_go())


@connections_app.command("delete")
def connections_delete(
    connection_id: str = typer.Argument(help="Connection ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a database connection."""
    if not yes:
        typer.confirm(f"Delete connection {connection_id}?", abort=True)
    _, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            message = await client.delete_connection(connection_id)
        console.print(f"[yellow]{message or 'Connection deleted.'}[/yellow]")

    _run(_go())


@connections_app.command("test")
def connections_test(
    connection_id: str = typer.Argument(help="Connection ID"),
):
    """Check that the backend can reach a database."""
    _, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            result = await client.test_connection(connection_id)
        _show(format_connection_test(connection_id, result))
        if not result.succeeded:
            raise typer.Exit(1)

    _run(_go())


@connections_app.command("tables")
def connections_tables(
    connection_id: str = typer.Argument(help="Connection ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List the tables of a connected database."""
    _, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            listing = await client.get_tables(connection_id)
        _show(format_schema_listing("Tables", listing.tables, as_json=json_output))

    _run(_go())


@connections_app.command("columns")
def connections_columns(
    connection_id: str = typer.Argument(help="Connection ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List the columns of a connected database."""
    _, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            listing = await client.get_columns(connection_id)
        _show(format_schema_listing("Columns", listing.columns, as_json=json_output))

    _run(_go())


# --- Conversation commands ---


@app.command()
def ask(
    question: str = typer.Argument(help="Question in plain language"),
    connection: list[str] = typer.Option(
        [], "--connection", "-c", help="Connection ID (repeatable)"
    ),
    email: Optional[str] = typer.Option(
        None, "--email", help="Email the result to this address"
    ),
    page: Optional[str] = typer.Option(None, "--page", help="Page context"),
):
    """Ask one question and print the answer."""
    cfg, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            engine = ConversationEngine(
                client,
                page_name=page or cfg.chat.page_name,
                notify=_print_notice,
            )
            engine.select_connections(connection)
            result = await engine.submit(question)
            for turn in result.turns[1:]:
                _show(format_turn(turn))
            if result.status is not SubmissionStatus.completed:
                raise typer.Exit(1)
            if email:
                escalation = EscalationWorkflow(client, notify=_print_notice)
                escalation.set_recipient(email)
                sent = await escalation.send(result.turns[-1])
                if not sent.sent:
                    raise typer.Exit(1)

    _run(_go())


@app.command()
def chat(
    connection: list[str] = typer.Option(
        [], "--connection", "-c", help="Connection ID (repeatable)"
    ),
    page: Optional[str] = typer.Option(None, "--page", help="Page context"),
):
    """Start an interactive chat session."""
    from src.cli.repl import run_repl

    cfg, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            await run_repl(
                client,
                connection_ids=connection,
                page_name=page or cfg.chat.page_name,
                history_limit=cfg.chat.history_limit,
            )

    _run(_go())


@app.command()
def history(
    page: Optional[str] = typer.Option(None, "--page", help="Page context to fetch"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Records to fetch"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter text"),
    stats: bool = typer.Option(False, "--stats", help="Show summary counts"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Review previous questions and answers."""
    cfg, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            records = await client.fetch_history(
                page or cfg.chat.page_name, limit or cfg.chat.history_limit
            )
        if stats and not json_output:
            _show(format_history_stats(compute_stats(records)))
        _show(format_history(filter_records(records, search=search), as_json=json_output))

    _run(_go())


@app.command()
def email(
    conversation_id: str = typer.Argument(help="Conversation ID from 'dbchat history'"),
    recipient: str = typer.Argument(help="Recipient email address"),
):
    """Email a stored query result."""
    _, store, client = _wire()

    async def _go():
        async with client:
            await _require_session(client, store)
            escalation = EscalationWorkflow(client, notify=_print_notice)
            escalation.set_recipient(recipient)
            result = await escalation.send_stored(conversation_id)
        if not result.sent:
            raise typer.Exit(1)

    _run(_go())


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration."""
    cfg = _load()
    console.print("[bold]API:[/bold]")
    console.print(f"  base_url: {cfg.api.base_url}")
    console.print(f"  timeout: {cfg.api.timeout if cfg.api.timeout is not None else 'none'}")
    console.print("\n[bold]Credentials:[/bold]")
    console.print(f"  backend: {cfg.credentials.backend}")
    console.print(f"  service_name: {cfg.credentials.service_name}")
    console.print("\n[bold]Chat:[/bold]")
    console.print(f"  page_name: {cfg.chat.page_name}")
    console.print(f"  history_limit: {cfg.chat.history_limit}")
    console.print("\n[bold]Logging:[/bold]")
    console.print(f"  level: {cfg.logging.level}")


@config_app.command("validate")
def config_validate(
    config: Optional[str] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate a config file."""
    try:
        load_config(config_path=config or _config_path)
    except FileNotFoundError as e:
        _fail(str(e))
    except ValueError as e:
        _fail(f"Config validation failed: {e}")
    console.print("[green]Config is valid.[/green]")


if __name__ == "__main__":
    app()
