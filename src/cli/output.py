"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich output (default) and machine-parseable JSON
output (--json flag). All formatting goes through these functions so the
CLI commands stay clean.

HTML fragments returned by the backend (result tables, visualizations)
are printed verbatim as plain text. They are trusted backend output and
are neither sanitized nor interpreted here.
"""

import json
from datetime import datetime

from pydantic import BaseModel
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.cli.protocol import (
    ConnectionTestResult,
    DatabaseConnection,
    HistoryRecord,
    User,
)
from src.services.conversation import ConversationTurn, Notice, TurnRole
from src.services.history import HistoryStats, describe_age

console = Console()

ROLE_STYLES = {
    TurnRole.user: ("You", "green"),
    TurnRole.assistant: ("Assistant", "cyan"),
    TurnRole.system: ("Error", "red"),
}


def _render(renderable) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def _dump_json(models: list[BaseModel] | BaseModel) -> str:
    if isinstance(models, BaseModel):
        return json.dumps(models.model_dump(mode="json"), indent=2)
    return json.dumps([m.model_dump(mode="json") for m in models], indent=2)


def _short_time(value: datetime | None) -> str:
    if value is None:
        return "—"
    return value.isoformat(timespec="seconds")[:19]


def format_user(user: User, as_json: bool = False) -> str:
    """Format the signed-in user's profile."""
    if as_json:
        return _dump_json(user)

    table = Table(show_header=False, box=None)
    table.add_row("Username:", user.username)
    table.add_row("Name:", user.full_name or "—")
    table.add_row("Email:", user.email)
    table.add_row("Active:", "yes" if user.is_active else "no")
    table.add_row("Member since:", _short_time(user.created_at))
    return _render(Panel(table, title="[bold]Signed in[/bold]", border_style="green"))


def format_connections_table(
    connections: list[DatabaseConnection], as_json: bool = False
) -> str:
    """Format registered database connections as a Rich table or JSON.

    Args:
        connections: Connections to display.
        as_json: If True, return JSON string instead of Rich table.

    Returns:
        Formatted string output.
    """
    if as_json:
        return _dump_json(connections)

    if not connections:
        return "No database connections found."

    table = Table(title="Database Connections", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Server")
    table.add_column("Database")
    table.add_column("User")
    table.add_column("Active")
    table.add_column("Created")

    for conn in connections:
        table.add_row(
            conn.db_id,
            conn.connection_name,
            f"{conn.host}:{conn.port}",
            conn.database_name,
            conn.username,
            "[green]yes[/green]" if conn.is_active else "[dim]no[/dim]",
            _short_time(conn.created_at),
        )
    return _render(table)


def format_connection_test(connection_id: str, result: ConnectionTestResult) -> str:
    if result.succeeded:
        body = f"[green]Connection successful[/green]\n{result.message}"
        style = "green"
    else:
        body = f"[red]Connection failed[/red]\n{result.message}"
        style = "red"
    return _render(Panel(body, title=f"Test {connection_id}", border_style=style))


def format_schema_listing(title: str, entries: dict, as_json: bool = False) -> str:
    """Format a table or column listing returned by the schema endpoints."""
    if as_json:
        return json.dumps(entries, indent=2, default=str)
    if not entries:
        return f"No {title.lower()} found."

    table = Table(title=title)
    table.add_column("Name", style="bold")
    table.add_column("Details")
    for name, details in entries.items():
        if isinstance(details, (dict, list)):
            details = json.dumps(details, default=str)
        table.add_row(str(name), Text(str(details)))
    return _render(table)


def format_turn(turn: ConversationTurn) -> str:
    """Format one transcript turn as a Rich panel.

    Assistant turns with a query outcome also show the explanation, the
    generated SQL and any HTML fragments, plus the id to use for email.
    """
    label, color = ROLE_STYLES[turn.role]
    parts: list = [Text(turn.content)]

    outcome = turn.query_outcome
    if outcome is not None:
        if outcome.explanation:
            parts.append(Text(outcome.explanation, style="dim"))
        if outcome.has_sql:
            parts.append(Text("Generated SQL:", style="bold"))
            parts.append(Text(outcome.sql_query, style="magenta"))
        if outcome.results_table:
            parts.append(Text("Results:", style="bold"))
            parts.append(Text(outcome.results_table))
        if outcome.visualization:
            parts.append(Text("Visualization:", style="bold"))
            parts.append(Text(outcome.visualization))
        if outcome.suggest_email and turn.correlation_id:
            parts.append(
                Text(f"Share by email: /email <address> {turn.id}", style="yellow")
            )

    title = f"{label} · {turn.timestamp.strftime('%H:%M:%S')}"
    return _render(
        Panel(Group(*parts), title=title, title_align="left", border_style=color)
    )


def format_transcript(turns: list[ConversationTurn]) -> str:
    if not turns:
        return "Ready to help with your database queries."
    return "".join(format_turn(turn) for turn in turns)


def format_notice(notice: Notice) -> str:
    color = "red" if notice.level == "error" else "yellow"
    text = Text.assemble((f"{notice.title}: ", f"bold {color}"), notice.message)
    return _render(text)


def format_history(
    records: list[HistoryRecord],
    as_json: bool = False,
    now: datetime | None = None,
) -> str:
    """Format persisted conversation records as a Rich table or JSON.

    Args:
        records: Records in backend order.
        as_json: If True, return JSON string instead of Rich table.
        now: Reference time for the age column.

    Returns:
        Formatted string output.
    """
    if as_json:
        return _dump_json(records)

    if not records:
        return "No conversations found."

    table = Table(title="Conversation History", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Page")
    table.add_column("Question")
    table.add_column("Response")
    table.add_column("Flags")
    table.add_column("When")

    for record in records:
        response = record.response_data
        flags = []
        if response.has_sql:
            flags.append("SQL")
        if response.is_graph_query:
            flags.append("Chart")
        if response.suggest_email:
            flags.append("Email")
        summary = response.message or response.explanation or "No response message"
        table.add_row(
            record.conversation_id,
            record.page_name or "—",
            Text(record.user_input),
            Text(summary[:120]),
            ", ".join(flags) or "—",
            describe_age(record.created_at, now),
        )
    return _render(table)


def format_history_stats(stats: HistoryStats) -> str:
    table = Table(show_header=False, box=None)
    table.add_row("Total queries:", str(stats.total_queries))
    table.add_row("SQL generated:", str(stats.successful_queries))
    table.add_row("Charts:", str(stats.graph_queries))
    table.add_row("Email suggested:", str(stats.email_suggestions))
    return _render(Panel(table, title="[bold]History[/bold]", border_style="cyan"))
