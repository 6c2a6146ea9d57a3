"""Interactive chat REPL over the conversation engine.

Replays the page's history once on start, then submits each line as a
question. Slash commands:

    /email <address> [turn-id]   email a result (default: latest emailable turn)
    /use <id>[,<id>...]          change the target connections
    /connections                 list connections
    /quit                        leave
"""

from rich.console import Console

from src.cli.output import format_connections_table, format_notice, format_turn
from src.cli.protocol import ApiGateway
from src.services.conversation import ConversationEngine, ConversationTurn, Notice
from src.services.escalation import EscalationWorkflow

console = Console()


def _show(output: str) -> None:
    console.print(output.rstrip("\n"), markup=False, highlight=False, soft_wrap=True)


def _print_notice(notice: Notice) -> None:
    _show(format_notice(notice))


def _latest_emailable(engine: ConversationEngine) -> ConversationTurn | None:
    for turn in reversed(engine.transcript.turns):
        if EscalationWorkflow.is_available(turn):
            return turn
    return None


async def _handle_email(
    engine: ConversationEngine, escalation: EscalationWorkflow, args: list[str]
) -> None:
    if args:
        escalation.set_recipient(args[0])
    if len(args) > 1:
        turn = engine.transcript.find(args[1])
        if turn is None:
            console.print(f"[red]No turn '{args[1]}' in this conversation.[/red]")
            return
    else:
        turn = _latest_emailable(engine)
        if turn is None:
            console.print("[yellow]Nothing to email yet.[/yellow]")
            return
    await escalation.send(turn)


async def run_repl(
    client: ApiGateway,
    connection_ids: list[str],
    page_name: str = "chat",
    history_limit: int = 50,
) -> None:
    """Run the interactive chat REPL.

    Args:
        client: An open, authenticated gateway.
        connection_ids: Initial target connections.
        page_name: Page context for history and queries.
        history_limit: Records to replay on start.
    """
    engine = ConversationEngine(
        client, page_name=page_name, history_limit=history_limit, notify=_print_notice
    )
    escalation = EscalationWorkflow(client, notify=_print_notice)
    engine.select_connections(connection_ids)

    await engine.load_connections()
    for turn in await engine.load_history():
        _show(format_turn(turn))

    console.print()
    console.print("[bold]dbchat[/bold]: ask questions about your databases")
    console.print("Type /quit or Ctrl+D to exit.")
    if not engine.selected_connection_ids:
        console.print("[yellow]No connection selected. Use /use <id>.[/yellow]")
    console.print()

    try:
        while True:
            try:
                line = console.input("[bold green]> [/bold green]")
            except EOFError:
                break

            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith("/"):
                command, *args = stripped.split()
                if command in ("/quit", "/exit"):
                    break
                if command == "/email":
                    await _handle_email(engine, escalation, args)
                elif command == "/use":
                    ids = [i for arg in args for i in arg.split(",") if i]
                    engine.select_connections(ids)
                    console.print(f"[dim]{len(ids)} connection(s) selected[/dim]")
                elif command == "/connections":
                    _show(format_connections_table(engine.connections))
                else:
                    console.print(f"[red]Unknown command {command}[/red]")
                continue

            console.print("[dim]Analyzing your query...[/dim]")
            result = await engine.submit(line)
            # The user turn was echoed by the prompt itself
            for turn in result.turns[1:]:
                _show(format_turn(turn))
    finally:
        engine.close()

    console.print("\n[dim]Session ended.[/dim]")
