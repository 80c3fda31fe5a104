"""CLI for Solanize - chat with the wallet agent from the terminal."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="solanize",
    help="Talk to an AI agent that proposes and executes Solana wallet operations.",
    no_args_is_help=True,
)
console = Console()

_base_path: Path | None = None
_keypair_override: str | None = None


def _version_callback(value: bool):
    if value:
        from solanize import __version__
        console.print(f"solanize {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    home: Path = typer.Option(
        None,
        "--home",
        help="Directory containing .solanize/ (defaults to the current directory)",
    ),
    keypair: str = typer.Option(
        None,
        "--keypair",
        "-k",
        help="Solana keypair file (overrides solana.keypair_path)",
        envvar="SOLANIZE_KEYPAIR",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Talk to an AI agent that proposes and executes Solana wallet operations."""
    global _base_path, _keypair_override
    _base_path = home
    _keypair_override = keypair
    _configure_logging("DEBUG" if verbose else None)


def _configure_logging(level: str | None) -> None:
    from solanize.config import get_home_dir, load_config

    if level is None:
        config = load_config(get_home_dir(_base_path, create=False) / "config.yaml")
        level = config.logging.level
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _confirm_signature(description: str) -> bool:
    return typer.confirm(f"{description} with your wallet?", default=True)


async def _open_client():
    """Load config, connect the keypair wallet and log in."""
    from solanize.config import get_home_dir, load_config
    from solanize.core.client import SolanizeClient
    from solanize.wallet.keypair import KeypairWallet

    home_dir = get_home_dir(_base_path)
    config = load_config(home_dir / "config.yaml")
    wallet = KeypairWallet(
        _keypair_override or config.solana.keypair_path,
        approve=_confirm_signature,
    )
    client = SolanizeClient(config=config, home_dir=home_dir, wallet=wallet)

    try:
        await wallet.connect()
    except (FileNotFoundError, ValueError) as e:
        await client.shutdown()
        console.print(f"[red]Cannot open wallet: {e}[/red]")
        raise typer.Exit(1)

    if not await client.auth.authenticate():
        error = client.auth.error or "Authentication failed"
        await client.shutdown()
        console.print(f"[red]{error}[/red]")
        raise typer.Exit(1)
    return client


# ------------------------------------------------------------------
# Setup
# ------------------------------------------------------------------


@app.command()
def init(
    api_url: str = typer.Option(None, "--api-url", help="Chat gateway base URL"),
    network: str = typer.Option("devnet", "--network", "-n", help="Solana network"),
):
    """Create .solanize/config.yaml with default settings."""
    from solanize.config import ClientConfig, get_home_dir, save_config, validate_config

    config = ClientConfig()
    if api_url:
        config.api.chat_api_url = api_url
    config.solana.network = network

    problems = validate_config(config)
    if problems:
        for problem in problems:
            console.print(f"[red]{problem}[/red]")
        raise typer.Exit(1)

    path = get_home_dir(_base_path) / "config.yaml"
    save_config(config, path)
    console.print(Panel(
        f"[bold green]Configuration written[/bold green]\n\n"
        f"Path: [cyan]{path}[/cyan]\n"
        f"Gateway: {config.api.base_url}\n"
        f"Network: {config.solana.network}",
        title=config.site.name,
    ))


config_app = typer.Typer(name="config", help="Inspect configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show():
    """Print the effective configuration and any validation problems."""
    from solanize.config import get_home_dir, load_config, validate_config

    config = load_config(get_home_dir(_base_path, create=False) / "config.yaml")
    console.print_json(json.dumps(config.model_dump(mode="json")))
    for problem in validate_config(config):
        console.print(f"[yellow]Warning:[/yellow] {problem}")


# ------------------------------------------------------------------
# Authentication
# ------------------------------------------------------------------


@app.command()
def login():
    """Connect the keypair wallet and sign the gateway's login challenge."""

    async def _login():
        client = await _open_client()
        address = client.auth.wallet_address
        await client.shutdown()
        return address

    address = _run(_login())
    console.print(f"[green]Authenticated as[/green] [cyan]{address}[/cyan]")


@app.command()
def logout():
    """Forget the stored credential."""
    from solanize.config import get_home_dir
    from solanize.storage.token_store import TokenStore

    TokenStore(get_home_dir(_base_path)).clear()
    console.print("Logged out.")


@app.command()
def status():
    """Show whether a credential is stored and when it expires."""
    import datetime

    from solanize.config import get_home_dir
    from solanize.storage.token_store import TokenStore

    store = TokenStore(get_home_dir(_base_path, create=False))
    token = store.load()
    if token is None:
        console.print("[yellow]Not logged in.[/yellow] Run 'solanize login'.")
        raise typer.Exit(1)
    exp = store.expires_at(token)
    if exp is None:
        console.print("[green]Logged in[/green] (token expiry unknown)")
    elif store.is_expired(token):
        console.print("[red]Stored token has expired.[/red] Run 'solanize login'.")
    else:
        when = datetime.datetime.fromtimestamp(exp).isoformat(timespec="seconds")
        console.print(f"[green]Logged in[/green], token valid until {when}")


# ------------------------------------------------------------------
# Diagnostics
# ------------------------------------------------------------------


@app.command()
def health():
    """Check the chat gateway's health endpoint."""

    async def _health():
        client = await _open_client()
        result = await client.chat.health_check()
        error = client.chat.error
        await client.shutdown()
        return result, error

    result, error = _run(_health())
    if result is None:
        console.print(f"[red]Health check failed: {error.message if error else 'unknown'}[/red]")
        raise typer.Exit(1)
    console.print(f"Gateway status: [green]{result.get('status', 'unknown')}[/green]")


@app.command()
def models():
    """List the models the agent can use."""

    async def _models():
        client = await _open_client()
        result = await client.chat.get_models()
        await client.shutdown()
        return result

    result = _run(_models())
    if result is None:
        console.print("[red]Could not fetch models.[/red]")
        raise typer.Exit(1)
    for name in result:
        console.print(f"  - {name}")


# ------------------------------------------------------------------
# sessions sub-commands
# ------------------------------------------------------------------

sessions_app = typer.Typer(name="sessions", help="Manage chat sessions.", no_args_is_help=True)
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list():
    """List chat sessions, most recent first."""

    async def _list():
        client = await _open_client()
        sessions = await client.chat.load_sessions()
        error = client.chat.error
        await client.shutdown()
        return sessions, error

    sessions, error = _run(_list())
    if sessions is None:
        console.print(f"[red]{error.message if error else 'Failed to load sessions'}[/red]")
        raise typer.Exit(1)
    if not sessions:
        console.print("No sessions yet. Start one with 'solanize chat'.")
        return

    table = Table(title="Chat Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Updated", style="dim")
    for session in sessions:
        table.add_row(session.id, session.title, session.updated_at)
    console.print(table)


@sessions_app.command("new")
def sessions_new(title: str = typer.Argument(None, help="Session title")):
    """Create a new chat session."""

    async def _new():
        client = await _open_client()
        session = await client.chat.create_session(title)
        error = client.chat.error
        await client.shutdown()
        return session, error

    session, error = _run(_new())
    if session is None:
        console.print(f"[red]{error.message if error else 'Failed to create session'}[/red]")
        raise typer.Exit(1)
    console.print(f"Created session [cyan]{session.id}[/cyan]")


@sessions_app.command("delete")
def sessions_delete(session_id: str = typer.Argument(help="Session ID")):
    """Delete a chat session."""
    typer.confirm(f"Delete session {session_id}?", abort=True)

    async def _delete():
        client = await _open_client()
        ok = await client.chat.delete_session(session_id)
        await client.shutdown()
        return ok

    if not _run(_delete()):
        console.print("[red]Failed to delete session.[/red]")
        raise typer.Exit(1)
    console.print("Session deleted.")


@app.command()
def history(session_id: str = typer.Argument(help="Session ID")):
    """Print the messages of a session."""

    async def _history():
        client = await _open_client()
        await client.chat.switch_session(session_id)
        messages = client.chat.current_messages()
        await client.shutdown()
        return messages

    for message in _run(_history()):
        _print_message(message)


# ------------------------------------------------------------------
# Interactive chat
# ------------------------------------------------------------------


def _print_message(message) -> None:
    if message.role.value == "user":
        console.print(f"[bold cyan]you>[/bold cyan] {message.content}")
    else:
        style = "red" if message.is_optimistic else "green"
        console.print(f"[bold {style}]agent>[/bold {style}] {message.content}")


def _render_action(action) -> None:
    table = Table(title=f"Proposed action {action.action_id}")
    table.add_column("Endpoint", style="cyan")
    table.add_column("Method")
    table.add_column("Risk")
    table.add_column("Params", style="dim")
    for call in action.endpoints_to_call:
        risk_style = {"low": "green", "medium": "yellow", "high": "red"}[call.risk_level.value]
        table.add_row(
            call.endpoint,
            call.method,
            f"[{risk_style}]{call.risk_level.value}[/{risk_style}]",
            json.dumps(call.params),
        )
    console.print(f"[bold]{action.intent_description}[/bold] "
                  f"(confidence {action.confidence_score:.0%}, est. cost {action.estimated_cost})")
    console.print(table)
    for warning in action.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def _edit_high_risk_params(action) -> dict | None:
    modified: dict = {}
    for call in action.high_risk_calls:
        raw = console.input(
            f"Edit params for [red]{call.endpoint}[/red] as JSON (enter to keep): "
        ).strip()
        if not raw:
            continue
        try:
            modified[call.endpoint] = json.loads(raw)
        except json.JSONDecodeError as e:
            console.print(f"[yellow]Ignoring invalid JSON: {e}[/yellow]")
    return modified or None


def _render_transaction(prepared) -> None:
    lines = [
        f"Type: [bold]{prepared.transaction_type}[/bold]",
        f"From: {prepared.from_address}",
    ]
    if prepared.to_address:
        lines.append(f"To: {prepared.to_address}")
    if prepared.amount is not None and prepared.token:
        lines.append(f"Amount: {prepared.amount} {prepared.token}")
    lines.append(f"Fee estimate: {prepared.fee_estimate}")
    console.print(Panel("\n".join(lines), title="Transaction Ready to Sign"))


class _Transcript:
    """Prints confirmed messages of the current session not yet shown."""

    def __init__(self, store) -> None:
        self.store = store
        self.shown = 0

    def flush(self, include_user: bool = False) -> None:
        confirmed = self.store.messages.get(self.store.current_session_id, [])
        for message in confirmed[self.shown:]:
            if include_user or message.role.value == "assistant":
                _print_message(message)
        self.shown = len(confirmed)


async def _resolve_proposals(client, transcript: _Transcript) -> None:
    chat = client.chat
    for action in chat.current_pending_actions():
        _render_action(action)
        if typer.confirm("Approve these actions?", default=False):
            ok = await chat.approve_action(action.action_id, _edit_high_risk_params(action))
        else:
            ok = await chat.reject_action(action.action_id)
        if not ok and chat.error:
            console.print(f"[red]{chat.error.message}[/red]")
        transcript.flush()

    session_id = chat.current_session_id
    for entry in client.transactions.pending:
        if entry.session_id != session_id:
            continue
        _render_transaction(entry.prepared)
        if not typer.confirm("Sign and send this transaction?", default=False):
            client.transactions.cancel(entry.id)
            console.print("Transaction cancelled.")
            continue
        if await client.transactions.sign_and_send(entry.id):
            if client.transactions.last_signature:
                from solanize.wallet.networks import explorer_tx_url

                url = explorer_tx_url(
                    client.config.solana.explorer_url,
                    client.transactions.last_signature,
                    client.config.solana.network,
                )
                console.print(f"[green]Submitted.[/green] {url}")
        else:
            error = client.transactions.last_error
            console.print(f"[red]{error.message if error else 'Transaction failed'}[/red]")
        transcript.flush()


@app.command()
def chat(
    session_id: str = typer.Option(None, "--session", "-s", help="Resume a session"),
):
    """Interactive chat. Type /quit to leave, /retry to resend after an error."""

    async def _chat():
        client = await _open_client()
        store = client.chat
        transcript = _Transcript(store)
        try:
            if session_id:
                await store.switch_session(session_id)
                transcript.flush(include_user=True)

            while True:
                text = console.input("[bold cyan]you>[/bold cyan] ").strip()
                if text in ("/quit", "/exit"):
                    break
                if text == "/retry":
                    if store.error is None or store.error.retry is None:
                        console.print("[dim]Nothing to retry.[/dim]")
                        continue
                    ok = await store.error.retry()
                elif text:
                    ok = await store.send_message(text)
                else:
                    continue

                if not ok:
                    message = store.error.message if store.error else "Message failed"
                    console.print(f"[red]agent> Sorry, I encountered an error: {message}[/red]")
                    console.print("[dim]Type /retry to resend.[/dim]")
                    continue
                transcript.flush()
                await _resolve_proposals(client, transcript)
        finally:
            await client.shutdown()

    _run(_chat())
