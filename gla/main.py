"""GLA CLI — the user interface.

Commands:
    gla            — Interactive Git learning session (same as `gla learn`)
    gla learn      — Interactive Git learning session
    gla health     — Check the git binary and the inference server
    gla version    — Show GLA version

Inside a session:
    any git command   runs in the sandbox, then the tutor reviews it
    plain English     goes straight to the tutor
    menu | reset | help | exit | quit
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import AsyncGenerator

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gla.config import settings
from gla.errors import EnvironmentSetupError, InferenceError
from gla.models.events import CommandExecuted, SessionEvent, TextDelta, ToolInvocation, TurnComplete
from gla.tools.inference import InferenceClient
from gla.tools.sandbox import SandboxEnvironment
from gla.tutor.session import TutorSession
from gla.tutor.topics import DIFFICULTY_STYLES, TOPICS, find_topic
from gla.utils import get_logger, setup_logging

# Initialize logging on import
setup_logging()

app = typer.Typer(
    name="gla",
    help="🎓 GLA — learn Git with an AI tutor in a throwaway sandbox",
    rich_markup_mode="rich",
)
console = Console()
log = get_logger("main")

EXIT_COMMANDS = ("exit", "quit")

WELCOME_TEXT = (
    "[bold cyan]🎓 GLA — Git Learning Assistant[/]\n"
    "[dim]Learn Git through interactive, AI-guided scenarios![/]\n\n"
    "  • Type any Git command to practice (e.g., [bold]git status[/])\n"
    "  • Ask questions in plain English\n"
    "  • Type [bold]menu[/] for topic selection\n"
    "  • Type [bold]reset[/] to start fresh\n"
    "  • Type [bold]exit[/] to quit"
)

HELP_TEXT = (
    "[bold]HOW TO USE THIS APP[/]\n\n"
    "• [cyan]Git commands[/]: type any git command directly\n"
    "    git status, git add ., git commit -m \"msg\"\n\n"
    "• [cyan]Questions[/]: ask anything about Git in plain English\n"
    "    \"What is a branch?\", \"How do I undo a commit?\"\n\n"
    "• [cyan]Guided learning[/]: type [bold]menu[/] to pick a topic;\n"
    "    the tutor builds a hands-on scenario for you\n\n"
    "[bold]SPECIAL COMMANDS[/]\n"
    "  menu   — show topic selection menu\n"
    "  reset  — reset the sandbox to a fresh state\n"
    "  help   — show this help message\n"
    "  exit   — quit the application"
)


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt


def _prompt(label: str) -> str:
    return console.input(label)


# ── gla / gla learn ───────────────────────────────────────────


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Start a learning session when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        learn()


@app.command()
def learn() -> None:
    """🎓 Interactive, AI-guided Git practice in a disposable sandbox."""
    # SIGTERM takes the same path as Ctrl-C so the sandbox is always removed
    signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        exit_code = asyncio.run(_learn())
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/]")
        exit_code = 130
    raise typer.Exit(exit_code)


async def _learn() -> int:
    """Composition root: build sandbox, client and session once; always clean up."""
    console.print(Panel(WELCOME_TEXT, border_style="cyan"))

    client = InferenceClient()
    try:
        async with SandboxEnvironment() as sandbox:
            with console.status("[dim]Connecting to the tutor...[/]", spinner="dots"):
                status = await client.health()

            if status["status"] != "ok":
                _print_inference_failure(status)
                return 1

            console.print(f"[green]✓[/] Connected to [bold]{client.model}[/] at {client.base_url}")
            console.print(f"[green]✓[/] Sandbox ready at: {sandbox.root_path}\n")

            session = TutorSession(client, sandbox)
            await run_learning_loop(session, sandbox)
        return 0
    except EnvironmentSetupError as e:
        log.error("environment_setup_failed", error=str(e))
        _print_setup_failure(e)
        return 1
    finally:
        await client.close()
        console.print("\n[bold cyan]Thanks for learning Git! Goodbye! 👋[/]")


async def run_learning_loop(session: TutorSession, sandbox: SandboxEnvironment) -> None:
    """Read lines until exit; special commands are handled locally."""
    await _run_turn(session.start())

    while True:
        try:
            text = _prompt("[bold yellow]You:[/] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Session ended.[/]")
            break

        if not text:
            continue

        command = text.lower()
        if command in EXIT_COMMANDS:
            break
        if command == "menu":
            await _show_menu(session)
            continue
        if command == "reset":
            await sandbox.reset()
            console.print("[green]✓ Sandbox reset![/]\n")
            continue
        if command == "help":
            console.print(Panel(HELP_TEXT, title="[bold]Help[/]", border_style="blue"))
            continue

        await _run_turn(session.process_user_input(text))


async def _run_turn(events: AsyncGenerator[SessionEvent, None]) -> None:
    """Render one tutor turn as it streams. Inference errors end the turn, not the session."""
    header_shown = False
    try:
        async for event in events:
            if isinstance(event, CommandExecuted):
                _print_command_result(event)
                continue
            if not header_shown:
                console.print("\n[bold green]🤖 Tutor:[/] ", end="")
                header_shown = True
            if isinstance(event, TextDelta):
                console.print(event.text, end="", markup=False, highlight=False)
            elif isinstance(event, ToolInvocation):
                console.print(f"\n   [dim]\\[🔧 {escape(event.tool_name)}][/] ", end="")
            elif isinstance(event, TurnComplete) and event.truncated:
                console.print("\n[yellow]⚠ The tutor used too many tools in one turn and was stopped.[/]", end="")
    except InferenceError as e:
        log.warning("turn_failed", error=str(e))
        console.print(f"\n[red]Error: {escape(str(e))}[/]", end="")
    finally:
        await events.aclose()
    console.print("\n")


def _print_command_result(event: CommandExecuted) -> None:
    result = event.result
    body = result.stdout
    if result.stderr:
        body = f"{body}\n{result.stderr}" if body else result.stderr
    style = "green" if result.success else "red"
    console.print(Panel(
        escape(body) if body else "[dim](no output)[/]",
        title=f"[bold]$ git {escape(event.command)}[/]",
        border_style=style,
        expand=False,
    ))


async def _show_menu(session: TutorSession) -> None:
    table = Table(title="📚 Learning Topics", show_header=True, box=None, padding=(0, 2))
    table.add_column("#", style="bold", justify="right")
    table.add_column("Topic")
    table.add_column("Commands", style="dim")
    table.add_column("Level")
    for topic in TOPICS:
        style = DIFFICULTY_STYLES[topic.difficulty]
        table.add_row(topic.key, topic.title, topic.commands, f"[{style}]{topic.difficulty}[/]")
    console.print(table)

    try:
        choice = _prompt("Select a topic (1-9) or 'back': ").strip()
    except (EOFError, KeyboardInterrupt):
        return
    if not choice or choice.lower() == "back":
        return

    topic = find_topic(choice)
    if topic is None:
        console.print("[red]Invalid selection.[/]\n")
        return

    await _run_turn(session.setup_scenario(topic.description, topic.difficulty))


def _print_setup_failure(error: EnvironmentSetupError) -> None:
    console.print(Panel(
        f"[red]❌ Could not prepare the Git sandbox:[/] {escape(str(error))}\n\n"
        "Please ensure:\n"
        f"  1. Git is installed and on your PATH (or set GLA_GIT_BINARY; now: [bold]{settings.git_binary}[/])\n"
        "  2. The temp directory is writable (or set GLA_SANDBOX_BASE_DIR)",
        border_style="red",
    ))


def _print_inference_failure(status: dict) -> None:
    console.print(Panel(
        f"[red]❌ Could not reach the tutor at {status.get('url')}:[/] {escape(str(status.get('error')))}\n\n"
        "This app needs an OpenAI-compatible chat completions server.\n"
        "Please ensure:\n"
        "  1. GLA_INFERENCE_URL points at it (e.g. https://api.openai.com or http://localhost:11434)\n"
        "  2. GLA_INFERENCE_API_KEY is set if the server requires one\n"
        "  3. GLA_MODEL names a model that supports tool calling",
        border_style="red",
    ))


# ── gla health ────────────────────────────────────────────────


@app.command()
def health() -> None:
    """🩺 Check the git binary and the inference server."""
    ok = asyncio.run(_health())
    if not ok:
        raise typer.Exit(1)


async def _health() -> bool:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Check", style="cyan")
    table.add_column("Result", style="white")

    git_ok = True
    try:
        async with SandboxEnvironment() as sandbox:
            result = await sandbox.execute_command("--version")
        table.add_row("Git", f"✅ {escape(result.stdout)}")
    except EnvironmentSetupError as e:
        git_ok = False
        table.add_row("Git", f"[red]⚠ {escape(str(e))}[/]")

    client = InferenceClient()
    try:
        status = await client.health()
    finally:
        await client.close()

    inference_ok = status["status"] == "ok"
    if inference_ok:
        listed = status.get("model_listed")
        note = "" if listed in (True, None) else " [yellow](model not listed by server)[/]"
        table.add_row("Tutor", f"✅ {status['url']} · {status['model']}{note}")
    else:
        table.add_row("Tutor", f"[red]⚠ {status['url']}: {escape(str(status['error']))}[/]")

    console.print(Panel(table, title="[bold cyan]🩺 GLA Health[/]", border_style="cyan"))
    return git_ok and inference_ok


# ── gla version ───────────────────────────────────────────────


@app.command()
def version() -> None:
    """📦 Show GLA version."""
    from gla import __version__
    console.print(f"[bold cyan]🎓 GLA[/] v{__version__}")


# ── Entry point ───────────────────────────────────────────────

if __name__ == "__main__":
    app()
