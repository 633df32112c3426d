"""
ai-roundtable CLI - Serve the API and manage stored conversations.

Commands:
    ai-roundtable serve                 Run the API gateway (uvicorn)
    ai-roundtable list                  Newest conversations
    ai-roundtable show <id>             One conversation, both rounds
    ai-roundtable export <id>           Markdown, text or thread export
    ai-roundtable delete <id>           Delete a conversation and its responses
"""

import logging
from pathlib import Path

import typer
import uvicorn
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from .config import Settings
from .export import export_markdown, export_text, export_thread
from .llm.models import get_model_name
from .storage.models import Conversation
from .storage.store import ConversationStore

app = typer.Typer(help="Two-round AI roundtable across independent model providers")
console = Console()

EXPORT_FORMATS = ("markdown", "text", "thread")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open_store(data_dir: Path | None) -> ConversationStore:
    settings = Settings.from_env()
    if data_dir is not None:
        settings.data_dir = data_dir
    return ConversationStore(settings.db_path)


def _load(store: ConversationStore, conversation_id: str) -> Conversation:
    conversation = store.get_conversation(conversation_id)
    if conversation is None:
        console.print(f"[bold red]Error:[/bold red] conversation {conversation_id} not found")
        raise typer.Exit(1)
    return conversation


# =============================================================================
# SERVE
# =============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes (development)"),
):
    """Run the API gateway."""
    console.print(f"\n[bold blue]ai-roundtable serve[/bold blue] on http://{host}:{port}\n")
    uvicorn.run(
        "ai_roundtable.api.gateway:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# =============================================================================
# HISTORY
# =============================================================================


@app.command("list")
def list_conversations(
    limit: int = typer.Option(20, help="How many conversations to show"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Override ROUNDTABLE_DATA_DIR"),
):
    """List the newest conversations."""
    summaries = _open_store(data_dir).list_conversations(limit=limit)
    if not summaries:
        console.print("No conversations yet.")
        return

    table = Table(title="Conversations")
    table.add_column("ID", style="bold")
    table.add_column("Created")
    table.add_column("Type")
    table.add_column("Topic")
    for s in summaries:
        table.add_row(s.id, s.created_at[:19].replace("T", " "), s.topic_type, s.raw_input[:60])
    console.print(table)


@app.command()
def show(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Override ROUNDTABLE_DATA_DIR"),
):
    """Print a conversation with both rounds."""
    conversation = _load(_open_store(data_dir), conversation_id)

    table = Table(title=conversation.raw_input or conversation.id, show_lines=True)
    table.add_column("Round", justify="center")
    table.add_column("Model", style="bold")
    table.add_column("Sources", justify="right")
    for r in conversation.responses:
        table.add_row(str(r.round), get_model_name(r.model), str(len(r.sources or [])))
    console.print(table)
    console.print(Markdown(export_markdown(conversation)))


@app.command()
def export(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    format: str = typer.Option("markdown", "--format", "-f", help="markdown | text | thread"),
    output: Path = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Override ROUNDTABLE_DATA_DIR"),
):
    """Export a conversation."""
    if format not in EXPORT_FORMATS:
        console.print(f"[bold red]Error:[/bold red] format must be one of: {', '.join(EXPORT_FORMATS)}")
        raise typer.Exit(2)

    conversation = _load(_open_store(data_dir), conversation_id)
    if format == "thread":
        text = "\n\n---\n\n".join(export_thread(conversation))
    elif format == "text":
        text = export_text(conversation)
    else:
        text = export_markdown(conversation)

    if output is None:
        typer.echo(text)
        return
    output.write_text(text, encoding="utf-8")
    console.print(f"[bold green]Exported[/bold green] {conversation_id} to {output}")


@app.command()
def delete(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Override ROUNDTABLE_DATA_DIR"),
):
    """Delete a conversation and its responses."""
    store = _open_store(data_dir)
    if not yes:
        typer.confirm(f"Delete conversation {conversation_id}?", abort=True)
    if not store.delete_conversation(conversation_id):
        console.print(f"[bold red]Error:[/bold red] conversation {conversation_id} not found")
        raise typer.Exit(1)
    console.print(f"[bold green]Deleted[/bold green] {conversation_id}")


if __name__ == "__main__":
    app()
