"""CLI entry point for aichat-context."""

import logging
from pathlib import Path
from typing import Optional

import click
import uvicorn

from . import __version__
from .backends import open_store
from .compact import CompactOptions
from .config import COMPACT_MAX_TOKENS, DEFAULT_MODEL
from .context import get_context_status, get_recommended_trim_target
from .export import ExportOptions, export_conversation
from .store import ConversationNotFound
from .tokens import conversation_cost, format_cost, get_model_display_name

FORMATS = {"md": "markdown", "json": "json", "compact": "compact"}


@click.group()
@click.version_option(version=__version__, prog_name="aichat-context")
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None,
              help="Conversation database (default: $AICHAT_DB_PATH or ~/.aichat-context).")
@click.option("-v", "--verbose", is_flag=True, help="Log to stderr.")
@click.pass_context
def main(ctx: click.Context, db_path: Optional[Path], verbose: bool):
    """Manage chat context budgets and export conversations."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    ctx.obj = {"db_path": db_path}


def _open(ctx: click.Context):
    return open_store(ctx.obj["db_path"])


def _load(ctx: click.Context, conversation_id: str):
    store = _open(ctx)
    try:
        return store.get_conversation(conversation_id)
    except ConversationNotFound:
        raise click.ClickException(f"No conversation with id {conversation_id}")
    finally:
        store.close()


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the web API."""
    click.echo(f"Starting aichat-context on http://{host}:{port}")
    uvicorn.run("aichat_context.server:app", host=host, port=port, reload=False)


@main.command("list")
@click.pass_context
def list_cmd(ctx: click.Context):
    """List stored conversations, newest first."""
    store = _open(ctx)
    try:
        summaries = store.list_conversations()
    finally:
        store.close()

    if not summaries:
        click.echo("No conversations yet.")
        return
    for s in summaries:
        click.echo(f"{s.id}  {s.updated_at:%Y-%m-%d %H:%M}  {s.message_count:>4} msgs  {s.title}")


@main.command()
@click.argument("conversation_id")
@click.option("--model", default=DEFAULT_MODEL, show_default=True, help="Model to measure against.")
@click.pass_context
def status(ctx: click.Context, conversation_id: str, model: str):
    """Show context-window usage and estimated cost for a conversation."""
    conversation = _load(ctx, conversation_id)
    st = get_context_status(conversation.messages, model)
    cost = conversation_cost(conversation.messages, model)

    click.echo(click.style(conversation.display_title, bold=True))
    click.echo(f"  Model:    {get_model_display_name(model)}")
    click.echo(f"  Messages: {len(conversation.messages)}")
    click.echo(f"  Tokens:   {st.total_tokens:,} / {st.limit:,} ({st.percentage:.1%})")
    click.echo(f"  Status:   {st.tier}")
    click.echo(f"  Cost:     {format_cost(cost.total_cost)}")
    if st.tier != "safe":
        click.echo(f"  Recommended trim target: {get_recommended_trim_target(model):,} tokens")


@main.command()
@click.argument("conversation_id")
@click.option("--format", "fmt", type=click.Choice(list(FORMATS)), default="md", show_default=True)
@click.option("-o", "--output", type=click.Path(path_type=Path), default=None,
              help="Output file or directory (default: stdout).")
@click.option("--max-tokens", default=COMPACT_MAX_TOKENS, show_default=True,
              help="Token budget for compact export.")
@click.option("--no-timestamps", is_flag=True, help="Omit message timestamps.")
@click.option("--token-counts", is_flag=True, help="Annotate token counts.")
@click.pass_context
def export(ctx, conversation_id, fmt, output, max_tokens, no_timestamps, token_counts):
    """Export a conversation as Markdown, JSON or compact continuation text."""
    conversation = _load(ctx, conversation_id)
    artifact = export_conversation(
        conversation,
        FORMATS[fmt],
        options=ExportOptions(include_timestamps=not no_timestamps, include_token_counts=token_counts),
        compact_options=CompactOptions(max_tokens=max_tokens),
    )

    if output is None:
        click.echo(artifact.content)
        return

    path = output / artifact.filename if output.is_dir() else output
    path.write_text(artifact.content, encoding="utf-8")
    click.echo(f"Wrote {path}", err=True)
