"""CLI entry point for aichat-transcripts."""

import asyncio
import logging
from pathlib import Path

import click

from .config import CHAT_DIRECTORY, get_store_root
from .export import chat_to_json, chat_to_markdown
from .formats.detect import detect_format
from .service import ChatStorageError, ChatStorageService
from .store import FileSystemStore


@click.group()
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="AICHAT_CHATS_PATH",
    default=None,
    help="Store root containing the Chats directory.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, root: Path | None, verbose: bool):
    """Inspect and migrate stored AI chat transcripts."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    store = FileSystemStore(root or get_store_root())
    ctx.obj = ChatStorageService(store, CHAT_DIRECTORY)


@main.command("list")
@click.pass_obj
def list_chats(service: ChatStorageService):
    """List every chat in the store."""
    scan = asyncio.run(service.scan_chats())
    for doc in sorted(scan.chats, key=lambda d: d.metadata.last_modified, reverse=True):
        meta = doc.metadata
        click.echo(f"{meta.id}\tv{meta.version}\t{len(doc.messages)} msgs\t{meta.title}")
    if scan.skipped:
        click.echo(f"Skipped {len(scan.skipped)} non-chat or unreadable files", err=True)


@main.command()
@click.argument("chat_id")
@click.option("--format", "fmt", type=click.Choice(["markdown", "json"]), default="markdown")
@click.pass_obj
def show(service: ChatStorageService, chat_id: str, fmt: str):
    """Print a chat as a Markdown transcript or JSON."""
    doc = asyncio.run(service.load_chat(chat_id))
    if doc is None:
        raise click.ClickException(f"No chat named {chat_id}")
    click.echo(chat_to_json(doc) if fmt == "json" else chat_to_markdown(doc))


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def detect(file: Path):
    """Print the format generation of FILE: modern, legacy or invalid."""
    click.echo(detect_format(file.read_text(encoding="utf-8")).value)


@main.command()
@click.argument("chat_id")
@click.pass_obj
def migrate(service: ChatStorageService, chat_id: str):
    """Rewrite a chat in the current format, bumping its version."""
    doc = asyncio.run(service.load_chat(chat_id))
    if doc is None:
        raise click.ClickException(f"No chat named {chat_id}")

    meta = doc.metadata
    try:
        result = asyncio.run(service.save_chat(
            chat_id,
            doc.messages,
            meta.model,
            context_files=[f.path for f in meta.context_files],
            system_prompt_type=meta.system_prompt.type,
            system_prompt_path=meta.system_prompt.path,
            title=meta.title,
            chat_font_size=meta.chat_font_size,
            agent_mode=meta.agent_mode,
        ))
    except ChatStorageError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Migrated {chat_id} ({doc.source_format}) to version {result.version}")
