"""Command line entry point for tuberesolve."""

from __future__ import annotations

import json
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tuberesolve.app.dependencies import (
    build_credential_resolver,
    get_metadata_service,
    get_settings,
)
from tuberesolve.app.logging_config import configure_application_logging
from tuberesolve.app.models.contracts import (
    InvalidIdentifierError,
    PaginationCursor,
    ResultPage,
    SearchResultItem,
)
from tuberesolve.app.services.credential_resolver import (
    clear_credential_override,
    save_credential_override,
)
from tuberesolve.app.services.metadata_service import CATEGORY_QUERIES
from tuberesolve.app.services.pagination_bridge import format_cursor, parse_cursor
from tuberesolve.app.services.youtube_urls import (
    extract_channel_id,
    extract_video_id,
    thumbnail_url,
)

console = Console()

NO_DATA_MESSAGE = "No data available."


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", is_flag=True, help="Log provider attempts to stderr.")
def main(verbose: bool) -> None:
    """Resolve YouTube videos, channels and searches across fallback providers."""
    if verbose:
        configure_application_logging(get_settings())


@main.command()
@click.argument("video")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
def video(video: str, as_json: bool) -> None:
    """Show metadata for a video id or URL."""
    video_id = extract_video_id(video)
    if video_id is None:
        raise click.BadParameter(f"not a video id or URL: {video}", param_hint="VIDEO")
    metadata = get_metadata_service().fetch_video_metadata(video_id)
    if as_json:
        _print_json(metadata.to_dict())
        return
    if metadata.is_empty:
        console.print(f"[yellow]{NO_DATA_MESSAGE}[/yellow]")
        return
    console.print(f"[bold]{escape(metadata.title or '-')}[/bold]")
    channel_title = escape(metadata.channel_title or "-")
    console.print(f"Channel: {channel_title} ({metadata.channel_id or '-'})")
    console.print(f"Thumbnail: {thumbnail_url(video_id)}", markup=False)
    if metadata.keywords:
        console.print(f"Keywords: {', '.join(metadata.keywords)}", markup=False)
    if metadata.description:
        console.print()
        console.print(metadata.description, markup=False)


@main.command()
@click.argument("channel")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
def channel(channel: str, as_json: bool) -> None:
    """Show details for a channel id or /channel/ URL."""
    channel_id = _require_channel(channel)
    details = get_metadata_service().fetch_channel_details(channel_id)
    if as_json:
        _print_json(details.to_dict() if details is not None else None)
        return
    if details is None:
        console.print(f"[yellow]{NO_DATA_MESSAGE}[/yellow]")
        return
    title = escape(details.title or "-")
    console.print(f"[bold]{title}[/bold] {escape(details.custom_url or '')}")
    console.print(
        f"Subscribers: {details.subscriber_count or '-'}  "
        f"Videos: {details.video_count or '-'}  Views: {details.view_count or '-'}"
    )
    if details.description:
        console.print()
        console.print(details.description, markup=False)


@main.command()
@click.argument("query", default="")
@click.option(
    "--category",
    type=click.Choice(sorted(CATEGORY_QUERIES)),
    default=None,
    help="Bias the search toward an explore category.",
)
@click.option("--cursor", "raw_cursor", default=None, help="Cursor printed by a previous page.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
def search(query: str, category: str | None, raw_cursor: str | None, as_json: bool) -> None:
    """Search videos and channels."""
    cursor = _parse_cursor_option(raw_cursor)
    try:
        page = get_metadata_service().search_page(query, category, cursor)
    except InvalidIdentifierError as exc:
        raise click.UsageError(str(exc)) from exc
    _print_page(page, as_json=as_json, title=f"Search: {query or category}")


@main.command(name="channel-videos")
@click.argument("channel")
@click.option("--cursor", "raw_cursor", default=None, help="Cursor printed by a previous page.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
def channel_videos(channel: str, raw_cursor: str | None, as_json: bool) -> None:
    """List a channel's latest videos."""
    channel_id = _require_channel(channel)
    cursor = _parse_cursor_option(raw_cursor)
    page = get_metadata_service().list_channel_videos(channel_id, cursor)
    _print_page(page, as_json=as_json, title=f"Videos: {channel_id}")


@main.group()
def key() -> None:
    """Manage the locally saved API key override."""


@key.command(name="set")
@click.argument("value")
def key_set(value: str) -> None:
    """Save an API key override."""
    settings = get_settings()
    try:
        save_credential_override(settings.overrides_path, value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="VALUE") from exc
    console.print(f"Saved override to {settings.overrides_path}")


@key.command(name="clear")
def key_clear() -> None:
    """Remove the saved API key override."""
    settings = get_settings()
    if clear_credential_override(settings.overrides_path):
        console.print("Override removed.")
    else:
        console.print("No override saved.")


@key.command(name="show")
def key_show() -> None:
    """Show which credential would be used (masked)."""
    credential = build_credential_resolver(get_settings()).resolve()
    console.print(f"source={credential.source} value={credential.masked()}")


def _require_channel(raw_value: str) -> str:
    channel_id = extract_channel_id(raw_value)
    if channel_id is None:
        raise click.BadParameter(f"not a channel id or URL: {raw_value}", param_hint="CHANNEL")
    return channel_id


def _parse_cursor_option(raw_cursor: str | None) -> PaginationCursor | None:
    if raw_cursor is None:
        return None
    try:
        return parse_cursor(raw_cursor)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--cursor") from exc


def _print_page(page: ResultPage, *, as_json: bool, title: str) -> None:
    next_cursor = format_cursor(page.next_cursor) if page.next_cursor is not None else None
    if as_json:
        _print_json(
            {
                "items": [item.to_dict() for item in page.items],
                "next_cursor": next_cursor,
            }
        )
        return
    if not page.items:
        console.print(f"[yellow]{NO_DATA_MESSAGE}[/yellow]")
        return
    console.print(_build_items_table(page.items, title=title))
    if next_cursor is not None:
        console.print(f"Next page: --cursor '{next_cursor}'")


def _build_items_table(items: tuple[SearchResultItem, ...], *, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Type")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("Channel")
    table.add_column("Published")
    for item in items:
        flagged = " [red](sensitive)[/red]" if item.is_sensitive else ""
        table.add_row(
            item.kind,
            item.item_id,
            f"{escape(item.title)}{flagged}",
            escape(item.channel_title or "-"),
            item.published_at or "-",
        )
    return table


def _print_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
