"""
Human-readable output formatting.

Centralizes CLI output so commands stay thin. Tables go through Rich;
values meant for scripting (digests, JSON documents) are echoed plainly so
they never wrap.
"""
from __future__ import annotations

import json
from typing import Any, Dict

import typer
from rich.console import Console
from rich.table import Table

from ..reference import ImageRef
from ..registry.client import ManifestResult, PushResult

_console = Console()


def print_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=4, sort_keys=False))


def print_image_ref(ref: ImageRef) -> None:
    """Print every component of a parsed reference."""
    table = Table(title=ref.canonical_ref, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    rows = [
        ("index", ref.index.name),
        ("scheme", ref.index.scheme),
        ("official index", str(ref.index.official)),
        ("remote name", ref.remote_name),
        ("local name", ref.local_name),
        ("canonical name", ref.canonical_name),
        ("official", str(ref.official)),
        ("tag", ref.tag or ""),
        ("digest", ref.digest or ""),
    ]
    for name, value in rows:
        table.add_row(name, value)
    _console.print(table)


def print_ping(result) -> None:
    typer.echo(f"Status: {result.status_code}")
    if result.api_version:
        typer.echo(f"API version: {result.api_version}")
    if result.challenge:
        typer.echo(f"Challenge: {result.challenge}")
    typer.echo(f"Supports v2: {'yes' if result.supports_v2 else 'no'}")


def print_auth(auth: Dict[str, str]) -> None:
    typer.echo(f"Auth: {auth['type']}")
    if "username" in auth:
        typer.echo(f"Username: {auth['username']}")


def print_tags(tag_list: Any) -> None:
    tags = tag_list.get("tags") if isinstance(tag_list, dict) else None
    if not tags:
        typer.echo("No tags")
        return
    for tag in tags:
        typer.echo(tag)


def print_manifest(result: ManifestResult, verbose: bool = False) -> None:
    """Print the manifest document, preceded by its digest when verbose."""
    if verbose:
        typer.echo(f"Digest: {result.digest or '(not reported)'}", err=True)
        typer.echo(f"Media type: {result.response.headers.get('content-type', '')}", err=True)
    print_json(json.loads(result.body))


def print_blob_head(head) -> None:
    typer.echo(f"Digest: {head.digest or '(not reported)'}")
    if head.content_length is not None:
        typer.echo(f"Size: {_format_bytes(head.content_length)}")
    if head.content_type:
        typer.echo(f"Content-Type: {head.content_type}")
    if len(head.hops) > 1:
        typer.echo(f"Redirects: {len(head.hops) - 1}")


def print_push_result(what: str, result: PushResult) -> None:
    typer.echo(f"Uploaded {what}")
    if result.digest:
        typer.echo(f"Digest: {result.digest}")
    if result.location:
        typer.echo(f"Location: {result.location}")


def print_download_summary(image) -> None:
    """
    Print the files written by ``download-image``.

    Args:
        image: DownloadedImage from the operations facade
    """
    typer.echo(f"Wrote manifest: {image.manifest_path}")
    if image.layers:
        table = Table(title=f"Layers ({len(image.layers)})")
        table.add_column("#", justify="right")
        table.add_column("File", style="cyan")
        table.add_column("Size", style="yellow", justify="right")
        for idx, layer in enumerate(image.layers, start=1):
            table.add_row(str(idx), str(layer.path), _format_bytes(layer.size))
        _console.print(table)
    if image.digest:
        typer.echo(f"Digest: {image.digest}")


def print_error(exc: BaseException) -> None:
    typer.echo(f"Error: {exc}", err=True)


def _format_bytes(size_bytes: int) -> str:
    """
    Format byte count as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.5 MB", "42 KB")
    """
    if size_bytes == 0:
        return "0 B"
    elif size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
