"""
OCI Registry CLI

Thin Typer front end over the Operations facade:
- parse-ref: Show how a reference string is parsed
- ping / login: Probe a registry and negotiate credentials
- tags / manifest / digest: Inspect repositories and manifests
- head-blob / download-blob / download-image: Fetch content
- upload-blob / put-manifest / delete-manifest: Modify a repository
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from .cli_context import CLIContext
from .operations import Operations, OpsConfig, run_and_exit
from .operations.facade import describe_auth
from .operations.printers import (
    print_auth, print_blob_head, print_download_summary, print_image_ref,
    print_manifest, print_ping, print_push_result, print_tags,
)
from .reference import parse_repo_and_ref
from .registry.digest import digest_from_manifest_str

app = typer.Typer(name="oci-registry", help="OCI/Docker registry v2 client")


@app.callback()
def main_callback(
    ctx: typer.Context,
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Registry username"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Registry password"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Skip TLS verification"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """OCI/Docker registry v2 client."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = OpsConfig(username=username, password=password, insecure=insecure, verbose=verbose)


def _ops(ctx: typer.Context) -> Operations:
    return Operations(config=ctx.obj or OpsConfig(), context=CLIContext.from_env())


@app.command("parse-ref")
def parse_ref(
    ref: str = typer.Argument(..., help="[INDEX/]REPO[:TAG][@DIGEST]"),
    default_index: Optional[str] = typer.Option(None, "--default-index", help="Index for names without one"),
) -> None:
    """Parse an image reference and show its components."""

    def _parse_ref() -> None:
        print_image_ref(parse_repo_and_ref(ref, default_index))

    run_and_exit(_parse_ref)


@app.command()
def ping(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository (its registry is pinged)"),
) -> None:
    """Ping a registry's /v2/ endpoint."""

    def _ping() -> None:
        print_ping(asyncio.run(_ops(ctx).ping(repo)))

    run_and_exit(_ping)


@app.command()
def login(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository to authenticate for"),
    push: bool = typer.Option(False, "--push", help="Request push scope"),
) -> None:
    """Negotiate credentials for a repository."""

    def _login() -> None:
        auth_info = asyncio.run(_ops(ctx).login(repo, push=push))
        print_auth(describe_auth(auth_info))

    run_and_exit(_login)


@app.command()
def tags(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository"),
) -> None:
    """List repository tags."""

    def _tags() -> None:
        print_tags(asyncio.run(_ops(ctx).tags(repo)))

    run_and_exit(_tags)


@app.command()
def manifest(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="REPO[:TAG|@DIGEST]"),
    manifest_lists: bool = typer.Option(False, "--manifest-lists", "-L", help="Accept manifest lists"),
    oci: bool = typer.Option(False, "--oci", help="Accept OCI manifests"),
) -> None:
    """Fetch and print an image manifest."""

    def _manifest() -> None:
        ops = _ops(ctx)
        result = asyncio.run(ops.manifest(ref, accept_manifest_lists=manifest_lists, accept_oci_manifests=oci))
        print_manifest(result, verbose=ops.cfg.verbose)

    run_and_exit(_manifest)


@app.command()
def digest(
    manifest_file: Path = typer.Argument(..., help="Manifest JSON file"),
) -> None:
    """Compute the registry digest of a manifest file."""

    def _digest() -> None:
        typer.echo(digest_from_manifest_str(manifest_file.read_bytes()))

    run_and_exit(_digest)


@app.command("delete-manifest")
def delete_manifest(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="REPO@DIGEST"),
) -> None:
    """Delete a manifest."""

    def _delete() -> None:
        deleted = asyncio.run(_ops(ctx).delete_manifest(ref))
        typer.echo(f"Deleted manifest {deleted}")

    run_and_exit(_delete)


@app.command("head-blob")
def head_blob(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="REPO@DIGEST"),
) -> None:
    """Show blob headers without downloading it."""

    def _head_blob() -> None:
        print_blob_head(asyncio.run(_ops(ctx).head_blob(ref)))

    run_and_exit(_head_blob)


@app.command("download-blob")
def download_blob(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="REPO@DIGEST"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination file"),
) -> None:
    """Download a blob, verifying its digest."""

    def _download_blob() -> None:
        blob = asyncio.run(_ops(ctx).download_blob(ref, output))
        typer.echo(f"Wrote {blob.size} bytes to {blob.path}")

    run_and_exit(_download_blob)


@app.command("upload-blob")
def upload_blob(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository"),
    blob_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Blob content type"),
) -> None:
    """Upload a file as a blob (single request)."""

    def _upload_blob() -> None:
        result = asyncio.run(_ops(ctx).upload_blob(repo, blob_file, content_type=content_type))
        print_push_result(f"blob {blob_file}", result)

    run_and_exit(_upload_blob)


@app.command("put-manifest")
def put_manifest(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="REPO[:TAG|@DIGEST]"),
    manifest_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Manifest JSON file"),
    media_type: Optional[str] = typer.Option(None, "--media-type", help="Manifest content type"),
) -> None:
    """Upload a manifest."""

    def _put_manifest() -> None:
        result = asyncio.run(_ops(ctx).put_manifest(ref, manifest_file, media_type=media_type))
        print_push_result(f"manifest {ref}", result)

    run_and_exit(_put_manifest)


@app.command("download-image")
def download_image(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="REPO[:TAG|@DIGEST]"),
    dest: Path = typer.Option(Path("."), "--dest", "-d", help="Destination directory"),
) -> None:
    """Download an image manifest and all its layers."""

    def _download_image() -> None:
        print_download_summary(asyncio.run(_ops(ctx).download_image(ref, dest)))

    run_and_exit(_download_image)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
