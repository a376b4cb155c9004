"""
Operations Facade - Application service layer.

Sits between the CLI and ``RegistryClient``: one coroutine per CLI verb,
with reference parsing, credential resolution and file I/O kept out of the
Typer commands.
"""
from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiofiles

from ..cli_context import CLIContext
from ..manifest import ManifestV2List, ManifestOCIIndex
from ..reference import ImageRef, parse_repo_and_ref
from ..registry.auth import AuthInfo
from ..registry.client import ManifestResult, PushResult, RegistryClient
from ..registry.http import RegistryResponse

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class OpsConfig:
    """
    Configuration for Operations facade.

    Carries the per-invocation CLI flags that every verb shares.
    """
    username: Optional[str] = None
    password: Optional[str] = None
    insecure: bool = False
    verbose: bool = False


@dataclass
class PingResult:
    status_code: int
    api_version: Optional[str]
    supports_v2: bool
    challenge: Optional[str] = None


@dataclass
class BlobHead:
    digest: Optional[str]
    content_length: Optional[int]
    content_type: Optional[str]
    hops: List[str] = field(default_factory=list)


@dataclass
class DownloadedBlob:
    path: Path
    size: int
    digest: str


@dataclass
class DownloadedImage:
    repo: str
    digest: Optional[str]
    manifest_path: Path
    layers: List[DownloadedBlob] = field(default_factory=list)


def _require_digest(ref: ImageRef) -> str:
    if not ref.digest:
        raise ValueError(f"reference must include a digest (REPO@sha256:...): {ref.canonical_ref}")
    return ref.digest


def _slug(ref: ImageRef) -> str:
    suffix = ref.tag if ref.tag else (ref.digest or "").split(":")[-1][:12]
    return re.sub(r"[^\w]+", "-", ref.local_name) + "-" + suffix


async def _read_file(path: Path) -> AsyncIterator[bytes]:
    async with aiofiles.open(path, mode="rb") as f:
        while True:
            chunk = await f.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


async def _sha256_file(path: Path) -> str:
    hasher = hashlib.sha256()
    async for chunk in _read_file(path):
        hasher.update(chunk)
    return "sha256:" + hasher.hexdigest()


class Operations:
    """
    Application service facade for CLI operations.

    Each coroutine opens one ``RegistryClient`` for the repository named
    by its reference and closes it before returning. Exceptions propagate
    unchanged for central exit-code mapping.
    """

    def __init__(self, config: OpsConfig, context: Optional[CLIContext] = None):
        self.cfg = config
        self.context = context or CLIContext.from_env()

    def parse_ref(self, ref: str) -> ImageRef:
        return parse_repo_and_ref(ref, self.context.settings.default_index)

    def _client(self, ref: ImageRef, **kwargs) -> RegistryClient:
        return self.context.client(
            ref,
            username=self.cfg.username,
            password=self.cfg.password,
            insecure=self.cfg.insecure,
            **kwargs,
        )

    async def ping(self, name: str) -> PingResult:
        """Probe the registry that hosts ``name``."""
        ref = self.parse_ref(name)
        async with self._client(ref) as client:
            resp = await client.ping()
            supports_v2 = await client.supports_v2()
        return PingResult(
            status_code=resp.status_code,
            api_version=resp.headers.get("docker-distribution-api-version"),
            supports_v2=supports_v2,
            challenge=resp.headers.get("www-authenticate"),
        )

    async def login(self, name: str, *, push: bool = False) -> AuthInfo:
        """Negotiate credentials for ``name`` and return what was obtained."""
        ref = self.parse_ref(name)
        scopes = ["pull", "push"] if push else ["pull"]
        async with self._client(ref, scopes=scopes) as client:
            await client.login()
            return client.auth_info

    async def tags(self, name: str) -> Any:
        ref = self.parse_ref(name)
        async with self._client(ref) as client:
            return await client.list_tags()

    async def manifest(
        self,
        name: str,
        *,
        accept_manifest_lists: bool = False,
        accept_oci_manifests: bool = False,
    ) -> ManifestResult:
        ref = self.parse_ref(name)
        async with self._client(ref) as client:
            return await client.get_manifest(
                ref.reference,
                accept_manifest_lists=accept_manifest_lists,
                accept_oci_manifests=accept_oci_manifests,
            )

    async def delete_manifest(self, name: str) -> str:
        ref = self.parse_ref(name)
        async with self._client(ref) as client:
            await client.delete_manifest(ref.reference)
        return ref.reference

    async def head_blob(self, name: str) -> BlobHead:
        ref = self.parse_ref(name)
        digest = _require_digest(ref)
        async with self._client(ref) as client:
            responses = await client.head_blob(digest)
        return _blob_head(responses)

    async def download_blob(self, name: str, dest: Optional[Path] = None) -> DownloadedBlob:
        """Stream a blob to ``dest`` (default: ``<hex prefix>.blob``)."""
        ref = self.parse_ref(name)
        digest = _require_digest(ref)
        dest = Path(dest) if dest else Path(digest.split(":")[-1][:12] + ".blob")
        async with self._client(ref) as client:
            size = await _download(client, digest, dest)
        return DownloadedBlob(path=dest, size=size, digest=digest)

    async def upload_blob(self, name: str, path: Path, *, content_type: Optional[str] = None) -> PushResult:
        ref = self.parse_ref(name)
        path = Path(path)
        digest = await _sha256_file(path)
        logger.info("Uploading blob %s (%s)", path, digest)
        async with self._client(ref) as client:
            return await client.blob_upload(
                digest,
                _read_file(path),
                path.stat().st_size,
                content_type=content_type,
            )

    async def put_manifest(self, name: str, path: Path, *, media_type: Optional[str] = None) -> PushResult:
        ref = self.parse_ref(name)
        async with aiofiles.open(path, mode="rb") as f:
            data = await f.read()
        async with self._client(ref) as client:
            return await client.put_manifest(data, ref.reference, media_type=media_type)

    async def download_image(self, name: str, dest_dir: Optional[Path] = None) -> DownloadedImage:
        """
        Download an image manifest and all of its layers.

        Writes ``<slug>.manifest`` and one ``<slug>-<n>.<hex>.layer`` file
        per layer into ``dest_dir``.

        Raises:
            ValueError: If the reference resolves to a manifest list
        """
        ref = self.parse_ref(name)
        dest_dir = Path(dest_dir or ".")
        dest_dir.mkdir(parents=True, exist_ok=True)
        slug = _slug(ref)

        async with self._client(ref, accept_manifest_lists=False) as client:
            result = await client.get_manifest(ref.reference, accept_manifest_lists=False)
            if isinstance(result.manifest, (ManifestV2List, ManifestOCIIndex)):
                raise ValueError(f"{ref.canonical_ref} is a manifest list; pull a platform digest instead")

            manifest_path = dest_dir / f"{slug}.manifest"
            async with aiofiles.open(manifest_path, mode="wb") as f:
                await f.write(result.body)
            image = DownloadedImage(repo=ref.canonical_name, digest=result.digest, manifest_path=manifest_path)

            for idx, layer in enumerate(result.manifest.layers, start=1):
                hex_prefix = layer.digest.split(":")[-1][:12]
                layer_path = dest_dir / f"{slug}-{idx}.{hex_prefix}.layer"
                size = await _download(client, layer.digest, layer_path)
                image.layers.append(DownloadedBlob(path=layer_path, size=size, digest=layer.digest))
                logger.info("Downloaded layer %d of %d: %s", idx, len(result.manifest.layers), layer_path)
        return image


async def _download(client: RegistryClient, digest: str, dest: Path) -> int:
    size = 0
    async with await client.create_blob_read_stream(digest) as blob:
        try:
            async with aiofiles.open(dest, mode="wb") as f:
                async for chunk in blob.stream:
                    await f.write(chunk)
                    size += len(chunk)
        except BaseException:
            # Bytes written before a digest failure are not trustworthy
            dest.unlink(missing_ok=True)
            raise
    return size


def _blob_head(responses: List[RegistryResponse]) -> BlobHead:
    last = responses[-1]
    length = last.headers.get("content-length")
    return BlobHead(
        digest=responses[0].headers.get("docker-content-digest"),
        content_length=int(length) if length else None,
        content_type=last.headers.get("content-type"),
        hops=[str(r.url).split("?", 1)[0] for r in responses],
    )


def describe_auth(auth_info: Optional[AuthInfo]) -> Dict[str, str]:
    """Render ``AuthInfo`` for display without secrets."""
    if auth_info is None:
        return {"type": "None"}
    data = {"type": auth_info.type}
    username = getattr(auth_info, "username", None)
    if username:
        data["username"] = username
    return data
