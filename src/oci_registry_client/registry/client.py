"""
Registry client for one repository on an OCI distribution registry.

``RegistryClient`` composes the request executor, redirect follower, auth
negotiation and digest verification into the public registry operations.
Auth state (logged-in scope and the active ``AuthInfo``) belongs to a single
client instance; nothing is cached process-wide.

Example:
    async with RegistryClient("docker.io/library/busybox") as client:
        tags = await client.list_tags()
        result = await client.get_manifest("latest")
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Dict, List, Optional, Sequence, Union
from urllib.parse import quote

import httpx

from ..errors import BadDigestError, ProtocolError, RegistryError, UnsupportedError, UploadError
from ..manifest import Manifest, parse_manifest
from ..media_types import (
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_MANIFEST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
    MEDIATYPE_OCTET_STREAM,
)
from ..reference import RepositoryRef, parse_repo, url_from_index
from ..settings import Settings
from .auth import AuthInfo, BasicAuth, BearerAuth, NoAuth, make_auth_scope, set_auth_header, unauthorized_message
from .challenge import parse_www_authenticate
from .digest import VerifyingStream, parse_digest_header, verifying_stream
from .http import RegistryResponse, RequestExecutor
from .token import fetch_token

__all__ = ["RegistryClient", "ManifestResult", "BlobStream", "PushResult"]

logger = logging.getLogger(__name__)

PUSH_ACTIONS = ("pull", "push")


@dataclass
class ManifestResult:
    """
    Fetched manifest.

    Attributes:
        response: Registry response (body already read)
        manifest: Parsed manifest variant
        body: Raw manifest bytes, as hashed by the registry
    """
    response: RegistryResponse
    manifest: Manifest
    body: bytes

    @property
    def digest(self) -> Optional[str]:
        """Server-reported ``Docker-Content-Digest``, if any."""
        return self.response.headers.get("docker-content-digest")


@dataclass
class BlobStream:
    """
    Open blob download.

    ``responses`` is the redirect chain: the first carries the registry's
    headers, the last the payload headers (``content-length`` etc.).
    ``stream`` yields the payload and must be consumed or closed.
    """
    responses: List[RegistryResponse]
    stream: Union[VerifyingStream, Any]

    async def aclose(self) -> None:
        closer = getattr(self.stream, "aclose", None)
        if closer is not None:
            await closer()
        await self.responses[-1].aclose()

    async def __aenter__(self) -> BlobStream:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


@dataclass(frozen=True)
class PushResult:
    """Headers reported by the registry after a successful push."""
    digest: Optional[str]
    location: Optional[str]


@dataclass
class _Session:
    logged_in: bool = False
    scope: Optional[str] = None
    auth_info: Optional[AuthInfo] = None
    headers: Dict[str, str] = field(default_factory=dict)


class RegistryClient:
    """
    Docker Registry HTTP API v2 client for a single repository.

    Args:
        name: Repository string (e.g. ``busybox``, ``localhost:5000/foo``);
            mutually exclusive with ``repo``
        repo: Already parsed repository
        username: Username for Basic auth and token requests
        password: Password for Basic auth and token requests
        token: Pre-obtained bearer token sent until the first login
        insecure: Skip TLS verification; unqualified token realms use http
        scheme: Force http or https for the registry URL
        accept_manifest_lists: Accept manifest lists (and OCI indexes) by default
        accept_oci_manifests: Accept OCI manifests by default
        user_agent: ``User-Agent`` header value
        scopes: Actions for the default login scope (default ``["pull"]``)
        settings: Base settings; explicit arguments override them
        transport: Custom ``httpx`` transport (tests use ``httpx.MockTransport``)
    """

    version = 2

    def __init__(
        self,
        name: Optional[str] = None,
        *,
        repo: Optional[RepositoryRef] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        insecure: Optional[bool] = None,
        scheme: Optional[str] = None,
        accept_manifest_lists: Optional[bool] = None,
        accept_oci_manifests: Optional[bool] = None,
        user_agent: Optional[str] = None,
        scopes: Optional[Sequence[str]] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or Settings()

        if repo is not None:
            self.repo = repo
        elif name:
            self.repo = parse_repo(name, self.settings.default_index)
        else:
            raise ValueError("name or repo required")

        def pick(value, default):
            return default if value is None else value

        self.username = pick(username, self.settings.username)
        self.password = pick(password, self.settings.password)
        token = pick(token, self.settings.token)
        self.insecure = pick(insecure, self.settings.insecure)
        self.accept_manifest_lists = pick(accept_manifest_lists, self.settings.accept_manifest_lists)
        self.accept_oci_manifests = pick(accept_oci_manifests, self.settings.accept_oci_manifests)
        self.scopes = list(scopes) if scopes is not None else ["pull"]

        self._session = _Session()
        if token:
            set_auth_header(self._session.headers, BearerAuth(token=token))
        elif self.username or self.password:
            set_auth_header(
                self._session.headers,
                BasicAuth(username=self.username or "", password=self.password or ""),
            )
        # Bound to the running loop on first login()
        self._login_lock: Optional[asyncio.Lock] = None

        self.url = url_from_index(self.repo.index, pick(scheme, self.settings.scheme))
        self._client = httpx.AsyncClient(
            timeout=self.settings.http_timeout_s,
            verify=not self.insecure,
            transport=transport,
        )
        self._api = RequestExecutor(
            self._client,
            base_url=self.url,
            user_agent=user_agent or self.settings.user_agent,
            retries=self.settings.http_retry,
        )

    @classmethod
    def from_settings(cls, name: str, settings: Settings, **kwargs) -> RegistryClient:
        return cls(name, settings=settings, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<RegistryClient {self.repo.canonical_name} at {self.url}>"

    # -- auth ------------------------------------------------------------

    @property
    def logged_in(self) -> bool:
        return self._session.logged_in

    @property
    def logged_in_scope(self) -> Optional[str]:
        return self._session.scope

    @property
    def auth_info(self) -> Optional[AuthInfo]:
        return self._session.auth_info

    def _headers(self) -> Dict[str, str]:
        return dict(self._session.headers)

    def _repo_path(self, *parts: str) -> str:
        tail = "/".join(quote(p, safe=":@") for p in parts)
        return f"/v2/{quote(self.repo.remote_name, safe='/')}/{tail}"

    async def ping(
        self,
        *,
        headers: Optional[Dict[str, str]] = None,
        expect_status: Sequence[int] = (200, 401, 404),
    ) -> RegistryResponse:
        """
        GET ``/v2/`` to probe the registry.

        ``404`` means no v2 API; ``401`` carries the ``WWW-Authenticate``
        challenge and can be handed to ``login()``; ``200`` means no auth
        is needed. Never retried, with a short connect timeout.
        """
        timeout = httpx.Timeout(self.settings.http_timeout_s, connect=self.settings.ping_connect_timeout_s)
        return await self._api.request(
            "GET",
            "/v2/",
            headers=headers,
            expect_status=expect_status,
            timeout=timeout,
            retry=False,
        )

    async def perform_login(
        self,
        scope: Optional[str] = None,
        ping_response: Optional[RegistryResponse] = None,
    ) -> AuthInfo:
        """
        Negotiate credentials without changing client state.

        Args:
            scope: Token scope, e.g. ``repository:library/busybox:pull``
            ping_response: Earlier ``ping()`` response to reuse

        Returns:
            NoAuth, BasicAuth or BearerAuth

        Raises:
            ProtocolError: If a 401 ping carries no ``WWW-Authenticate``
            UnsupportedError: If the challenge scheme is not Basic or Bearer
        """
        resp = ping_response
        if resp is not None and resp.status_code == 200:
            return NoAuth()
        if resp is None or not resp.headers.get("www-authenticate"):
            resp = await self.ping(expect_status=(200, 401))
            if resp.status_code == 200:
                logger.debug("Registry %s requires no authorization", self.url)
                return NoAuth()

        header = resp.headers.get("www-authenticate")
        if not header:
            raise ProtocolError(
                'missing WWW-Authenticate header from "GET /v2/" '
                "(see https://docs.docker.com/registry/spec/api/#api-version-check)"
            )

        challenge = parse_www_authenticate(header)
        scheme = challenge.scheme.lower()
        logger.debug("Registry %s challenged with %s (scope=%s)", self.url, challenge.scheme, scope)

        if scheme == "basic":
            return BasicAuth(username=self.username or "", password=self.password or "")
        if scheme == "bearer":
            token = await fetch_token(
                self._api,
                realm=challenge.param("realm") or "",
                service=challenge.param("service"),
                scopes=[scope] if scope else [],
                username=self.username,
                password=self.password,
                insecure=self.insecure,
            )
            return BearerAuth(token=token)
        raise UnsupportedError(f'unsupported auth scheme: "{challenge.scheme}"')

    async def login(
        self,
        scope: Optional[str] = None,
        ping_response: Optional[RegistryResponse] = None,
    ) -> None:
        """
        Log in for ``scope`` unless already logged in with that exact scope.

        The default scope is ``repository:<remote_name>:<scopes>``. On
        success the negotiated credentials apply to every later request.
        Concurrent logins on one client are serialized; the last one wins.
        """
        if scope is None:
            scope = make_auth_scope("repository", self.repo.remote_name, self.scopes)

        if self._login_lock is None:
            self._login_lock = asyncio.Lock()
        async with self._login_lock:
            if self._session.logged_in and self._session.scope == scope:
                return

            auth_info = await self.perform_login(scope=scope, ping_response=ping_response)
            self._session.logged_in = True
            self._session.scope = scope
            self._session.auth_info = auth_info
            set_auth_header(self._session.headers, auth_info)
            logger.debug("Logged in to %s as %s (scope=%s)", self.url, auth_info.type, scope)

    async def _login_push(self) -> None:
        await self.login(make_auth_scope("repository", self.repo.remote_name, PUSH_ACTIONS))

    # -- operations ------------------------------------------------------

    async def supports_v2(self) -> bool:
        """
        Determine if the registry speaks the v2 API.

        Returns False when the registry cannot be reached at all.
        """
        try:
            resp = await self.ping()
        except httpx.TransportError as e:
            logger.debug("Ping of %s failed: %s", self.url, e)
            return False

        header = resp.headers.get("docker-distribution-api-version")
        if header:
            versions = header.replace(",", " ").split()
            if "registry/2.0" in versions:
                return True
        return resp.status_code in (200, 401)

    async def list_tags(self) -> Any:
        """
        List the repository's tags.

        Returns:
            Decoded ``tags/list`` body, e.g. ``{"name": ..., "tags": [...]}``
        """
        await self.login()
        resp = await self._api.request(
            "GET",
            self._repo_path("tags", "list"),
            headers=self._headers(),
            follow_redirects=True,
        )
        return await resp.json()

    def _manifest_accept(self, accept_manifest_lists: bool, accept_oci_manifests: bool) -> str:
        accept = [MEDIATYPE_MANIFEST_V2]
        if accept_manifest_lists:
            accept.append(MEDIATYPE_MANIFEST_LIST_V2)
        if accept_oci_manifests:
            accept.append(MEDIATYPE_OCI_MANIFEST_V1)
            if accept_manifest_lists:
                accept.append(MEDIATYPE_OCI_MANIFEST_INDEX_V1)
        return ", ".join(accept)

    async def get_manifest(
        self,
        ref: str,
        *,
        accept_manifest_lists: Optional[bool] = None,
        accept_oci_manifests: Optional[bool] = None,
        follow_redirects: bool = True,
    ) -> ManifestResult:
        """
        Fetch an image manifest by tag or digest.

        The body is checked against ``Docker-Content-Digest`` when the
        registry sends it. Use ``digest_from_manifest_str`` on
        ``result.body`` when a digest is needed and the header is absent.

        Raises:
            UnauthorizedError: ``Manifest "<ref>" Not Found: ...`` on 401
            UnsupportedError: If the manifest is schemaVersion 1
            BadDigestError: If the body does not match the reported digest
        """
        if accept_manifest_lists is None:
            accept_manifest_lists = self.accept_manifest_lists
        if accept_oci_manifests is None:
            accept_oci_manifests = self.accept_oci_manifests

        await self.login()
        headers = self._headers()
        headers["accept"] = self._manifest_accept(accept_manifest_lists, accept_oci_manifests)

        resp = await self._api.request(
            "GET",
            self._repo_path("manifests", ref),
            headers=headers,
            expect_status=(200, 401),
            follow_redirects=follow_redirects,
        )
        if resp.status_code == 401:
            message = await unauthorized_message(resp)
            raise await resp.to_http_error(f'Manifest "{ref}" Not Found: {message}')

        body = await resp.body()
        data = await resp.json()
        if isinstance(data, dict) and data.get("schemaVersion") == 1:
            raise UnsupportedError("schemaVersion 1 is not supported")

        dcd = resp.headers.get("docker-content-digest")
        if dcd:
            verifier = parse_digest_header(dcd).verifier()
            verifier.update(body)
            verifier.verify()

        return ManifestResult(response=resp, manifest=parse_manifest(data), body=body)

    async def delete_manifest(self, ref: str) -> None:
        """Delete a manifest by digest (most registries refuse tags)."""
        await self._login_push()
        resp = await self._api.request(
            "DELETE",
            self._repo_path("manifests", ref),
            headers=self._headers(),
            expect_status=(200, 202),
        )
        # Some registries answer {"errors": []}
        await resp.body()

    async def _head_or_get_blob(self, method: str, digest: str) -> List[RegistryResponse]:
        await self.login()
        return await self._api.follow_redirects(
            method,
            self._repo_path("blobs", digest),
            headers=self._headers(),
            max_redirects=self.settings.max_redirects,
        )

    async def head_blob(self, digest: str) -> List[RegistryResponse]:
        """
        HEAD a blob, following redirects.

        Interesting headers: ``responses[0]`` ``docker-content-digest`` and
        ``responses[-1]`` ``content-length``.
        """
        responses = await self._head_or_get_blob("HEAD", digest)
        await responses[-1].aclose()
        return responses

    async def create_blob_read_stream(self, digest: str) -> BlobStream:
        """
        Open a streaming download of a blob.

        Raises:
            BadDigestError: Before any bytes are streamed, if the registry
                reports a different digest than ``digest``. Also raised by
                the stream at end-of-stream if the bytes do not match.
        """
        responses = await self._head_or_get_blob("GET", digest)
        last = responses[-1]

        dcd = responses[0].headers.get("docker-content-digest")
        if not dcd:
            logger.debug("No Docker-Content-Digest for blob %s; stream is not verified", digest)
            return BlobStream(responses=responses, stream=last.stream())

        try:
            expected = parse_digest_header(dcd)
            if expected.raw != digest:
                raise BadDigestError(
                    f"Docker-Content-Digest header, {expected.raw}, does not match given digest, {digest}",
                    expected=digest,
                    actual=expected.raw,
                )
        except BadDigestError:
            await last.aclose()
            raise

        stream = verifying_stream(last.stream(), expected, on_close=last.aclose)
        return BlobStream(responses=responses, stream=stream)

    async def put_manifest(
        self,
        manifest_data: Union[bytes, str],
        ref: str,
        *,
        media_type: Optional[str] = None,
    ) -> PushResult:
        """
        Upload a manifest under a tag or digest.

        ``media_type`` defaults to the document's own ``mediaType``, else
        the Docker V2 manifest type.

        Raises:
            UploadError: ``Manifest upload failed.`` on any request failure
        """
        await self._login_push()

        if isinstance(manifest_data, str):
            manifest_data = manifest_data.encode("utf-8")
        if media_type is None:
            media_type = _declared_media_type(manifest_data) or MEDIATYPE_MANIFEST_V2

        headers = self._headers()
        headers["content-type"] = media_type
        try:
            resp = await self._api.request(
                "PUT",
                self._repo_path("manifests", ref),
                headers=headers,
                content=manifest_data,
                expect_status=(201,),
            )
        except (RegistryError, httpx.HTTPError) as e:
            raise UploadError("Manifest upload failed.") from e

        return PushResult(
            digest=resp.headers.get("docker-content-digest"),
            location=resp.headers.get("location"),
        )

    async def blob_upload(
        self,
        digest: str,
        stream: Union[bytes, AsyncIterable[bytes]],
        content_length: int,
        *,
        content_type: Optional[str] = None,
    ) -> PushResult:
        """
        Upload a blob in a single request (POST, then PUT).

        Raises:
            UploadError: ``Blob upload rejected.`` if the session cannot be
                opened or has no ``Location``, ``Blob upload failed.`` if the
                PUT fails
        """
        await self._login_push()

        start_path = self._repo_path("blobs", "uploads") + "/"
        try:
            session = await self._api.request(
                "POST",
                start_path,
                headers=self._headers(),
                expect_status=(202,),
            )
        except (RegistryError, httpx.HTTPError) as e:
            raise UploadError("Blob upload rejected.") from e

        location = session.headers.get("location")
        if not location:
            raise UploadError("No registry upload location header returned")

        upload_url = self._api.resolve(start_path).join(location)
        upload_url = upload_url.copy_merge_params({"digest": digest})

        headers = self._headers()
        headers["content-length"] = str(content_length)
        headers["content-type"] = content_type or MEDIATYPE_OCTET_STREAM
        try:
            resp = await self._api.request(
                "PUT",
                upload_url,
                headers=headers,
                content=stream,
                expect_status=(201,),
            )
        except (RegistryError, httpx.HTTPError) as e:
            raise UploadError("Blob upload failed.") from e

        return PushResult(
            digest=resp.headers.get("docker-content-digest"),
            location=resp.headers.get("location"),
        )


def _declared_media_type(manifest_data: bytes) -> Optional[str]:
    try:
        data = json.loads(manifest_data)
    except ValueError:
        return None
    media_type = data.get("mediaType") if isinstance(data, dict) else None
    return media_type if isinstance(media_type, str) else None
