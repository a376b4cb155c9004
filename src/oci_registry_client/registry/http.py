"""
Request execution for the OCI Distribution API.

Issues single registry requests over ``httpx.AsyncClient``, validates the
expected status codes and turns unexpected responses into structured
``HttpError`` exceptions. Also implements the bounded manual redirect loop
used for blob requests, which commonly redirect to object storage.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import HttpError, InvalidContentError, RegistryError, TooManyRedirectsError, http_error_class
from .digest import md5_verifier, md5_verifying_stream

__all__ = [
    "RegistryResponse",
    "RequestExecutor",
    "ERROR_LIST_DECODERS",
    "extract_registry_errors",
    "MAX_ERROR_BODY_CHARS",
]

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_CHARS = 512
REDIRECT_STATUSES = (302, 307)

ErrorEntry = Dict[str, Any]


# Structured error extraction, tried in order. Each decoder returns the list
# of candidate error objects it recognizes, or None to pass.

def _wrapped_error(obj: Any) -> Optional[List[Any]]:
    """``{"error": {...}}``"""
    if isinstance(obj, dict) and obj.get("error"):
        return [obj["error"]]
    return None


def _error_list(obj: Any) -> Optional[List[Any]]:
    """``{"errors": [...]}``"""
    if isinstance(obj, dict) and isinstance(obj.get("errors"), list):
        return obj["errors"]
    return None


def _bare_object(obj: Any) -> Optional[List[Any]]:
    """``{"code": ..., "message": ...}``"""
    if obj:
        return [obj]
    return None


ERROR_LIST_DECODERS: Sequence[Callable[[Any], Optional[List[Any]]]] = (
    _wrapped_error,
    _error_list,
    _bare_object,
)


def extract_registry_errors(obj: Any) -> List[ErrorEntry]:
    """
    Extract registry error entries from a decoded JSON body.

    Entries without a string ``message`` are dropped.
    """
    for decoder in ERROR_LIST_DECODERS:
        found = decoder(obj)
        if found is not None:
            return [e for e in found if isinstance(e, dict) and isinstance(e.get("message"), str)]
    return []


def _without_query(url: httpx.URL) -> str:
    # Pre-signed redirect targets carry credentials in the query string
    return str(url).split("?", 1)[0]


def _format_error(error: ErrorEntry) -> str:
    parts = [error.get("code") or "", error["message"]]
    if error.get("detail"):
        parts.append(json.dumps(error["detail"]))
    return "    " + ": ".join(p for p in parts if p)


class RegistryResponse:
    """
    Registry response wrapper.

    Wraps a streamed ``httpx.Response``: the body is read at most once and
    cached, ``Content-MD5`` is verified when present (except for partial
    content), and JSON/registry-error decoding helpers are provided.
    """

    def __init__(self, response: httpx.Response) -> None:
        self.raw = response
        self._body: Optional[bytes] = None

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers

    @property
    def url(self) -> httpx.URL:
        return self.raw.url

    @property
    def reason_phrase(self) -> str:
        return self.raw.reason_phrase

    async def body(self) -> bytes:
        """
        Read the full body once.

        Raises:
            BadDigestError: If ``Content-MD5`` does not match
        """
        if self._body is not None:
            return self._body

        body = await self.raw.aread()
        content_md5 = self.headers.get("content-md5")
        if content_md5 and self.status_code != 206:
            verifier = md5_verifier(content_md5)
            verifier.update(body)
            verifier.verify()

        self._body = body
        return body

    async def json(self) -> Any:
        """
        Decode the body as JSON.

        Returns:
            Decoded document, or None for an empty body

        Raises:
            InvalidContentError: If the body is not valid JSON
        """
        text = (await self.body()).decode("utf-8", errors="replace")
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise InvalidContentError(f"Invalid JSON in response: {e}") from e

    async def registry_errors(self) -> List[ErrorEntry]:
        try:
            obj = await self.json()
        except RegistryError:
            return []
        return extract_registry_errors(obj)

    async def to_http_error(self, base_msg: str) -> HttpError:
        """
        Build a descriptive ``HttpError`` from this response.

        The message is the best available detail: structured registry
        errors, else the first 512 characters of the body, else just
        ``base_msg``. HTML bodies are drained, not parsed.
        """
        error_cls = http_error_class(self.status_code)

        if self.headers.get("content-type", "").startswith("text/html"):
            await self.raw.aread()
            return error_cls(self, [], f"{base_msg} (w/ HTML body)")

        try:
            errors = await self.registry_errors() if self.status_code >= 400 else []
            if not errors:
                text = (await self.body()).decode("utf-8", errors="replace")
                if len(text) > 1:
                    errors.append({"message": text[:MAX_ERROR_BODY_CHARS]})
            lines = [_format_error(e) for e in errors]
            return error_cls(self, errors, "\n".join([base_msg, *lines]))
        except (RegistryError, httpx.HTTPError) as e:
            return error_cls(self, [], f"{base_msg} - and failed to parse error body: {e}")

    def stream(self) -> AsyncIterator[bytes]:
        """
        Iterate the body without buffering.

        The returned iterator verifies ``Content-MD5`` at end-of-stream when
        the header is present, and closing it closes the response.
        """
        content_md5 = self.headers.get("content-md5")
        if content_md5 and self.status_code != 206:
            return md5_verifying_stream(self._iter_body(), content_md5)
        return self._iter_body()

    async def _iter_body(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.raw.aiter_bytes():
                yield chunk
        finally:
            await self.raw.aclose()

    async def aclose(self) -> None:
        await self.raw.aclose()

    def __repr__(self) -> str:
        return f"<RegistryResponse [{self.status_code}] {self.url}>"


class RequestExecutor:
    """
    Issues authenticated registry requests and validates their status.

    Args:
        client: Shared ``httpx.AsyncClient`` (owned by the caller)
        base_url: Registry base URL; relative paths are resolved against it
        user_agent: Value always sent as ``User-Agent``
        accept: Default ``Accept`` header, sent only when the caller sets none
        retries: Extra attempts on connect failures (0 disables retry)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        user_agent: str,
        accept: str = "application/json",
        retries: int = 0,
    ) -> None:
        self._client = client
        self.base_url = httpx.URL(base_url)
        self.user_agent = user_agent
        self.accept = accept
        self.retries = retries

    def resolve(self, path: Union[str, httpx.URL]) -> httpx.URL:
        """Resolve ``path`` against the base URL (absolute URLs pass through)."""
        return self.base_url.join(path)

    async def request(
        self,
        method: str,
        path: Union[str, httpx.URL],
        *,
        headers: Optional[Mapping[str, str]] = None,
        content: Any = None,
        expect_status: Sequence[int] = (200,),
        follow_redirects: bool = False,
        stream: bool = False,
        default_accept: bool = True,
        timeout: Any = httpx.USE_CLIENT_DEFAULT,
        retry: bool = True,
    ) -> RegistryResponse:
        """
        Issue one request.

        Args:
            method: HTTP method
            path: Path relative to the registry or an absolute URL
            headers: Request headers (e.g. authorization)
            content: Request body (bytes or async iterable of bytes)
            expect_status: Acceptable status codes
            follow_redirects: Let the transport follow redirects
            stream: Leave the body unread; the caller must consume or close it
            default_accept: Send the default ``Accept`` when none is given
            timeout: Per-request timeout override
            retry: Allow connect-failure retries for this request

        Returns:
            RegistryResponse (body already read unless ``stream``)

        Raises:
            HttpError: If the status is not in ``expect_status``
            httpx.TransportError: On network failure
        """
        req_headers = httpx.Headers(headers)
        if default_accept and self.accept and "accept" not in req_headers:
            req_headers["accept"] = self.accept
        req_headers["user-agent"] = self.user_agent

        url = self.resolve(path)
        request = self._client.build_request(method, url, headers=req_headers, content=content, timeout=timeout)
        # A streamed body cannot be replayed
        replayable = content is None or isinstance(content, (bytes, str))
        raw = await self._send(request, follow_redirects=follow_redirects, retry=retry and replayable)
        resp = RegistryResponse(raw)
        logger.debug("%s %s -> %s", method, _without_query(url), raw.status_code)

        if raw.status_code not in expect_status:
            try:
                raise await resp.to_http_error(f"Unexpected HTTP {raw.status_code} from {path}")
            finally:
                await resp.aclose()

        if not stream:
            await resp.body()
        return resp

    async def _send(self, request: httpx.Request, *, follow_redirects: bool, retry: bool) -> httpx.Response:
        if not retry or self.retries <= 0:
            return await self._client.send(request, stream=True, follow_redirects=follow_redirects)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            reraise=True,
        ):
            with attempt:
                return await self._client.send(request, stream=True, follow_redirects=follow_redirects)
        raise RuntimeError("retry loop exited without a response")

    async def follow_redirects(
        self,
        method: str,
        path: Union[str, httpx.URL],
        *,
        headers: Optional[Mapping[str, str]] = None,
        follow: bool = True,
        max_redirects: int = 3,
    ) -> List[RegistryResponse]:
        """
        Issue a request and manually follow up to ``max_redirects`` hops.

        Redirect targets (often pre-signed CDN URLs) are requested without
        the original headers, so credentials never leave the registry.
        Intermediate responses are closed; the last one is left streaming.

        Returns:
            Every response in order: the first carries the registry's
            headers (e.g. ``Docker-Content-Digest``), the last the payload.

        Raises:
            TooManyRedirectsError: If the chain is longer than ``max_redirects``
            HttpError: If any hop answers other than 200/302/307
        """
        responses: List[RegistryResponse] = []
        target: Union[str, httpx.URL] = path
        hop_headers = headers

        for _ in range(max_redirects):
            resp = await self.request(
                method,
                target,
                headers=hop_headers,
                expect_status=(200, *REDIRECT_STATUSES),
                stream=True,
                default_accept=False,
            )
            responses.append(resp)

            if not follow or resp.status_code not in REDIRECT_STATUSES:
                return responses
            location = resp.headers.get("location")
            if not location:
                return responses

            await resp.aclose()
            target = resp.url.join(location)
            hop_headers = None
            logger.debug("Following %s redirect to %s", resp.status_code, _without_query(target))

        raise TooManyRedirectsError(f"maximum number of redirects ({max_redirects}) hit")
