"""
Content digest parsing and verification.

Parses ``Docker-Content-Digest`` header values and verifies response bytes
against them while the bytes stream through, without buffering. The same
verifier backs both blob streams and buffered manifest bodies.
"""
from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from ..errors import BadDigestError, InvalidContentError, UnsupportedError

__all__ = [
    "ContentDigest",
    "DigestVerifier",
    "VerifyingStream",
    "parse_digest_header",
    "verifying_stream",
    "md5_verifying_stream",
    "digest_from_manifest_str",
]

SUPPORTED_ALGORITHMS = ("sha256",)


@dataclass(frozen=True)
class ContentDigest:
    """
    Parsed ``algorithm:hex`` digest.

    Only ``sha256`` is supported.
    """
    algorithm: str
    expected_hex: str

    @property
    def raw(self) -> str:
        return f"{self.algorithm}:{self.expected_hex}"

    def verifier(self) -> DigestVerifier:
        """Start a fresh running hash for this digest."""
        return DigestVerifier(
            hashlib.sha256(),
            self.expected_hex,
            label="Docker-Content-Digest",
        )


def parse_digest_header(value: Optional[str]) -> ContentDigest:
    """
    Parse a ``Docker-Content-Digest`` header value.

    Raises:
        BadDigestError: If the value is missing, has no ``:`` separator or
            names an unsupported algorithm
    """
    if not value:
        raise BadDigestError('missing "Docker-Content-Digest" header')

    err_pre = f'could not parse Docker-Content-Digest header "{value}": '
    algorithm, sep, hex_digest = value.partition(":")
    if not sep:
        raise BadDigestError(err_pre + json.dumps(value))
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise BadDigestError(err_pre + f"Unsupported hash algorithm {json.dumps(algorithm)}")
    return ContentDigest(algorithm=algorithm, expected_hex=hex_digest)


class DigestVerifier:
    """
    Running hash compared against an expected value at the end.

    Args:
        hasher: A fresh ``hashlib`` object
        expected: Expected digest rendered the same way as ``render``
        label: Header name used in error messages
        render: Turns the finished hasher into a comparable string
    """

    def __init__(
        self,
        hasher: Any,
        expected: str,
        *,
        label: str,
        render: Callable[[Any], str] = lambda h: h.hexdigest(),
    ) -> None:
        self._hasher = hasher
        self._render = render
        self.expected = expected
        self.label = label

    def update(self, chunk: bytes) -> None:
        self._hasher.update(chunk)

    def verify(self) -> None:
        """
        Compare the accumulated hash with the expected value.

        Raises:
            BadDigestError: On mismatch
        """
        actual = self._render(self._hasher)
        if actual != self.expected:
            raise BadDigestError(
                f"{self.label} ({self.expected} vs {actual})",
                expected=self.expected,
                actual=actual,
            )


class VerifyingStream:
    """
    Pass-through async byte stream that checks a digest at end-of-stream.

    Every chunk is forwarded as soon as it arrives; the final
    ``__anext__`` raises ``BadDigestError`` instead of ``StopAsyncIteration``
    when the hash does not match. Chunks already delivered are not retracted.

    ``aclose()`` closes the upstream iterator and then runs ``on_close``
    (typically the HTTP response's ``aclose``), so abandoning a download
    releases the connection.
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        verifier: DigestVerifier,
        *,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._source = source
        self._verifier = verifier
        self._on_close = on_close
        self._done = False

    def __aiter__(self) -> VerifyingStream:
        return self

    async def __anext__(self) -> bytes:
        if self._done:
            raise StopAsyncIteration
        try:
            chunk = await self._source.__anext__()
        except StopAsyncIteration:
            self._done = True
            self._verifier.verify()
            raise
        self._verifier.update(chunk)
        return chunk

    async def aclose(self) -> None:
        self._done = True
        source_close = getattr(self._source, "aclose", None)
        try:
            if source_close is not None:
                await source_close()
        finally:
            if self._on_close is not None:
                await self._on_close()

    async def __aenter__(self) -> VerifyingStream:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def verifying_stream(
    source: AsyncIterator[bytes],
    expected: Union[ContentDigest, str],
    *,
    on_close: Optional[Callable[[], Awaitable[None]]] = None,
) -> VerifyingStream:
    """Wrap ``source`` so it fails with ``BadDigestError`` on a sha256 mismatch."""
    if isinstance(expected, str):
        expected = parse_digest_header(expected)
    return VerifyingStream(source, expected.verifier(), on_close=on_close)


def md5_verifier(content_md5: str) -> DigestVerifier:
    """Verifier for a base64 ``Content-MD5`` header."""
    return DigestVerifier(
        hashlib.md5(),
        content_md5,
        label="BadDigestError: Content-MD5",
        render=lambda h: base64.b64encode(h.digest()).decode("ascii"),
    )


def md5_verifying_stream(
    source: AsyncIterator[bytes],
    content_md5: str,
    *,
    on_close: Optional[Callable[[], Awaitable[None]]] = None,
) -> VerifyingStream:
    """Wrap ``source`` so it fails with ``BadDigestError`` on a Content-MD5 mismatch."""
    return VerifyingStream(source, md5_verifier(content_md5), on_close=on_close)


def digest_from_manifest_str(manifest_str: Union[str, bytes]) -> str:
    """
    Calculate the ``Docker-Content-Digest`` of a manifest.

    The JSON is parsed only to reject schemaVersion 1; the hash is taken over
    the original bytes, never a re-serialization.

    Returns:
        ``sha256:<hex>``

    Raises:
        InvalidContentError: If the manifest is not valid JSON
        UnsupportedError: If the manifest is schemaVersion 1
    """
    raw = manifest_str.encode("utf-8") if isinstance(manifest_str, str) else manifest_str
    try:
        manifest = json.loads(raw)
    except ValueError as e:
        raise InvalidContentError(f"could not parse manifest: {e}\n{raw[:512]!r}") from e
    if isinstance(manifest, dict) and manifest.get("schemaVersion") == 1:
        raise UnsupportedError("schemaVersion 1 is not supported")
    return "sha256:" + hashlib.sha256(raw).hexdigest()
