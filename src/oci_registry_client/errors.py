"""
Registry client error classes.

Provides a clear taxonomy of errors that can occur while talking to an OCI
distribution registry. HTTP failures are mapped from status codes onto
``HttpError`` refinements so callers can branch on the class instead of
inspecting raw responses.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Type

if TYPE_CHECKING:
    from .registry.http import RegistryResponse


class RegistryError(Exception):
    """
    Base class for all registry client errors.

    Everything raised deliberately by this package derives from this class,
    so ``except RegistryError`` catches every library failure while leaving
    programming errors and transport exceptions untouched.
    """
    pass


class ParseError(RegistryError):
    """
    Local parse failure.

    Raised when:
    - A ``WWW-Authenticate`` challenge is malformed
    - A repository or image reference is malformed
    - A response body that must be JSON is not

    Never retried; the input will not improve on a second attempt.
    """
    pass


class InvalidContentError(ParseError):
    """Response body could not be decoded as the expected JSON document."""
    pass


class InvalidReferenceError(ParseError, ValueError):
    """Repository, index or image reference string is malformed."""
    pass


class BadDigestError(RegistryError):
    """
    Content integrity check failed.

    Raised when:
    - ``Docker-Content-Digest`` is missing, malformed or uses an unsupported algorithm
    - The server-reported digest differs from the requested digest
    - Streamed or buffered bytes hash to a different value than declared
    - ``Content-MD5`` does not match the body

    Data delivered before this error must be discarded.
    """

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class HttpError(RegistryError):
    """
    Registry answered with an unexpected HTTP status.

    Attributes:
        response: The offending response (body already consumed)
        errors: Structured registry errors extracted from the body, each a
            dict with at least a string ``message``
    """
    status_code: Optional[int] = None

    def __init__(self, response: Optional[RegistryResponse], errors: List[Dict[str, Any]], message: str):
        super().__init__(message)
        self.response = response
        self.errors = errors
        if response is not None:
            self.status_code = response.status_code


class UnauthorizedError(HttpError):
    """HTTP 401: credentials missing or rejected."""
    status_code = 401


class ForbiddenError(HttpError):
    """HTTP 403: credentials valid but the requested action is denied."""
    status_code = 403


class NotFoundError(HttpError):
    """HTTP 404: repository, manifest or blob does not exist."""
    status_code = 404


class UploadError(RegistryError):
    """
    Push-path failure (manifest PUT, blob upload POST/PUT, upload session
    without a ``Location`` header).

    Carries a fixed human message; the underlying ``HttpError`` or transport
    error is chained as ``__cause__``.
    """
    pass


class TooManyRedirectsError(RegistryError):
    """Redirect chain exceeded the configured bound."""
    pass


class UnsupportedError(RegistryError):
    """
    Requested behavior is not supported.

    Raised when:
    - A manifest declares schemaVersion 1
    - A registry offers an auth scheme other than Basic or Bearer
    - A token realm uses a scheme other than http/https
    - Plaintext HTTP is requested for the official index
    """
    pass


class ProtocolError(RegistryError):
    """
    Registry or authorization server violated the distribution protocol.

    Raised when:
    - A 401 ping carries no ``WWW-Authenticate`` challenge
    - A token endpoint answers 200 without a string ``token``
    """
    pass


_HTTP_ERRORS: Dict[int, Type[HttpError]] = {
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
}


def http_error_class(status_code: int) -> Type[HttpError]:
    """Return the ``HttpError`` refinement for ``status_code``."""
    return _HTTP_ERRORS.get(status_code, HttpError)


__all__ = [
    "RegistryError",
    "ParseError",
    "InvalidContentError",
    "InvalidReferenceError",
    "BadDigestError",
    "HttpError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "UploadError",
    "TooManyRedirectsError",
    "UnsupportedError",
    "ProtocolError",
    "http_error_class",
]
