"""
Authorization state for registry requests.

``AuthInfo`` is the credential negotiated by ``RegistryClient.login()``:
no credentials, HTTP Basic, or a bearer token from a token endpoint. It is
turned into an ``Authorization`` header by ``set_auth_header``.
"""
from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, ClassVar, List, MutableMapping, Optional, Sequence, Union

from ..errors import InvalidContentError

if TYPE_CHECKING:
    from .http import RegistryResponse

__all__ = [
    "AuthInfo",
    "NoAuth",
    "BasicAuth",
    "BearerAuth",
    "basic_auth_header",
    "set_auth_header",
    "make_auth_scope",
    "TOKEN_ERROR_DECODERS",
    "token_error_message",
    "unauthorized_message",
]


@dataclass(frozen=True)
class NoAuth:
    """Registry does not require credentials."""
    type: ClassVar[str] = "None"


@dataclass(frozen=True)
class BasicAuth:
    """HTTP Basic credentials held by the client."""
    type: ClassVar[str] = "Basic"
    username: str
    password: str

    def __repr__(self) -> str:
        return f"BasicAuth(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class BearerAuth:
    """Token obtained from the registry's token endpoint."""
    type: ClassVar[str] = "Bearer"
    token: str

    def __repr__(self) -> str:
        return "BearerAuth(token='***')"


AuthInfo = Union[NoAuth, BasicAuth, BearerAuth]


def basic_auth_header(username: str, password: str) -> str:
    """Encode ``Basic <base64(username:password)>``."""
    raw = f"{username}:{password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def set_auth_header(headers: MutableMapping[str, str], auth_info: Optional[AuthInfo]) -> None:
    """
    Apply ``auth_info`` to ``headers`` in place.

    ``NoAuth`` (or None) removes any existing ``authorization`` header.
    """
    if isinstance(auth_info, BasicAuth):
        headers["authorization"] = basic_auth_header(auth_info.username, auth_info.password)
    elif isinstance(auth_info, BearerAuth):
        headers["authorization"] = f"Bearer {auth_info.token}"
    else:
        headers.pop("authorization", None)


def make_auth_scope(resource: str, name: str, actions: Sequence[str]) -> str:
    """
    Build a token scope string.

    Examples:
        >>> make_auth_scope("repository", "library/busybox", ["pull", "push"])
        'repository:library/busybox:pull,push'
    """
    return f"{resource}:{name}:{','.join(actions)}"


# Token endpoint failure bodies come in several shapes. Decoders are tried
# in order; the first to return a string wins.

def _body_errors_message(obj: Any) -> Optional[str]:
    """``{"body": {"errors": [{"message": ...}]}}``"""
    body = obj.get("body") if isinstance(obj, dict) else None
    if isinstance(body, dict):
        return _errors_message(body)
    return None


def _body_details(obj: Any) -> Optional[str]:
    """``{"body": {"details": ...}}``"""
    body = obj.get("body") if isinstance(obj, dict) else None
    if isinstance(body, dict) and isinstance(body.get("details"), str):
        return body["details"]
    return None


def _errors_message(obj: Any) -> Optional[str]:
    """``{"errors": [{"message": ...}]}``"""
    errors = obj.get("errors") if isinstance(obj, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        message = errors[0].get("message")
        if isinstance(message, str):
            return message
    return None


def _message(obj: Any) -> Optional[str]:
    """``{"message": ...}``"""
    if isinstance(obj, dict) and isinstance(obj.get("message"), str):
        return obj["message"]
    return None


def _details(obj: Any) -> Optional[str]:
    """``{"details": ...}``"""
    if isinstance(obj, dict) and isinstance(obj.get("details"), str):
        return obj["details"]
    return None


TOKEN_ERROR_DECODERS: List[Callable[[Any], Optional[str]]] = [
    _body_errors_message,
    _body_details,
    _errors_message,
    _message,
    _details,
]


def token_error_message(obj: Any) -> str:
    """
    Pick the most specific message out of a token endpoint error body.

    Falls back to the raw body rendered as text.
    """
    for decoder in TOKEN_ERROR_DECODERS:
        message = decoder(obj)
        if message is not None:
            return message
    if isinstance(obj, str):
        return obj
    return json.dumps(obj)


async def unauthorized_message(resp: RegistryResponse) -> str:
    """
    Describe a 401 answer from a registry or token endpoint.

    Uses the most specific message in a JSON body, else the raw body text,
    else the status line when the body is empty.
    """
    try:
        obj = await resp.json()
    except InvalidContentError:
        obj = (await resp.body()).decode("utf-8", errors="replace")
    if obj is None or (isinstance(obj, str) and not obj.strip()):
        return f"{resp.status_code} {resp.reason_phrase}".strip()
    return token_error_message(obj)
