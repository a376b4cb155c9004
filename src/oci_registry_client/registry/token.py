"""
Bearer token exchange with a registry authorization server.

See docker/distribution ``docs/spec/auth/token.md``: the client GETs the
challenge ``realm`` with ``service``, one ``scope`` parameter per requested
scope and, when it holds credentials, ``account`` plus Basic auth.
"""
from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

import httpx

from ..errors import ProtocolError, UnsupportedError
from .auth import basic_auth_header, unauthorized_message
from .http import RequestExecutor

__all__ = ["fetch_token", "token_url"]

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^(\w+)://")


def token_url(
    realm: str,
    *,
    service: Optional[str] = None,
    scopes: Sequence[str] = (),
    account: Optional[str] = None,
    insecure: bool = False,
) -> httpx.URL:
    """
    Build the token request URL.

    A realm without a scheme gets ``http://`` when ``insecure`` and
    ``https://`` otherwise.

    Raises:
        UnsupportedError: If the realm names a scheme other than http/https
    """
    match = _SCHEME_RE.match(realm)
    if not match:
        realm = ("http" if insecure else "https") + "://" + realm
    elif match.group(1) not in ("http", "https"):
        raise UnsupportedError(f'unsupported scheme for WWW-Authenticate realm "{realm}": "{match.group(1)}"')

    query = []
    if service:
        query.append(("service", service))
    # Repeated, not comma-joined
    for scope in scopes:
        query.append(("scope", scope))
    if account:
        query.append(("account", account))

    url = httpx.URL(realm)
    if query:
        url = url.copy_merge_params(httpx.QueryParams(query))
    return url


async def fetch_token(
    executor: RequestExecutor,
    *,
    realm: str,
    service: Optional[str] = None,
    scopes: Sequence[str] = (),
    username: Optional[str] = None,
    password: Optional[str] = None,
    insecure: bool = False,
) -> str:
    """
    Exchange credentials (or nothing) for a bearer token.

    Args:
        executor: Request executor used for the token GET
        realm: ``realm`` parameter of the Bearer challenge
        service: ``service`` parameter of the Bearer challenge
        scopes: Requested scopes, e.g. ``repository:library/busybox:pull``
        username: Sent as ``account`` and with Basic auth when set
        password: Basic auth password (empty when unset)
        insecure: Default an unqualified realm to http

    Returns:
        The token string

    Raises:
        HttpError: ``Registry auth failed: ...`` when the server answers 401
        ProtocolError: If a 200 response has no string ``token``
        UnsupportedError: If the realm scheme is not http/https
    """
    url = token_url(realm, service=service, scopes=scopes, account=username, insecure=insecure)
    headers = {}
    if username:
        headers["authorization"] = basic_auth_header(username, password or "")

    logger.debug("Requesting token from %s (service=%s, scopes=%s)", realm, service, list(scopes))
    resp = await executor.request("GET", url, headers=headers, expect_status=(200, 401))

    if resp.status_code == 401:
        message = await unauthorized_message(resp)
        raise await resp.to_http_error("Registry auth failed: " + message)

    body = await resp.json()
    token = body.get("token") if isinstance(body, dict) else None
    if not isinstance(token, str):
        raise ProtocolError("authorization server did not include a token in the response")
    return token
