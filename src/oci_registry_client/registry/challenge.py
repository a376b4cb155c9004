"""
``WWW-Authenticate`` challenge parsing.

Parses a single challenge of the form::

    Bearer realm="https://auth.docker.io/token",service="registry.docker.io"

into a scheme and a parameter mapping. Multiple challenges in one header
value are not supported.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from ..errors import ParseError

__all__ = ["Challenge", "ChallengeParseError", "parse_www_authenticate"]

_SCHEME_RE = re.compile(r"^\s*(\w+)(?:\s+(.*))?$", re.DOTALL)
_SEPARATORS_RE = re.compile(r'([",=])')
_SEPARATORS = frozenset('",=')


class ChallengeParseError(ParseError):
    """
    Malformed challenge parameters.

    Attributes:
        token: The token that could not be consumed (None at end of input)
        position: Index of that token in the tokenized parameter string
    """

    def __init__(self, message: str, token: Optional[str] = None, position: Optional[int] = None):
        super().__init__(message)
        self.token = token
        self.position = position


class _State(str, Enum):
    KEY = "key"
    EQUALS = "equals"
    VALUE = "value"
    QUOTED = "quoted"
    AFTER_QUOTE = "after_quote"
    COMMA = "comma"


@dataclass(frozen=True)
class Challenge:
    """Parsed authentication challenge."""
    scheme: str
    params: Dict[str, str] = field(default_factory=dict)

    def param(self, name: str) -> Optional[str]:
        """Look up a parameter by case-insensitive name."""
        name = name.lower()
        for key, value in self.params.items():
            if key.lower() == name:
                return value
        return None


def _parse_params(header: str) -> Dict[str, str]:
    params: Dict[str, str] = {}
    state = _State.KEY
    key = ""
    value = ""

    for position, tok in enumerate(_SEPARATORS_RE.split(header)):
        if not tok:
            continue
        if state is not _State.QUOTED and not tok.strip():
            continue

        if state is _State.KEY:
            if tok in _SEPARATORS:
                raise ChallengeParseError(f"Parameter name expected, got ({tok})", tok, position)
            key = tok.strip()
            state = _State.EQUALS
        elif state is _State.EQUALS:
            if tok != "=":
                raise ChallengeParseError(f"Equal sign was expected after {key}", tok, position)
            state = _State.VALUE
        elif state is _State.VALUE:
            if tok == '"':
                value = ""
                state = _State.QUOTED
            elif tok in _SEPARATORS:
                raise ChallengeParseError(f"Value was expected after {key}=", tok, position)
            else:
                value = tok.strip()
                params[key] = value
                state = _State.COMMA
        elif state is _State.QUOTED:
            if tok == '"':
                state = _State.AFTER_QUOTE
            else:
                value += tok
        elif state is _State.AFTER_QUOTE:
            if tok == '"':
                # "" inside a quoted string is an escaped quote
                value += '"'
                state = _State.QUOTED
            elif tok == ",":
                params[key] = value
                state = _State.KEY
            else:
                raise ChallengeParseError(f'Unexpected token ({tok}) after {value}"', tok, position)
        elif state is _State.COMMA:
            if tok != ",":
                raise ChallengeParseError(f"Comma expected after {value}", tok, position)
            state = _State.KEY

    if state is _State.AFTER_QUOTE:
        params[key] = value
    elif state not in (_State.KEY, _State.COMMA):
        raise ChallengeParseError("Unexpected end of www-authenticate value.")
    return params


def parse_www_authenticate(header: str) -> Challenge:
    """
    Parse a ``WWW-Authenticate`` header value.

    Args:
        header: Raw header value

    Returns:
        Challenge with the scheme as sent (e.g. ``Bearer``) and its parameters

    Raises:
        ChallengeParseError: If the header is empty or its parameters are malformed

    Examples:
        >>> parse_www_authenticate('Basic realm="registry.example.com"')
        Challenge(scheme='Basic', params={'realm': 'registry.example.com'})
    """
    match = _SCHEME_RE.match(header or "")
    if not match:
        raise ChallengeParseError(f'could not parse WWW-Authenticate header "{header}": no auth scheme')

    scheme, rest = match.group(1), match.group(2) or ""
    try:
        params = _parse_params(rest)
    except ChallengeParseError as e:
        raise ChallengeParseError(
            f'could not parse WWW-Authenticate header "{header}": {e}', e.token, e.position
        ) from e
    return Challenge(scheme=scheme, params=params)
