"""
Repository and image reference parsing.

Turns free-form strings such as ``busybox``, ``localhost:5000/blarg:mytag`` or
``https://myreg.example.com/org/app@sha256:...`` into structured identifiers
used to build registry API URLs.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Optional, Union

from .errors import InvalidReferenceError, UnsupportedError
from .media_types import DEFAULT_INDEX_NAME, DEFAULT_INDEX_URL, DEFAULT_LOGIN_SERVERNAME, DEFAULT_TAG

__all__ = [
    "RepositoryIndex",
    "RepositoryRef",
    "ImageRef",
    "parse_index",
    "parse_repo",
    "parse_repo_and_ref",
    "url_from_index",
    "is_localhost",
]

Scheme = Literal["http", "https"]

_VALID_NS = re.compile(r"^[a-z0-9._-]*$")
_VALID_REPO = re.compile(r"^[a-z0-9_/.-]*$")


@dataclass(frozen=True)
class RepositoryIndex:
    """
    Registry host identification.

    Invariant: ``official`` implies ``scheme == "https"``.

    Attributes:
        name: Host with optional port (e.g. ``docker.io``, ``localhost:5000``)
        scheme: ``http`` or ``https``
        official: True for the Docker Hub index
    """
    name: str
    scheme: Scheme = "https"
    official: bool = False


@dataclass(frozen=True)
class RepositoryRef:
    """
    Parsed repository reference.

    Attributes:
        index: Registry the repository lives on
        remote_name: Path used in API URLs (e.g. ``library/busybox``)
        local_name: Short name as docker shows it (e.g. ``busybox``)
        canonical_name: Fully qualified name (e.g. ``docker.io/busybox``)
        official: True for ``library/`` repositories on the official index
    """
    index: RepositoryIndex
    remote_name: str
    local_name: str
    canonical_name: str
    official: bool = False


@dataclass(frozen=True)
class ImageRef(RepositoryRef):
    """
    Repository reference plus a tag and/or digest.

    Both may be set at once (``repo:tag@sha256:...``).
    """
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def canonical_ref(self) -> str:
        """Reassemble ``canonical_name[:tag][@digest]``."""
        ref = self.canonical_name
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref

    @property
    def reference(self) -> str:
        """Manifest reference to request: the digest when pinned, else the tag."""
        return self.digest or self.tag or DEFAULT_TAG


def is_localhost(host: str) -> bool:
    """Return True for ``localhost``, ``127.0.0.1`` and IPv6 loopback hosts."""
    lead = host.split(":", 1)[0]
    return lead in ("localhost", "127.0.0.1") or "::1" in host


def _looks_like_host(name: str) -> bool:
    return "." in name or ":" in name or name == "localhost"


def parse_index(arg: Optional[str] = None) -> RepositoryIndex:
    """
    Parse a docker index name or index URL.

    Examples:
        >>> parse_index("docker.io")
        RepositoryIndex(name='docker.io', scheme='https', official=True)

        >>> parse_index("localhost:5000")
        RepositoryIndex(name='localhost:5000', scheme='http', official=False)

    ``index.docker.io`` is normalized to ``docker.io``; an empty argument or
    ``https://index.docker.io/v1/`` selects the default index.

    Raises:
        InvalidReferenceError: If the index is malformed
        UnsupportedError: If plaintext HTTP is requested for the official index
    """
    if not arg or arg == DEFAULT_LOGIN_SERVERNAME:
        return RepositoryIndex(name=DEFAULT_INDEX_NAME, scheme="https", official=True)

    if "://" in arg:
        found_scheme, index_name = arg.split("://", 1)
        if found_scheme not in ("http", "https"):
            raise InvalidReferenceError(f'invalid index scheme, must be "http" or "https": {arg}')
        scheme: Scheme = found_scheme  # type: ignore[assignment]
    else:
        scheme = "http" if is_localhost(arg) else "https"
        index_name = arg

    if not index_name:
        raise InvalidReferenceError(f"invalid index, empty host: {arg}")
    if not _looks_like_host(index_name):
        raise InvalidReferenceError(f'invalid index, "{index_name}" does not look like a valid host: {arg}')

    # URL builders often leave a trailing '/', e.g. 'https://docker.io/'
    index_name = index_name.rstrip("/")
    if "/" in index_name:
        raise InvalidReferenceError(f"invalid index, trailing repo: {arg}")

    if index_name == f"index.{DEFAULT_INDEX_NAME}":
        index_name = DEFAULT_INDEX_NAME

    official = index_name == DEFAULT_INDEX_NAME
    if official and scheme == "http":
        raise UnsupportedError(f"invalid index, plaintext HTTP to official index is disallowed: {arg}")

    return RepositoryIndex(name=index_name, scheme=scheme, official=official)


def _validate_namespace(ns: str) -> None:
    if len(ns) < 2 or len(ns) > 255:
        raise InvalidReferenceError(f"invalid repository namespace, must be between 2 and 255 characters: {ns}")
    if not _VALID_NS.match(ns):
        raise InvalidReferenceError(f"invalid repository namespace, may only contain [a-z0-9._-] characters: {ns}")
    if ns.startswith("-") or ns.endswith("-"):
        raise InvalidReferenceError(f"invalid repository namespace, cannot start or end with a hyphen: {ns}")
    if "--" in ns:
        raise InvalidReferenceError(f"invalid repository namespace, cannot contain consecutive hyphens: {ns}")


def parse_repo(arg: str, default_index: Union[str, RepositoryIndex, None] = None) -> RepositoryRef:
    """
    Parse a repository string ``[INDEX/]REPO``.

    Examples:
        busybox, google/python, docker.io/ubuntu, localhost:5000/blarg,
        http://localhost:5000/blarg

    Args:
        arg: Repository string (no tag or digest)
        default_index: Index used when ``arg`` has no leading ``INDEX/``;
            either an index string or an already parsed index. Defaults to
            ``docker.io``.

    Raises:
        InvalidReferenceError: If the namespace or name is malformed
    """
    if "://" in arg:
        # Repo with a scheme, e.g. 'https://host/repo'
        scheme_end = arg.index("://") + 3
        slash_idx = arg.find("/", scheme_end)
        if slash_idx == -1:
            raise InvalidReferenceError(f'invalid repository name, no "/REPO" after hostname: {arg}')
        index = parse_index(arg[:slash_idx])
        remote_name_raw = arg[slash_idx + 1:]
    else:
        head, sep, tail = arg.partition("/")
        if not sep or not _looks_like_host(head):
            if isinstance(default_index, RepositoryIndex):
                index = default_index
            else:
                index = parse_index(default_index)
            remote_name_raw = arg
        else:
            index = parse_index(head)
            remote_name_raw = tail

    ns, sep, name = remote_name_raw.partition("/")
    if sep:
        _validate_namespace(ns)
    else:
        name = remote_name_raw
        ns = "library" if index.official else ""

    if not name or not _VALID_REPO.match(name):
        raise InvalidReferenceError(f"invalid repository name, may only contain [a-z0-9_/.-] characters: {name}")

    official = index.official and ns == "library"
    remote_name = f"{ns}/{name}" if ns else name

    if index.official:
        local_name = name if official else remote_name
        canonical_name = f"{DEFAULT_INDEX_NAME}/{local_name}"
    else:
        local_name = f"{index.name}/{remote_name}"
        canonical_name = local_name

    return RepositoryRef(
        index=index,
        remote_name=remote_name,
        local_name=local_name,
        canonical_name=canonical_name,
        official=official,
    )


def parse_repo_and_ref(arg: str, default_index: Union[str, RepositoryIndex, None] = None) -> ImageRef:
    """
    Parse an image string ``[INDEX/]REPO[:TAG][@DIGEST]``.

    A missing tag defaults to ``latest`` unless a digest is given.

    Examples:
        >>> parse_repo_and_ref("localhost:5000/blarg:mytag@sha256:cafebabe").canonical_ref
        'localhost:5000/blarg:mytag@sha256:cafebabe'

        >>> parse_repo_and_ref("busybox").canonical_ref
        'docker.io/busybox:latest'
    """
    digest: Optional[str] = None
    tag: Optional[str] = None

    at_idx = arg.rfind("@")
    if at_idx != -1:
        digest = arg[at_idx + 1:]
        arg = arg[:at_idx]
    else:
        tag = DEFAULT_TAG

    colon_idx = arg.rfind(":")
    if colon_idx != -1 and colon_idx > arg.rfind("/"):
        tag = arg[colon_idx + 1:]
        arg = arg[:colon_idx]

    repo = parse_repo(arg, default_index)
    return ImageRef(
        index=repo.index,
        remote_name=repo.remote_name,
        local_name=repo.local_name,
        canonical_name=repo.canonical_name,
        official=repo.official,
        tag=tag,
        digest=digest,
    )


def url_from_index(index: RepositoryIndex, scheme: Optional[str] = None) -> str:
    """
    Build the registry base URL for ``index``.

    The official index always maps to ``https://registry-1.docker.io``.

    Raises:
        UnsupportedError: For plaintext to the official index or a non-HTTP scheme
    """
    if index.official:
        if scheme is not None and scheme != "https":
            raise UnsupportedError("Unencrypted communication with docker.io is not allowed")
        return DEFAULT_INDEX_URL
    if scheme is not None and scheme not in ("http", "https"):
        raise UnsupportedError("Non-HTTP communication with docker registries is not allowed")
    return f"{scheme or index.scheme}://{index.name}"
