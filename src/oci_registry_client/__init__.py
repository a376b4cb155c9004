"""
OCI/Docker Distribution Registry HTTP API v2 client.

    from oci_registry_client import RegistryClient

    async with RegistryClient("busybox") as client:
        result = await client.get_manifest("latest")
"""
from .errors import (
    BadDigestError,
    ForbiddenError,
    HttpError,
    InvalidContentError,
    InvalidReferenceError,
    NotFoundError,
    ParseError,
    ProtocolError,
    RegistryError,
    TooManyRedirectsError,
    UnauthorizedError,
    UnsupportedError,
    UploadError,
)
from .manifest import Manifest, parse_manifest
from .reference import ImageRef, RepositoryIndex, RepositoryRef, parse_index, parse_repo, parse_repo_and_ref
from .registry import RegistryClient, digest_from_manifest_str
from .settings import Settings, __version__, create_settings_from_env

__all__ = [
    "RegistryClient",
    "Settings",
    "create_settings_from_env",
    "parse_index",
    "parse_repo",
    "parse_repo_and_ref",
    "RepositoryIndex",
    "RepositoryRef",
    "ImageRef",
    "Manifest",
    "parse_manifest",
    "digest_from_manifest_str",
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
    "__version__",
]
