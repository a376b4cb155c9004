"""
Registry package - OCI Distribution API v2 protocol layer.

Request execution, redirect following, WWW-Authenticate parsing, token
exchange, digest verification and the ``RegistryClient`` that composes them.
"""
from .auth import AuthInfo, BasicAuth, BearerAuth, NoAuth
from .challenge import Challenge, parse_www_authenticate
from .client import BlobStream, ManifestResult, PushResult, RegistryClient
from .digest import ContentDigest, digest_from_manifest_str, parse_digest_header, verifying_stream
from .http import RegistryResponse

__all__ = [
    "RegistryClient",
    "ManifestResult",
    "BlobStream",
    "PushResult",
    "RegistryResponse",
    "AuthInfo",
    "NoAuth",
    "BasicAuth",
    "BearerAuth",
    "Challenge",
    "parse_www_authenticate",
    "ContentDigest",
    "parse_digest_header",
    "verifying_stream",
    "digest_from_manifest_str",
]
