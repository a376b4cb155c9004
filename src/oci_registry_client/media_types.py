"""
OCI and Docker media types and registry constants.

Single source of truth for media types and well-known registry names.
"""
from __future__ import annotations

# Docker distribution manifest types
MEDIATYPE_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIATYPE_MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"

# OCI image-spec manifest types
MEDIATYPE_OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
MEDIATYPE_OCI_MANIFEST_INDEX_V1 = "application/vnd.oci.image.index.v1+json"

# Default content type for blob uploads
MEDIATYPE_OCTET_STREAM = "application/octet-stream"

# See `INDEXNAME` in docker's registry/config.go
DEFAULT_INDEX_NAME = "docker.io"
DEFAULT_INDEX_URL = "https://registry-1.docker.io"
DEFAULT_LOGIN_SERVERNAME = "https://index.docker.io/v1/"
DEFAULT_TAG = "latest"


__all__ = [
    "MEDIATYPE_MANIFEST_V2",
    "MEDIATYPE_MANIFEST_LIST_V2",
    "MEDIATYPE_OCI_MANIFEST_V1",
    "MEDIATYPE_OCI_MANIFEST_INDEX_V1",
    "MEDIATYPE_OCTET_STREAM",
    "DEFAULT_INDEX_NAME",
    "DEFAULT_INDEX_URL",
    "DEFAULT_LOGIN_SERVERNAME",
    "DEFAULT_TAG",
]
