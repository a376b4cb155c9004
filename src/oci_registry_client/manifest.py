"""
Typed image manifest documents.

These Pydantic models cover the four schemaVersion 2 manifest shapes a
registry can return: Docker V2 image manifests and manifest lists, and OCI
image manifests and indexes. ``parse_manifest`` picks the variant from the
document's ``mediaType`` (or its shape, since OCI makes ``mediaType``
optional) and rejects schemaVersion 1 outright.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidContentError, UnsupportedError
from .media_types import (
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_MANIFEST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
)

__all__ = [
    "Descriptor",
    "Platform",
    "PlatformDescriptor",
    "ManifestV2",
    "ManifestV2List",
    "ManifestOCI",
    "ManifestOCIIndex",
    "Manifest",
    "parse_manifest",
]


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Descriptor(_Document):
    """Content descriptor pointing at a blob."""
    media_type: str = Field(..., alias="mediaType", description="Media type of the referenced content")
    size: int = Field(..., description="Size in bytes")
    digest: str = Field(..., description="Content digest (sha256:...)")
    urls: Optional[List[str]] = Field(default=None, description="Alternate download URLs")
    annotations: Optional[Dict[str, str]] = Field(default=None, description="OCI annotations")


class Platform(_Document):
    """Platform a manifest list entry was built for."""
    architecture: str
    os: str
    os_version: Optional[str] = Field(default=None, alias="os.version")
    os_features: Optional[List[str]] = Field(default=None, alias="os.features")
    variant: Optional[str] = None
    features: Optional[List[str]] = None


class PlatformDescriptor(Descriptor):
    """Manifest list / index entry."""
    platform: Optional[Platform] = None


class ManifestV2(_Document):
    """Docker V2 image manifest (schema 2)."""
    schema_version: Literal[2] = Field(2, alias="schemaVersion")
    media_type: Literal["application/vnd.docker.distribution.manifest.v2+json"] = Field(
        MEDIATYPE_MANIFEST_V2, alias="mediaType"
    )
    config: Descriptor
    layers: List[Descriptor]


class ManifestV2List(_Document):
    """Docker V2 manifest list (multi-platform image)."""
    schema_version: Literal[2] = Field(2, alias="schemaVersion")
    media_type: Literal["application/vnd.docker.distribution.manifest.list.v2+json"] = Field(
        MEDIATYPE_MANIFEST_LIST_V2, alias="mediaType"
    )
    manifests: List[PlatformDescriptor]


class ManifestOCI(_Document):
    """OCI image manifest."""
    schema_version: Literal[2] = Field(2, alias="schemaVersion")
    media_type: Optional[Literal["application/vnd.oci.image.manifest.v1+json"]] = Field(
        None, alias="mediaType"
    )
    config: Descriptor
    layers: List[Descriptor]
    annotations: Optional[Dict[str, str]] = None


class ManifestOCIIndex(_Document):
    """OCI image index."""
    schema_version: Literal[2] = Field(2, alias="schemaVersion")
    media_type: Optional[Literal["application/vnd.oci.image.index.v1+json"]] = Field(
        None, alias="mediaType"
    )
    manifests: List[PlatformDescriptor]
    annotations: Optional[Dict[str, str]] = None


Manifest = Union[ManifestV2, ManifestV2List, ManifestOCI, ManifestOCIIndex]

_BY_MEDIA_TYPE = {
    MEDIATYPE_MANIFEST_V2: ManifestV2,
    MEDIATYPE_MANIFEST_LIST_V2: ManifestV2List,
    MEDIATYPE_OCI_MANIFEST_V1: ManifestOCI,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1: ManifestOCIIndex,
}


def parse_manifest(data: Any) -> Manifest:
    """
    Validate a decoded manifest document into its variant.

    Args:
        data: Decoded JSON object

    Returns:
        One of ManifestV2, ManifestV2List, ManifestOCI, ManifestOCIIndex

    Raises:
        UnsupportedError: If the manifest is schemaVersion 1
        InvalidContentError: If the document matches no known shape
    """
    if not isinstance(data, dict):
        raise InvalidContentError(f"manifest must be a JSON object, got {type(data).__name__}")
    if data.get("schemaVersion") == 1:
        raise UnsupportedError("schemaVersion 1 is not supported")

    media_type = data.get("mediaType")
    if media_type is not None:
        model = _BY_MEDIA_TYPE.get(media_type)
        if model is None:
            raise InvalidContentError(f"unsupported manifest media type: {media_type}")
    elif "manifests" in data:
        model = ManifestOCIIndex
    else:
        model = ManifestOCI

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidContentError(f"invalid {model.__name__} document: {e}") from e
