"""
Tests for manifest document models.

Covers variant selection by media type and shape, alias handling, and
rejection of schemaVersion 1 and unknown documents.
"""
from __future__ import annotations

import pytest

from oci_registry_client.errors import InvalidContentError, UnsupportedError
from oci_registry_client.manifest import (
    ManifestOCI,
    ManifestOCIIndex,
    ManifestV2,
    ManifestV2List,
    parse_manifest,
)
from oci_registry_client.media_types import (
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_MANIFEST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
)

CONFIG = {
    "mediaType": "application/vnd.docker.container.image.v1+json",
    "size": 1584,
    "digest": "sha256:" + "a" * 64,
}
LAYER = {
    "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
    "size": 10240,
    "digest": "sha256:" + "b" * 64,
}
ENTRY = {
    "mediaType": MEDIATYPE_MANIFEST_V2,
    "size": 527,
    "digest": "sha256:" + "c" * 64,
    "platform": {"architecture": "arm64", "os": "linux", "variant": "v8"},
}


class TestParseManifest:
    """Test manifest variant selection."""

    def test_docker_v2_manifest(self):
        """Test Docker V2 image manifest parsing."""
        manifest = parse_manifest({
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_MANIFEST_V2,
            "config": CONFIG,
            "layers": [LAYER],
        })
        assert isinstance(manifest, ManifestV2)
        assert manifest.config.digest == CONFIG["digest"]
        assert manifest.layers[0].media_type == LAYER["mediaType"]
        assert manifest.layers[0].size == 10240

    def test_docker_manifest_list(self):
        """Test manifest list parsing with platform entries."""
        manifest = parse_manifest({
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_MANIFEST_LIST_V2,
            "manifests": [ENTRY],
        })
        assert isinstance(manifest, ManifestV2List)
        assert manifest.manifests[0].platform.architecture == "arm64"
        assert manifest.manifests[0].platform.variant == "v8"

    def test_oci_manifest_with_media_type(self):
        manifest = parse_manifest({
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_OCI_MANIFEST_V1,
            "config": CONFIG,
            "layers": [],
            "annotations": {"org.opencontainers.image.created": "2024-01-01T00:00:00Z"},
        })
        assert isinstance(manifest, ManifestOCI)
        assert manifest.annotations["org.opencontainers.image.created"] == "2024-01-01T00:00:00Z"

    def test_oci_manifest_without_media_type(self):
        """OCI makes mediaType optional; a config plus layers is a manifest."""
        manifest = parse_manifest({"schemaVersion": 2, "config": CONFIG, "layers": [LAYER]})
        assert isinstance(manifest, ManifestOCI)
        assert manifest.media_type is None

    def test_oci_index_without_media_type(self):
        manifest = parse_manifest({"schemaVersion": 2, "manifests": [ENTRY]})
        assert isinstance(manifest, ManifestOCIIndex)

    def test_oci_index_with_media_type(self):
        manifest = parse_manifest({
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_OCI_MANIFEST_INDEX_V1,
            "manifests": [ENTRY],
        })
        assert isinstance(manifest, ManifestOCIIndex)

    def test_platform_dotted_aliases(self):
        entry = dict(ENTRY, platform={
            "architecture": "amd64",
            "os": "windows",
            "os.version": "10.0.17763.1817",
            "os.features": ["win32k"],
        })
        manifest = parse_manifest({
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_MANIFEST_LIST_V2,
            "manifests": [entry],
        })
        platform = manifest.manifests[0].platform
        assert platform.os_version == "10.0.17763.1817"
        assert platform.os_features == ["win32k"]

    def test_unknown_fields_are_kept(self):
        manifest = parse_manifest({
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_MANIFEST_V2,
            "config": CONFIG,
            "layers": [],
            "subject": {"mediaType": MEDIATYPE_OCI_MANIFEST_V1, "size": 1, "digest": "sha256:00"},
        })
        assert manifest.model_dump(by_alias=True)["subject"]["size"] == 1

    def test_dump_uses_wire_names(self):
        manifest = parse_manifest({
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_MANIFEST_V2,
            "config": CONFIG,
            "layers": [LAYER],
        })
        dumped = manifest.model_dump(by_alias=True, exclude_none=True)
        assert dumped["schemaVersion"] == 2
        assert dumped["layers"][0]["mediaType"] == LAYER["mediaType"]


class TestRejectedManifests:
    """Test documents that must not parse."""

    def test_schema_version_1(self):
        """Test schemaVersion 1 is unsupported, not merely invalid."""
        with pytest.raises(UnsupportedError, match="schemaVersion 1"):
            parse_manifest({"schemaVersion": 1, "name": "busybox", "tag": "latest", "fsLayers": []})

    def test_unknown_media_type(self):
        with pytest.raises(InvalidContentError, match="unsupported manifest media type"):
            parse_manifest({"schemaVersion": 2, "mediaType": "text/plain"})

    def test_not_an_object(self):
        with pytest.raises(InvalidContentError):
            parse_manifest(["not", "a", "manifest"])

    def test_missing_required_fields(self):
        with pytest.raises(InvalidContentError, match="ManifestV2"):
            parse_manifest({"schemaVersion": 2, "mediaType": MEDIATYPE_MANIFEST_V2, "layers": []})

    def test_descriptor_size_must_be_integer(self):
        layer = dict(LAYER, size="big")
        with pytest.raises(InvalidContentError):
            parse_manifest({
                "schemaVersion": 2,
                "mediaType": MEDIATYPE_MANIFEST_V2,
                "config": CONFIG,
                "layers": [layer],
            })
