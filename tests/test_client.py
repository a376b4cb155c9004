"""
Tests for RegistryClient operations against the in-memory fake registry.

Covers tags, manifests, blob HEAD/GET through redirects with digest
verification, and the push path (manifest PUT, blob upload).
"""
from __future__ import annotations

import json

import httpx
import pytest

from oci_registry_client.errors import (
    BadDigestError,
    NotFoundError,
    UnauthorizedError,
    UnsupportedError,
    UploadError,
)
from oci_registry_client.manifest import ManifestOCI, ManifestV2, ManifestV2List
from oci_registry_client.media_types import (
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_MANIFEST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
)
from oci_registry_client.registry.client import RegistryClient
from tests.fakes.fake_registry import CDN_HOST, REGISTRY_HOST, FakeRegistry, sha256_digest

LAYER_DATA = b"layer bytes " * 1000
CONFIG_DATA = b'{"architecture": "amd64", "os": "linux"}'


def image_manifest(config_digest: str, layer_digest: str) -> dict:
    return {
        "schemaVersion": 2,
        "mediaType": MEDIATYPE_MANIFEST_V2,
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": len(CONFIG_DATA),
            "digest": config_digest,
        },
        "layers": [{
            "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
            "size": len(LAYER_DATA),
            "digest": layer_digest,
        }],
    }


@pytest.fixture
def populated_registry():
    """Fake registry with one image tagged v1."""
    registry = FakeRegistry()
    config_digest = registry.add_blob(CONFIG_DATA)
    layer_digest = registry.add_blob(LAYER_DATA)
    registry.add_manifest("library/app", "v1", image_manifest(config_digest, layer_digest))
    return registry


async def _read_all(blob) -> bytes:
    data = b""
    async for chunk in blob.stream:
        data += chunk
    return data


class TestClientConstruction:
    """Test client setup from names and settings."""

    async def test_url_and_repo(self, fake_registry, make_client):
        client = make_client(fake_registry)
        assert client.url == f"https://{REGISTRY_HOST}"
        assert client.repo.remote_name == "library/app"

    async def test_official_index_url(self, settings):
        client = RegistryClient("busybox", settings=settings)
        try:
            assert client.url == "https://registry-1.docker.io"
            assert client.repo.remote_name == "library/busybox"
        finally:
            await client.aclose()

    async def test_name_or_repo_required(self, settings):
        with pytest.raises(ValueError, match="name or repo required"):
            RegistryClient(settings=settings)

    async def test_repo_path_quotes_components(self, fake_registry, make_client):
        client = make_client(fake_registry)
        assert client._repo_path("manifests", "sha256:abc") == "/v2/library/app/manifests/sha256:abc"


class TestSupportsV2:
    """Test the v2 capability probe."""

    async def test_anonymous_registry(self, fake_registry, make_client):
        assert await make_client(fake_registry).supports_v2() is True

    async def test_auth_required_registry(self, make_client):
        assert await make_client(FakeRegistry(auth="bearer")).supports_v2() is True

    async def test_404_without_header(self, settings):
        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        try:
            assert await client.supports_v2() is False
        finally:
            await client.aclose()

    async def test_api_version_header_wins(self, settings):
        def handler(request):
            return httpx.Response(404, headers={"docker-distribution-api-version": "registry/2.0"})

        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(handler))
        try:
            assert await client.supports_v2() is True
        finally:
            await client.aclose()

    async def test_unreachable_registry(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(handler))
        try:
            assert await client.supports_v2() is False
        finally:
            await client.aclose()


class TestListTags:
    """Test tag listing."""

    async def test_list_tags(self, populated_registry, make_client):
        tags = await make_client(populated_registry).list_tags()
        assert tags == {"name": "library/app", "tags": ["v1"]}

    async def test_unknown_repository(self, fake_registry, make_client):
        with pytest.raises(NotFoundError) as exc_info:
            await make_client(fake_registry, name="library/missing").list_tags()
        assert exc_info.value.errors[0]["code"] == "NAME_UNKNOWN"


class TestGetManifest:
    """Test manifest retrieval and negotiation."""

    async def test_get_by_tag(self, populated_registry, make_client):
        result = await make_client(populated_registry).get_manifest("v1")

        assert isinstance(result.manifest, ManifestV2)
        assert result.digest == sha256_digest(result.body)
        assert result.manifest.layers[0].size == len(LAYER_DATA)

    async def test_get_by_digest(self, populated_registry, make_client):
        client = make_client(populated_registry)
        by_tag = await client.get_manifest("v1")

        by_digest = await client.get_manifest(by_tag.digest)

        assert by_digest.body == by_tag.body
        assert populated_registry.requests[-1].url.path.endswith(f"/manifests/{by_tag.digest}")

    async def test_default_accept_header(self, populated_registry, make_client):
        await make_client(populated_registry).get_manifest("v1")
        assert populated_registry.requests[-1].headers["accept"] == MEDIATYPE_MANIFEST_V2

    async def test_accept_lists_and_oci(self, populated_registry, make_client):
        """Test every media type flag extends the Accept header."""
        client = make_client(populated_registry)
        await client.get_manifest("v1", accept_manifest_lists=True, accept_oci_manifests=True)

        accept = populated_registry.requests[-1].headers["accept"].split(", ")
        assert accept == [
            MEDIATYPE_MANIFEST_V2,
            MEDIATYPE_MANIFEST_LIST_V2,
            MEDIATYPE_OCI_MANIFEST_V1,
            MEDIATYPE_OCI_MANIFEST_INDEX_V1,
        ]

    async def test_client_defaults_apply(self, populated_registry, make_client):
        client = make_client(populated_registry, accept_oci_manifests=True)
        await client.get_manifest("v1")
        accept = populated_registry.requests[-1].headers["accept"]
        assert MEDIATYPE_OCI_MANIFEST_V1 in accept
        assert MEDIATYPE_MANIFEST_LIST_V2 not in accept

    async def test_manifest_list(self, fake_registry, make_client):
        fake_registry.add_manifest("library/app", "multi", {
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_MANIFEST_LIST_V2,
            "manifests": [{
                "mediaType": MEDIATYPE_MANIFEST_V2,
                "size": 100,
                "digest": "sha256:" + "1" * 64,
                "platform": {"architecture": "amd64", "os": "linux"},
            }],
        })

        result = await make_client(fake_registry).get_manifest("multi", accept_manifest_lists=True)

        assert isinstance(result.manifest, ManifestV2List)

    async def test_oci_manifest(self, fake_registry, make_client):
        fake_registry.add_manifest("library/app", "oci", {
            "schemaVersion": 2,
            "mediaType": MEDIATYPE_OCI_MANIFEST_V1,
            "config": {"mediaType": "application/vnd.oci.image.config.v1+json", "size": 2, "digest": "sha256:00"},
            "layers": [],
        })

        result = await make_client(fake_registry).get_manifest("oci", accept_oci_manifests=True)

        assert isinstance(result.manifest, ManifestOCI)

    async def test_body_is_raw_bytes(self, fake_registry, make_client):
        raw = b'{\n   "schemaVersion": 2,\n   "config": {"mediaType": "x", "size": 1, "digest": "sha256:00"},\n   "layers": []\n}'
        digest = fake_registry.add_manifest("library/app", "pretty", raw, MEDIATYPE_OCI_MANIFEST_V1)

        result = await make_client(fake_registry).get_manifest("pretty")

        assert result.body == raw
        assert result.digest == digest

    async def test_schema_version_1_rejected(self, fake_registry, make_client):
        fake_registry.add_manifest(
            "library/app", "old",
            {"schemaVersion": 1, "name": "library/app", "tag": "old", "fsLayers": []},
            "application/vnd.docker.distribution.manifest.v1+prettyjws",
        )
        with pytest.raises(UnsupportedError, match="schemaVersion 1"):
            await make_client(fake_registry).get_manifest("old")

    async def test_missing_manifest(self, fake_registry, make_client):
        with pytest.raises(NotFoundError) as exc_info:
            await make_client(fake_registry).get_manifest("nope")
        assert exc_info.value.errors[0]["code"] == "MANIFEST_UNKNOWN"

    async def test_401_is_manifest_not_found(self, settings):
        """Test a 401 on the manifest GET reports the ref and server message."""
        def handler(request):
            if request.url.path == "/v2/":
                return httpx.Response(200)
            return httpx.Response(401, json={"errors": [{"code": "UNAUTHORIZED", "message": "access to the resource is denied"}]})

        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(UnauthorizedError, match='Manifest "v1" Not Found: access to the resource is denied'):
                await client.get_manifest("v1")
        finally:
            await client.aclose()

    async def test_401_empty_body_uses_status_line(self, settings):
        def handler(request):
            if request.url.path == "/v2/":
                return httpx.Response(200)
            return httpx.Response(401)

        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(UnauthorizedError, match='Manifest "latest" Not Found: 401 Unauthorized') as exc_info:
                await client.get_manifest("latest")
            assert "null" not in str(exc_info.value)
        finally:
            await client.aclose()

    async def test_digest_header_mismatch(self, settings):
        body = json.dumps({"schemaVersion": 2, "config": {"mediaType": "x", "size": 1, "digest": "sha256:00"}, "layers": []})

        def handler(request):
            if request.url.path == "/v2/":
                return httpx.Response(200)
            return httpx.Response(200, headers={"docker-content-digest": sha256_digest(b"other")}, content=body)

        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(BadDigestError):
                await client.get_manifest("v1")
        finally:
            await client.aclose()


class TestDeleteManifest:
    """Test manifest deletion."""

    async def test_delete_by_digest(self, populated_registry, make_client):
        client = make_client(populated_registry)
        digest = (await client.get_manifest("v1")).digest

        await client.delete_manifest(digest)

        assert populated_registry.requests[-1].method == "DELETE"
        with pytest.raises(NotFoundError):
            await client.get_manifest(digest)

    async def test_delete_uses_push_scope(self, make_client):
        registry = FakeRegistry(auth="bearer")
        digest = registry.add_manifest("library/app", None, {"schemaVersion": 2, "manifests": []})
        client = make_client(registry)

        await client.delete_manifest(digest)

        assert client.logged_in_scope == "repository:library/app:pull,push"

    async def test_delete_missing(self, fake_registry, make_client):
        with pytest.raises(NotFoundError):
            await make_client(fake_registry).delete_manifest("sha256:" + "0" * 64)


class TestHeadBlob:
    """Test blob HEAD through redirects."""

    async def test_head_without_redirect(self, populated_registry, make_client):
        digest = sha256_digest(LAYER_DATA)
        responses = await make_client(populated_registry).head_blob(digest)

        assert len(responses) == 1
        assert responses[0].headers["docker-content-digest"] == digest
        assert int(responses[-1].headers["content-length"]) == len(LAYER_DATA)

    async def test_head_follows_redirect_without_credentials(self, make_client):
        """Test the CDN hop gets neither the Authorization header nor a digest check."""
        registry = FakeRegistry(auth="bearer")
        registry.redirect_blobs = True
        digest = registry.add_blob(LAYER_DATA)

        responses = await make_client(registry).head_blob(digest)

        assert [r.status_code for r in responses] == [307, 200]
        assert responses[0].headers["docker-content-digest"] == digest
        assert int(responses[-1].headers["content-length"]) == len(LAYER_DATA)
        assert registry.requests[-1].headers["authorization"] == "Bearer token-1"
        assert "authorization" not in registry.cdn_requests[0].headers
        assert registry.cdn_requests[0].url.host == CDN_HOST

    async def test_head_missing_blob(self, fake_registry, make_client):
        with pytest.raises(NotFoundError):
            await make_client(fake_registry).head_blob("sha256:" + "0" * 64)


class TestBlobReadStream:
    """Test streaming blob downloads."""

    async def test_download(self, populated_registry, make_client):
        digest = sha256_digest(LAYER_DATA)
        async with await make_client(populated_registry).create_blob_read_stream(digest) as blob:
            assert await _read_all(blob) == LAYER_DATA

    async def test_download_through_redirect(self, populated_registry, make_client):
        populated_registry.redirect_blobs = True
        digest = sha256_digest(LAYER_DATA)

        async with await make_client(populated_registry).create_blob_read_stream(digest) as blob:
            data = await _read_all(blob)

        assert data == LAYER_DATA
        assert len(blob.responses) == 2
        assert len(populated_registry.cdn_requests) == 1

    async def test_digest_header_mismatch_fails_before_streaming(self, populated_registry, make_client):
        """Test a wrong Docker-Content-Digest fails before any byte is delivered."""
        digest = sha256_digest(LAYER_DATA)
        populated_registry.blob_digest_header[digest] = sha256_digest(b"something else")

        with pytest.raises(BadDigestError, match="does not match given digest"):
            await make_client(populated_registry).create_blob_read_stream(digest)

    async def test_corrupt_body_fails_at_end(self, populated_registry, make_client):
        digest = sha256_digest(LAYER_DATA)
        populated_registry.blob_body_override[digest] = b"corrupted"

        blob = await make_client(populated_registry).create_blob_read_stream(digest)
        received = b""
        with pytest.raises(BadDigestError):
            async for chunk in blob.stream:
                received += chunk
        await blob.aclose()

        assert received == b"corrupted"

    async def test_corrupt_body_behind_redirect(self, populated_registry, make_client):
        populated_registry.redirect_blobs = True
        digest = sha256_digest(LAYER_DATA)
        populated_registry.blob_body_override[digest] = b"corrupted"

        async with await make_client(populated_registry).create_blob_read_stream(digest) as blob:
            with pytest.raises(BadDigestError):
                await _read_all(blob)

    async def test_abandoned_stream_closes_response(self, populated_registry, make_client):
        digest = sha256_digest(LAYER_DATA)
        blob = await make_client(populated_registry).create_blob_read_stream(digest)

        await blob.aclose()

        assert blob.responses[-1].raw.is_closed

    async def test_missing_blob(self, fake_registry, make_client):
        with pytest.raises(NotFoundError):
            await make_client(fake_registry).create_blob_read_stream("sha256:" + "0" * 64)


class TestPutManifest:
    """Test manifest upload."""

    async def test_put_manifest(self, fake_registry, make_client):
        data = json.dumps(image_manifest("sha256:" + "a" * 64, "sha256:" + "b" * 64)).encode()

        result = await make_client(fake_registry).put_manifest(data, "v2")

        request = fake_registry.requests[-1]
        assert request.method == "PUT"
        assert request.headers["content-type"] == MEDIATYPE_MANIFEST_V2
        assert request.content == data
        assert result.digest == sha256_digest(data)
        assert fake_registry.manifests[("library/app", "v2")][0] == data

    async def test_media_type_from_document(self, fake_registry, make_client):
        data = json.dumps({"schemaVersion": 2, "mediaType": MEDIATYPE_OCI_MANIFEST_INDEX_V1, "manifests": []})

        await make_client(fake_registry).put_manifest(data, "idx")

        assert fake_registry.requests[-1].headers["content-type"] == MEDIATYPE_OCI_MANIFEST_INDEX_V1

    async def test_explicit_media_type(self, fake_registry, make_client):
        await make_client(fake_registry).put_manifest(b"{}", "v3", media_type=MEDIATYPE_OCI_MANIFEST_V1)
        assert fake_registry.requests[-1].headers["content-type"] == MEDIATYPE_OCI_MANIFEST_V1

    async def test_put_uses_push_scope(self, make_client):
        registry = FakeRegistry(auth="bearer")
        client = make_client(registry)

        await client.put_manifest(b"{}", "v1")

        assert registry.token_requests[-1].url.params["scope"] == "repository:library/app:pull,push"

    async def test_failure_is_upload_error(self, settings):
        def handler(request):
            if request.url.path == "/v2/":
                return httpx.Response(200)
            return httpx.Response(400, json={"errors": [{"code": "MANIFEST_INVALID", "message": "manifest invalid"}]})

        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(UploadError, match="Manifest upload failed.") as exc_info:
                await client.put_manifest(b"{}", "v1")
            assert exc_info.value.__cause__.errors[0]["code"] == "MANIFEST_INVALID"
        finally:
            await client.aclose()


class TestBlobUpload:
    """Test monolithic blob upload."""

    async def test_upload_bytes(self, fake_registry, make_client):
        data = b"new layer"
        digest = sha256_digest(data)

        result = await make_client(fake_registry).blob_upload(digest, data, len(data))

        assert fake_registry.blobs[digest] == data
        assert result.digest == digest
        post, put = fake_registry.requests[-2:]
        assert post.method == "POST"
        assert post.url.path == "/v2/library/app/blobs/uploads/"
        assert put.method == "PUT"
        assert put.url.params["digest"] == digest
        # Session state from the Location header is preserved
        assert put.url.params["_state"] == "abc"
        assert put.headers["content-length"] == str(len(data))
        assert put.headers["content-type"] == "application/octet-stream"

    async def test_upload_stream(self, fake_registry, make_client):
        """Test an async iterable body is streamed through."""
        chunks = [b"chunk-1 ", b"chunk-2 ", b"chunk-3"]
        data = b"".join(chunks)
        digest = sha256_digest(data)

        async def body():
            for chunk in chunks:
                yield chunk

        await make_client(fake_registry).blob_upload(digest, body(), len(data), content_type="application/vnd.oci.image.layer.v1.tar")

        assert fake_registry.blobs[digest] == data
        assert fake_registry.requests[-1].headers["content-type"] == "application/vnd.oci.image.layer.v1.tar"

    async def test_rejected_session(self, fake_registry, make_client):
        fake_registry.reject_uploads = True
        with pytest.raises(UploadError, match="Blob upload rejected."):
            await make_client(fake_registry).blob_upload("sha256:00", b"x", 1)

    async def test_digest_mismatch_is_upload_error(self, fake_registry, make_client):
        with pytest.raises(UploadError, match="Blob upload failed.") as exc_info:
            await make_client(fake_registry).blob_upload(sha256_digest(b"declared"), b"actual", 6)
        assert exc_info.value.__cause__.errors[0]["code"] == "DIGEST_INVALID"

    async def test_missing_location(self, settings):
        def handler(request):
            if request.url.path == "/v2/":
                return httpx.Response(200)
            return httpx.Response(202)

        client = RegistryClient(f"{REGISTRY_HOST}/library/app", settings=settings,
                                transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(UploadError, match="No registry upload location header returned"):
                await client.blob_upload("sha256:00", b"x", 1)
        finally:
            await client.aclose()
