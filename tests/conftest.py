"""Root pytest configuration for oci-registry-client tests."""
import pytest

from oci_registry_client.registry.client import RegistryClient
from oci_registry_client.settings import Settings
from tests.fakes.fake_registry import REGISTRY_HOST, FakeRegistry

# Import fixtures to make them available
from tests.fixtures.oci_registry import oci_registry  # noqa: F401


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires Docker)"
    )


# Keep the developer's environment out of settings-driven tests
@pytest.fixture(autouse=True)
def test_env(monkeypatch, tmp_path):
    """Clear registry environment variables and isolate Docker config."""
    for key in (
        "OCI_REGISTRY_DEFAULT_INDEX", "OCI_REGISTRY_USERNAME", "OCI_REGISTRY_PASSWORD",
        "OCI_REGISTRY_TOKEN", "OCI_REGISTRY_INSECURE", "OCI_REGISTRY_SCHEME",
        "OCI_HTTP_TIMEOUT", "OCI_PING_TIMEOUT", "OCI_HTTP_RETRY", "OCI_MAX_REDIRECTS",
        "OCI_USER_AGENT", "OCI_ACCEPT_MANIFEST_LISTS", "OCI_ACCEPT_OCI_MANIFESTS",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path / "docker-config"))


@pytest.fixture
def settings():
    """Standard test settings."""
    return Settings()


@pytest.fixture
def fake_registry():
    """Anonymous in-memory registry."""
    return FakeRegistry()


@pytest.fixture
async def make_client(settings):
    """
    Factory for clients bound to a fake registry.

    Clients are closed after the test.
    """
    clients = []

    def _make(registry: FakeRegistry, name: str = "library/app", **kwargs) -> RegistryClient:
        client = RegistryClient(
            f"{REGISTRY_HOST}/{name}",
            settings=kwargs.pop("settings", settings),
            transport=registry.transport(),
            **kwargs,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
