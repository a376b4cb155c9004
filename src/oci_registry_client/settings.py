"""
Settings and configuration for the registry client.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables at client construction time.
"""
from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass, field
from typing import Optional

__all__ = ["Settings", "create_settings_from_env", "default_user_agent", "__version__"]

__version__ = "0.2.0"


def default_user_agent() -> str:
    """Build ``oci-registry-client/<version> (<arch>-<os>; python/<version>)``."""
    return (
        f"oci-registry-client/{__version__} "
        f"({platform.machine().lower()}-{sys.platform}; python/{platform.python_version()})"
    )


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for registry clients.

    Registry Settings:
        default_index: Index used for names without a leading host (None = docker.io)
        username: Username for Basic auth and token requests
        password: Password for Basic auth and token requests
        token: Pre-obtained bearer token
        insecure: Skip TLS verification; token realms without scheme use http
        scheme: Force http or https for non-official registries

    HTTP Settings:
        http_timeout_s: HTTP request timeout in seconds
        ping_connect_timeout_s: Connect timeout for the capability ping
        http_retry: Retries for connect failures (0=no retry)
        max_redirects: Redirect hops followed for blob requests
        user_agent: User-Agent header value

    Manifest Negotiation:
        accept_manifest_lists: Accept manifest lists / OCI indexes by default
        accept_oci_manifests: Accept OCI manifests by default
    """
    # Registry settings
    default_index: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    insecure: bool = False
    scheme: Optional[str] = None

    # HTTP settings
    http_timeout_s: float = 30.0
    ping_connect_timeout_s: float = 10.0
    http_retry: int = 0
    max_redirects: int = 3
    user_agent: str = field(default_factory=default_user_agent)

    # Manifest negotiation
    accept_manifest_lists: bool = False
    accept_oci_manifests: bool = False

    def __post_init__(self):
        """Validate settings on construction."""
        if self.scheme is not None and self.scheme not in ("http", "https"):
            raise ValueError(f"scheme must be 'http' or 'https', got {self.scheme!r}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.ping_connect_timeout_s <= 0:
            raise ValueError(f"ping_connect_timeout_s must be positive, got {self.ping_connect_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if self.max_redirects < 1:
            raise ValueError(f"max_redirects must be at least 1, got {self.max_redirects}")

        if not self.user_agent:
            raise ValueError("user_agent cannot be empty")

        if self.token and self.username:
            raise ValueError("Specify either token OR username/password, not both")


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        Registry:
        - OCI_REGISTRY_DEFAULT_INDEX (optional)
        - OCI_REGISTRY_USERNAME (optional)
        - OCI_REGISTRY_PASSWORD (optional)
        - OCI_REGISTRY_TOKEN (optional)
        - OCI_REGISTRY_INSECURE (default: false)
        - OCI_REGISTRY_SCHEME (optional, http or https)

        HTTP:
        - OCI_HTTP_TIMEOUT (default: 30.0)
        - OCI_PING_TIMEOUT (default: 10.0)
        - OCI_HTTP_RETRY (default: 0)
        - OCI_MAX_REDIRECTS (default: 3)
        - OCI_USER_AGENT (optional)

        Manifests:
        - OCI_ACCEPT_MANIFEST_LISTS (default: false)
        - OCI_ACCEPT_OCI_MANIFESTS (default: false)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    return _load_settings_impl()


def _load_settings_impl() -> Settings:
    """Internal implementation of settings loading."""
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    kwargs = {}
    user_agent = os.getenv("OCI_USER_AGENT")
    if user_agent:
        kwargs["user_agent"] = user_agent

    return Settings(
        default_index=os.getenv("OCI_REGISTRY_DEFAULT_INDEX") or None,
        username=os.getenv("OCI_REGISTRY_USERNAME") or None,
        password=os.getenv("OCI_REGISTRY_PASSWORD") or None,
        token=os.getenv("OCI_REGISTRY_TOKEN") or None,
        insecure=str_to_bool(os.getenv("OCI_REGISTRY_INSECURE", "false")),
        scheme=os.getenv("OCI_REGISTRY_SCHEME") or None,
        http_timeout_s=get_float("OCI_HTTP_TIMEOUT", 30.0),
        ping_connect_timeout_s=get_float("OCI_PING_TIMEOUT", 10.0),
        http_retry=get_int("OCI_HTTP_RETRY", 0),
        max_redirects=get_int("OCI_MAX_REDIRECTS", 3),
        accept_manifest_lists=str_to_bool(os.getenv("OCI_ACCEPT_MANIFEST_LISTS", "false")),
        accept_oci_manifests=str_to_bool(os.getenv("OCI_ACCEPT_OCI_MANIFESTS", "false")),
        **kwargs,
    )
