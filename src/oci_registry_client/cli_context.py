"""
CLI Context for managing application dependencies.

Holds the settings, credential sources and optional transport shared by a
CLI command, and builds ``RegistryClient`` instances from them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

import httpx

from .credentials import DockerAuth
from .reference import RepositoryRef
from .registry.client import RegistryClient
from .settings import Settings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Credential precedence: explicit flags, then settings (environment),
    then Docker ``config.json``.
    """
    settings: Settings
    docker_auth: DockerAuth = field(default_factory=DockerAuth)
    transport: Optional[httpx.AsyncBaseTransport] = None

    @classmethod
    def from_env(cls) -> CLIContext:
        """
        Create CLI context from environment variables.

        Returns:
            CLIContext with settings loaded from environment
        """
        return cls(settings=create_settings_from_env())

    def credentials_for(
        self,
        repo: RepositoryRef,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Tuple[Optional[str], Optional[str]]:
        if username is not None:
            return username, password
        if self.settings.username is not None or self.settings.token:
            return self.settings.username, self.settings.password
        creds = self.docker_auth.get_credentials(repo.index)
        if creds:
            return creds
        return None, None

    def client(
        self,
        repo: RepositoryRef,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        insecure: bool = False,
        **kwargs,
    ) -> RegistryClient:
        """Build a client for ``repo`` using the resolved credentials."""
        username, password = self.credentials_for(repo, username, password)
        return RegistryClient(
            repo=repo,
            username=username,
            password=password,
            insecure=insecure or self.settings.insecure,
            settings=self.settings,
            transport=self.transport,
            **kwargs,
        )
