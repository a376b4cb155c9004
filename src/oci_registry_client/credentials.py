"""
Docker ``config.json`` credential lookup.

Used by the CLI only; the library never reads Docker config on its own.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from .media_types import DEFAULT_INDEX_NAME, DEFAULT_LOGIN_SERVERNAME
from .reference import RepositoryIndex

__all__ = ["DockerAuth", "default_config_path"]

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    """``$DOCKER_CONFIG/config.json``, else ``~/.docker/config.json``."""
    docker_config = os.getenv("DOCKER_CONFIG")
    if docker_config:
        return Path(docker_config) / "config.json"
    return Path.home() / ".docker" / "config.json"


class DockerAuth:
    """Handle Docker Registry credentials from config files."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or default_config_path()
        self._config_cache: Optional[dict] = None
        self._config_mtime: Optional[float] = None

    def get_credentials(self, index: RepositoryIndex) -> Optional[Tuple[str, str]]:
        """
        Get credentials for a registry index.

        Tries the bare host, ``https://host`` and, for docker.io, the
        legacy ``https://index.docker.io/v1/`` key.

        Returns: (username, password) or None if not found
        """
        config = self._load_config()
        if not config:
            return None

        auths = config.get("auths") or {}
        candidates = [index.name, f"https://{index.name}", f"http://{index.name}"]
        if index.name == DEFAULT_INDEX_NAME:
            candidates += [DEFAULT_LOGIN_SERVERNAME, f"index.{DEFAULT_INDEX_NAME}"]

        for key in candidates:
            entry = auths.get(key)
            if isinstance(entry, dict):
                creds = self._decode_entry(entry)
                if creds:
                    logger.debug("Using Docker config credentials for %s", key)
                    return creds
        return None

    @staticmethod
    def _decode_entry(auth_entry: dict) -> Optional[Tuple[str, str]]:
        # Base64 "user:password" takes precedence
        if auth_entry.get("auth"):
            try:
                decoded = base64.b64decode(auth_entry["auth"]).decode()
            except (binascii.Error, UnicodeDecodeError) as e:
                logger.warning("Ignoring undecodable Docker config auth entry: %s", e)
            else:
                if ":" in decoded:
                    username, password = decoded.split(":", 1)
                    return username, password

        if "username" in auth_entry and "password" in auth_entry:
            return auth_entry["username"], auth_entry["password"]
        return None

    def _load_config(self) -> Optional[dict]:
        """Load Docker config with caching and mtime checking."""
        if not self.config_path.exists():
            return None

        try:
            current_mtime = self.config_path.stat().st_mtime
            if self._config_cache is not None and current_mtime == self._config_mtime:
                return self._config_cache

            with open(self.config_path, "r") as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read Docker config %s: %s", self.config_path, e)
            return None

        self._config_cache = config
        self._config_mtime = current_mtime
        return config
