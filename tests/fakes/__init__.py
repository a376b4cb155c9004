"""Test doubles for the registry client."""
from .fake_registry import FakeRegistry

__all__ = ["FakeRegistry"]
