"""Registry credential providers.

A provider is selected once when the client is constructed and answers
which credentials (if any) apply to a given image reference.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class RegistryAuth:
    """Credentials for an image registry."""

    username: str
    password: str
    serveraddress: str | None = None

    def to_dict(self) -> dict[str, str]:
        """Convert to the daemon's auth config shape."""
        data = {"username": self.username, "password": self.password}
        if self.serveraddress:
            data["serveraddress"] = self.serveraddress
        return data


class CredentialProvider:
    """Base credential provider: never supplies credentials."""

    def credentials_for(self, reference: str) -> RegistryAuth | None:
        """Return credentials for an image reference, or None."""
        return None

    def auth_config(self, reference: str) -> dict[str, str]:
        """Return the auth config sent with a pull or push.

        An empty mapping stands for anonymous access.
        """
        auth = self.credentials_for(reference)
        return auth.to_dict() if auth is not None else {}


class NoCredentials(CredentialProvider):
    """Anonymous registry access."""


class StaticCredentials(CredentialProvider):
    """The same credentials for every reference."""

    def __init__(self, auth: RegistryAuth) -> None:
        self.auth = auth

    def credentials_for(self, reference: str) -> RegistryAuth | None:
        return self.auth


class PatternCredentials(CredentialProvider):
    """Credentials for references matching a regular expression."""

    def __init__(self, pattern: str | re.Pattern[str], auth: RegistryAuth) -> None:
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        self.auth = auth

    def credentials_for(self, reference: str) -> RegistryAuth | None:
        if self.pattern.search(reference):
            return self.auth
        return None


def for_registry(registry: str, auth: RegistryAuth) -> PatternCredentials:
    """Create a provider scoped to references on one registry host."""
    return PatternCredentials(rf"^{re.escape(registry)}/", auth)


__all__ = [
    "CredentialProvider",
    "NoCredentials",
    "PatternCredentials",
    "RegistryAuth",
    "StaticCredentials",
    "for_registry",
]
