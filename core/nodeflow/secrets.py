"""
Secret indirection for node parameters.

A parameter string of the exact form ``${NAME}`` is a secret marker. Markers
are resolved by an injected SecretResolver at run start, before any handler
sees its parameters, so graph documents never carry credentials:

    {"type": "webhook", "parameters": {"headers": {"Authorization": "${CRM_TOKEN}"}}}

Only whole-string markers are recognised; ``"Bearer ${X}"`` is left as is.
An unresolvable marker raises ConfigurationError and the run never starts.
"""

import os
import re
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from nodeflow.errors import ConfigurationError

SECRET_MARKER = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_.\-]*)\}$")


@runtime_checkable
class SecretResolver(Protocol):
    """Looks up a secret by name; returns None when it is unknown."""

    def get(self, name: str) -> str | None: ...


class EnvSecretResolver:
    """Resolves secrets from environment variables, optionally prefixed."""

    def __init__(self, prefix: str = "", environ: Mapping[str, str] | None = None):
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get(self, name: str) -> str | None:
        return self._environ.get(f"{self.prefix}{name}")


class StaticSecretResolver:
    """Resolves secrets from a fixed mapping (tests, embedding servers)."""

    def __init__(self, secrets: Mapping[str, str]):
        self._secrets = dict(secrets)

    def get(self, name: str) -> str | None:
        return self._secrets.get(name)


def is_secret_marker(value: Any) -> bool:
    return isinstance(value, str) and SECRET_MARKER.match(value) is not None


def find_secret_markers(value: Any) -> list[str]:
    """Names of every marker inside a parameter value, in document order."""
    if isinstance(value, str):
        match = SECRET_MARKER.match(value)
        return [match.group(1)] if match else []
    if isinstance(value, Mapping):
        return [name for v in value.values() for name in find_secret_markers(v)]
    if isinstance(value, list | tuple):
        return [name for v in value for name in find_secret_markers(v)]
    return []


def resolve_secrets(value: Any, resolver: SecretResolver, node_id: str | None = None) -> Any:
    """Return a copy of ``value`` with every marker replaced by its secret.

    Raises:
        ConfigurationError: a marker names a secret the resolver does not know
    """
    if isinstance(value, str):
        match = SECRET_MARKER.match(value)
        if not match:
            return value
        secret = resolver.get(match.group(1))
        if secret is None:
            where = f" in node '{node_id}'" if node_id else ""
            raise ConfigurationError(
                f"Unresolved secret '{match.group(1)}'{where}", node_id=node_id
            )
        return secret
    if isinstance(value, Mapping):
        return {k: resolve_secrets(v, resolver, node_id) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [resolve_secrets(v, resolver, node_id) for v in value]
    return value
