"""Registry token resolution: explicit flag, environment, stored credential."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import yaml

from .config import shipyard_home
from .errors import AuthError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "default"
REGISTRY_TOKEN_ENV = "SHIPYARD_REGISTRY_TOKEN"
CREDENTIALS_NAME = "credentials.yaml"


def token_env_name(registry: str) -> str:
    if registry == DEFAULT_REGISTRY:
        return REGISTRY_TOKEN_ENV
    normalized = registry.upper().replace("-", "_")
    return f"SHIPYARD_REGISTRIES_{normalized}_TOKEN"


@dataclass(frozen=True)
class TokenSpec:
    registry: str

    @property
    def env_name(self) -> str:
        return token_env_name(self.registry)


class TokenResolver(Protocol):
    def resolve(self, spec: TokenSpec) -> Optional[str]:  # pragma: no cover - interface
        ...

    def describe(self) -> dict[str, object]:  # pragma: no cover - optional hook
        return {}


@dataclass(frozen=True)
class TokenAttempt:
    resolver: str
    source: str
    success: bool
    details: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenResolution:
    registry: str
    value: Optional[str]
    resolver: Optional[str]
    source: Optional[str]
    attempts: List[TokenAttempt]


@dataclass
class _RegisteredResolver:
    priority: int
    resolver: TokenResolver
    name: str
    source: str


_resolvers: List[_RegisteredResolver] = []


def register_resolver(
    resolver: TokenResolver,
    priority: int = 0,
    *,
    name: Optional[str] = None,
    source: Optional[str] = None,
) -> None:
    entry = _RegisteredResolver(
        priority=priority,
        resolver=resolver,
        name=name or resolver.__class__.__name__,
        source=source or (name or resolver.__class__.__name__),
    )
    _resolvers.append(entry)
    _resolvers.sort(key=lambda item: item.priority, reverse=True)


class EnvResolver:
    """Resolve tokens from ``SHIPYARD_REGISTRY_TOKEN`` or the per-registry variable."""

    def resolve(self, spec: TokenSpec) -> Optional[str]:
        value = os.getenv(spec.env_name)
        return value if value else None

    def describe(self) -> dict[str, object]:
        return {"type": "env"}


class CredentialsFileResolver:
    """Resolve tokens stored in ``$SHIPYARD_HOME/credentials.yaml``.

    The file looks like::

        registry:
          token: "..."
        registries:
          my-registry:
            token: "..."
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._warnings: List[str] = []

    @property
    def path(self) -> Path:
        return self._path or shipyard_home() / CREDENTIALS_NAME

    def resolve(self, spec: TokenSpec) -> Optional[str]:
        payload = self._load()
        if spec.registry == DEFAULT_REGISTRY:
            section = payload.get("registry")
        else:
            section = (payload.get("registries") or {}).get(spec.registry)
        if not isinstance(section, dict):
            return None
        token = section.get("token")
        return str(token) if token else None

    def describe(self) -> dict[str, object]:
        return {
            "type": "credentials",
            "path": str(self.path),
            "exists": self.path.exists(),
            "warnings": list(self._warnings),
        }

    def _load(self) -> Dict[str, object]:
        path = self.path
        if not path.exists():
            return {}
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            self._warnings.append(f"read-error: {exc}")
            return {}
        if not isinstance(payload, dict):
            self._warnings.append("credentials file must contain a mapping")
            return {}
        return payload


register_resolver(EnvResolver(), priority=0, name="env", source="env")
register_resolver(CredentialsFileResolver(), priority=-10, name="credentials", source="credentials")


def resolve_token(registry: str, *, explicit: Optional[str] = None) -> TokenResolution:
    spec = TokenSpec(registry=registry)
    attempts: List[TokenAttempt] = []

    if explicit is not None:
        success = bool(explicit)
        attempts.append(TokenAttempt(resolver="flag", source="--token", success=success))
        if success:
            return TokenResolution(
                registry=registry, value=explicit, resolver="flag", source="--token", attempts=attempts
            )

    for entry in _resolvers:
        value = entry.resolver.resolve(spec)
        details: dict[str, object] = {}
        describe = getattr(entry.resolver, "describe", None)
        if callable(describe):
            extra = describe()
            if isinstance(extra, dict):
                details.update(extra)
        if entry.source == "env":
            details["variable"] = spec.env_name
        success = bool(value)
        attempts.append(TokenAttempt(resolver=entry.name, source=entry.source, success=success, details=details))
        if success:
            logger.debug("Resolved token for registry %s via %s", registry, entry.name)
            return TokenResolution(
                registry=registry, value=value, resolver=entry.name, source=entry.source, attempts=attempts
            )

    return TokenResolution(registry=registry, value=None, resolver=None, source=None, attempts=attempts)


def require_token(registry: str, *, explicit: Optional[str] = None) -> str:
    info = resolve_token(registry, explicit=explicit)
    if info.value:
        return info.value
    checked = []
    for attempt in info.attempts:
        label = attempt.source
        if attempt.details.get("variable"):
            label = f"{label}:{attempt.details['variable']}"
        elif attempt.details.get("path"):
            label = f"{label}@{attempt.details['path']}"
        checked.append(f"{label} (missing)")
    summary = ", ".join(checked) if checked else "none"
    raise AuthError(
        f"no token found for registry `{registry}`; pass --token or set {token_env_name(registry)}. "
        f"Checked: {summary}."
    )
