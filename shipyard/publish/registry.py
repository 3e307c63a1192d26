"""Registry client: index config, uploads and propagation polling."""

from __future__ import annotations

import json
import logging
import struct
import time
from typing import Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from requests import Response, Session
from requests.exceptions import RequestException

from ..errors import AuthError, NetworkError, PropagationTimeout, UploadError
from ..workspace.models import Package

logger = logging.getLogger(__name__)

SPARSE_PREFIX = "sparse+"
PUBLISH_PATH = "/api/v1/packages/new"


class IndexConfig(BaseModel):
    """``config.json`` at the root of a registry index."""

    dl: str
    api: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class DependencyMetadata(BaseModel):
    name: str
    version_req: str
    features: List[str] = Field(default_factory=list)
    optional: bool = False
    default_features: bool = True
    kind: str = "normal"
    registry: Optional[str] = None


class PublishMetadata(BaseModel):
    """JSON half of the upload body."""

    name: str
    vers: str
    deps: List[DependencyMetadata] = Field(default_factory=list)
    features: Dict[str, List[str]] = Field(default_factory=dict)
    description: Optional[str] = None
    license: Optional[str] = None

    @classmethod
    def from_package(cls, package: Package) -> "PublishMetadata":
        deps = [
            DependencyMetadata(
                name=dep.name,
                version_req=dep.req or "*",
                features=list(dep.features),
                optional=dep.optional,
                default_features=dep.default_features,
                kind="dev" if dep.dev else "normal",
                registry=dep.registry,
            )
            for dep in package.dependencies
        ]
        return cls(
            name=package.name,
            vers=package.version or "",
            deps=deps,
            features={name: list(entries) for name, entries in package.features.items()},
            description=package.description,
            license=package.license,
        )


def index_prefix(name: str) -> str:
    """Directory part of the index path for ``name``."""

    lowered = name.lower()
    if len(lowered) == 1:
        return "1"
    if len(lowered) == 2:
        return "2"
    if len(lowered) == 3:
        return f"3/{lowered[0]}"
    return f"{lowered[0:2]}/{lowered[2:4]}"


def encode_upload(metadata: PublishMetadata, archive: bytes) -> bytes:
    body = json.dumps(metadata.model_dump(mode="json"), separators=(",", ":")).encode("utf-8")
    return struct.pack("<I", len(body)) + body + struct.pack("<I", len(archive)) + archive


class RegistryClient:
    """Talks to one registry over HTTP via an injectable ``requests`` session."""

    def __init__(
        self,
        index_url: str,
        *,
        session: Optional[Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.index_url = index_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._config: Optional[IndexConfig] = None

    @property
    def base_url(self) -> str:
        url = self.index_url
        if url.startswith(SPARSE_PREFIX):
            url = url[len(SPARSE_PREFIX):]
        return url.rstrip("/")

    def _get(self, url: str) -> Response:
        try:
            return self.session.get(url, timeout=self.timeout)
        except RequestException as exc:
            raise NetworkError(f"failed to reach registry at {url}: {exc}") from exc

    def config(self) -> IndexConfig:
        if self._config is not None:
            return self._config
        url = f"{self.base_url}/config.json"
        response = self._get(url)
        if response.status_code != 200:
            raise NetworkError(f"failed to fetch registry config {url}: status {response.status_code}")
        try:
            self._config = IndexConfig.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise NetworkError(f"invalid registry config at {url}: {exc}") from exc
        return self._config

    def publish(self, metadata: PublishMetadata, archive: bytes, token: str) -> List[str]:
        """Upload once; return the registry's warnings."""

        api = self.config().api
        if not api:
            raise UploadError(f"registry at {self.index_url} does not support publishing (no `api` in config.json)")
        url = f"{api.rstrip('/')}{PUBLISH_PATH}"
        try:
            response = self.session.put(
                url,
                data=encode_upload(metadata, archive),
                headers={
                    "Authorization": token,
                    "Accept": "application/json",
                    "Content-Type": "application/octet-stream",
                },
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise NetworkError(f"failed to upload {metadata.name} v{metadata.vers}: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthError(
                f"the registry rejected the token for {metadata.name} v{metadata.vers} "
                f"(status {response.status_code}): {_error_detail(response)}"
            )
        if response.status_code != 200:
            raise UploadError(
                f"failed to publish {metadata.name} v{metadata.vers} "
                f"(status {response.status_code}): {_error_detail(response)}"
            )
        return _warnings(response)

    def is_visible(self, name: str, version: str) -> bool:
        url = f"{self.base_url}/{index_prefix(name)}/{name.lower()}"
        response = self._get(url)
        if response.status_code == 404:
            return False
        if response.status_code != 200:
            raise NetworkError(f"failed to query registry index {url}: status {response.status_code}")
        for line in (response.text or "").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                logger.debug("Skipping malformed index line for %s", name)
                continue
            if isinstance(record, dict) and record.get("vers") == version:
                return True
        return False

    def wait_for_version(
        self,
        name: str,
        version: str,
        *,
        timeout: float,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        on_wait: Optional[Callable[[], None]] = None,
    ) -> float:
        """Poll the index until ``version`` is listed; return the seconds waited."""

        start = clock()
        announced = False
        while True:
            if self.is_visible(name, version):
                return clock() - start
            elapsed = clock() - start
            if elapsed >= timeout:
                raise PropagationTimeout(name, version, timeout)
            if not announced and on_wait is not None:
                on_wait()
                announced = True
            sleep(min(interval, max(timeout - elapsed, 0.0)))


def _error_detail(response: Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or response.reason or "").strip() or "no details"
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if isinstance(errors, list):
        details = [str(item.get("detail")) for item in errors if isinstance(item, dict) and item.get("detail")]
        if details:
            return "; ".join(details)
    return (response.text or "").strip() or "no details"


def _warnings(response: Response) -> List[str]:
    try:
        payload = response.json()
    except ValueError:
        return []
    warnings = payload.get("warnings") if isinstance(payload, dict) else None
    if not isinstance(warnings, dict):
        return []
    messages: List[str] = []
    invalid = warnings.get("invalid_categories") or []
    if invalid:
        messages.append("the following are not valid category slugs and were ignored: " + ", ".join(map(str, invalid)))
    badges = warnings.get("invalid_badges") or []
    if badges:
        messages.append("the following are not valid badges and were ignored: " + ", ".join(map(str, badges)))
    messages.extend(str(item) for item in warnings.get("other") or [])
    return messages
