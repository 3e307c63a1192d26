"""Global options and the layered configuration file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .workspace.models import Profile, Workspace

logger = logging.getLogger(__name__)

HOME_ENV = "SHIPYARD_HOME"
TARGET_DIR_ENV = "SHIPYARD_TARGET_DIR"
CONFIG_NAME = "config.yaml"

COLOR_CHOICES = ("auto", "always", "never")
MESSAGE_FORMATS = ("human", "short", "json")


class BuildSection(BaseModel):
    jobs: Optional[int] = None
    target_dir: Optional[str] = Field(default=None, alias="target-dir")
    compiler: str = "shipc"

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class RegistrySection(BaseModel):
    default: str = "default"

    model_config = ConfigDict(extra="forbid")


class RegistryEntry(BaseModel):
    index: str

    model_config = ConfigDict(extra="forbid")


class PublishSection(BaseModel):
    timeout: float = Field(default=60.0, ge=0)
    poll_interval: float = Field(default=1.0, gt=0, alias="poll-interval")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class HttpSection(BaseModel):
    timeout: float = Field(default=30.0, gt=0)

    model_config = ConfigDict(extra="forbid")


class NetSection(BaseModel):
    offline: bool = False

    model_config = ConfigDict(extra="forbid")


class DoctestSection(BaseModel):
    concurrency: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")


class ShipyardConfig(BaseModel):
    build: BuildSection = Field(default_factory=BuildSection)
    registry: RegistrySection = Field(default_factory=RegistrySection)
    registries: Dict[str, RegistryEntry] = Field(default_factory=dict)
    publish: PublishSection = Field(default_factory=PublishSection)
    http: HttpSection = Field(default_factory=HttpSection)
    net: NetSection = Field(default_factory=NetSection)
    doctest: DoctestSection = Field(default_factory=DoctestSection)

    model_config = ConfigDict(extra="forbid")


def shipyard_home() -> Path:
    value = os.environ.get(HOME_ENV)
    if value:
        return Path(value)
    return Path.home() / ".shipyard"


def load_config(workspace_root: Optional[Path] = None, *, home: Optional[Path] = None) -> ShipyardConfig:
    """Merge ``$SHIPYARD_HOME/config.yaml`` with ``<workspace>/.shipyard/config.yaml``."""

    merged: Dict[str, Any] = {}
    candidates = [(home or shipyard_home()) / CONFIG_NAME]
    if workspace_root is not None:
        candidates.append(workspace_root / ".shipyard" / CONFIG_NAME)
    for path in candidates:
        payload = _read_yaml(path)
        if payload:
            logger.debug("Loaded configuration from %s", path)
            merged = _merge(merged, payload)
    try:
        return ShipyardConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse configuration file {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"configuration file {path} must contain a mapping")
    return payload


def _merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


@dataclass(slots=True)
class GlobalOptions:
    """Flags shared by every command."""

    jobs: Optional[int] = None
    release: bool = False
    profile: Optional[str] = None
    targets: Tuple[str, ...] = ()
    target_dir: Optional[Path] = None
    locked: bool = False
    offline: bool = False
    frozen: bool = False
    manifest_path: Optional[Path] = None
    verbose: int = 0
    quiet: bool = False
    color: str = "auto"
    message_format: str = "human"

    def __post_init__(self) -> None:
        if self.frozen:
            self.locked = True
            self.offline = True
        if self.color not in COLOR_CHOICES:
            raise ConfigurationError(
                f"invalid color choice `{self.color}`; expected one of {', '.join(COLOR_CHOICES)}"
            )
        if self.message_format not in MESSAGE_FORMATS:
            raise ConfigurationError(
                f"invalid message format `{self.message_format}`; expected one of {', '.join(MESSAGE_FORMATS)}"
            )
        if self.verbose and self.quiet:
            raise ConfigurationError("cannot set both --verbose and --quiet")

    def profile_name(self, default: str = "dev") -> str:
        if self.release and self.profile and self.profile != "release":
            raise ConfigurationError(
                f"conflicting usage of --profile={self.profile} and --release; "
                "the `--release` flag is the same as `--profile=release`"
            )
        if self.profile:
            return self.profile
        if self.release:
            return "release"
        return default

    def apply_config(self, config: ShipyardConfig) -> None:
        if config.net.offline:
            self.offline = True


def resolve_profile(options: GlobalOptions, workspace: Workspace, default: str = "dev") -> Profile:
    name = options.profile_name(default)
    profile = workspace.profile(name)
    if profile is None:
        raise ConfigurationError(f"profile `{name}` is not defined")
    return profile


def resolve_target_dir(options: GlobalOptions, config: ShipyardConfig, workspace_root: Path) -> Path:
    # flag and environment are relative to the invocation directory, config to the workspace
    if options.target_dir is not None:
        return Path(options.target_dir).resolve()
    if os.environ.get(TARGET_DIR_ENV):
        return Path(os.environ[TARGET_DIR_ENV]).resolve()
    path = Path(config.build.target_dir or "target")
    if not path.is_absolute():
        path = workspace_root / path
    return path
