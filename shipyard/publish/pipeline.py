"""Per-package publish state machine.

``Preflight -> Package -> [Verify] -> Upload -> PollPropagation -> Done``
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, FrozenSet, List, Optional, Tuple

from requests import Session

from ..build.compiler import Compiler
from ..build.dispatcher import BuildDispatcher
from ..build.units import BuildUnit, CompileMode
from ..config import ShipyardConfig
from ..credentials import DEFAULT_REGISTRY, require_token
from ..errors import ConfigurationError, NetworkError, PropagationTimeout, PublishRejected
from ..selection.features import FeatureFlags, resolve_features
from ..shell import Shell
from ..workspace.manifest import load_package
from ..workspace.models import BUILTIN_PROFILES, Package, Profile, TargetKind, Workspace
from .archive import Archive, create_archive, package_dir, unpack_archive, verify_target_dir
from .registry import PublishMetadata, RegistryClient
from .vcs import DirtyCheck, dirty_files

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], RegistryClient]


class Stage(str, Enum):
    PREFLIGHT = "preflight"
    PACKAGE = "package"
    VERIFY = "verify"
    UPLOAD = "upload"
    POLL = "poll"
    DONE = "done"


@dataclass(slots=True)
class PublishOptions:
    registry: Optional[str] = None
    index: Optional[str] = None
    token: Optional[str] = None
    dry_run: bool = False
    verify: bool = True
    allow_dirty: bool = False
    offline: bool = False
    keep_going: bool = False


@dataclass(slots=True)
class RegistryTarget:
    name: str
    index: Optional[str]


@dataclass(slots=True)
class PublishResult:
    package: str
    version: str
    registry: str
    stages: List[Stage] = field(default_factory=list)
    archive: Optional[Archive] = None
    dry_run: bool = False
    uploaded: bool = False
    visible: Optional[bool] = None
    warnings: List[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        return {
            "package": self.package,
            "version": self.version,
            "registry": self.registry,
            "stages": [stage.value for stage in self.stages],
            "archive": str(self.archive.path) if self.archive else None,
            "sha256": self.archive.sha256 if self.archive else None,
            "dry_run": self.dry_run,
            "uploaded": self.uploaded,
            "visible": self.visible,
            "warnings": list(self.warnings),
        }


def resolve_registry(package: Package, options: PublishOptions, config: ShipyardConfig) -> RegistryTarget:
    if options.index and options.registry:
        raise ConfigurationError("cannot use both --index and --registry")
    if options.index:
        return RegistryTarget(name=options.index, index=options.index)
    name = options.registry
    if name is None and package.publish is not None and len(package.publish) == 1:
        name = package.publish[0]
    if name is None:
        name = config.registry.default or DEFAULT_REGISTRY
    entry = config.registries.get(name)
    return RegistryTarget(name=name, index=entry.index if entry else None)


class PublishPipeline:
    """Drive one package through every publish stage."""

    def __init__(
        self,
        workspace: Workspace,
        config: ShipyardConfig,
        shell: Shell,
        *,
        target_dir: Path,
        compiler: Compiler,
        jobs: int,
        session: Optional[Session] = None,
        client_factory: Optional[ClientFactory] = None,
        dirty_check: DirtyCheck = dirty_files,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.workspace = workspace
        self.config = config
        self.shell = shell
        self.target_dir = target_dir
        self.compiler = compiler
        self.jobs = jobs
        self.client_factory = client_factory or (
            lambda url: RegistryClient(url, session=session, timeout=config.http.timeout)
        )
        self.dirty_check = dirty_check
        self.clock = clock
        self.sleep = sleep

    def run(self, package: Package, options: PublishOptions) -> PublishResult:
        target = resolve_registry(package, options, self.config)
        result = PublishResult(
            package=package.name,
            version=package.version or "",
            registry=target.name,
            dry_run=options.dry_run,
        )

        token = self.preflight(package, target, options)
        result.stages.append(Stage.PREFLIGHT)

        self.shell.status("Packaging", f"{package.label()} ({package.root})")
        archive = create_archive(package, self.target_dir)
        result.archive = archive
        result.stages.append(Stage.PACKAGE)
        self.shell.status("Packaged", f"{len(archive.files)} files, {archive.size / 1024:.1f}KiB")

        if options.verify:
            self.shell.status("Verifying", package.label())
            self.verify(archive)
            result.stages.append(Stage.VERIFY)

        if options.dry_run:
            message = "aborting upload due to dry run"
            self.shell.warn(message)
            result.warnings.append(message)
            return result

        if token is None or target.index is None:
            raise ValueError(f"cannot upload {package.label()} without a registry index and token")
        client = self.client_factory(target.index)
        self.shell.status("Uploading", f"{package.label()} ({package.root})")
        warnings = client.publish(PublishMetadata.from_package(package), archive.read_bytes(), token)
        for warning in warnings:
            self.shell.warn(warning)
        result.warnings.extend(warnings)
        result.uploaded = True
        result.stages.append(Stage.UPLOAD)
        self.shell.status("Uploaded", f"{package.label()} to registry `{target.name}`")

        result.visible = self.poll(client, package, target)
        if result.visible is False:
            result.warnings.append(f"{package.label()} not yet visible in registry `{target.name}`")
        result.stages.append(Stage.POLL)
        result.stages.append(Stage.DONE)
        return result

    def preflight(self, package: Package, target: RegistryTarget, options: PublishOptions) -> Optional[str]:
        """Reject before any side effect; return the upload token when one is needed."""

        if not package.version:
            raise PublishRejected(f"`{package.name}` cannot be published: the manifest has no `package.version`")
        if package.publish is not None:
            if not package.publish:
                raise PublishRejected(
                    f"`{package.name}` cannot be published: `package.publish` is set to `false` or an empty list"
                )
            if target.name not in package.publish:
                allowed = ", ".join(f"`{name}`" for name in package.publish)
                raise PublishRejected(
                    f"`{package.name}` cannot be published to registry `{target.name}`; "
                    f"`package.publish` only allows: {allowed}"
                )
        path_only = [dep.name for dep in package.dependencies if dep.path is not None and not dep.req and not dep.dev]
        if path_only:
            raise PublishRejected(
                f"all dependencies of `{package.name}` must have a version requirement; "
                f"path-only dependencies: {', '.join(sorted(path_only))}"
            )
        if options.offline and not options.dry_run:
            raise NetworkError("cannot publish while offline; pass --dry-run to package without uploading")

        if not options.allow_dirty:
            dirty = self.dirty_check(package.root)
            if dirty:
                listing = "\n".join(f"    {path}" for path in dirty)
                raise PublishRejected(
                    f"{len(dirty)} file(s) in the working directory contain changes that were not yet committed "
                    f"into git:\n\n{listing}\n\nto proceed despite this, pass the `--allow-dirty` flag"
                )

        if options.dry_run:
            return None
        if target.index is None:
            raise ConfigurationError(
                f"no index configured for registry `{target.name}`; set `registries.{target.name}.index` "
                "in the configuration file or pass --index"
            )
        return require_token(target.name if not options.index else DEFAULT_REGISTRY, explicit=options.token)

    def verify(self, archive: Archive) -> None:
        root = unpack_archive(archive, package_dir(self.target_dir))
        unpacked = load_package(root / self.workspace.manifest_name)
        isolated = Workspace(root=root, members=(unpacked,), manifest_name=self.workspace.manifest_name)
        features = resolve_features(isolated, [unpacked], FeatureFlags())[unpacked.name]
        profile = self.workspace.profile("dev") or BUILTIN_PROFILES["dev"]
        units = _verify_units(unpacked, profile, features.sorted(), features.active)
        logger.info("Verifying %s with %d unit(s)", archive.prefix, len(units))
        dispatcher = BuildDispatcher(self.compiler, verify_target_dir(self.target_dir), jobs=self.jobs)
        dispatcher.build(units)

    def poll(self, client: RegistryClient, package: Package, target: RegistryTarget) -> Optional[bool]:
        timeout = self.config.publish.timeout
        if timeout <= 0:
            self.shell.note("waiting for the registry index is disabled (publish.timeout = 0)")
            return None
        version = package.version or ""
        try:
            client.wait_for_version(
                package.name,
                version,
                timeout=timeout,
                interval=self.config.publish.poll_interval,
                clock=self.clock,
                sleep=self.sleep,
                on_wait=lambda: self.shell.status(
                    "Waiting", f"on `{package.name}` to propagate to registry `{target.name}` (ctrl-c to wait asynchronously)"
                ),
            )
        except PropagationTimeout as exc:
            logger.warning("%s", exc)
            self.shell.warn(str(exc))
            return False
        self.shell.status("Published", f"{package.label()} at registry `{target.name}`")
        return True


def _verify_units(
    package: Package,
    profile: Profile,
    features: Tuple[str, ...],
    active: FrozenSet[str],
) -> List[BuildUnit]:
    units: List[BuildUnit] = []
    lib_key = None
    if package.lib is not None:
        lib_unit = BuildUnit(package=package, target=package.lib, mode=CompileMode.BUILD, profile=profile, features=features)
        units.append(lib_unit)
        lib_key = lib_unit.key
    for target in package.targets_of(TargetKind.BIN):
        if target.missing_features(active):
            continue
        units.append(
            BuildUnit(
                package=package,
                target=target,
                mode=CompileMode.BUILD,
                profile=profile,
                features=features,
                deps=(lib_key,) if lib_key else (),
            )
        )
    return units
