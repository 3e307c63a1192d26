"""Manifest loading and workspace discovery."""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for Py<3.11
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ConfigurationError
from .models import (
    BUILTIN_PROFILES,
    Dependency,
    Package,
    Profile,
    Target,
    TargetKind,
    Workspace,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "Shipyard.toml"
SOURCE_SUFFIX = ".sy"


class TargetTable(BaseModel):
    name: Optional[str] = None
    path: Optional[str] = None
    test: Optional[bool] = None
    bench: Optional[bool] = None
    doctest: Optional[bool] = None
    harness: bool = True
    required_features: List[str] = Field(default_factory=list, alias="required-features")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PackageTable(BaseModel):
    name: str
    version: Optional[str] = None
    publish: Union[bool, List[str]] = True
    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    license: Optional[str] = None
    autobins: bool = True
    autoexamples: bool = True
    autotests: bool = True
    autobenches: bool = True

    model_config = ConfigDict(extra="allow")


class DependencyTable(BaseModel):
    version: Optional[str] = None
    path: Optional[str] = None
    optional: bool = False
    features: List[str] = Field(default_factory=list)
    default_features: bool = Field(default=True, alias="default-features")
    registry: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class WorkspaceTable(BaseModel):
    members: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    default_members: Optional[List[str]] = Field(default=None, alias="default-members")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ProfileTable(BaseModel):
    inherits: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class ManifestSchema(BaseModel):
    package: Optional[PackageTable] = None
    lib: Optional[TargetTable] = None
    bin: List[TargetTable] = Field(default_factory=list)
    example: List[TargetTable] = Field(default_factory=list)
    test: List[TargetTable] = Field(default_factory=list)
    bench: List[TargetTable] = Field(default_factory=list)
    features: Dict[str, List[str]] = Field(default_factory=dict)
    dependencies: Dict[str, Union[str, DependencyTable]] = Field(default_factory=dict)
    dev_dependencies: Dict[str, Union[str, DependencyTable]] = Field(
        default_factory=dict, alias="dev-dependencies"
    )
    workspace: Optional[WorkspaceTable] = None
    profile: Dict[str, ProfileTable] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow", populate_by_name=True)


def read_manifest(path: Path) -> ManifestSchema:
    if not path.exists():
        raise ConfigurationError(f"manifest not found: {path}")
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"failed to parse manifest at {path}: {exc}") from exc
    try:
        return ManifestSchema.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid manifest at {path}: {exc}") from exc


def load_package(manifest_path: Path, schema: Optional[ManifestSchema] = None) -> Package:
    schema = schema or read_manifest(manifest_path)
    if schema.package is None:
        raise ConfigurationError(f"manifest at {manifest_path} has no [package] section")
    root = manifest_path.parent.resolve()
    table = schema.package
    publish: Optional[Tuple[str, ...]]
    if table.publish is True:
        publish = None
    elif table.publish is False:
        publish = ()
    else:
        publish = tuple(table.publish)

    dependencies = [
        _dependency(name, value, root, dev=False) for name, value in schema.dependencies.items()
    ]
    dependencies += [
        _dependency(name, value, root, dev=True) for name, value in schema.dev_dependencies.items()
    ]

    return Package(
        name=table.name,
        version=table.version,
        root=root,
        targets=tuple(_discover_targets(root, table, schema)),
        features={name: tuple(values) for name, values in schema.features.items()},
        dependencies=tuple(dependencies),
        publish=publish,
        include=tuple(table.include),
        exclude=tuple(table.exclude),
        description=table.description,
        license=table.license,
        manifest_name=manifest_path.name,
    )


def load_workspace(manifest_path: Path) -> Workspace:
    """Load the workspace that owns ``manifest_path``."""

    manifest_path = manifest_path.resolve()
    schema = read_manifest(manifest_path)
    current = schema.package.name if schema.package else None

    root_manifest, root_schema = _find_root(manifest_path, schema)
    root = root_manifest.parent
    members: List[Package] = []
    virtual = root_schema.package is None
    if not virtual:
        members.append(load_package(root_manifest, root_schema))

    workspace_table = root_schema.workspace
    if workspace_table is not None:
        for member_dir in _expand_members(root, workspace_table):
            member_manifest = member_dir / MANIFEST_NAME
            if member_manifest == root_manifest:
                continue
            package = load_package(member_manifest)
            if any(existing.name == package.name for existing in members):
                raise ConfigurationError(
                    f"two workspace members are both named `{package.name}`"
                )
            members.append(package)

    default_members: Optional[Tuple[str, ...]] = None
    if workspace_table is not None and workspace_table.default_members is not None:
        default_members = tuple(_resolve_default_members(root, workspace_table.default_members, members))

    logger.debug("Loaded workspace at %s with %d member(s)", root, len(members))
    return Workspace(
        root=root,
        members=tuple(members),
        default_members=default_members,
        virtual=virtual,
        current=current,
        profiles=_load_profiles(root_schema),
        manifest_name=MANIFEST_NAME,
    )


def find_manifest(start: Optional[Path] = None) -> Path:
    """Locate the nearest manifest walking up from ``start``."""

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        manifest = candidate / MANIFEST_NAME
        if manifest.exists():
            return manifest
    raise ConfigurationError(f"could not find `{MANIFEST_NAME}` in `{current}` or any parent directory")


def _find_root(manifest_path: Path, schema: ManifestSchema) -> Tuple[Path, ManifestSchema]:
    if schema.workspace is not None:
        return manifest_path, schema
    package_dir = manifest_path.parent
    for parent in package_dir.parents:
        candidate = parent / MANIFEST_NAME
        if not candidate.exists():
            continue
        parent_schema = read_manifest(candidate)
        if parent_schema.workspace is None:
            continue
        if package_dir in _expand_members(parent, parent_schema.workspace):
            return candidate, parent_schema
    return manifest_path, schema


def _expand_members(root: Path, table: WorkspaceTable) -> List[Path]:
    found: List[Path] = []
    excluded = [(root / pattern).resolve() for pattern in table.exclude]
    for pattern in table.members:
        if any(char in pattern for char in "*?["):
            candidates = sorted(path for path in root.glob(pattern) if path.is_dir())
        else:
            candidates = [root / pattern]
            if not (root / pattern / MANIFEST_NAME).exists():
                raise ConfigurationError(
                    f"workspace member `{pattern}` has no {MANIFEST_NAME} (looked in {root / pattern})"
                )
        for candidate in candidates:
            resolved = candidate.resolve()
            if not (resolved / MANIFEST_NAME).exists():
                continue
            if any(resolved == path or path in resolved.parents for path in excluded):
                continue
            if resolved not in found:
                found.append(resolved)
    return found


def _resolve_default_members(root: Path, entries: List[str], members: List[Package]) -> List[str]:
    names: List[str] = []
    for entry in entries:
        matched = []
        for package in members:
            relative = package.root.relative_to(root).as_posix() if package.root != root else "."
            if package.root == (root / entry).resolve() or fnmatch.fnmatchcase(relative, entry):
                matched.append(package.name)
        if not matched:
            raise ConfigurationError(f"default-members entry `{entry}` is not a workspace member")
        for name in matched:
            if name not in names:
                names.append(name)
    return names


def _load_profiles(schema: ManifestSchema) -> Dict[str, Profile]:
    profiles: Dict[str, Profile] = dict(BUILTIN_PROFILES)
    for name, table in schema.profile.items():
        settings = {key: value for key, value in (table.model_extra or {}).items()}
        if name in BUILTIN_PROFILES:
            builtin = BUILTIN_PROFILES[name]
            profiles[name] = Profile(
                name=name,
                dir_name=builtin.dir_name,
                inherits=builtin.inherits,
                settings=settings,
            )
            continue
        if not table.inherits:
            raise ConfigurationError(f"profile `{name}` is missing an `inherits` directive")
        profiles[name] = Profile(name=name, dir_name=name, inherits=table.inherits, settings=settings)
    for profile in profiles.values():
        seen = {profile.name}
        parent = profile.inherits
        while parent is not None:
            if parent not in profiles:
                raise ConfigurationError(f"profile `{profile.name}` inherits from `{parent}`, which is not defined")
            if parent in seen:
                raise ConfigurationError(f"profile inheritance loop detected with profile `{profile.name}`")
            seen.add(parent)
            parent = profiles[parent].inherits
    return profiles


def _dependency(name: str, value: Union[str, DependencyTable], root: Path, *, dev: bool) -> Dependency:
    if isinstance(value, str):
        return Dependency(name=name, req=value, dev=dev)
    return Dependency(
        name=name,
        req=value.version,
        path=(root / value.path).resolve() if value.path else None,
        optional=value.optional,
        features=tuple(value.features),
        default_features=value.default_features,
        dev=dev,
        registry=value.registry,
    )


_TARGET_DIRS = {
    TargetKind.BIN: "src/bin",
    TargetKind.EXAMPLE: "examples",
    TargetKind.TEST: "tests",
    TargetKind.BENCH: "benches",
}

# (test, bench) defaults per kind
_TARGET_DEFAULTS = {
    TargetKind.LIB: (True, True),
    TargetKind.BIN: (True, True),
    TargetKind.EXAMPLE: (False, False),
    TargetKind.TEST: (True, False),
    TargetKind.BENCH: (False, True),
}


def _discover_targets(root: Path, table: PackageTable, schema: ManifestSchema) -> List[Target]:
    targets: List[Target] = []

    lib_path = root / "src" / f"lib{SOURCE_SUFFIX}"
    if schema.lib is not None or lib_path.exists():
        lib_table = schema.lib or TargetTable()
        targets.append(
            _make_target(
                TargetKind.LIB,
                lib_table,
                default_name=table.name.replace("-", "_"),
                default_path=lib_path,
                root=root,
            )
        )

    explicit = {
        TargetKind.BIN: schema.bin,
        TargetKind.EXAMPLE: schema.example,
        TargetKind.TEST: schema.test,
        TargetKind.BENCH: schema.bench,
    }
    auto = {
        TargetKind.BIN: table.autobins,
        TargetKind.EXAMPLE: table.autoexamples,
        TargetKind.TEST: table.autotests,
        TargetKind.BENCH: table.autobenches,
    }
    for kind, tables in explicit.items():
        kind_targets: Dict[str, Target] = {}
        for entry in tables:
            name = entry.name or (Path(entry.path).stem if entry.path else None)
            if not name:
                raise ConfigurationError(f"{kind.value} target in {root / MANIFEST_NAME} needs a `name`")
            if name in kind_targets:
                raise ConfigurationError(f"duplicate {kind.value} target name `{name}` in package `{table.name}`")
            kind_targets[name] = _make_target(
                kind,
                entry,
                default_name=name,
                default_path=root / _TARGET_DIRS[kind] / f"{name}{SOURCE_SUFFIX}",
                root=root,
            )
        if auto[kind]:
            for name, path in _autodiscover(root, kind, table.name):
                if name not in kind_targets:
                    kind_targets[name] = _make_target(
                        kind, TargetTable(), default_name=name, default_path=path, root=root
                    )
        targets.extend(kind_targets[name] for name in sorted(kind_targets))
    return targets


def _autodiscover(root: Path, kind: TargetKind, package_name: str) -> List[Tuple[str, Path]]:
    found: List[Tuple[str, Path]] = []
    if kind is TargetKind.BIN:
        main = root / "src" / f"main{SOURCE_SUFFIX}"
        if main.exists():
            found.append((package_name, main))
    directory = root / _TARGET_DIRS[kind]
    if not directory.is_dir():
        return found
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.suffix == SOURCE_SUFFIX:
            found.append((path.stem, path))
        elif path.is_dir() and (path / f"main{SOURCE_SUFFIX}").exists():
            found.append((path.name, path / f"main{SOURCE_SUFFIX}"))
    return found


def _make_target(
    kind: TargetKind,
    table: TargetTable,
    *,
    default_name: str,
    default_path: Path,
    root: Path,
) -> Target:
    test_default, bench_default = _TARGET_DEFAULTS[kind]
    return Target(
        kind=kind,
        name=table.name or default_name,
        src_path=(root / table.path).resolve() if table.path else default_path,
        test=test_default if table.test is None else table.test,
        bench=bench_default if table.bench is None else table.bench,
        harness=table.harness,
        doctest=(table.doctest if table.doctest is not None else True) if kind is TargetKind.LIB else False,
        required_features=tuple(table.required_features),
    )
