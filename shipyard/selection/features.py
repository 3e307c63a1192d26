"""Feature resolution for the selected packages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Sequence, Set, Tuple

from ..errors import ConfigurationError
from ..workspace.models import Package, Workspace

logger = logging.getLogger(__name__)

DEFAULT_FEATURE = "default"


@dataclass(frozen=True)
class FeatureFlags:
    features: Tuple[str, ...] = ()
    all_features: bool = False
    no_default_features: bool = False

    @classmethod
    def from_cli(
        cls,
        values: Iterable[str] = (),
        *,
        all_features: bool = False,
        no_default_features: bool = False,
    ) -> "FeatureFlags":
        names: List[str] = []
        for value in values:
            for name in re.split(r"[\s,]+", value):
                if name and name not in names:
                    names.append(name)
        return cls(features=tuple(names), all_features=all_features, no_default_features=no_default_features)


@dataclass(frozen=True)
class FeatureSet:
    package: str
    active: FrozenSet[str] = frozenset()
    optional_deps: FrozenSet[str] = frozenset()
    dependency_features: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    def sorted(self) -> Tuple[str, ...]:
        return tuple(sorted(self.active))


def resolve_features(
    workspace: Workspace,
    packages: Sequence[Package],
    flags: FeatureFlags,
) -> Dict[str, FeatureSet]:
    """Resolve the active features for every selected package."""

    if flags.all_features and flags.no_default_features:
        logger.debug("--no-default-features is redundant with --all-features")

    selected = {package.name: package for package in packages}
    requests: Dict[str, Set[str]] = {package.name: set() for package in packages}
    dep_requests: Dict[str, Dict[str, Set[str]]] = {package.name: {} for package in packages}

    for package in packages:
        if flags.all_features:
            requests[package.name].update(package.features)
            requests[package.name].update(_implicit_features(package))
        elif not flags.no_default_features and DEFAULT_FEATURE in package.features:
            requests[package.name].add(DEFAULT_FEATURE)

    unmatched: List[str] = []
    for raw in flags.features:
        if "/" in raw:
            prefix, feature = raw.split("/", 1)
            prefix = prefix.rstrip("?")
            member = selected.get(prefix)
            if member is not None:
                if not _declares(member, feature):
                    raise ConfigurationError(f"package `{prefix}` does not have the feature `{feature}`")
                requests[prefix].add(feature)
                continue
            dependents = [package for package in packages if package.dependency(prefix) is not None]
            if not dependents:
                if workspace.member(prefix) is not None:
                    raise ConfigurationError(
                        f"feature `{raw}` refers to workspace member `{prefix}`, which is not selected; "
                        f"add `-p {prefix}` to enable its features"
                    )
                raise ConfigurationError(
                    f"feature `{raw}` refers to `{prefix}`, which is neither a selected workspace member "
                    "nor a dependency of one"
                )
            for package in dependents:
                dep_requests[package.name].setdefault(prefix, set()).add(feature)
            continue
        if flags.all_features:
            continue
        owners = [package for package in packages if _declares(package, raw)]
        if not owners:
            unmatched.append(raw)
            continue
        for package in owners:
            requests[package.name].add(raw)

    if unmatched:
        raise ConfigurationError(
            "none of the selected packages contains these features: " + ", ".join(unmatched)
        )

    return {
        package.name: _close(package, requests[package.name], dep_requests[package.name])
        for package in packages
    }


def _declares(package: Package, feature: str) -> bool:
    return feature in package.features or feature in _implicit_features(package)


def _explicit_dep_refs(package: Package) -> Set[str]:
    return {
        entry[len("dep:") :]
        for entries in package.features.values()
        for entry in entries
        if entry.startswith("dep:")
    }


def _implicit_features(package: Package) -> Set[str]:
    """Optional dependencies never referenced through `dep:` act as features."""

    explicit = _explicit_dep_refs(package)
    return {dep.name for dep in package.optional_dependencies() if dep.name not in explicit}


def _close(package: Package, requested: Set[str], dep_requests: Dict[str, Set[str]]) -> FeatureSet:
    active: Set[str] = set()
    optional_deps: Set[str] = set()
    dep_features: Dict[str, Set[str]] = {name: set(values) for name, values in dep_requests.items()}
    explicit_dep_refs = _explicit_dep_refs(package)

    stack = list(requested)
    while stack:
        name = stack.pop()
        if name in active:
            continue
        if name in package.features:
            active.add(name)
            for entry in package.features[name]:
                _apply_entry(package, name, entry, stack, optional_deps, dep_features, explicit_dep_refs)
            continue
        dep = package.dependency(name)
        if dep is not None and dep.optional and name not in explicit_dep_refs:
            active.add(name)
            optional_deps.add(name)
            continue
        raise ConfigurationError(f"package `{package.name}` does not have the feature `{name}`")

    return FeatureSet(
        package=package.name,
        active=frozenset(active),
        optional_deps=frozenset(optional_deps),
        dependency_features={name: frozenset(values) for name, values in dep_features.items() if values},
    )


def _apply_entry(
    package: Package,
    owner: str,
    entry: str,
    stack: List[str],
    optional_deps: Set[str],
    dep_features: Dict[str, Set[str]],
    explicit_dep_refs: Set[str],
) -> None:
    if entry.startswith("dep:"):
        dep_name = entry[len("dep:") :]
        dep = package.dependency(dep_name)
        if dep is None or not dep.optional:
            raise ConfigurationError(
                f"feature `{owner}` includes `{entry}`, but `{dep_name}` is not an optional dependency"
            )
        optional_deps.add(dep_name)
        return
    if "/" in entry:
        prefix, feature = entry.split("/", 1)
        weak = prefix.endswith("?")
        dep_name = prefix.rstrip("?")
        dep = package.dependency(dep_name)
        if dep is None:
            raise ConfigurationError(
                f"feature `{owner}` includes `{entry}`, but `{dep_name}` is not a dependency"
            )
        dep_features.setdefault(dep_name, set()).add(feature)
        if dep.optional and not weak:
            optional_deps.add(dep_name)
            if dep_name not in explicit_dep_refs:
                stack.append(dep_name)
        return
    if entry in package.features:
        stack.append(entry)
        return
    dep = package.dependency(entry)
    if dep is not None and dep.optional and entry not in explicit_dep_refs:
        stack.append(entry)
        return
    raise ConfigurationError(
        f"feature `{owner}` includes `{entry}` which is neither a dependency nor another feature"
    )
