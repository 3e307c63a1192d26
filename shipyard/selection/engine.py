"""Resolve flags and manifest defaults into an immutable selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..build.units import KIND_ORDER, BuildUnit, CompileMode, UnitKey
from ..errors import ConfigurationError
from ..workspace.models import Package, Profile, Target, TargetEntry, TargetKind, Workspace
from .features import FeatureFlags, FeatureSet, resolve_features
from .packages import PackageFlags, resolve_packages
from .targets import TargetFlags, TargetSelection, select_targets

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionFlags:
    packages: PackageFlags = field(default_factory=PackageFlags)
    targets: TargetFlags = field(default_factory=TargetFlags)
    features: FeatureFlags = field(default_factory=FeatureFlags)


@dataclass(frozen=True)
class Registration:
    """A runnable unit paired with the entry variant that drives it."""

    unit: BuildUnit
    entry: TargetEntry


@dataclass(frozen=True)
class DoctestRequest:
    package: Package
    target: Target
    profile: Profile
    features: Tuple[str, ...]
    triple: Optional[str]
    lib_unit: UnitKey


@dataclass(frozen=True)
class SelectionResult:
    mode: CompileMode
    packages: Tuple[Package, ...]
    features: Mapping[str, FeatureSet]
    profile: Profile
    triples: Tuple[Optional[str], ...]
    units: Tuple[BuildUnit, ...]
    registrations: Tuple[Registration, ...]
    doctests: Tuple[DoctestRequest, ...]

    def unit(self, key: UnitKey) -> Optional[BuildUnit]:
        for unit in self.units:
            if unit.key == key:
                return unit
        return None


def resolve_selection(
    workspace: Workspace,
    flags: SelectionFlags,
    *,
    profile: Profile,
    mode: CompileMode = CompileMode.TEST,
    triples: Sequence[str] = (),
) -> SelectionResult:
    flags.targets.validate()
    packages = resolve_packages(workspace, flags.packages)
    features = resolve_features(workspace, packages, flags.features)
    selections = select_targets(packages, features, flags.targets, mode)

    triple_list: Tuple[Optional[str], ...] = tuple(triples) if triples else (None,)
    units: Dict[UnitKey, BuildUnit] = {}
    doctests: List[DoctestRequest] = []

    for triple in triple_list:
        linker = _DependencyLinker(workspace, units, features, profile, triple)
        for selection in selections:
            package = selection.package
            feature_names = features[package.name].sorted()
            links = linker.links(package)
            lib_key = linker.lib(package) if _needs_lib(selection) else None

            if selection.mode is CompileMode.DOCTEST:
                if lib_key is not None:
                    doctests.append(
                        DoctestRequest(
                            package=package,
                            target=selection.target,
                            profile=profile,
                            features=feature_names,
                            triple=triple,
                            lib_unit=lib_key,
                        )
                    )
                continue

            own = (lib_key,) if lib_key is not None else ()
            deps: List[UnitKey] = [*own, *links]
            if selection.target.kind in (TargetKind.TEST, TargetKind.BENCH) and selection.mode.runnable:
                for bin_target in package.targets_of(TargetKind.BIN):
                    if bin_target.missing_features(features[package.name].active):
                        continue
                    deps.append(
                        _ensure_unit(units, package, bin_target, CompileMode.BUILD, profile, feature_names, triple, (*own, *links))
                    )

            unit = BuildUnit(
                package=package,
                target=selection.target,
                mode=selection.mode,
                profile=profile,
                features=feature_names,
                triple=triple,
                deps=tuple(deps),
            )
            if unit.key not in units:
                units[unit.key] = unit

    ordered = _order_units(list(units.values()), packages)
    registrations = tuple(
        Registration(unit=unit, entry=unit.target.entry) for unit in ordered if unit.runnable
    )
    logger.debug(
        "Selection: %d unit(s), %d runnable, %d doctest target(s)",
        len(ordered),
        len(registrations),
        len(doctests),
    )
    return SelectionResult(
        mode=mode,
        packages=tuple(packages),
        features=dict(features),
        profile=profile,
        triples=triple_list,
        units=tuple(ordered),
        registrations=registrations,
        doctests=tuple(doctests),
    )


def _needs_lib(selection: TargetSelection) -> bool:
    if selection.package.lib is None:
        return False
    if selection.mode is CompileMode.DOCTEST:
        return True
    return selection.target.kind is not TargetKind.LIB


class _DependencyLinker:
    """Library BUILD units that workspace members link against, per triple.

    A member that is not itself selected is built with its own default
    features.
    """

    def __init__(
        self,
        workspace: Workspace,
        units: Dict[UnitKey, BuildUnit],
        features: Mapping[str, FeatureSet],
        profile: Profile,
        triple: Optional[str],
    ) -> None:
        self.workspace = workspace
        self.units = units
        self.features = features
        self.profile = profile
        self.triple = triple
        self._links: Dict[str, Tuple[UnitKey, ...]] = {}
        self._visiting: List[str] = []

    def lib(self, package: Package) -> Optional[UnitKey]:
        if package.lib is None:
            return None
        return _ensure_unit(
            self.units,
            package,
            package.lib,
            CompileMode.BUILD,
            self.profile,
            self._feature_names(package),
            self.triple,
            self.links(package),
        )

    def links(self, package: Package) -> Tuple[UnitKey, ...]:
        cached = self._links.get(package.name)
        if cached is not None:
            return cached
        if package.name in self._visiting:
            cycle = " -> ".join([*self._visiting[self._visiting.index(package.name) :], package.name])
            raise ConfigurationError(f"cyclic dependency between workspace members: {cycle}")

        self._visiting.append(package.name)
        keys: List[UnitKey] = []
        for member in self.workspace.workspace_dependencies(package):
            key = self.lib(member)
            if key is None:
                logger.debug("%s depends on %s, which has no library target", package.name, member.name)
                continue
            if key not in keys:
                keys.append(key)
        self._visiting.pop()
        self._links[package.name] = tuple(keys)
        return self._links[package.name]

    def _feature_names(self, package: Package) -> Tuple[str, ...]:
        selected = self.features.get(package.name)
        if selected is not None:
            return selected.sorted()
        return resolve_features(self.workspace, [package], FeatureFlags())[package.name].sorted()


def _ensure_unit(
    units: Dict[UnitKey, BuildUnit],
    package: Package,
    target: Target,
    mode: CompileMode,
    profile: Profile,
    features: Tuple[str, ...],
    triple: Optional[str],
    deps: Tuple[UnitKey, ...],
) -> UnitKey:
    unit = BuildUnit(
        package=package,
        target=target,
        mode=mode,
        profile=profile,
        features=features,
        triple=triple,
        deps=deps,
    )
    units.setdefault(unit.key, unit)
    return unit.key


def _order_units(units: List[BuildUnit], packages: Sequence[Package]) -> List[BuildUnit]:
    position = {package.name: index for index, package in enumerate(packages)}
    mode_order = {CompileMode.BUILD: 0, CompileMode.TEST: 1, CompileMode.BENCH: 1, CompileMode.DOCTEST: 2}
    return sorted(
        units,
        key=lambda unit: (
            unit.triple or "",
            position.get(unit.package.name, len(position)),
            KIND_ORDER[unit.target.kind],
            unit.target.name,
            mode_order[unit.mode],
        ),
    )
