"""Target selection for the test and bench commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Set, Tuple

from ..build.units import CompileMode
from ..errors import ConfigurationError
from ..workspace.models import Package, Target, TargetKind
from .features import FeatureSet
from .patterns import is_glob, match_names

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetFlags:
    lib: bool = False
    bins: Tuple[str, ...] = ()
    all_bins: bool = False
    examples: Tuple[str, ...] = ()
    all_examples: bool = False
    tests: Tuple[str, ...] = ()
    all_tests: bool = False
    benches: Tuple[str, ...] = ()
    all_benches: bool = False
    all_targets: bool = False
    doc: bool = False

    def explicit(self) -> bool:
        return any(
            (
                self.lib,
                self.bins,
                self.all_bins,
                self.examples,
                self.all_examples,
                self.tests,
                self.all_tests,
                self.benches,
                self.all_benches,
                self.all_targets,
            )
        )

    def validate(self) -> None:
        if self.doc and self.explicit():
            raise ConfigurationError("Can't mix --doc with other target selecting options")


@dataclass(frozen=True)
class TargetSelection:
    package: Package
    target: Target
    mode: CompileMode
    named: bool = False


def select_targets(
    packages: Sequence[Package],
    features: Mapping[str, FeatureSet],
    flags: TargetFlags,
    run_mode: CompileMode,
) -> List[TargetSelection]:
    flags.validate()
    collector = _Collector(features)

    if flags.doc:
        for package in packages:
            lib = package.lib
            if lib is not None and lib.doctest:
                collector.add(package, lib, CompileMode.DOCTEST)
        if not any(package.lib for package in packages):
            raise ConfigurationError(_no_lib_message(packages))
        return collector.selections

    if not flags.explicit():
        for package in packages:
            _implicit(collector, package, run_mode)
        return collector.selections

    wants_lib = flags.lib or flags.all_targets
    if wants_lib:
        found = False
        for package in packages:
            lib = package.lib
            if lib is not None:
                found = True
                collector.add(package, lib, run_mode, named=flags.lib)
        if flags.lib and not found:
            raise ConfigurationError(_no_lib_message(packages))

    if flags.all_bins or flags.all_targets:
        for package in packages:
            for target in package.targets_of(TargetKind.BIN):
                if _opted_in(target, run_mode):
                    collector.add(package, target, run_mode)

    if flags.all_examples or flags.all_targets:
        for package in packages:
            for target in package.targets_of(TargetKind.EXAMPLE):
                collector.add(package, target, run_mode if _opted_in(target, run_mode) else CompileMode.BUILD)

    if flags.all_tests or flags.all_targets:
        for package in packages:
            for target in package.targets:
                if target.test and (flags.all_tests or target.kind is TargetKind.TEST):
                    collector.add(package, target, run_mode)

    if flags.all_benches or flags.all_targets:
        for package in packages:
            for target in package.targets:
                if target.bench and (flags.all_benches or target.kind is TargetKind.BENCH):
                    collector.add(package, target, run_mode)

    named: Dict[TargetKind, Tuple[str, ...]] = {
        TargetKind.BIN: flags.bins,
        TargetKind.EXAMPLE: flags.examples,
        TargetKind.TEST: flags.tests,
        TargetKind.BENCH: flags.benches,
    }
    for kind, patterns in named.items():
        for pattern in patterns:
            for package, target in _match_named(packages, kind, pattern):
                collector.add(package, target, run_mode, named=True)

    return collector.selections


def _implicit(collector: "_Collector", package: Package, run_mode: CompileMode) -> None:
    if run_mode is CompileMode.BENCH:
        for target in package.targets:
            if target.kind in (TargetKind.LIB, TargetKind.BIN, TargetKind.BENCH) and target.bench:
                collector.add(package, target, CompileMode.BENCH)
        return

    for target in package.targets:
        if target.kind is TargetKind.EXAMPLE:
            collector.add(package, target, CompileMode.TEST if target.test else CompileMode.BUILD)
        elif target.test:
            collector.add(package, target, CompileMode.TEST)
    lib = package.lib
    if lib is not None and lib.doctest:
        collector.add(package, lib, CompileMode.DOCTEST)


def _opted_in(target: Target, run_mode: CompileMode) -> bool:
    return target.bench if run_mode is CompileMode.BENCH else target.test


def _match_named(packages: Sequence[Package], kind: TargetKind, pattern: str) -> List[Tuple[Package, Target]]:
    matches: List[Tuple[Package, Target]] = []
    available: Set[str] = set()
    for package in packages:
        candidates = package.targets_of(kind)
        names = [target.name for target in candidates]
        available.update(names)
        wanted = set(match_names(pattern, names)) if is_glob(pattern) else ({pattern} & set(names))
        matches.extend((package, target) for target in candidates if target.name in wanted)
    if matches or is_glob(pattern):
        if not matches:
            logger.debug("--%s pattern `%s` matched no targets", kind.value, pattern)
        return matches
    message = f"no {kind.value} target named `{pattern}` in selected packages"
    if available:
        listing = "\n".join(f"    {name}" for name in sorted(available))
        message += f"\n\nAvailable {kind.value} targets:\n{listing}"
    raise ConfigurationError(message)


def _no_lib_message(packages: Sequence[Package]) -> str:
    names = ", ".join(f"`{package.name}`" for package in packages)
    return f"no library targets found in package(s): {names}"


class _Collector:
    def __init__(self, features: Mapping[str, FeatureSet]) -> None:
        self._features = features
        self._seen: Set[Tuple[str, str, str, str]] = set()
        self.selections: List[TargetSelection] = []

    def add(self, package: Package, target: Target, mode: CompileMode, *, named: bool = False) -> None:
        feature_set = self._features.get(package.name)
        active = feature_set.active if feature_set else frozenset()
        missing = target.missing_features(active)
        if missing:
            if named:
                quoted = ", ".join(f"`{name}`" for name in missing)
                raise ConfigurationError(
                    f"target `{target.name}` in package `{package.name}` requires the features: {quoted}\n"
                    f"Consider enabling them by passing, e.g., `--features=\"{' '.join(missing)}\"`"
                )
            logger.debug("Skipping %s of %s: missing features %s", target.describe(), package.name, missing)
            return
        key = (package.name, target.kind.value, target.name, mode.value)
        if key in self._seen:
            return
        self._seen.add(key)
        self.selections.append(TargetSelection(package=package, target=target, mode=mode, named=named))
