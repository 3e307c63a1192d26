"""Static package and workspace model loaded once per invocation."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple


class TargetKind(str, Enum):
    LIB = "lib"
    BIN = "bin"
    EXAMPLE = "example"
    TEST = "test"
    BENCH = "bench"

    @property
    def description(self) -> str:
        return {
            TargetKind.LIB: "library",
            TargetKind.BIN: "binary",
            TargetKind.EXAMPLE: "example",
            TargetKind.TEST: "integration test",
            TargetKind.BENCH: "bench",
        }[self]


_FAILED_CASE_RE = re.compile(r"^test (?P<name>\S+) \.\.\. FAILED\s*$", re.MULTILINE)


@dataclass(frozen=True)
class CaseOutcome:
    passed: bool
    failed_cases: Tuple[str, ...] = ()


class TargetEntry(ABC):
    """How a compiled executable is driven once it exists."""

    harness: bool

    @abstractmethod
    def compile_args(self, *, runnable: bool) -> List[str]:
        ...

    @abstractmethod
    def run_args(self, *, bench: bool, filters: Sequence[str], passthrough: Sequence[str]) -> List[str]:
        ...

    @abstractmethod
    def outcome(self, stdout: str, returncode: int) -> CaseOutcome:
        ...


class HarnessManaged(TargetEntry):
    """Executable built around the test harness; cases are registered at build time."""

    harness = True

    def compile_args(self, *, runnable: bool) -> List[str]:
        return ["--test"] if runnable else []

    def run_args(self, *, bench: bool, filters: Sequence[str], passthrough: Sequence[str]) -> List[str]:
        args: List[str] = []
        if bench:
            args.append("--bench")
        args.extend(filters)
        args.extend(passthrough)
        return args

    def outcome(self, stdout: str, returncode: int) -> CaseOutcome:
        failed = tuple(match.group("name") for match in _FAILED_CASE_RE.finditer(stdout or ""))
        return CaseOutcome(passed=returncode == 0 and not failed, failed_cases=failed)


class SelfManaged(TargetEntry):
    """Executable with its own entry point; only the exit status is meaningful."""

    harness = False

    def compile_args(self, *, runnable: bool) -> List[str]:
        return []

    def run_args(self, *, bench: bool, filters: Sequence[str], passthrough: Sequence[str]) -> List[str]:
        args: List[str] = ["--bench"] if bench else []
        args.extend(filters)
        args.extend(passthrough)
        return args

    def outcome(self, stdout: str, returncode: int) -> CaseOutcome:
        return CaseOutcome(passed=returncode == 0)


HARNESS_MANAGED = HarnessManaged()
SELF_MANAGED = SelfManaged()


@dataclass(frozen=True)
class Target:
    kind: TargetKind
    name: str
    src_path: Path
    test: bool
    bench: bool
    harness: bool = True
    doctest: bool = False
    required_features: Tuple[str, ...] = ()

    @property
    def entry(self) -> TargetEntry:
        return HARNESS_MANAGED if self.harness else SELF_MANAGED

    def describe(self) -> str:
        if self.kind is TargetKind.LIB:
            return "lib"
        return f"{self.kind.value} \"{self.name}\""

    def missing_features(self, active: Iterable[str]) -> List[str]:
        enabled = set(active)
        return [name for name in self.required_features if name not in enabled]


@dataclass(frozen=True)
class Dependency:
    name: str
    req: Optional[str] = None
    path: Optional[Path] = None
    optional: bool = False
    features: Tuple[str, ...] = ()
    default_features: bool = True
    dev: bool = False
    registry: Optional[str] = None


@dataclass(frozen=True)
class Package:
    name: str
    version: Optional[str]
    root: Path
    targets: Tuple[Target, ...] = ()
    features: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    dependencies: Tuple[Dependency, ...] = ()
    publish: Optional[Tuple[str, ...]] = None
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    description: Optional[str] = None
    license: Optional[str] = None
    manifest_name: str = "Shipyard.toml"

    @property
    def manifest_path(self) -> Path:
        return self.root / self.manifest_name

    @property
    def lib(self) -> Optional[Target]:
        for target in self.targets:
            if target.kind is TargetKind.LIB:
                return target
        return None

    def targets_of(self, kind: TargetKind) -> List[Target]:
        return [target for target in self.targets if target.kind is kind]

    def optional_dependencies(self) -> List[Dependency]:
        return [dep for dep in self.dependencies if dep.optional and not dep.dev]

    def dependency(self, name: str) -> Optional[Dependency]:
        for dep in self.dependencies:
            if dep.name == name:
                return dep
        return None

    def label(self) -> str:
        return f"{self.name} v{self.version}" if self.version else self.name


@dataclass(frozen=True)
class Profile:
    name: str
    dir_name: str
    inherits: Optional[str] = None
    settings: Mapping[str, object] = field(default_factory=dict)


BUILTIN_PROFILES: Dict[str, Profile] = {
    "dev": Profile(name="dev", dir_name="debug"),
    "release": Profile(name="release", dir_name="release"),
    "test": Profile(name="test", dir_name="debug", inherits="dev"),
    "bench": Profile(name="bench", dir_name="release", inherits="release"),
}


@dataclass(frozen=True)
class Workspace:
    root: Path
    members: Tuple[Package, ...]
    default_members: Optional[Tuple[str, ...]] = None
    virtual: bool = False
    current: Optional[str] = None
    profiles: Mapping[str, Profile] = field(default_factory=lambda: dict(BUILTIN_PROFILES))
    manifest_name: str = "Shipyard.toml"

    @property
    def root_manifest(self) -> Path:
        return self.root / self.manifest_name

    @property
    def is_workspace_root(self) -> bool:
        """True when the invoked manifest is the workspace root manifest."""

        if self.current is None:
            return True
        root_package = self.root_package
        return root_package is not None and root_package.name == self.current

    @property
    def root_package(self) -> Optional[Package]:
        if self.virtual:
            return None
        for package in self.members:
            if package.root == self.root:
                return package
        return None

    def member(self, name: str) -> Optional[Package]:
        for package in self.members:
            if package.name == name:
                return package
        return None

    def member_names(self) -> List[str]:
        return [package.name for package in self.members]

    def default_packages(self) -> List[Package]:
        if not self.is_workspace_root and self.current is not None:
            current = self.member(self.current)
            return [current] if current else []
        if self.default_members is not None:
            wanted = set(self.default_members)
            return [package for package in self.members if package.name in wanted]
        if self.virtual:
            return list(self.members)
        root_package = self.root_package
        return [root_package] if root_package else list(self.members[:1])

    def workspace_dependencies(self, package: Package, *, include_dev: bool = False) -> List[Package]:
        """Members that ``package`` depends on through a path dependency."""

        found: List[Package] = []
        for dep in package.dependencies:
            if dep.path is None or (dep.dev and not include_dev):
                continue
            member = self.member(dep.name)
            if member is None or member.name == package.name:
                continue
            if dep.path.resolve() != member.root.resolve():
                continue
            if member not in found:
                found.append(member)
        return found

    def profile(self, name: str) -> Optional[Profile]:
        return self.profiles.get(name)
