"""Build units and artifact layout."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from ..workspace.models import Package, Profile, Target, TargetKind


class CompileMode(str, Enum):
    BUILD = "build"
    TEST = "test"
    BENCH = "bench"
    DOCTEST = "doctest"

    @property
    def runnable(self) -> bool:
        return self in (CompileMode.TEST, CompileMode.BENCH)


class ArtifactKind(str, Enum):
    LIBRARY = "library"
    EXECUTABLE = "executable"
    DOCTEST = "doctest"


UnitKey = Tuple[str, str, str, str, str, Optional[str]]


@dataclass(frozen=True, eq=False)
class BuildUnit:
    """One compiler invocation for (package, target, profile) under a compile mode.

    A library compiled as a unit test and the same library compiled as a
    link dependency are two units with distinct keys and artifacts.
    """

    package: Package
    target: Target
    mode: CompileMode
    profile: Profile
    features: Tuple[str, ...] = ()
    triple: Optional[str] = None
    deps: Tuple[UnitKey, ...] = field(default=())

    @property
    def key(self) -> UnitKey:
        return (
            self.package.name,
            self.target.kind.value,
            self.target.name,
            self.mode.value,
            self.profile.name,
            self.triple,
        )

    @property
    def artifact_kind(self) -> ArtifactKind:
        if self.mode is CompileMode.DOCTEST:
            return ArtifactKind.DOCTEST
        if self.mode is CompileMode.BUILD and self.target.kind is TargetKind.LIB:
            return ArtifactKind.LIBRARY
        return ArtifactKind.EXECUTABLE

    @property
    def runnable(self) -> bool:
        return self.mode.runnable

    def output_dir(self, target_dir: Path) -> Path:
        base = target_dir / self.triple if self.triple else target_dir
        return base / self.profile.dir_name

    def artifact_path(self, target_dir: Path) -> Path:
        out = self.output_dir(target_dir)
        name = self.target.name
        if self.artifact_kind is ArtifactKind.LIBRARY:
            return out / "deps" / f"lib{name}-{self.metadata_hash()}.slib"
        if self.mode.runnable:
            return out / "deps" / f"{name}-{self.metadata_hash()}"
        if self.target.kind is TargetKind.EXAMPLE:
            return out / "examples" / name
        if self.target.kind is TargetKind.BIN:
            return out / name
        return out / "deps" / f"{name}-{self.metadata_hash()}"

    def metadata_hash(self) -> str:
        digest = hashlib.sha256()
        for part in (*self.key[:5], self.triple or "", self.package.version or "", *self.features):
            digest.update(part.encode("utf-8"))
            digest.update(b"\0")
        return digest.hexdigest()[:16]

    def describe(self) -> str:
        suffix = f" ({self.mode.value})" if self.mode is not CompileMode.BUILD else ""
        return f"{self.package.name} {self.target.describe()}{suffix}"

    def display_path(self) -> str:
        try:
            return self.target.src_path.relative_to(self.package.root).as_posix()
        except ValueError:
            return str(self.target.src_path)


KIND_ORDER = {
    TargetKind.LIB: 0,
    TargetKind.BIN: 1,
    TargetKind.TEST: 2,
    TargetKind.EXAMPLE: 3,
    TargetKind.BENCH: 4,
}
