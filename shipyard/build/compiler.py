"""Compiler collaborator: the opaque executable that turns sources into artifacts."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..workspace.models import Package, TargetKind
from .units import BuildUnit, CompileMode

logger = logging.getLogger(__name__)

DEFAULT_COMPILER = "shipc"


@dataclass(frozen=True)
class CompileRequest:
    name: str
    src_path: Path
    crate_type: str
    mode: CompileMode
    output: Path
    profile: str
    cwd: Path
    features: Tuple[str, ...] = ()
    triple: Optional[str] = None
    externs: Mapping[str, Path] = field(default_factory=dict)
    extra_args: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CompileResult:
    success: bool
    returncode: int
    stdout: str = ""
    stderr: str = ""
    artifact: Optional[Path] = None

    def message(self) -> str:
        text = (self.stderr or self.stdout).strip()
        if text:
            return text.splitlines()[-1]
        return f"compiler exited with status {self.returncode}"


class Compiler(Protocol):
    def compile(self, request: CompileRequest) -> CompileResult:  # pragma: no cover - interface
        ...


def package_env(package: Package) -> Dict[str, str]:
    return {
        "SHIPYARD_MANIFEST_DIR": str(package.root),
        "SHIPYARD_PKG_NAME": package.name,
        "SHIPYARD_PKG_VERSION": package.version or "",
    }


def request_for_unit(
    unit: BuildUnit,
    target_dir: Path,
    *,
    externs: Optional[Mapping[str, Path]] = None,
    cwd: Optional[Path] = None,
) -> CompileRequest:
    """Describe the compiler invocation for ``unit``."""

    target = unit.target
    crate_type = "lib" if unit.mode is CompileMode.BUILD and target.kind is TargetKind.LIB else "bin"
    return CompileRequest(
        name=target.name,
        src_path=target.src_path,
        crate_type=crate_type,
        mode=unit.mode,
        output=unit.artifact_path(target_dir),
        profile=unit.profile.name,
        cwd=cwd or unit.package.root,
        features=unit.features,
        triple=unit.triple,
        externs=dict(externs or {}),
        extra_args=tuple(target.entry.compile_args(runnable=unit.runnable)),
        env=package_env(unit.package),
    )


class CommandCompiler:
    """Runs the configured compiler executable once per request."""

    def __init__(self, executable: str = DEFAULT_COMPILER) -> None:
        self.executable = executable

    def argv(self, request: CompileRequest) -> List[str]:
        args = [
            self.executable,
            "--crate-name",
            request.name,
            "--crate-type",
            request.crate_type,
            "--profile",
            request.profile,
            "-o",
            str(request.output),
        ]
        if request.triple:
            args.extend(["--target", request.triple])
        for feature in request.features:
            args.extend(["--cfg", f'feature="{feature}"'])
        for name, path in sorted(request.externs.items()):
            args.extend(["--extern", f"{name}={path}"])
        args.extend(request.extra_args)
        args.append(str(request.src_path))
        return args

    def compile(self, request: CompileRequest) -> CompileResult:
        argv = self.argv(request)
        request.output.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Running `%s` in %s", " ".join(argv), request.cwd)
        try:
            proc = subprocess.run(
                argv,
                cwd=str(request.cwd),
                env={**os.environ, **request.env},
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            return CompileResult(
                success=False,
                returncode=-1,
                stderr=f"could not execute compiler `{self.executable}`: {exc}",
            )
        success = proc.returncode == 0
        return CompileResult(
            success=success,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            artifact=request.output if success else None,
        )


class RecordingCompiler:
    """In-memory compiler that records requests; ``failing`` names fail to compile."""

    def __init__(self, failing: Sequence[str] = (), *, touch: bool = False) -> None:
        self.failing = set(failing)
        self.touch = touch
        self.requests: List[CompileRequest] = []

    def compile(self, request: CompileRequest) -> CompileResult:
        self.requests.append(request)
        if request.name in self.failing or str(request.src_path) in self.failing:
            return CompileResult(success=False, returncode=1, stderr=f"error: could not compile `{request.name}`")
        if self.touch:
            request.output.parent.mkdir(parents=True, exist_ok=True)
            request.output.write_text("", encoding="utf-8")
        return CompileResult(success=True, returncode=0, artifact=request.output)

    @property
    def compiled(self) -> List[Tuple[str, str]]:
        return [(request.name, request.mode.value) for request in self.requests]
