"""Bounded worker pool that turns build units into artifacts."""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..errors import BuildFailure, UnitFailure
from ..workspace.models import TargetKind
from .compiler import CompileResult, Compiler, request_for_unit
from .units import BuildUnit, UnitKey

logger = logging.getLogger(__name__)

UnitCallback = Callable[[BuildUnit], None]


@dataclass
class BuildOutcome:
    artifacts: Dict[UnitKey, Path] = field(default_factory=dict)
    failures: List[UnitFailure] = field(default_factory=list)
    skipped: List[UnitKey] = field(default_factory=list)
    order: List[UnitKey] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


class BuildDispatcher:
    """Compile units on up to ``jobs`` workers, honouring unit dependencies.

    Units are only submitted once every unit they depend on has produced an
    artifact. Outputs live at distinct paths per unit, so workers share the
    target directory without locking.
    """

    def __init__(
        self,
        compiler: Compiler,
        target_dir: Path,
        *,
        jobs: int,
        keep_going: bool = False,
        on_compile: Optional[UnitCallback] = None,
    ) -> None:
        if jobs < 1:
            raise ValueError("jobs must be at least 1")
        self.compiler = compiler
        self.target_dir = target_dir
        self.jobs = jobs
        self.keep_going = keep_going
        self.on_compile = on_compile

    def build(self, units: Sequence[BuildUnit]) -> BuildOutcome:
        outcome = self.dispatch(units)
        if outcome.failures:
            raise BuildFailure(outcome.failures)
        return outcome

    def dispatch(self, units: Sequence[BuildUnit]) -> BuildOutcome:
        outcome = BuildOutcome()
        by_key: Dict[UnitKey, BuildUnit] = {}
        for unit in units:
            by_key.setdefault(unit.key, unit)

        waiting: Dict[UnitKey, Set[UnitKey]] = {
            key: {dep for dep in unit.deps if dep in by_key} for key, unit in by_key.items()
        }
        dependents: Dict[UnitKey, List[UnitKey]] = {key: [] for key in by_key}
        for key, deps in waiting.items():
            for dep in deps:
                dependents[dep].append(key)

        queue: List[UnitKey] = [key for key in by_key if not waiting[key]]
        running: Dict[concurrent.futures.Future[CompileResult], UnitKey] = {}
        stopping = False

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.jobs) as executor:
            while queue or running:
                while queue and not stopping and len(running) < self.jobs:
                    key = queue.pop(0)
                    unit = by_key[key]
                    if self.on_compile is not None:
                        self.on_compile(unit)
                    request = request_for_unit(
                        unit,
                        self.target_dir,
                        externs=self._externs(unit, by_key, outcome),
                    )
                    future = executor.submit(self.compiler.compile, request)
                    running[future] = key
                if not running:
                    break

                done, _ = concurrent.futures.wait(running, return_when=concurrent.futures.FIRST_COMPLETED)
                for future in done:
                    key = running.pop(future)
                    unit = by_key[key]
                    result = self._result(future, unit)
                    if result.success:
                        outcome.order.append(key)
                        outcome.artifacts[key] = result.artifact or unit.artifact_path(self.target_dir)
                        for child in dependents[key]:
                            waiting[child].discard(key)
                            if not waiting[child] and child not in outcome.skipped:
                                queue.append(child)
                        continue
                    failure = UnitFailure(
                        package=unit.package.name,
                        target=unit.target.describe(),
                        mode=unit.mode.value,
                        message=result.message(),
                    )
                    outcome.failures.append(failure)
                    logger.error("Build of %s failed: %s", unit.describe(), failure.message)
                    self._skip_dependents(key, dependents, outcome)
                    if not self.keep_going:
                        stopping = True

            if stopping:
                for key in queue:
                    if key not in outcome.skipped:
                        outcome.skipped.append(key)
                queue.clear()

        return outcome

    def _result(self, future: "concurrent.futures.Future[CompileResult]", unit: BuildUnit) -> CompileResult:
        exception = future.exception()
        if exception is None:
            return future.result()
        if not isinstance(exception, Exception):
            raise exception
        logger.error("Compiler raised for %s", unit.describe(), exc_info=exception)
        return CompileResult(success=False, returncode=-1, stderr=str(exception))

    def _externs(
        self,
        unit: BuildUnit,
        by_key: Dict[UnitKey, BuildUnit],
        outcome: BuildOutcome,
    ) -> Dict[str, Path]:
        externs: Dict[str, Path] = {}
        for dep in unit.deps:
            dep_unit = by_key.get(dep)
            if dep_unit is None or dep_unit.target.kind is not TargetKind.LIB:
                continue
            path = outcome.artifacts.get(dep)
            if path is not None:
                externs[dep_unit.target.name] = path
        return externs

    def _skip_dependents(
        self,
        key: UnitKey,
        dependents: Dict[UnitKey, List[UnitKey]],
        outcome: BuildOutcome,
    ) -> None:
        stack = list(dependents[key])
        while stack:
            child = stack.pop()
            if child in outcome.skipped:
                continue
            outcome.skipped.append(child)
            logger.info("Skipping %s: a dependency failed to build", child[2])
            stack.extend(dependents[child])
