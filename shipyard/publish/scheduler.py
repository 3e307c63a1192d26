"""Workspace publish ordering.

Packages form a DAG through their in-workspace (non-dev) dependencies. A
package enters its pipeline only after every in-batch dependency reached
the propagation-visible state.
"""

from __future__ import annotations

import graphlib
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from ..errors import ConfigurationError, ShipyardError
from ..workspace.models import Package, Workspace
from .pipeline import PublishOptions, PublishPipeline, PublishResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageError:
    package: str
    error: ShipyardError


@dataclass(frozen=True)
class SkippedPackage:
    package: str
    reason: str


@dataclass
class PublishOutcome:
    results: List[PublishResult] = field(default_factory=list)
    failures: List[PackageError] = field(default_factory=list)
    skipped: List[SkippedPackage] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures and not self.skipped

    def details(self) -> List[str]:
        lines = [f"{failure.package}: {failure.error}" for failure in self.failures]
        lines.extend(f"{entry.package}: skipped ({entry.reason})" for entry in self.skipped)
        return lines


def dependency_graph(workspace: Workspace, packages: Sequence[Package]) -> Dict[str, Set[str]]:
    """Map each selected package to the selected packages it depends on."""

    selected = {package.name for package in packages}
    return {
        package.name: {dep.name for dep in workspace.workspace_dependencies(package) if dep.name in selected}
        for package in packages
    }


def publish_order(workspace: Workspace, packages: Sequence[Package]) -> List[str]:
    graph = dependency_graph(workspace, packages)
    position = {package.name: index for index, package in enumerate(packages)}
    sorter = graphlib.TopologicalSorter(graph)
    try:
        sorter.prepare()
    except graphlib.CycleError as exc:
        cycle = " -> ".join(exc.args[1]) if len(exc.args) > 1 else ""
        raise ConfigurationError(f"cyclic dependency between workspace members: {cycle}") from exc
    order: List[str] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=lambda name: position[name])
        for name in ready:
            order.append(name)
            sorter.done(name)
    return order


class PublishScheduler:
    """Run the per-package pipeline for a batch in dependency order."""

    def __init__(self, workspace: Workspace, pipeline: PublishPipeline) -> None:
        self.workspace = workspace
        self.pipeline = pipeline

    def run(self, packages: Sequence[Package], options: PublishOptions) -> PublishOutcome:
        graph = dependency_graph(self.workspace, packages)
        by_name = {package.name: package for package in packages}
        outcome = PublishOutcome()
        blocked: Dict[str, str] = {}

        for name in publish_order(self.workspace, packages):
            reason = self._blocked_reason(name, graph, blocked)
            if reason is not None:
                blocked[name] = reason
                outcome.skipped.append(SkippedPackage(package=name, reason=reason))
                logger.info("Skipping %s: %s", name, reason)
                continue
            try:
                result = self.pipeline.run(by_name[name], options)
            except ShipyardError as exc:
                if not options.keep_going:
                    raise
                logger.error("Publishing %s failed: %s", name, exc)
                outcome.failures.append(PackageError(package=name, error=exc))
                blocked[name] = f"dependency `{name}` failed to publish"
                continue
            outcome.results.append(result)
            if result.uploaded and result.visible is False:
                blocked[name] = f"dependency `{name}` is not yet visible in the registry"
        return outcome

    def _blocked_reason(self, name: str, graph: Dict[str, Set[str]], blocked: Dict[str, str]) -> Optional[str]:
        for dep in sorted(graph[name]):
            if dep in blocked:
                return blocked[dep]
        return None
