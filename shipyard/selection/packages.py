"""Package selection: ``-p``, ``--workspace`` and ``--exclude``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Set, Tuple

from ..errors import ConfigurationError
from ..workspace.models import Package, Workspace
from ..workspace.spec import PackageIdSpec
from .patterns import closest, is_glob, match_names

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageFlags:
    specs: Tuple[str, ...] = ()
    workspace: bool = False
    exclude: Tuple[str, ...] = ()

    def is_default(self) -> bool:
        return not self.specs and not self.workspace


def resolve_packages(workspace: Workspace, flags: PackageFlags) -> List[Package]:
    """Return the selected members in workspace order."""

    if flags.exclude and not flags.workspace:
        raise ConfigurationError("--exclude can only be used together with --workspace")

    if flags.is_default():
        selected = workspace.default_packages()
        if not selected:
            raise ConfigurationError(
                f"manifest at {workspace.root_manifest} is a virtual manifest with no members to select"
            )
        return selected

    chosen: Set[str] = set()
    if flags.workspace:
        excluded: Set[str] = set()
        for spec in flags.exclude:
            excluded.update(match_spec(workspace, spec, option="--exclude"))
        chosen.update(name for name in workspace.member_names() if name not in excluded)

    for spec in flags.specs:
        chosen.update(match_spec(workspace, spec, option="--package"))

    selected = [package for package in workspace.members if package.name in chosen]
    logger.debug("Selected packages: %s", ", ".join(package.name for package in selected) or "<none>")
    return selected


def match_spec(workspace: Workspace, spec: str, *, option: str) -> List[str]:
    """Resolve one spec against the members; literal specs must match something."""

    names = workspace.member_names()
    if is_glob(spec):
        matched = match_names(spec, names)
        if not matched:
            logger.debug("%s pattern `%s` matched no packages", option, spec)
        return matched

    parsed = PackageIdSpec.parse(spec)
    matched = [package.name for package in workspace.members if parsed.matches(package)]
    if not matched:
        message = f"package ID specification `{spec}` did not match any packages"
        suggestion = closest(parsed.name, names)
        if suggestion:
            message += f"\n\n\tDid you mean `{suggestion}`?"
        raise ConfigurationError(message)
    return matched
