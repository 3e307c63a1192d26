"""Workspace lock state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ..errors import ConfigurationError, LockMismatch
from .models import Workspace

logger = logging.getLogger(__name__)

LOCK_NAME = "Shipyard.lock"
LOCK_VERSION = 1


@dataclass(slots=True)
class LockCheck:
    path: Path
    existed: bool
    changed: bool
    written: bool


def render_lock(workspace: Workspace) -> Dict[str, object]:
    packages: List[Dict[str, object]] = []
    for package in sorted(workspace.members, key=lambda item: item.name):
        dependencies = sorted(
            f"{dep.name} {dep.req or '*'}{' (dev)' if dep.dev else ''}" for dep in package.dependencies
        )
        entry: Dict[str, object] = {"name": package.name, "version": package.version or "0.0.0"}
        if dependencies:
            entry["dependencies"] = dependencies
        packages.append(entry)
    return {"version": LOCK_VERSION, "package": packages}


def read_lock(path: Path) -> Optional[Dict[str, object]]:
    if not path.exists():
        return None
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse lock file at {path}: {exc}") from exc
    return payload if isinstance(payload, dict) else None


def ensure_lock(workspace: Workspace, *, locked: bool) -> LockCheck:
    """Bring ``Shipyard.lock`` up to date, or fail if ``locked`` forbids it."""

    path = workspace.root / LOCK_NAME
    existing = read_lock(path)
    expected = render_lock(workspace)
    changed = existing != expected
    if not changed:
        return LockCheck(path=path, existed=True, changed=False, written=False)

    if locked:
        if existing is None:
            raise LockMismatch(
                f"the lock file {path} needs to be created but --locked was passed to prevent this"
            )
        raise LockMismatch(
            f"the lock file {path} needs to be updated but --locked was passed to prevent this"
        )

    path.write_text(
        "# This file is generated by shipyard; do not edit by hand.\n"
        + yaml.safe_dump(expected, sort_keys=False),
        encoding="utf-8",
    )
    logger.info("Wrote lock file %s", path)
    return LockCheck(path=path, existed=existing is not None, changed=True, written=True)
