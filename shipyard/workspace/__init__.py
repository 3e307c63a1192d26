"""Workspace, package and target model."""

from .lockfile import LOCK_NAME, LockCheck, ensure_lock
from .manifest import MANIFEST_NAME, find_manifest, load_package, load_workspace, read_manifest
from .models import (
    BUILTIN_PROFILES,
    CaseOutcome,
    Dependency,
    HarnessManaged,
    Package,
    Profile,
    SelfManaged,
    Target,
    TargetEntry,
    TargetKind,
    Workspace,
)
from .spec import PackageIdSpec, PartialVersion

__all__ = [
    "BUILTIN_PROFILES",
    "CaseOutcome",
    "Dependency",
    "HarnessManaged",
    "LOCK_NAME",
    "LockCheck",
    "MANIFEST_NAME",
    "Package",
    "PackageIdSpec",
    "PartialVersion",
    "Profile",
    "SelfManaged",
    "Target",
    "TargetEntry",
    "TargetKind",
    "Workspace",
    "ensure_lock",
    "find_manifest",
    "load_package",
    "load_workspace",
    "read_manifest",
]
