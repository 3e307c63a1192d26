"""Selection of packages, targets, features and profile."""

from .engine import DoctestRequest, Registration, SelectionFlags, SelectionResult, resolve_selection
from .features import FeatureFlags, FeatureSet, resolve_features
from .packages import PackageFlags, resolve_packages
from .targets import TargetFlags, TargetSelection, select_targets

__all__ = [
    "DoctestRequest",
    "FeatureFlags",
    "FeatureSet",
    "PackageFlags",
    "Registration",
    "SelectionFlags",
    "SelectionResult",
    "TargetFlags",
    "TargetSelection",
    "resolve_features",
    "resolve_packages",
    "resolve_selection",
    "select_targets",
]
