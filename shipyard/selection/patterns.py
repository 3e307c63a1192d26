"""Glob helpers for package and target specs."""

from __future__ import annotations

import difflib
import fnmatch
from typing import Iterable, List, Optional

GLOB_CHARS = "*?["


def is_glob(pattern: str) -> bool:
    return any(char in pattern for char in GLOB_CHARS)


def match_names(pattern: str, names: Iterable[str]) -> List[str]:
    return [name for name in names if fnmatch.fnmatchcase(name, pattern)]


def closest(name: str, candidates: Iterable[str]) -> Optional[str]:
    matches = difflib.get_close_matches(name, list(candidates), n=1, cutoff=0.6)
    return matches[0] if matches else None
