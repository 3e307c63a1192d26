"""Version-control state checks before packaging."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DirtyCheck = Callable[[Path], List[str]]


def _run_git_command(args: List[str], *, cwd: Path) -> Optional[subprocess.CompletedProcess[str]]:
    try:
        return subprocess.run(args, cwd=str(cwd), capture_output=True, text=True, check=False)
    except OSError as exc:
        logger.debug("git unavailable: %s", exc)
        return None


def dirty_files(root: Path) -> List[str]:
    """Uncommitted paths under ``root``; empty when ``root`` is not in a git checkout."""

    proc = _run_git_command(["git", "status", "--porcelain", "--untracked-files=all", "--", "."], cwd=root)
    if proc is None or proc.returncode != 0:
        logger.debug("No git repository found for %s; skipping dirty check", root)
        return []
    paths: List[str] = []
    for line in proc.stdout.splitlines():
        if len(line) < 4:
            continue
        entry = line[3:]
        if " -> " in entry:
            entry = entry.split(" -> ", 1)[1]
        paths.append(entry.strip('"'))
    return sorted(paths)
