"""Source archive policy and deterministic archive creation."""

from __future__ import annotations

import fnmatch
import gzip
import hashlib
import io
import logging
import os
import shutil
import stat
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..workspace.models import Package

logger = logging.getLogger(__name__)

VCS_DIRS = frozenset({".git", ".hg"})


@dataclass(slots=True)
class Archive:
    """Immutable snapshot of a package source tree."""

    name: str
    version: str
    path: Path
    files: Tuple[str, ...]
    sha256: str
    size: int

    @property
    def prefix(self) -> str:
        return f"{self.name}-{self.version}"

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


def package_dir(target_dir: Path) -> Path:
    return target_dir / "package"


def verify_target_dir(target_dir: Path) -> Path:
    """Build output for verifying unpacked archives, apart from the workspace build."""

    return package_dir(target_dir) / "tmp-target"


def list_files(package: Package, *, target_dir: Optional[Path] = None) -> List[str]:
    """Return the sorted, root-relative POSIX paths that belong in the archive.

    Skips the target directory, VCS metadata, nested packages and ``exclude``
    globs. When ``include`` globs are set only matching files and the
    manifest are kept.
    """

    root = package.root.resolve()
    skip_dir = target_dir.resolve() if target_dir is not None else None
    manifest_rel = package.manifest_name
    files: List[str] = []

    for current, dirnames, filenames in os.walk(root):
        current_path = Path(current)
        kept_dirs: List[str] = []
        for dirname in sorted(dirnames):
            candidate = current_path / dirname
            if dirname in VCS_DIRS:
                continue
            if skip_dir is not None and candidate.resolve() == skip_dir:
                continue
            if (candidate / package.manifest_name).exists():
                logger.debug("Skipping nested package at %s", candidate)
                continue
            rel_dir = candidate.relative_to(root).as_posix()
            if _matches_any(rel_dir, package.exclude):
                continue
            kept_dirs.append(dirname)
        dirnames[:] = kept_dirs

        for filename in sorted(filenames):
            path = current_path / filename
            if path.is_symlink() and not path.exists():
                continue
            rel = path.relative_to(root).as_posix()
            if rel == manifest_rel:
                files.append(rel)
                continue
            if _matches_any(rel, package.exclude):
                continue
            if package.include and not _matches_any(rel, package.include):
                continue
            files.append(rel)

    if manifest_rel not in files:
        raise FileNotFoundError(f"manifest not found at {package.manifest_path}")
    return sorted(files)


def _matches_any(rel: str, patterns: Sequence[str]) -> bool:
    for pattern in patterns:
        cleaned = pattern.lstrip("/").rstrip("/")
        if not cleaned:
            continue
        if fnmatch.fnmatchcase(rel, cleaned) or fnmatch.fnmatchcase(Path(rel).name, cleaned):
            return True
        # a pattern naming a directory covers everything below it
        if rel.startswith(cleaned + "/"):
            return True
    return False


def create_archive(package: Package, target_dir: Path) -> Archive:
    """Write ``<target>/package/<name>-<version>.tar.gz``; identical trees give identical bytes."""

    if not package.version:
        raise ValueError(f"package `{package.name}` has no version")
    files = list_files(package, target_dir=target_dir)
    prefix = f"{package.name}-{package.version}"
    out_dir = package_dir(target_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    archive_path = out_dir / f"{prefix}.tar.gz"

    buffer = io.BytesIO()
    with gzip.GzipFile(filename="", mode="wb", fileobj=buffer, mtime=0) as compressed:
        with tarfile.open(fileobj=compressed, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for rel in files:
                source = package.root / rel
                data = source.read_bytes()
                info = tarfile.TarInfo(name=f"{prefix}/{rel}")
                info.size = len(data)
                info.mtime = 0
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                info.mode = 0o755 if source.stat().st_mode & stat.S_IXUSR else 0o644
                tar.addfile(info, io.BytesIO(data))

    payload = buffer.getvalue()
    archive_path.write_bytes(payload)
    logger.debug("Wrote %s (%d files, %d bytes)", archive_path, len(files), len(payload))
    return Archive(
        name=package.name,
        version=package.version,
        path=archive_path,
        files=tuple(files),
        sha256=hashlib.sha256(payload).hexdigest(),
        size=len(payload),
    )


def unpack_archive(archive: Archive, dest_parent: Path) -> Path:
    """Extract into ``dest_parent/<name>-<version>`` after clearing stale contents."""

    root = dest_parent / archive.prefix
    if root.exists():
        shutil.rmtree(root)
    dest_parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive.path, mode="r:gz") as tar:
        for member in tar.getmembers():
            if not member.name.startswith(archive.prefix + "/") or ".." in Path(member.name).parts:
                raise ValueError(f"unexpected archive entry {member.name!r} in {archive.path}")
        tar.extractall(dest_parent, filter="data")
    return root
