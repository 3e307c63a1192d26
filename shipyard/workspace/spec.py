"""Package ID specifications used by ``-p``/``--exclude``.

A spec names a package and optionally pins its version and source::

    foo
    foo@1.2.3
    foo:1.2            (rendered as foo@1.2)
    https://example.com/index#foo@1.2.3
    git+ssh://git@host/repo.git?branch=dev#foo@1.4.3
    path+file:///work/crates/foo#1.1.8

Versions are partial (``1``, ``1.2``, ``1.2.3`` and optional pre-release or
build suffixes when all three components are present); requirement
operators and wildcards are rejected.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlsplit, urlunsplit

from ..errors import ConfigurationError
from .models import Package


_PARTIAL_VERSION_RE = re.compile(
    r"^(?P<major>\d+)"
    r"(?:\.(?P<minor>\d+)"
    r"(?:\.(?P<patch>\d+)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?"
    r")?)?$"
)

_SOURCE_KINDS = ("git", "registry", "sparse", "path")


@dataclass(frozen=True, order=True)
class PartialVersion:
    major: int
    minor: Optional[int] = None
    patch: Optional[int] = None
    pre: Optional[str] = None
    build: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "PartialVersion":
        value = text.strip()
        if not value:
            raise ConfigurationError("unexpected end of input while parsing version")
        if value[0] in "^~<>=*" or "*" in value or value.lower() in {"x"}:
            raise ConfigurationError(
                f"unexpected version requirement `{value}` in package ID specification; expected a version like `1.32`"
            )
        match = _PARTIAL_VERSION_RE.match(value)
        if not match:
            raise ConfigurationError(f"invalid version `{value}` in package ID specification")
        groups = match.groupdict()
        return cls(
            major=int(groups["major"]),
            minor=int(groups["minor"]) if groups["minor"] is not None else None,
            patch=int(groups["patch"]) if groups["patch"] is not None else None,
            pre=groups["pre"],
            build=groups["build"],
        )

    def matches(self, version: str) -> bool:
        try:
            other = PartialVersion.parse(version)
        except ConfigurationError:
            return False
        if other.major != self.major:
            return False
        if self.minor is not None and other.minor != self.minor:
            return False
        if self.patch is not None and other.patch != self.patch:
            return False
        if self.pre is not None and other.pre != self.pre:
            return False
        return True

    def __str__(self) -> str:
        text = str(self.major)
        if self.minor is not None:
            text += f".{self.minor}"
        if self.patch is not None:
            text += f".{self.patch}"
        if self.pre:
            text += f"-{self.pre}"
        if self.build:
            text += f"+{self.build}"
        return text


@dataclass(frozen=True)
class GitReference:
    kind: str = "default"
    value: Optional[str] = None

    @classmethod
    def from_query(cls, query: str) -> "GitReference":
        for key, value in parse_qsl(query):
            if key in {"branch", "tag", "rev"}:
                return cls(kind=key, value=value)
        return cls()

    def pretty(self) -> Optional[str]:
        if self.kind == "default" or self.value is None:
            return None
        return f"{self.kind}={self.value}"


@dataclass(frozen=True)
class PackageIdSpec:
    name: str
    version: Optional[PartialVersion] = None
    url: Optional[str] = None
    kind: Optional[str] = None
    git_ref: Optional[GitReference] = None

    @classmethod
    def parse(cls, spec: str) -> "PackageIdSpec":
        if "://" in spec:
            parsed = _try_split_url(spec)
            if parsed is not None:
                return cls._from_url(spec)
        elif "/" in spec or "\\" in spec:
            candidate = Path.cwd() / spec
            if candidate.exists():
                raise ConfigurationError(
                    f"package ID specification `{spec}` looks like a file path, "
                    f"maybe try {candidate.resolve().as_uri()}"
                )
        name, version = _split_name_version(spec)
        validate_package_name(name)
        return cls(name=name, version=version)

    @classmethod
    def _from_url(cls, spec: str) -> "PackageIdSpec":
        parts = urlsplit(spec)
        scheme = parts.scheme
        kind: Optional[str] = None
        git_ref: Optional[GitReference] = None
        if "+" in scheme:
            kind_str, inner_scheme = scheme.split("+", 1)
            if kind_str not in _SOURCE_KINDS:
                raise ConfigurationError(f"unsupported source protocol: {kind_str}")
            if kind_str == "git":
                git_ref = GitReference.from_query(parts.query)
                parts = parts._replace(scheme=inner_scheme, query="")
            else:
                if parts.query:
                    raise ConfigurationError(f"cannot have a query string in a pkgid: {spec}")
                if kind_str == "path" and inner_scheme != "file":
                    raise ConfigurationError(
                        f"`path+{inner_scheme}` is unsupported; `path+file` and `file` schemes are supported"
                    )
                if kind_str != "sparse":
                    parts = parts._replace(scheme=inner_scheme)
            kind = kind_str
        elif parts.query:
            raise ConfigurationError(f"cannot have a query string in a pkgid: {spec}")

        fragment = parts.fragment
        parts = parts._replace(fragment="")
        segments = [segment for segment in parts.path.split("/")]
        if not parts.path or not segments[-1]:
            raise ConfigurationError(f"pkgid urls must have at least one path component: {spec}")
        path_name = unquote(segments[-1])

        version: Optional[PartialVersion] = None
        if fragment:
            separator = _first_separator(fragment)
            if separator is not None:
                name, raw_version = fragment[:separator], fragment[separator + 1 :]
                version = PartialVersion.parse(raw_version)
            elif fragment[0].isalpha():
                name = fragment
            else:
                name = path_name
                version = PartialVersion.parse(fragment)
        else:
            name = path_name
        return cls(name=name, version=version, url=urlunsplit(parts), kind=kind, git_ref=git_ref)

    def matches(self, package: Package) -> bool:
        if package.name != self.name:
            return False
        if self.version is not None:
            if package.version is None or not self.version.matches(package.version):
                return False
        if self.url is not None:
            parts = urlsplit(self.url)
            if parts.scheme != "file":
                return False
            return Path(unquote(parts.path)).resolve() == package.root.resolve()
        return True

    def __str__(self) -> str:
        printed_name = False
        text = ""
        if self.url is not None:
            if self.kind is not None and self.kind != "sparse":
                text += f"{self.kind}+"
            text += self.url
            if self.git_ref is not None and self.git_ref.pretty():
                text += f"?{self.git_ref.pretty()}"
            last_segment = unquote(urlsplit(self.url).path.rstrip("/").split("/")[-1])
            if last_segment != self.name:
                printed_name = True
                text += f"#{self.name}"
        else:
            printed_name = True
            text += self.name
        if self.version is not None:
            text += f"{'@' if printed_name else '#'}{self.version}"
        return text


def validate_package_name(name: str) -> None:
    for index, char in enumerate(name):
        if index == 0 and char.isdigit():
            raise ConfigurationError(
                f"invalid character `{char}` in package name: `{name}`, the name cannot start with a digit"
            )
        if not (char.isalnum() or char in "-_"):
            raise ConfigurationError(
                f"invalid character `{char}` in package name: `{name}`, "
                "characters must be Unicode XID characters (numbers, `-`, `_`, or most letters)"
            )


def _split_name_version(spec: str) -> Tuple[str, Optional[PartialVersion]]:
    separator = _first_separator(spec)
    if separator is None:
        return spec, None
    return spec[:separator], PartialVersion.parse(spec[separator + 1 :])


def _first_separator(text: str) -> Optional[int]:
    positions = [index for index in (text.find(":"), text.find("@")) if index >= 0]
    return min(positions) if positions else None


def _try_split_url(spec: str):
    try:
        parts = urlsplit(spec)
        parts.port  # validates the port component
    except ValueError:
        return None
    if not parts.scheme:
        return None
    return parts
