from __future__ import annotations

import json
import struct
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

import shipyard.credentials as credentials


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path_factory.mktemp("shipyard-home")
    monkeypatch.setenv("SHIPYARD_HOME", str(home))
    for name in ("SHIPYARD_TARGET_DIR", "SHIPYARD_REGISTRY_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(credentials, "_resolvers", [])
    credentials.register_resolver(credentials.EnvResolver(), priority=0, name="env", source="env")
    credentials.register_resolver(
        credentials.CredentialsFileResolver(), priority=-10, name="credentials", source="credentials"
    )
    return home


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


PackageFactory = Callable[..., Path]


@pytest.fixture()
def make_package(tmp_path: Path) -> PackageFactory:
    """Write a package under ``tmp_path/<rel>`` and return its root."""

    def factory(
        rel: str,
        name: str,
        *,
        version: Optional[str] = "0.1.0",
        lib: Optional[str] = "pub fn answer() -> int { 42 }\n",
        main: bool = False,
        bins: Iterable[str] = (),
        tests: Iterable[str] = (),
        examples: Iterable[str] = (),
        benches: Iterable[str] = (),
        extra: str = "",
    ) -> Path:
        root = tmp_path / rel if rel else tmp_path
        header = f'[package]\nname = "{name}"\n'
        if version is not None:
            header += f'version = "{version}"\n'
        _write(root / "Shipyard.toml", header + extra)
        if lib is not None:
            _write(root / "src" / "lib.sy", lib)
        if main:
            _write(root / "src" / "main.sy", "fn main() {}\n")
        for bin_name in bins:
            _write(root / "src" / "bin" / f"{bin_name}.sy", "fn main() {}\n")
        for test_name in tests:
            _write(root / "tests" / f"{test_name}.sy", "#[test]\nfn it_works() {}\n")
        for example in examples:
            _write(root / "examples" / f"{example}.sy", "fn main() {}\n")
        for bench in benches:
            _write(root / "benches" / f"{bench}.sy", "#[bench]\nfn fast() {}\n")
        return root

    return factory


@pytest.fixture()
def make_workspace(tmp_path: Path) -> Callable[..., Path]:
    """Write a virtual workspace root manifest and return its path."""

    def factory(members: Iterable[str], *, default_members: Optional[Iterable[str]] = None, extra: str = "") -> Path:
        lines = ["[workspace]", "members = [" + ", ".join(f'"{member}"' for member in members) + "]"]
        if default_members is not None:
            lines.append("default-members = [" + ", ".join(f'"{member}"' for member in default_members) + "]")
        manifest = tmp_path / "Shipyard.toml"
        _write(manifest, "\n".join(lines) + "\n" + extra)
        return manifest

    return factory


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Optional[object] = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload) if payload is not None else text
        self.reason = "OK" if status_code < 400 else "Error"

    def json(self) -> object:
        if self._payload is None:
            raise ValueError("response has no JSON body")
        return self._payload


class FakeRegistrySession:
    """Serves ``config.json``, accepts uploads and lists them in the index."""

    def __init__(self, base: str = "https://registry.example/index", api: Optional[str] = "https://registry.example") -> None:
        self.base = base
        self.api = api
        self.put_status = 200
        self.put_payload: Optional[Dict[str, object]] = None
        self.hidden_polls = 0
        self.never_visible = False
        self.raise_on_get: Optional[Exception] = None
        self.gets: List[str] = []
        self.puts: List[Dict[str, Any]] = []
        self.published: Dict[str, List[str]] = {}

    def get(self, url: str, timeout: float) -> FakeResponse:
        self.gets.append(url)
        if self.raise_on_get is not None:
            raise self.raise_on_get
        if url.endswith("/config.json"):
            payload: Dict[str, object] = {"dl": f"{self.base}/dl"}
            if self.api is not None:
                payload["api"] = self.api
            return FakeResponse(200, payload)
        name = url.rsplit("/", 1)[-1]
        versions = self.published.get(name)
        if not versions or self.never_visible:
            return FakeResponse(404, text="not found")
        if self.hidden_polls > 0:
            self.hidden_polls -= 1
            return FakeResponse(404, text="not found")
        lines = [json.dumps({"name": name, "vers": version}) for version in versions]
        return FakeResponse(200, text="\n".join(lines) + "\n")

    def put(self, url: str, data: bytes, headers: Dict[str, str], timeout: float) -> FakeResponse:
        (json_len,) = struct.unpack("<I", data[:4])
        metadata = json.loads(data[4 : 4 + json_len])
        (archive_len,) = struct.unpack("<I", data[4 + json_len : 8 + json_len])
        archive = data[8 + json_len :]
        self.puts.append(
            {
                "url": url,
                "headers": headers,
                "metadata": metadata,
                "archive": archive,
                "archive_len": archive_len,
                "timeout": timeout,
            }
        )
        if self.put_status != 200:
            return FakeResponse(self.put_status, self.put_payload or {"errors": [{"detail": "upload rejected"}]})
        self.published.setdefault(metadata["name"], []).append(metadata["vers"])
        return FakeResponse(200, self.put_payload or {"warnings": {"invalid_categories": [], "invalid_badges": [], "other": []}})


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def registry_session() -> FakeRegistrySession:
    return FakeRegistrySession()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()
