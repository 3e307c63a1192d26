from __future__ import annotations

from pathlib import Path

import pytest

import shipyard.credentials as credentials
from shipyard.errors import AuthError


def test_env_name_per_registry() -> None:
    assert credentials.token_env_name("default") == "SHIPYARD_REGISTRY_TOKEN"
    assert credentials.token_env_name("my-reg") == "SHIPYARD_REGISTRIES_MY_REG_TOKEN"


def test_explicit_token_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHIPYARD_REGISTRY_TOKEN", "from-env")

    info = credentials.resolve_token("default", explicit="from-flag")

    assert info.value == "from-flag"
    assert info.source == "--token"
    assert [attempt.resolver for attempt in info.attempts] == ["flag"]


def test_environment_before_credentials_file(monkeypatch: pytest.MonkeyPatch, _isolated_environment: Path) -> None:
    (_isolated_environment / "credentials.yaml").write_text('registry:\n  token: "from-file"\n', encoding="utf-8")
    monkeypatch.setenv("SHIPYARD_REGISTRY_TOKEN", "from-env")

    info = credentials.resolve_token("default")

    assert info.value == "from-env"
    assert info.source == "env"
    assert info.attempts[0].details["variable"] == "SHIPYARD_REGISTRY_TOKEN"


def test_credentials_file_per_registry(_isolated_environment: Path) -> None:
    (_isolated_environment / "credentials.yaml").write_text(
        'registry:\n  token: "default-token"\nregistries:\n  internal:\n    token: "internal-token"\n',
        encoding="utf-8",
    )

    assert credentials.resolve_token("default").value == "default-token"
    info = credentials.resolve_token("internal")
    assert info.value == "internal-token"
    assert info.source == "credentials"
    assert [attempt.success for attempt in info.attempts] == [False, True]


def test_missing_token_lists_checked_sources(_isolated_environment: Path) -> None:
    with pytest.raises(AuthError) as excinfo:
        credentials.require_token("default", explicit="")

    message = str(excinfo.value)
    assert "no token found for registry `default`" in message
    assert "--token (missing)" in message
    assert "env:SHIPYARD_REGISTRY_TOKEN (missing)" in message
    assert f"credentials@{_isolated_environment / 'credentials.yaml'} (missing)" in message


def test_malformed_credentials_file_is_reported(_isolated_environment: Path) -> None:
    (_isolated_environment / "credentials.yaml").write_text("- just\n- a list\n", encoding="utf-8")

    info = credentials.resolve_token("default")

    assert info.value is None
    file_attempt = info.attempts[-1]
    assert file_attempt.details["warnings"] == ["credentials file must contain a mapping"]
