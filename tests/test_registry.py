from __future__ import annotations

import json
import struct

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError

from shipyard.errors import AuthError, NetworkError, PropagationTimeout, UploadError
from shipyard.publish.registry import PublishMetadata, RegistryClient, encode_upload, index_prefix
from shipyard.workspace.models import Dependency, Package


@pytest.mark.parametrize(
    "name, prefix",
    [("a", "1"), ("ab", "2"), ("abc", "3/a"), ("Serde", "se/rd"), ("widget", "wi/dg")],
)
def test_index_prefix(name: str, prefix: str) -> None:
    assert index_prefix(name) == prefix


def test_metadata_from_package(tmp_path) -> None:
    package = Package(
        name="widget",
        version="1.0.0",
        root=tmp_path,
        features={"default": ("std",), "std": ()},
        dependencies=(
            Dependency(name="gear", req="^0.3", features=("fast",)),
            Dependency(name="probe", req="1", dev=True),
        ),
        description="Widgets",
        license="MIT",
    )

    metadata = PublishMetadata.from_package(package)

    assert metadata.vers == "1.0.0"
    assert [(dep.name, dep.version_req, dep.kind) for dep in metadata.deps] == [
        ("gear", "^0.3", "normal"),
        ("probe", "1", "dev"),
    ]
    assert metadata.features == {"default": ["std"], "std": []}


def test_upload_body_layout() -> None:
    metadata = PublishMetadata(name="widget", vers="1.0.0")

    body = encode_upload(metadata, b"ARCHIVE")

    (json_len,) = struct.unpack("<I", body[:4])
    assert json.loads(body[4 : 4 + json_len])["name"] == "widget"
    assert struct.unpack("<I", body[4 + json_len : 8 + json_len]) == (7,)
    assert body.endswith(b"ARCHIVE")


def test_publish_sends_token_and_returns_warnings(registry_session) -> None:
    registry_session.put_payload = {"warnings": {"invalid_categories": ["x"], "invalid_badges": [], "other": ["slow down"]}}
    client = RegistryClient("sparse+https://registry.example/index/", session=registry_session, timeout=5)

    warnings = client.publish(PublishMetadata(name="widget", vers="1.0.0"), b"data", "secret-token")

    assert client.base_url == "https://registry.example/index"
    assert registry_session.gets == ["https://registry.example/index/config.json"]
    put = registry_session.puts[0]
    assert put["url"] == "https://registry.example/api/v1/packages/new"
    assert put["headers"]["Authorization"] == "secret-token"
    assert put["archive"] == b"data"
    assert put["timeout"] == 5
    assert warnings == [
        "the following are not valid category slugs and were ignored: x",
        "slow down",
    ]


def test_publish_rejected_token(registry_session) -> None:
    registry_session.put_status = 403
    registry_session.put_payload = {"errors": [{"detail": "invalid token"}]}
    client = RegistryClient(registry_session.base, session=registry_session)

    with pytest.raises(AuthError, match="invalid token"):
        client.publish(PublishMetadata(name="widget", vers="1.0.0"), b"", "bad")


def test_publish_upload_error_detail(registry_session) -> None:
    registry_session.put_status = 400
    registry_session.put_payload = {"errors": [{"detail": "crate version `1.0.0` is already uploaded"}]}
    client = RegistryClient(registry_session.base, session=registry_session)

    with pytest.raises(UploadError, match=r"\(status 400\): crate version `1.0.0` is already uploaded"):
        client.publish(PublishMetadata(name="widget", vers="1.0.0"), b"", "token")


def test_publish_requires_api(registry_session) -> None:
    registry_session.api = None
    client = RegistryClient(registry_session.base, session=registry_session)

    with pytest.raises(UploadError, match="does not support publishing"):
        client.publish(PublishMetadata(name="widget", vers="1.0.0"), b"", "token")


def test_network_errors_are_wrapped(registry_session) -> None:
    registry_session.raise_on_get = RequestsConnectionError("connection refused")
    client = RegistryClient(registry_session.base, session=registry_session)

    with pytest.raises(NetworkError, match="connection refused") as excinfo:
        client.config()
    assert isinstance(excinfo.value.__cause__, RequestsConnectionError)


def test_is_visible_reads_index_lines(registry_session) -> None:
    registry_session.published["widget"] = ["0.9.0", "1.0.0"]
    client = RegistryClient(registry_session.base, session=registry_session)

    assert client.is_visible("widget", "1.0.0")
    assert not client.is_visible("widget", "2.0.0")
    assert not client.is_visible("gadget", "1.0.0")
    assert registry_session.gets[0] == "https://registry.example/index/wi/dg/widget"


def test_wait_for_version_polls_until_visible(registry_session, fake_clock) -> None:
    registry_session.published["widget"] = ["1.0.0"]
    registry_session.hidden_polls = 2
    client = RegistryClient(registry_session.base, session=registry_session)
    waits = []

    waited = client.wait_for_version(
        "widget",
        "1.0.0",
        timeout=10,
        interval=1.5,
        clock=fake_clock,
        sleep=fake_clock.sleep,
        on_wait=lambda: waits.append(True),
    )

    assert waited == 3.0
    assert fake_clock.sleeps == [1.5, 1.5]
    assert waits == [True]


def test_wait_for_version_times_out(registry_session, fake_clock) -> None:
    registry_session.published["widget"] = ["1.0.0"]
    registry_session.never_visible = True
    client = RegistryClient(registry_session.base, session=registry_session)

    with pytest.raises(PropagationTimeout, match="after 3s") as excinfo:
        client.wait_for_version("widget", "1.0.0", timeout=3, interval=2, clock=fake_clock, sleep=fake_clock.sleep)

    assert excinfo.value.name == "widget"
    assert fake_clock.sleeps == [2, 1]
