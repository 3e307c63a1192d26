from __future__ import annotations

from pathlib import Path

import pytest

from shipyard.build import BuildDispatcher, RecordingCompiler
from shipyard.build.units import CompileMode
from shipyard.errors import ConfigurationError
from shipyard.selection import (
    FeatureFlags,
    PackageFlags,
    SelectionFlags,
    TargetFlags,
    resolve_packages,
    resolve_selection,
)
from shipyard.workspace.manifest import load_workspace
from shipyard.workspace.models import BUILTIN_PROFILES, SELF_MANAGED, TargetKind


@pytest.fixture()
def two_members(tmp_path: Path, make_package, make_workspace) -> Path:
    make_package("a", "a")
    make_package("b", "b")
    return make_workspace(["a", "b"], default_members=["a"])


@pytest.fixture()
def full_package(tmp_path: Path, make_package) -> Path:
    return make_package(
        "",
        "demo",
        main=True,
        tests=["it"],
        examples=["ex"],
        benches=["perf"],
    )


def _names(packages) -> list[str]:
    return [package.name for package in packages]


def _selection(manifest: Path, *, mode: CompileMode = CompileMode.TEST, triples=(), **kwargs):
    workspace = load_workspace(manifest)
    profile = BUILTIN_PROFILES["bench" if mode is CompileMode.BENCH else "test"]
    flags = SelectionFlags(
        packages=kwargs.pop("packages", PackageFlags()),
        targets=TargetFlags(**kwargs.pop("targets", {})),
        features=kwargs.pop("features", FeatureFlags()),
    )
    return resolve_selection(workspace, flags, profile=profile, mode=mode, triples=triples)


def _unit_keys(result) -> list[tuple[str, str, str]]:
    return [(unit.target.kind.value, unit.target.name, unit.mode.value) for unit in result.units]


def test_virtual_root_uses_default_members(two_members: Path) -> None:
    workspace = load_workspace(two_members)

    assert _names(resolve_packages(workspace, PackageFlags())) == ["a"]
    assert _names(resolve_packages(workspace, PackageFlags(workspace=True))) == ["a", "b"]
    assert _names(resolve_packages(workspace, PackageFlags(workspace=True, exclude=("b",)))) == ["a"]


def test_member_manifest_selects_current_package(two_members: Path, tmp_path: Path) -> None:
    workspace = load_workspace(tmp_path / "b" / "Shipyard.toml")

    assert workspace.root == tmp_path.resolve()
    assert _names(resolve_packages(workspace, PackageFlags())) == ["b"]


def test_exclude_requires_workspace(two_members: Path) -> None:
    workspace = load_workspace(two_members)

    with pytest.raises(ConfigurationError, match="--exclude can only be used together with --workspace"):
        resolve_packages(workspace, PackageFlags(exclude=("b",)))


def test_literal_package_spec_must_match(two_members: Path) -> None:
    workspace = load_workspace(two_members)

    with pytest.raises(ConfigurationError, match="did not match any packages"):
        resolve_packages(workspace, PackageFlags(specs=("missing",)))


def test_literal_exclude_must_match(two_members: Path) -> None:
    workspace = load_workspace(two_members)

    with pytest.raises(ConfigurationError, match="did not match any packages"):
        resolve_packages(workspace, PackageFlags(workspace=True, exclude=("missing",)))


def test_glob_package_spec_may_match_nothing(two_members: Path) -> None:
    workspace = load_workspace(two_members)

    assert resolve_packages(workspace, PackageFlags(specs=("z*",))) == []
    assert _names(resolve_packages(workspace, PackageFlags(specs=("[ab]",)))) == ["a", "b"]
    assert _names(resolve_packages(workspace, PackageFlags(workspace=True, exclude=("a*",)))) == ["b"]


def test_package_spec_with_version(two_members: Path) -> None:
    workspace = load_workspace(two_members)

    assert _names(resolve_packages(workspace, PackageFlags(specs=("b@0.1.0",)))) == ["b"]
    with pytest.raises(ConfigurationError):
        resolve_packages(workspace, PackageFlags(specs=("b@2",)))


def test_implicit_test_selection(full_package: Path) -> None:
    result = _selection(full_package / "Shipyard.toml")

    assert _unit_keys(result) == [
        ("lib", "demo", "build"),
        ("lib", "demo", "test"),
        ("bin", "demo", "build"),
        ("bin", "demo", "test"),
        ("test", "it", "test"),
        ("example", "ex", "build"),
    ]
    assert [reg.unit.target.name for reg in result.registrations] == ["demo", "demo", "it"]
    assert [reg.unit.target.kind for reg in result.registrations] == [
        TargetKind.LIB,
        TargetKind.BIN,
        TargetKind.TEST,
    ]
    assert len(result.doctests) == 1
    assert result.doctests[0].lib_unit == result.units[0].key


def test_library_test_and_link_units_are_distinct(full_package: Path) -> None:
    result = _selection(full_package / "Shipyard.toml")
    lib_units = [unit for unit in result.units if unit.target.kind is TargetKind.LIB]

    assert {unit.mode for unit in lib_units} == {CompileMode.BUILD, CompileMode.TEST}
    assert len({unit.key for unit in lib_units}) == 2
    assert lib_units[0].artifact_path(Path("t")) != lib_units[1].artifact_path(Path("t"))


def test_integration_tests_depend_on_lib_and_bins(full_package: Path) -> None:
    result = _selection(full_package / "Shipyard.toml")
    integration = next(unit for unit in result.units if unit.target.kind is TargetKind.TEST)
    dep_kinds = {(key[1], key[3]) for key in integration.deps}

    assert dep_kinds == {("lib", "build"), ("bin", "build")}
    for key in integration.deps:
        assert result.unit(key) is not None


def test_implicit_bench_selection(full_package: Path) -> None:
    result = _selection(full_package / "Shipyard.toml", mode=CompileMode.BENCH)

    assert [(reg.unit.target.kind.value, reg.unit.target.name) for reg in result.registrations] == [
        ("lib", "demo"),
        ("bin", "demo"),
        ("bench", "perf"),
    ]
    assert all(reg.unit.mode is CompileMode.BENCH for reg in result.registrations)
    assert result.doctests == ()


def test_opted_out_targets_are_not_selected_implicitly(make_package) -> None:
    root = make_package(
        "",
        "quiet",
        tests=["kept"],
        extra='[lib]\ntest = false\ndoctest = false\n\n[[test]]\nname = "skipped"\ntest = false\n',
    )
    (root / "tests" / "skipped.sy").write_text("fn main() {}\n", encoding="utf-8")

    result = _selection(root / "Shipyard.toml")

    assert [reg.unit.target.name for reg in result.registrations] == ["kept"]
    assert result.doctests == ()


def test_doc_cannot_be_mixed_with_target_flags(full_package: Path) -> None:
    with pytest.raises(ConfigurationError, match="Can't mix --doc with other target selecting options"):
        _selection(full_package / "Shipyard.toml", targets={"doc": True, "lib": True})


def test_doc_selects_only_doctests(full_package: Path) -> None:
    result = _selection(full_package / "Shipyard.toml", targets={"doc": True})

    assert result.registrations == ()
    assert _unit_keys(result) == [("lib", "demo", "build")]
    assert len(result.doctests) == 1


def test_named_target_glob_and_literal(full_package: Path) -> None:
    result = _selection(full_package / "Shipyard.toml", targets={"tests": ("i*",)})
    assert [reg.unit.target.name for reg in result.registrations] == ["it"]

    empty = _selection(full_package / "Shipyard.toml", targets={"tests": ("zz*",)})
    assert empty.registrations == ()

    with pytest.raises(ConfigurationError, match="no test target named `nope`") as excinfo:
        _selection(full_package / "Shipyard.toml", targets={"tests": ("nope",)})
    assert "Available test targets" in str(excinfo.value)
    assert "it" in str(excinfo.value)


def test_lib_flag_without_library(make_package) -> None:
    root = make_package("", "tool", lib=None, main=True)

    with pytest.raises(ConfigurationError, match="no library targets found"):
        _selection(root / "Shipyard.toml", targets={"lib": True})


def test_all_examples_runs_only_opted_in(make_package) -> None:
    root = make_package(
        "",
        "demo",
        examples=["plain", "checked"],
        extra='[[example]]\nname = "checked"\ntest = true\n',
    )

    result = _selection(root / "Shipyard.toml", targets={"all_examples": True})

    modes = {unit.target.name: unit.mode for unit in result.units if unit.target.kind is TargetKind.EXAMPLE}
    assert modes == {"plain": CompileMode.BUILD, "checked": CompileMode.TEST}
    assert [reg.unit.target.name for reg in result.registrations] == ["checked"]


def test_required_features(make_package) -> None:
    root = make_package(
        "",
        "gated",
        tests=["slow"],
        extra='[features]\nfast = []\n\n[[test]]\nname = "slow"\nrequired-features = ["fast"]\n',
    )
    manifest = root / "Shipyard.toml"

    implicit = _selection(manifest)
    assert "slow" not in [reg.unit.target.name for reg in implicit.registrations]

    with pytest.raises(ConfigurationError, match="requires the features: `fast`"):
        _selection(manifest, targets={"tests": ("slow",)})

    enabled = _selection(manifest, targets={"tests": ("slow",)}, features=FeatureFlags(features=("fast",)))
    assert [reg.unit.target.name for reg in enabled.registrations] == ["slow"]
    assert enabled.registrations[0].unit.features == ("fast",)


def test_harness_false_targets_are_self_managed(make_package) -> None:
    root = make_package(
        "",
        "demo",
        tests=["plain"],
        extra='[[test]]\nname = "plain"\nharness = false\n',
    )

    result = _selection(root / "Shipyard.toml", targets={"tests": ("plain",)})

    assert result.registrations[0].entry is SELF_MANAGED
    assert result.registrations[0].entry.run_args(bench=False, filters=("x",), passthrough=("--y",)) == ["x", "--y"]


def test_selection_is_repeated_per_triple(full_package: Path) -> None:
    result = _selection(full_package / "Shipyard.toml", triples=("x86_64-linux", "aarch64-linux"))

    assert result.triples == ("x86_64-linux", "aarch64-linux")
    assert [unit.triple for unit in result.units[:6]] == ["aarch64-linux"] * 6
    assert len(result.units) == 12
    assert len(result.doctests) == 2
    assert result.units[0].artifact_path(Path("target")).parts[:3] == ("target", "aarch64-linux", "debug")


def test_named_test_overrides_opt_out(make_package) -> None:
    root = make_package(
        "",
        "quiet",
        tests=["kept"],
        extra='[lib]\ntest = false\ndoctest = false\n\n[[test]]\nname = "skipped"\ntest = false\n',
    )
    (root / "tests" / "skipped.sy").write_text("fn main() {}\n", encoding="utf-8")

    result = _selection(root / "Shipyard.toml", targets={"tests": ("skipped",)})

    assert [reg.unit.target.name for reg in result.registrations] == ["skipped"]


def test_member_dependency_library_is_linked(make_package, make_workspace, tmp_path: Path) -> None:
    make_package("a", "a")
    make_package("b", "b", main=True, tests=["it"], extra='[dependencies]\na = { version = "0.1.0", path = "../a" }\n')
    manifest = make_workspace(["a", "b"])

    result = _selection(manifest, packages=PackageFlags(specs=("b",)))

    linked = [unit for unit in result.units if unit.package.name == "a"]
    assert [(unit.target.kind, unit.mode) for unit in linked] == [(TargetKind.LIB, CompileMode.BUILD)]
    assert all(linked[0].key in unit.deps for unit in result.units if unit.package.name == "b")
    assert {reg.unit.package.name for reg in result.registrations} == {"b"}

    compiler = RecordingCompiler()
    BuildDispatcher(compiler, tmp_path / "target", jobs=2).build(result.units)
    linked_path = linked[0].artifact_path(tmp_path / "target")
    assert compiler.compiled.index(("a", "build")) == 0
    assert all(request.externs.get("a") == linked_path for request in compiler.requests if request.name == "b")


def test_cyclic_members_are_rejected(make_package, make_workspace) -> None:
    make_package("x", "x", extra='[dependencies]\ny = { version = "0.1.0", path = "../y" }\n')
    make_package("y", "y", extra='[dependencies]\nx = { version = "0.1.0", path = "../x" }\n')

    with pytest.raises(ConfigurationError, match="cyclic dependency between workspace members: x -> y -> x"):
        _selection(make_workspace(["x", "y"]), packages=PackageFlags(specs=("x",)))


def test_registry_dependency_with_member_name_is_not_linked(make_package, make_workspace) -> None:
    make_package("a", "a")
    make_package("b", "b", extra='[dependencies]\na = "0.1.0"\n')
    workspace = load_workspace(make_workspace(["a", "b"]))

    assert workspace.workspace_dependencies(workspace.member("b")) == []

    result = _selection(workspace.root / "Shipyard.toml", packages=PackageFlags(specs=("b",)))
    assert {unit.package.name for unit in result.units} == {"b"}
