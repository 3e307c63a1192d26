"""Command-line entry point: ``shipyard test|bench|publish``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from . import __version__
from .config import COLOR_CHOICES, MESSAGE_FORMATS, GlobalOptions
from .errors import ShipyardError
from .ops import TestOptions, load_context, publish, run_benches, run_tests
from .publish.pipeline import PublishOptions
from .selection.engine import SelectionFlags
from .selection.features import FeatureFlags
from .selection.packages import PackageFlags
from .selection.targets import TargetFlags
from .shell import Shell

logger = logging.getLogger(__name__)


def main(argv: Optional[Sequence[str]] = None) -> int:
    raw = list(sys.argv[1:] if argv is None else argv)
    own, passthrough = _split_passthrough(raw)
    parser = _build_parser()
    args = parser.parse_args(own)

    _configure_logging(args.verbose)
    shell = Shell(
        message_format=args.message_format,
        color=args.color,
        quiet=args.quiet,
        verbose=args.verbose,
    )
    try:
        options = _global_options(args)
        if args.command == "test":
            return _handle_test(args, options, shell, passthrough, bench=False)
        if args.command == "bench":
            return _handle_test(args, options, shell, passthrough, bench=True)
        if args.command == "publish":
            if passthrough:
                parser.error("unexpected arguments after `--` for publish")
            return _handle_publish(args, options, shell)
    except ShipyardError as exc:
        shell.error(str(exc), exc.details())
        return exc.exit_code

    parser.error(f"Unknown command '{args.command}'")
    return 1


def _split_passthrough(argv: List[str]) -> Tuple[List[str], List[str]]:
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1 :]
    return argv, []


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shipyard", description="Package manager test and publish commands.")
    parser.add_argument("--version", action="version", version=f"shipyard {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    test = subparsers.add_parser("test", help="Build and run tests, examples and doctests.")
    test.add_argument("testname", nargs="?", metavar="TESTNAME", help="Only run tests whose names match this filter.")
    _add_package_arguments(test)
    _add_target_arguments(test, doc=True)
    _add_feature_arguments(test)
    test.add_argument("--no-run", action="store_true", help="Compile, but don't run tests.")
    test.add_argument("--no-fail-fast", action="store_true", help="Run all tests regardless of failure.")
    _add_shared_arguments(test)

    bench = subparsers.add_parser("bench", help="Build and run benchmarks.")
    bench.add_argument("benchname", nargs="?", metavar="BENCHNAME", help="Only run benchmarks whose names match this filter.")
    _add_package_arguments(bench)
    _add_target_arguments(bench, doc=False)
    _add_feature_arguments(bench)
    bench.add_argument("--no-run", action="store_true", help="Compile, but don't run benchmarks.")
    bench.add_argument("--no-fail-fast", action="store_true", help="Run all benchmarks regardless of failure.")
    _add_shared_arguments(bench)

    publish_parser = subparsers.add_parser("publish", help="Package and upload packages to a registry.")
    _add_package_arguments(publish_parser)
    publish_parser.add_argument("--dry-run", action="store_true", help="Perform all checks without uploading.")
    publish_parser.add_argument("--no-verify", action="store_true", help="Don't verify the contents by building them.")
    publish_parser.add_argument("--allow-dirty", action="store_true", help="Allow dirty working directories to be packaged.")
    publish_parser.add_argument("--token", help="Token to use when uploading.")
    publish_parser.add_argument("--index", help="Registry index URL to upload the package to.")
    publish_parser.add_argument("--registry", help="Registry to upload the package to.")
    publish_parser.add_argument("--keep-going", action="store_true", help="Keep publishing independent packages after a failure.")
    _add_shared_arguments(publish_parser)

    return parser


def _add_package_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-p", "--package", action="append", default=[], metavar="SPEC", help="Package to select (glob-capable, repeatable).")
    parser.add_argument("--workspace", action="store_true", help="Select all workspace members.")
    parser.add_argument("--exclude", action="append", default=[], metavar="SPEC", help="Exclude packages (requires --workspace).")


def _add_target_arguments(parser: argparse.ArgumentParser, *, doc: bool) -> None:
    parser.add_argument("--lib", action="store_true", help="Select only the library.")
    parser.add_argument("--bin", action="append", default=[], metavar="NAME", help="Select the named binary.")
    parser.add_argument("--bins", action="store_true", help="Select all binaries.")
    parser.add_argument("--example", action="append", default=[], metavar="NAME", help="Select the named example.")
    parser.add_argument("--examples", action="store_true", help="Select all examples.")
    parser.add_argument("--test", action="append", default=[], metavar="NAME", help="Select the named integration test.")
    parser.add_argument("--tests", action="store_true", help="Select all targets that have `test = true`.")
    parser.add_argument("--bench", action="append", default=[], metavar="NAME", help="Select the named benchmark.")
    parser.add_argument("--benches", action="store_true", help="Select all targets that have `bench = true`.")
    parser.add_argument("--all-targets", action="store_true", help="Select all targets.")
    if doc:
        parser.add_argument("--doc", action="store_true", help="Test only the library's documentation.")


def _add_feature_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-F", "--features", action="append", default=[], metavar="FEATURES", help="Space or comma separated list of features.")
    parser.add_argument("--all-features", action="store_true", help="Activate all available features.")
    parser.add_argument("--no-default-features", action="store_true", help="Do not activate the `default` feature.")


def _add_shared_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-j", "--jobs", type=int, metavar="N", help="Number of parallel jobs; negative counts down from the CPU count.")
    parser.add_argument("-r", "--release", action="store_true", help="Build artifacts in release mode.")
    parser.add_argument("--profile", metavar="NAME", help="Build artifacts with the specified profile.")
    parser.add_argument("--target", action="append", default=[], metavar="TRIPLE", dest="triples", help="Build for the target triple (repeatable).")
    parser.add_argument("--target-dir", metavar="DIR", help="Directory for all generated artifacts.")
    parser.add_argument("--locked", action="store_true", help="Require the lock file to be up to date.")
    parser.add_argument("--offline", action="store_true", help="Run without accessing the network.")
    parser.add_argument("--frozen", action="store_true", help="Equivalent to --locked --offline.")
    parser.add_argument("--manifest-path", metavar="PATH", help="Path to the manifest file.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Use verbose output (-vv very verbose).")
    parser.add_argument("-q", "--quiet", action="store_true", help="Do not print status messages.")
    parser.add_argument("--color", choices=COLOR_CHOICES, default="auto", help="Coloring of status output.")
    parser.add_argument("--message-format", choices=MESSAGE_FORMATS, default="human", help="Output format for messages.")


def _configure_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    logging.getLogger("shipyard").setLevel(level)


def _global_options(args: argparse.Namespace) -> GlobalOptions:
    return GlobalOptions(
        jobs=args.jobs,
        release=args.release,
        profile=args.profile,
        targets=tuple(args.triples),
        target_dir=Path(args.target_dir) if args.target_dir else None,
        locked=args.locked,
        offline=args.offline,
        frozen=args.frozen,
        manifest_path=Path(args.manifest_path) if args.manifest_path else None,
        verbose=args.verbose,
        quiet=args.quiet,
        color=args.color,
        message_format=args.message_format,
    )


def _package_flags(args: argparse.Namespace) -> PackageFlags:
    return PackageFlags(specs=tuple(args.package), workspace=args.workspace, exclude=tuple(args.exclude))


def _selection_flags(args: argparse.Namespace) -> SelectionFlags:
    targets = TargetFlags(
        lib=args.lib,
        bins=tuple(args.bin),
        all_bins=args.bins,
        examples=tuple(args.example),
        all_examples=args.examples,
        tests=tuple(args.test),
        all_tests=args.tests,
        benches=tuple(args.bench),
        all_benches=args.benches,
        all_targets=args.all_targets,
        doc=getattr(args, "doc", False),
    )
    features = FeatureFlags.from_cli(
        args.features,
        all_features=args.all_features,
        no_default_features=args.no_default_features,
    )
    return SelectionFlags(packages=_package_flags(args), targets=targets, features=features)


def _handle_test(
    args: argparse.Namespace,
    options: GlobalOptions,
    shell: Shell,
    passthrough: Sequence[str],
    *,
    bench: bool,
) -> int:
    name_filter = args.benchname if bench else args.testname
    test_options = TestOptions(
        selection=_selection_flags(args),
        no_run=args.no_run,
        no_fail_fast=args.no_fail_fast,
        filters=(name_filter,) if name_filter else (),
        passthrough=tuple(passthrough),
    )
    ctx = load_context(options, shell)
    report = run_benches(ctx, test_options) if bench else run_tests(ctx, test_options)
    if shell.is_json:
        shell.event("test-report", **report.to_payload())
    return 0


def _handle_publish(args: argparse.Namespace, options: GlobalOptions, shell: Shell) -> int:
    publish_options = PublishOptions(
        registry=args.registry,
        index=args.index,
        token=args.token,
        dry_run=args.dry_run,
        verify=not args.no_verify,
        allow_dirty=args.allow_dirty,
        offline=options.offline,
        keep_going=args.keep_going,
    )
    ctx = load_context(options, shell)
    outcome = publish(ctx, _package_flags(args), publish_options)
    if shell.is_json:
        _print_json({"reason": "publish", "packages": [result.to_payload() for result in outcome.results]})
    return 0


def _print_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, default=str))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
