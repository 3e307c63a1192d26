"""High-level operations behind the ``test``, ``bench`` and ``publish`` commands."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set

from requests import Session

from .build.compiler import CommandCompiler, Compiler
from .build.dispatcher import BuildDispatcher
from .build.jobs import resolve_jobs
from .build.units import BuildUnit, CompileMode
from .config import GlobalOptions, ShipyardConfig, load_config, resolve_profile, resolve_target_dir
from .errors import ConfigurationError, PublishFailure
from .publish.pipeline import ClientFactory, PublishOptions, PublishPipeline
from .publish.scheduler import PublishOutcome, PublishScheduler
from .publish.vcs import DirtyCheck, dirty_files
from .selection.engine import SelectionFlags, SelectionResult, resolve_selection
from .selection.packages import PackageFlags, resolve_packages
from .shell import Shell
from .testing.controller import TestController
from .testing.doctests import DoctestScheduler
from .testing.results import TestReport
from .testing.runner import ProcessRunner, SubprocessRunner
from .workspace.lockfile import ensure_lock
from .workspace.manifest import find_manifest, load_workspace
from .workspace.models import Workspace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Context:
    """Everything loaded once per invocation."""

    workspace: Workspace
    config: ShipyardConfig
    options: GlobalOptions
    shell: Shell
    target_dir: Path
    jobs: int

    def compiler(self) -> Compiler:
        return CommandCompiler(self.config.build.compiler)


def load_context(
    options: GlobalOptions,
    shell: Shell,
    *,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Context:
    manifest = Path(options.manifest_path) if options.manifest_path else find_manifest(cwd)
    workspace = load_workspace(manifest)
    config = load_config(workspace.root, home=home)
    options.apply_config(config)
    jobs = resolve_jobs(options.jobs, configured=config.build.jobs)
    target_dir = resolve_target_dir(options, config, workspace.root)
    ensure_lock(workspace, locked=options.locked)
    logger.debug("Workspace %s: %d member(s), %d job(s)", workspace.root, len(workspace.members), jobs)
    return Context(
        workspace=workspace,
        config=config,
        options=options,
        shell=shell,
        target_dir=target_dir,
        jobs=jobs,
    )


@dataclass(slots=True)
class TestOptions:
    __test__ = False

    selection: SelectionFlags = field(default_factory=SelectionFlags)
    no_run: bool = False
    no_fail_fast: bool = False
    filters: Sequence[str] = ()
    passthrough: Sequence[str] = ()


def run_tests(
    ctx: Context,
    options: TestOptions,
    *,
    compiler: Optional[Compiler] = None,
    runner: Optional[ProcessRunner] = None,
) -> TestReport:
    return _compile_and_run(ctx, options, CompileMode.TEST, "test", compiler=compiler, runner=runner)


def run_benches(
    ctx: Context,
    options: TestOptions,
    *,
    compiler: Optional[Compiler] = None,
    runner: Optional[ProcessRunner] = None,
) -> TestReport:
    return _compile_and_run(ctx, options, CompileMode.BENCH, "bench", compiler=compiler, runner=runner)


def build_selection(ctx: Context, flags: SelectionFlags, mode: CompileMode, default_profile: str) -> SelectionResult:
    profile = resolve_profile(ctx.options, ctx.workspace, default=default_profile)
    return resolve_selection(
        ctx.workspace,
        flags,
        profile=profile,
        mode=mode,
        triples=ctx.options.targets,
    )


def _compile_and_run(
    ctx: Context,
    options: TestOptions,
    mode: CompileMode,
    default_profile: str,
    *,
    compiler: Optional[Compiler],
    runner: Optional[ProcessRunner],
) -> TestReport:
    selection = build_selection(ctx, options.selection, mode, default_profile)
    compiler = compiler or ctx.compiler()
    runner = runner or SubprocessRunner()

    dispatcher = BuildDispatcher(
        compiler,
        ctx.target_dir,
        jobs=ctx.jobs,
        keep_going=options.no_fail_fast,
        on_compile=_compile_announcer(ctx.shell),
    )
    outcome = dispatcher.build(selection.units)
    ctx.shell.status(
        "Finished",
        f"`{selection.profile.name}` profile target(s) ({len(outcome.order)} unit(s) compiled)",
    )

    doctests = None
    if mode is CompileMode.TEST and selection.doctests:
        doctests = DoctestScheduler(
            compiler,
            runner,
            workspace_root=ctx.workspace.root,
            target_dir=ctx.target_dir,
            concurrency=ctx.config.doctest.concurrency,
        )
    controller = TestController(
        runner,
        ctx.shell,
        fail_fast=not options.no_fail_fast,
        no_run=options.no_run,
        filters=options.filters,
        passthrough=options.passthrough,
        doctests=doctests,
    )
    report = controller.run(selection, outcome.artifacts)
    controller.check(report)
    return report


def _compile_announcer(shell: Shell) -> Callable[[BuildUnit], None]:
    announced: Set[str] = set()

    def announce(unit: BuildUnit) -> None:
        if unit.package.name in announced:
            return
        announced.add(unit.package.name)
        shell.status("Compiling", f"{unit.package.label()} ({unit.package.root})")

    return announce


def publish(
    ctx: Context,
    packages: PackageFlags,
    options: PublishOptions,
    *,
    compiler: Optional[Compiler] = None,
    session: Optional[Session] = None,
    client_factory: Optional[ClientFactory] = None,
    dirty_check: DirtyCheck = dirty_files,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PublishOutcome:
    if options.index and options.registry:
        raise ConfigurationError("cannot use both --index and --registry")
    options.offline = options.offline or ctx.options.offline

    selected = resolve_packages(ctx.workspace, packages)
    if not selected:
        raise ConfigurationError("no packages selected to publish")

    pipeline = PublishPipeline(
        ctx.workspace,
        ctx.config,
        ctx.shell,
        target_dir=ctx.target_dir,
        compiler=compiler or ctx.compiler(),
        jobs=ctx.jobs,
        session=session,
        client_factory=client_factory,
        dirty_check=dirty_check,
        clock=clock,
        sleep=sleep,
    )
    outcome = PublishScheduler(ctx.workspace, pipeline).run(selected, options)
    if not outcome.success:
        names: List[str] = [failure.package for failure in outcome.failures]
        names.extend(entry.package for entry in outcome.skipped)
        raise PublishFailure(
            f"failed to publish {len(names)} package(s): {', '.join(names)}",
            outcome.details(),
        )
    return outcome
