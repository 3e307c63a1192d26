"""Documentation examples: extraction and the fused compile+run scheduling path.

Every fenced block inside a library's ``///`` or ``//!`` comments becomes one
doctest. A doctest is compiled and executed as a single unit of work at test
time; blocks run concurrently as independent processes on their own pool,
which is sized separately from the build job count.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Optional, Sequence, Tuple

from ..build.compiler import CompileRequest, Compiler, package_env
from ..build.jobs import available_parallelism
from ..build.units import CompileMode
from ..selection.engine import DoctestRequest
from .results import ArtifactRun, ArtifactState
from .runner import ProcessRunner

logger = logging.getLogger(__name__)

_DOC_LINE_RE = re.compile(r"^\s*//[/!](?: ?)(?P<text>.*)$")
_FENCE_RE = re.compile(r"^(?P<fence>```+|~~~+)\s*(?P<info>.*)$")

ATTRIBUTES = frozenset({"ignore", "no_run", "should_panic", "compile_fail"})
CODE_LANGUAGES = frozenset({"", "sy", "shipyard"})


@dataclass(frozen=True)
class DocBlock:
    source: Path
    line: int
    code: str
    attributes: FrozenSet[str] = frozenset()

    def name(self, display: str) -> str:
        return f"{display} (line {self.line})"

    @property
    def ignored(self) -> bool:
        return "ignore" in self.attributes


class BlockStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class BlockResult:
    block: DocBlock
    name: str
    status: BlockStatus
    message: str = ""


def extract_blocks(source: Path) -> List[DocBlock]:
    """Collect runnable fenced blocks from the doc comments of ``source``."""

    blocks: List[DocBlock] = []
    fence: Optional[str] = None
    attributes: FrozenSet[str] = frozenset()
    is_code = False
    start = 0
    body: List[str] = []

    for number, raw in enumerate(source.read_text(encoding="utf-8").splitlines(), start=1):
        match = _DOC_LINE_RE.match(raw)
        if match is None:
            # a doc comment run ended inside a fence; drop the unterminated block
            if fence is not None:
                logger.debug("Unterminated code block at %s:%d", source, start)
            fence = None
            continue
        text = match.group("text")
        if fence is None:
            opened = _FENCE_RE.match(text.strip())
            if opened is None:
                continue
            fence = opened.group("fence")
            is_code, attributes = _parse_info(opened.group("info"))
            start = number
            body = []
            continue
        if text.strip().startswith(fence) and not text.strip()[len(fence):].strip():
            if is_code:
                blocks.append(DocBlock(source=source, line=start, code=_render(body), attributes=attributes))
            fence = None
            continue
        body.append(text)
    return blocks


def _parse_info(info: str) -> Tuple[bool, FrozenSet[str]]:
    tokens = [token for token in re.split(r"[\s,]+", info.strip()) if token]
    attributes = frozenset(token for token in tokens if token in ATTRIBUTES)
    languages = [token for token in tokens if token not in ATTRIBUTES]
    is_code = all(token in CODE_LANGUAGES for token in languages)
    return is_code, attributes


def _render(lines: Sequence[str]) -> str:
    rendered: List[str] = []
    for line in lines:
        stripped = line.lstrip()
        # `# ` marks a line hidden from the rendered docs but still compiled
        if stripped == "#":
            rendered.append("")
        elif stripped.startswith("# "):
            rendered.append(stripped[2:])
        else:
            rendered.append(line)
    return "\n".join(rendered) + "\n"


class DoctestScheduler:
    """Compile and run doctests concurrently, one process per block."""

    def __init__(
        self,
        compiler: Compiler,
        runner: ProcessRunner,
        *,
        workspace_root: Path,
        target_dir: Path,
        concurrency: Optional[int] = None,
    ) -> None:
        self.compiler = compiler
        self.runner = runner
        self.workspace_root = workspace_root
        self.target_dir = target_dir
        self.concurrency = max(concurrency or available_parallelism(), 1)

    def run(self, request: DoctestRequest, lib_artifact: Path) -> ArtifactRun:
        package = request.package
        display = _display_path(request.target.src_path, package.root)
        blocks = extract_blocks(request.target.src_path)
        run = ArtifactRun(package=package.name, target="doctests", path=None)
        run.advance(ArtifactState.RUNNING)
        logger.info("Running %d doctest(s) for %s", len(blocks), package.name)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            futures = [
                executor.submit(self._run_block, request, lib_artifact, block, block.name(display))
                for block in blocks
            ]
            results = [future.result() for future in futures]

        failed = tuple(result.name for result in results if result.status is BlockStatus.FAILED)
        for result in results:
            if result.status is BlockStatus.FAILED:
                run.stdout += f"---- {result.name} ----\n{result.message}\n"
        run.failed_cases = failed
        run.advance(ArtifactState.FAILED if failed else ArtifactState.PASSED)
        return run

    def _run_block(self, request: DoctestRequest, lib_artifact: Path, block: DocBlock, name: str) -> BlockResult:
        if block.ignored:
            return BlockResult(block=block, name=name, status=BlockStatus.IGNORED)

        package = request.package
        work_dir = self._work_dir(request) / f"{request.target.name}_line{block.line}"
        work_dir.mkdir(parents=True, exist_ok=True)
        source = work_dir / "main.sy"
        source.write_text(block.code, encoding="utf-8")
        compile_request = CompileRequest(
            name=f"{request.target.name}_doctest_line{block.line}",
            src_path=source,
            crate_type="bin",
            mode=CompileMode.DOCTEST,
            output=work_dir / "doctest",
            profile=request.profile.name,
            cwd=self.workspace_root,
            features=request.features,
            triple=request.triple,
            externs={request.target.name: lib_artifact},
            env=package_env(package),
        )
        compiled = self.compiler.compile(compile_request)
        passed = BlockResult(block=block, name=name, status=BlockStatus.PASSED)

        def failed(message: str) -> BlockResult:
            return BlockResult(block=block, name=name, status=BlockStatus.FAILED, message=message)

        if "compile_fail" in block.attributes:
            return failed("test compiled successfully, but it's marked `compile_fail`") if compiled.success else passed
        if not compiled.success:
            return failed(compiled.stderr or compiled.message())
        if "no_run" in block.attributes:
            return passed

        executable = compiled.artifact or compile_request.output
        result = self.runner.run([str(executable)], cwd=package.root, env=dict(compile_request.env))
        if "should_panic" in block.attributes:
            return failed("test executable succeeded, but it's marked `should_panic`") if result.returncode == 0 else passed
        if result.returncode != 0:
            return failed((result.stderr or result.stdout).strip())
        return passed

    def _work_dir(self, request: DoctestRequest) -> Path:
        base = self.target_dir / request.triple if request.triple else self.target_dir
        return base / request.profile.dir_name / "doctests" / request.package.name


def _display_path(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)
