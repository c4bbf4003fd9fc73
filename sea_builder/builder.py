"""Build orchestration.

One invocation:

- optionally clears the runtime cache,
- builds the application payload once,
- assembles every requested target, continuing past per-target failures.

A partially successful build is a normal outcome; the returned
:class:`BuildReport` says which targets were skipped and why.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
import pathlib
import re
import time

from sea_builder.assembler import TargetAssembler, TargetResult
from sea_builder.cache import ArchiveCache
from sea_builder.payload import PayloadBuilder
from sea_builder.target import Target

_WORD_END_RE: re.Pattern[str] = re.compile(r"\w$")


@dataclass(frozen=True, slots=True)
class BuildRequest:
    """Everything one invocation needs.

    :ivar entry_path: JavaScript entry point (``None`` for a clean-only run).
    :ivar output_prefix: Prefix every output path starts with.
    :ivar version: Runtime version string (e.g. ``v20.10.0``).
    :ivar targets: Ordered, de-duplicated targets.
    :ivar quiet: Only report warnings and errors.
    :ivar verbose: Report internal steps.
    :ivar keep: Keep intermediate files.
    :ivar clean: Clear the cache root before building.
    :ivar jobs: Maximum number of targets assembled concurrently.
    """

    entry_path: pathlib.Path | None
    output_prefix: str
    version: str
    targets: tuple[Target, ...]
    quiet: bool = False
    verbose: bool = False
    keep: bool = False
    clean: bool = False
    jobs: int = 1


@dataclass(slots=True)
class BuildReport:
    """Per-target outcomes, in request order."""

    results: list[TargetResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[TargetResult]:
        return [r for r in self.results if r.ok is True]

    @property
    def failed(self) -> list[TargetResult]:
        return [r for r in self.results if r.ok is False]


def output_prefix(entry_path: pathlib.Path, override: str | None) -> str:
    """Compute the output prefix.

    Defaults to the entry point's stem. A prefix ending in a word character
    gets a ``-`` separator (``app`` -> ``app-``); ``dist/`` stays as is.

    :param entry_path: Entry point.
    :param override: Explicit prefix from the command line.
    :returns: Output prefix.
    """

    prefix: str = override if override is not None else entry_path.stem
    if _WORD_END_RE.search(prefix) is not None:
        prefix += "-"
    return prefix


def prepare_output_dir(prefix: str) -> pathlib.Path:
    """Create the directory outputs are written into.

    :param prefix: Output prefix.
    :returns: The created directory.
    """

    out_dir: pathlib.Path
    if prefix.endswith("/") is True or prefix.endswith("\\") is True:
        out_dir = pathlib.Path(prefix)
    else:
        out_dir = pathlib.Path(prefix).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


def build_executables(
    request: BuildRequest,
    *,
    cache: ArchiveCache,
    payload_builder: PayloadBuilder,
    assembler: TargetAssembler,
    logger: logging.Logger | None = None,
) -> BuildReport:
    """Run one build invocation.

    :param request: Build request.
    :param cache: Runtime archive cache.
    :param payload_builder: Builds the shared application blob.
    :param assembler: Assembles one target.
    :param logger: Optional logger.
    :returns: Per-target outcomes.
    :raises PayloadBuildError: If the payload cannot be built (fatal for all targets).
    :raises KeyboardInterrupt: After queued targets are dropped and in-flight downloads cancelled.
    """

    if logger is None:
        logger = logging.getLogger("sea_builder")

    if request.clean is True:
        logger.debug(f"sea-builder: clearing cache {cache.root}")
        cache.clear()

    if request.entry_path is None:
        return BuildReport()

    t_total0: float = time.perf_counter()
    logger.debug(f"sea-builder: prefix={request.output_prefix!r}")
    logger.debug(f"sea-builder: version={request.version} targets={[str(t) for t in request.targets]}")
    out_dir: pathlib.Path = prepare_output_dir(request.output_prefix)
    logger.debug(f"sea-builder: output_dir={out_dir}")

    payload: bytes = payload_builder.build(request.entry_path)

    results: list[TargetResult]
    try:
        if request.jobs <= 1 or len(request.targets) <= 1:
            results = [
                assembler.assemble(target=t, version=request.version, payload=payload, prefix=request.output_prefix)
                for t in request.targets
            ]
        else:
            results = _assemble_concurrently(request=request, payload=payload, assembler=assembler)
    except KeyboardInterrupt:
        logger.debug("sea-builder: interrupted, cancelling downloads")
        cache.cancel()
        raise

    report: BuildReport = BuildReport(results=results)
    t_total1: float = time.perf_counter()
    logger.info(
        f"sea-builder: done in {t_total1 - t_total0:.2f}s "
        f"({len(report.succeeded)} built, {len(report.failed)} skipped)"
    )
    for failed in report.failed:
        logger.error(f"sea-builder: skipped {failed.target} ({failed.step} failed)")
    return report


def _assemble_concurrently(
    *,
    request: BuildRequest,
    payload: bytes,
    assembler: TargetAssembler,
) -> list[TargetResult]:
    """Assemble targets on a bounded thread pool, returning results in request order."""

    executor: ThreadPoolExecutor = ThreadPoolExecutor(
        max_workers=min(request.jobs, len(request.targets)),
        thread_name_prefix="sea_builder",
    )
    try:
        futures: list[Future[TargetResult]] = [
            executor.submit(
                assembler.assemble,
                target=t,
                version=request.version,
                payload=payload,
                prefix=request.output_prefix,
            )
            for t in request.targets
        ]
        results: list[TargetResult] = [f.result() for f in futures]
    except KeyboardInterrupt:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return results
