"""Command line interface for sea-builder."""

from typing import NoReturn
import argparse
import logging
import pathlib
import shlex
import sys

from sea_builder.assembler import TargetAssembler
from sea_builder.builder import BuildReport, BuildRequest, build_executables, output_prefix
from sea_builder.cache import DEFAULT_TIMEOUT, ArchiveCache, resolve_cache_root, resolve_dist_url
from sea_builder.errors import PayloadBuildError, UsageError
from sea_builder.inject import Codesigner, PostjectInjector
from sea_builder.payload import NodePayloadBuilder, node_version
from sea_builder.target import Target, TargetResolutionError, resolve_targets


class _ArgumentParser(argparse.ArgumentParser):
    """Argument parser that raises :class:`UsageError` instead of exiting with status 2."""

    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def _configure_logging(*, verbose: bool, quiet: bool) -> logging.Logger:
    """Configure the sea-builder logger.

    :param verbose: Show debug output.
    :param quiet: Only show warnings and errors.
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet is True:
        level = logging.WARNING
    elif verbose is True:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("sea_builder")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _build_parser() -> _ArgumentParser:
    parser: _ArgumentParser = _ArgumentParser(
        prog="sea-builder",
        description="Build Node.js single-executable applications for one or more targets.",
    )
    parser.add_argument(
        "entry",
        nargs="*",
        type=pathlib.Path,
        help="JavaScript entry point.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Hide non-error output.",
    )
    parser.add_argument(
        "-v",
        "-w",
        "--verbose",
        action="store_true",
        help="Show all output.",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        metavar="PREFIX",
        help="Output prefix (defaults to the entry point's name).",
    )
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Remove cached runtimes before building.",
    )
    parser.add_argument(
        "--keep",
        action="store_true",
        help="Keep intermediate files (archives, extraction dirs, SEA config and blob).",
    )
    parser.add_argument(
        "-N",
        "--node",
        type=str,
        default=None,
        metavar="VERSION",
        help="Node.js version to embed, e.g. v20.10.0 (defaults to the local node's version).",
    )
    parser.add_argument(
        "-t",
        "--target",
        action="append",
        default=None,
        metavar="TARGET",
        help="Target to build for, e.g. linux-arm64 or win-x64. Repeatable. Defaults to the host.",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Number of targets to build concurrently.",
    )
    parser.add_argument(
        "--cache-dir",
        type=pathlib.Path,
        default=None,
        help="Runtime cache directory (default: $SEA_BUILDER_CACHE_DIR or ~/.cache/sea-builder).",
    )
    parser.add_argument(
        "--dist-url",
        type=str,
        default=None,
        help="Node.js distribution base URL (default: $SEA_BUILDER_DIST_URL or https://nodejs.org/dist).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="HTTP timeout in seconds.",
    )
    parser.add_argument(
        "--node-path",
        type=str,
        default="node",
        help="Node.js executable used to generate the payload.",
    )
    parser.add_argument(
        "--postject",
        type=str,
        default=None,
        help="Command used to run postject (default: postject on PATH, else 'npx --yes postject').",
    )
    return parser


def _usage_error(parser: argparse.ArgumentParser, message: str) -> int:
    parser.print_usage(sys.stderr)
    print(f"{parser.prog}: error: {message}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    """Run the sea-builder CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: _ArgumentParser = _build_parser()
    try:
        ns = parser.parse_args(argv)
        if ns.verbose is True and ns.quiet is True:
            raise UsageError("Can not use both --verbose and --quiet")
        if ns.jobs < 1:
            raise UsageError(f"--jobs must be at least 1 (got {ns.jobs})")
    except UsageError as e:
        return _usage_error(parser, str(e))

    logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
    cache: ArchiveCache = ArchiveCache(
        resolve_cache_root(ns.cache_dir),
        dist_url=resolve_dist_url(ns.dist_url),
        timeout=ns.timeout,
        keep=ns.keep,
        logger=logger,
    )

    entries: list[pathlib.Path] = ns.entry
    if len(entries) != 1:
        if ns.clean is True:
            cache.clear()
            if len(entries) == 0:
                return 0
        return _usage_error(parser, "Incorrect number of positional arguments, expected 1")

    entry: pathlib.Path = entries[0]
    node_cmd: list[str] = shlex.split(ns.node_path)
    try:
        if entry.is_file() is False:
            raise UsageError(f"Entry point does not exist: {entry}")
        targets: tuple[Target, ...] = resolve_targets(ns.target)
        version: str
        if ns.node is not None:
            version = ns.node
        else:
            try:
                version = node_version(node_cmd)
            except PayloadBuildError as e:
                raise UsageError(f"Could not determine the Node.js version; pass --node. ({e})") from e
    except (UsageError, TargetResolutionError) as e:
        return _usage_error(parser, str(e))

    request: BuildRequest = BuildRequest(
        entry_path=entry,
        output_prefix=output_prefix(entry, ns.output),
        version=version,
        targets=targets,
        quiet=ns.quiet,
        verbose=ns.verbose,
        keep=ns.keep,
        clean=ns.clean,
        jobs=ns.jobs,
    )
    postject_cmd: list[str] | None = shlex.split(ns.postject) if ns.postject is not None else None
    assembler: TargetAssembler = TargetAssembler(
        cache,
        PostjectInjector(postject_cmd, logger=logger),
        Codesigner(logger=logger),
        logger=logger,
    )

    try:
        report: BuildReport = build_executables(
            request,
            cache=cache,
            payload_builder=NodePayloadBuilder(cache.root / "payload", node=node_cmd, keep=ns.keep, logger=logger),
            assembler=assembler,
            logger=logger,
        )
    except PayloadBuildError as e:
        logger.error(f"sea-builder: {e}")
        return 1
    except KeyboardInterrupt:
        logger.error("sea-builder: interrupted")
        return 130

    if logger.isEnabledFor(logging.DEBUG) is True:
        for result in report.succeeded:
            logger.debug(f"sea-builder: {result.target} -> {result.output_path}")
    return 0
