"""Shared pytest fixtures."""

from __future__ import annotations

import functools
import http.server
import logging
import pathlib
import threading
from collections.abc import Iterator

import pytest

from sea_builder.assembler import TargetAssembler
from sea_builder.cache import ArchiveCache
from tests._support import FakeDist, RecordingInjector, RecordingSigner


@pytest.fixture
def dist() -> FakeDist:
    return FakeDist()


@pytest.fixture
def cache(tmp_path: pathlib.Path, dist: FakeDist) -> ArchiveCache:
    return ArchiveCache(tmp_path / "cache", dist_url="https://dist.invalid/", fetch=dist)


@pytest.fixture
def injector() -> RecordingInjector:
    return RecordingInjector()


@pytest.fixture
def signer() -> RecordingSigner:
    return RecordingSigner()


@pytest.fixture
def assembler(cache: ArchiveCache, injector: RecordingInjector, signer: RecordingSigner) -> TargetAssembler:
    return TargetAssembler(cache, injector, signer)


@pytest.fixture(autouse=True)
def _restore_logger() -> Iterator[None]:
    """Undo logger changes made by the CLI so caplog keeps working across tests."""
    logger = logging.getLogger("sea_builder")
    yield
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


class _QuietHandler(http.server.SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        pass


@pytest.fixture
def http_root(tmp_path: pathlib.Path) -> Iterator[tuple[pathlib.Path, str]]:
    """Serve a temporary directory over HTTP; yields ``(directory, base_url)``."""
    root = tmp_path / "www"
    root.mkdir()
    handler = functools.partial(_QuietHandler, directory=str(root))
    server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield root, f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join()
