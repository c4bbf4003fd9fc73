"""Runtime archive cache.

Maps ``(version, target)`` to a ready-to-inject Node.js binary on disk:

- ``<root>/node-<version>-<target>`` is the extracted runtime. If it exists it
  is reused without re-verification.
- ``<root>/node-<version>-<target>.tar.gz`` (or ``.zip``) is the downloaded
  release archive. It is removed after extraction unless ``keep`` is set.
- ``<root>/extract/node-<version>-<target>/`` is the tar extraction scratch
  directory, removed unless ``keep`` is set.

Archives and binaries are written to temporary names and renamed into place,
and population of one key is serialized with an in-process lock, so a reader
checking for the final path never sees a partially written file.
"""

from collections.abc import Callable
import functools
import gzip
import http.client
import logging
import os
import pathlib
import shutil
import tarfile
import tempfile
import threading
import time
import urllib.error
import urllib.request
import zipfile

from sea_builder import __version__
from sea_builder.errors import DownloadError, MissingExecutableError
from sea_builder.target import Target, archive_base

DEFAULT_DIST_URL: str = "https://nodejs.org/dist"
DEFAULT_TIMEOUT: float = 60.0

FetchFn = Callable[[str, pathlib.Path, float], None]

_KEY_LOCKS: dict[tuple[str, str, str], threading.Lock] = {}
_KEY_LOCKS_GUARD: threading.Lock = threading.Lock()


def resolve_cache_root(cache_dir: pathlib.Path | None) -> pathlib.Path:
    """Resolve the cache root directory.

    Defaults to ``$SEA_BUILDER_CACHE_DIR`` or ``~/.cache/sea-builder``.

    :param cache_dir: Optional explicit override.
    :returns: Cache root directory (not created).
    """

    if cache_dir is not None:
        return cache_dir

    env_dir: str | None = os.environ.get("SEA_BUILDER_CACHE_DIR")
    if env_dir is not None and len(env_dir) > 0:
        return pathlib.Path(env_dir)
    return pathlib.Path.home() / ".cache" / "sea-builder"


def resolve_dist_url(dist_url: str | None) -> str:
    """Resolve the Node.js distribution base URL (``$SEA_BUILDER_DIST_URL`` fallback)."""

    if dist_url is None:
        dist_url = os.environ.get("SEA_BUILDER_DIST_URL") or DEFAULT_DIST_URL
    return dist_url.rstrip("/")


def http_fetch(
    url: str,
    dest: pathlib.Path,
    timeout: float,
    *,
    cancelled: threading.Event | None = None,
) -> None:
    """Download ``url`` into ``dest``.

    :param url: URL to fetch.
    :param dest: Destination file (overwritten).
    :param timeout: Socket timeout in seconds.
    :param cancelled: Optional event; once set, the download stops at the next chunk.
    :raises DownloadError: On HTTP errors, non-200 responses, short reads or cancellation.
    """

    request: urllib.request.Request = urllib.request.Request(
        url,
        headers={"User-Agent": f"sea-builder/{__version__}"},
    )
    expected: int | None = None
    written: int = 0
    try:
        with urllib.request.urlopen(request, timeout=timeout) as resp:
            if resp.status != 200:
                raise DownloadError(f"Unexpected HTTP status {resp.status} for {url}")
            length: str | None = resp.headers.get("Content-Length")
            if length is not None and length.isdigit() is True:
                expected = int(length)
            with open(dest, "wb") as f:
                while True:
                    if cancelled is not None and cancelled.is_set() is True:
                        raise DownloadError(f"Download of {url} cancelled")
                    chunk: bytes = resp.read(1024 * 1024)
                    if len(chunk) == 0:
                        break
                    f.write(chunk)
                    written += len(chunk)
    except urllib.error.HTTPError as e:
        raise DownloadError(f"HTTP {e.code} while fetching {url}") from e
    except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
        raise DownloadError(f"Failed to fetch {url}: {e}") from e

    if expected is not None and written != expected:
        raise DownloadError(f"Incomplete download of {url} ({written} of {expected} bytes)")


def _key_lock(root: pathlib.Path, version: str, target: Target) -> threading.Lock:
    key: tuple[str, str, str] = (str(root.resolve()), version, str(target))
    with _KEY_LOCKS_GUARD:
        lock: threading.Lock | None = _KEY_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _KEY_LOCKS[key] = lock
        return lock


def _write_atomic(dest: pathlib.Path, data: bytes) -> None:
    """Write bytes to ``dest`` through a temporary file in the same directory."""

    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".tmp", dir=dest.parent)
    tmp: pathlib.Path = pathlib.Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        tmp.chmod(0o755)
        tmp.replace(dest)
    finally:
        tmp.unlink(missing_ok=True)


def _copy_atomic(src: pathlib.Path, dest: pathlib.Path) -> None:
    """Copy ``src`` to ``dest`` through a temporary file in the same directory."""

    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".tmp", dir=dest.parent)
    os.close(fd)
    tmp: pathlib.Path = pathlib.Path(tmp_name)
    try:
        shutil.copyfile(src, tmp)
        tmp.chmod(0o755)
        tmp.replace(dest)
    finally:
        tmp.unlink(missing_ok=True)


def _extract_from_tar(
    *,
    archive_path: pathlib.Path,
    member_name: str,
    scratch_dir: pathlib.Path,
    dest: pathlib.Path,
) -> None:
    """Extract one member of a gzip-compressed tar archive and copy it to ``dest``.

    :param archive_path: ``.tar.gz`` archive.
    :param member_name: Member path inside the archive.
    :param scratch_dir: Directory the member is extracted into.
    :param dest: Final binary path.
    :raises MissingExecutableError: If the member is absent.
    :raises DownloadError: If the archive cannot be decoded.
    """

    scratch_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:gz") as tf:
            try:
                info: tarfile.TarInfo = tf.getmember(member_name)
            except KeyError as e:
                raise MissingExecutableError(f"Missing node executable {member_name!r} in {archive_path.name}") from e
            if info.isfile() is False:
                raise MissingExecutableError(f"{member_name!r} in {archive_path.name} is not a regular file")
            tf.extract(info, path=scratch_dir, filter="data")
    except (tarfile.TarError, EOFError, gzip.BadGzipFile) as e:
        raise DownloadError(f"Corrupt archive {archive_path.name}: {e}") from e

    _copy_atomic(scratch_dir / member_name, dest)


def _extract_from_zip(
    *,
    archive_path: pathlib.Path,
    member_name: str,
    scratch_dir: pathlib.Path,
    dest: pathlib.Path,
) -> None:
    """Read one zip entry into memory and write it to ``dest``.

    ``scratch_dir`` is unused; zip entries are read directly.

    :raises MissingExecutableError: If the entry is absent.
    :raises DownloadError: If the archive cannot be decoded.
    """

    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            try:
                data: bytes = zf.read(member_name)
            except KeyError as e:
                raise MissingExecutableError(f"Missing node executable {member_name!r} in {archive_path.name}") from e
    except zipfile.BadZipFile as e:
        raise DownloadError(f"Corrupt archive {archive_path.name}: {e}") from e

    _write_atomic(dest, data)


_EXTRACTORS: dict[str, Callable[..., None]] = {
    ".tar.gz": _extract_from_tar,
    ".zip": _extract_from_zip,
}


class ArchiveCache:
    """On-disk cache of Node.js runtime binaries keyed by ``(version, target)``.

    :param root: Cache root directory.
    :param dist_url: Base URL of the Node.js distribution server.
    :param timeout: HTTP timeout in seconds.
    :param keep: Keep downloaded archives and extraction scratch directories.
    :param fetch: Download function ``(url, dest, timeout)``; defaults to :func:`http_fetch`
        bound to this cache's cancellation event.
    :param logger: Optional logger.
    """

    def __init__(
        self,
        root: pathlib.Path,
        *,
        dist_url: str = DEFAULT_DIST_URL,
        timeout: float = DEFAULT_TIMEOUT,
        keep: bool = False,
        fetch: FetchFn | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.root: pathlib.Path = root
        self.dist_url: str = dist_url.rstrip("/")
        self.timeout: float = timeout
        self.keep: bool = keep
        self._cancelled: threading.Event = threading.Event()
        self._fetch: FetchFn = fetch if fetch is not None else functools.partial(http_fetch, cancelled=self._cancelled)
        self._logger: logging.Logger = logger if logger is not None else logging.getLogger("sea_builder")

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop in-flight downloads at their next chunk and refuse new ones."""

        self._cancelled.set()

    def binary_path(self, version: str, target: Target) -> pathlib.Path:
        return self.root / archive_base(version, target)

    def archive_path(self, version: str, target: Target) -> pathlib.Path:
        return self.root / f"{archive_base(version, target)}{target.family.archive_ext}"

    def archive_url(self, version: str, target: Target) -> str:
        return f"{self.dist_url}/{version}/{archive_base(version, target)}{target.family.archive_ext}"

    def scratch_dir(self, version: str, target: Target) -> pathlib.Path:
        return self.root / "extract" / archive_base(version, target)

    def clear(self) -> None:
        """Recursively delete the whole cache root."""

        if self.root.exists() is True:
            self._logger.debug(f"sea-builder: removing cache root {self.root}")
            shutil.rmtree(self.root)

    def ensure(self, version: str, target: Target) -> pathlib.Path:
        """Return the cached runtime binary for a key, downloading it on a miss.

        :param version: Runtime version (e.g. ``v20.10.0``).
        :param target: Build target.
        :returns: Path to the runtime binary.
        :raises DownloadError: If the archive cannot be fetched or decoded.
        :raises MissingExecutableError: If the archive lacks the runtime.
        """

        binary: pathlib.Path = self.binary_path(version, target)
        if binary.is_file() is True:
            self._logger.debug(f"sea-builder: cache hit {binary.name}")
            return binary

        with _key_lock(self.root, version, target):
            if binary.is_file() is True:
                self._logger.debug(f"sea-builder: cache hit {binary.name} (populated concurrently)")
                return binary

            self.root.mkdir(parents=True, exist_ok=True)
            archive: pathlib.Path = self.archive_path(version, target)
            if archive.is_file() is True:
                self._logger.debug(f"sea-builder: found existing archive {archive.name}")
            else:
                self._download(self.archive_url(version, target), archive)

            self._extract(archive=archive, version=version, target=target, dest=binary)
        return binary

    def _download(self, url: str, archive: pathlib.Path) -> None:
        if self._cancelled.is_set() is True:
            raise DownloadError(f"Download of {url} cancelled")
        part: pathlib.Path = archive.with_name(f"{archive.name}.{os.getpid()}.part")
        self._logger.info(f"sea-builder: downloading {url}")
        t0: float = time.perf_counter()
        try:
            self._fetch(url, part, self.timeout)
            part.replace(archive)
        finally:
            part.unlink(missing_ok=True)
        t1: float = time.perf_counter()
        size: int = archive.stat().st_size
        self._logger.info(
            f"sea-builder: downloaded {archive.name} ({size / (1024 * 1024):.1f} MiB) in {t1 - t0:.2f}s"
        )

    def _extract(self, *, archive: pathlib.Path, version: str, target: Target, dest: pathlib.Path) -> None:
        base: str = archive_base(version, target)
        member_name: str = f"{base}/{target.family.runtime_member}"
        scratch: pathlib.Path = self.scratch_dir(version, target)
        extractor: Callable[..., None] = _EXTRACTORS[target.family.archive_ext]

        self._logger.debug(f"sea-builder: extracting {member_name} from {archive.name}")
        try:
            extractor(archive_path=archive, member_name=member_name, scratch_dir=scratch, dest=dest)
        except DownloadError:
            # A corrupt archive must not satisfy the next partial-hit check.
            if self.keep is False:
                archive.unlink(missing_ok=True)
            raise
        finally:
            if self.keep is False and scratch.exists() is True:
                self._logger.debug(f"sea-builder: removing intermediate {scratch}")
                shutil.rmtree(scratch, ignore_errors=True)

        if self.keep is False:
            self._logger.debug(f"sea-builder: removing intermediate {archive}")
            archive.unlink(missing_ok=True)
