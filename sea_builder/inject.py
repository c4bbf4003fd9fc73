"""External binary rewriting: payload injection and macOS code signing.

Both are black boxes run as subprocesses. They are wrapped in small classes so
the assembler can be driven with test doubles.
"""

from typing import Protocol
import logging
import os
import pathlib
import shutil
import subprocess
import tempfile

from sea_builder.errors import InjectionError, SigningError

RESOURCE_NAME: str = "NODE_SEA_BLOB"
SENTINEL_FUSE: str = "NODE_SEA_FUSE_fce680ab2cc467b6e072b8b5df1996b2"


class Injector(Protocol):
    def inject(
        self,
        binary: pathlib.Path,
        resource_name: str,
        payload: bytes,
        *,
        sentinel_fuse: str,
        macho_segment_name: str | None,
    ) -> None: ...


class Signer(Protocol):
    def strip(self, binary: pathlib.Path) -> None: ...

    def sign(self, binary: pathlib.Path) -> None: ...


def default_postject_command() -> list[str]:
    """``postject`` from ``PATH`` if installed, otherwise via ``npx``."""

    found: str | None = shutil.which("postject")
    if found is not None:
        return [found]
    return ["npx", "--yes", "postject"]


def _run(cmd: list[str], *, logger: logging.Logger) -> subprocess.CompletedProcess[str]:
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"sea-builder: running {' '.join(cmd)}")
    return subprocess.run(cmd, check=False, capture_output=True, text=True)


class PostjectInjector:
    """Inject a payload with the ``postject`` command line tool.

    :param command: Command used to run postject.
    :param logger: Optional logger.
    """

    def __init__(self, command: list[str] | None = None, *, logger: logging.Logger | None = None) -> None:
        self.command: list[str] = command if command is not None else default_postject_command()
        self._logger: logging.Logger = logger if logger is not None else logging.getLogger("sea_builder")

    def inject(
        self,
        binary: pathlib.Path,
        resource_name: str,
        payload: bytes,
        *,
        sentinel_fuse: str,
        macho_segment_name: str | None,
    ) -> None:
        """Embed ``payload`` into ``binary`` in place.

        :param binary: Runtime binary to rewrite.
        :param resource_name: Resource/section name for the payload.
        :param payload: Payload bytes.
        :param sentinel_fuse: Fuse string that must be present in the binary.
        :param macho_segment_name: Mach-O segment name (macOS targets only).
        :raises InjectionError: If postject fails.
        """

        fd, blob_name = tempfile.mkstemp(prefix="sea_builder_blob_", suffix=".blob")
        blob_path: pathlib.Path = pathlib.Path(blob_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)

            cmd: list[str] = [
                *self.command,
                str(binary),
                resource_name,
                str(blob_path),
                "--sentinel-fuse",
                sentinel_fuse,
            ]
            if macho_segment_name is not None:
                cmd.extend(["--macho-segment-name", macho_segment_name])
            cmd.append("--overwrite")

            try:
                proc = _run(cmd, logger=self._logger)
            except OSError as e:
                raise InjectionError(f"Could not run {' '.join(self.command)!r}: {e}") from e
            if proc.returncode != 0:
                detail: str = (proc.stderr or proc.stdout).strip()
                raise InjectionError(f"postject failed for {binary} (exit={proc.returncode}): {detail}")
        finally:
            blob_path.unlink(missing_ok=True)


class Codesigner:
    """Strip and apply ad-hoc signatures with macOS ``codesign``.

    :param command: Command used to run codesign.
    :param logger: Optional logger.
    """

    def __init__(self, command: list[str] | None = None, *, logger: logging.Logger | None = None) -> None:
        self.command: list[str] = command if command is not None else ["codesign"]
        self._logger: logging.Logger = logger if logger is not None else logging.getLogger("sea_builder")

    def strip(self, binary: pathlib.Path) -> None:
        self._codesign(["--remove-signature", str(binary)], action="remove signature from", binary=binary)

    def sign(self, binary: pathlib.Path) -> None:
        self._codesign(["--sign", "-", str(binary)], action="sign", binary=binary)

    def _codesign(self, args: list[str], *, action: str, binary: pathlib.Path) -> None:
        cmd: list[str] = [*self.command, *args]
        try:
            proc = _run(cmd, logger=self._logger)
        except OSError as e:
            raise SigningError(f"Could not run {' '.join(self.command)!r}: {e}") from e
        if proc.returncode != 0:
            raise SigningError(f"Failed to {action} {binary} (exit={proc.returncode}): {proc.stderr.strip()}")
