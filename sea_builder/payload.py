"""Application payload generation.

The blob is produced by Node.js itself (``node --experimental-sea-config``),
once per invocation, and shared read-only by every target.
"""

from typing import Protocol
import json
import logging
import pathlib
import subprocess
import time

from sea_builder.errors import PayloadBuildError


class PayloadBuilder(Protocol):
    """Anything that turns an entry point into an application blob."""

    def build(self, entry_path: pathlib.Path) -> bytes: ...


def node_version(node: list[str]) -> str:
    """Return the version of a Node.js executable (e.g. ``v20.10.0``).

    :param node: Command used to run Node.js.
    :returns: Version string as printed by ``node --version``.
    :raises PayloadBuildError: If the executable cannot be run.
    """

    cmd: list[str] = [*node, "--version"]
    try:
        proc = subprocess.run(cmd, check=False, capture_output=True, text=True)
    except OSError as e:
        raise PayloadBuildError(f"Could not run {' '.join(node)!r}: {e}") from e
    if proc.returncode != 0:
        raise PayloadBuildError(f"{' '.join(cmd)} failed (exit={proc.returncode}): {proc.stderr.strip()}")

    version: str = proc.stdout.strip()
    if len(version) == 0:
        raise PayloadBuildError(f"{' '.join(cmd)} printed no version")
    return version


class NodePayloadBuilder:
    """Build a SEA blob with ``node --experimental-sea-config``.

    :param scratch_dir: Directory for the config descriptor and blob.
    :param node: Command used to run Node.js.
    :param keep: Keep the config and blob files after reading the blob.
    :param logger: Optional logger.
    """

    def __init__(
        self,
        scratch_dir: pathlib.Path,
        *,
        node: list[str] | None = None,
        keep: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.scratch_dir: pathlib.Path = scratch_dir
        self.node: list[str] = node if node is not None else ["node"]
        self.keep: bool = keep
        self._logger: logging.Logger = logger if logger is not None else logging.getLogger("sea_builder")

    def build(self, entry_path: pathlib.Path) -> bytes:
        """Produce the application blob for ``entry_path``.

        :param entry_path: JavaScript entry point.
        :returns: Blob bytes.
        :raises PayloadBuildError: If node fails or produces no blob.
        """

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        config_path: pathlib.Path = self.scratch_dir / f"{entry_path.stem}.json"
        blob_path: pathlib.Path = self.scratch_dir / f"{entry_path.stem}.blob"

        blob_path.unlink(missing_ok=True)
        config: dict[str, object] = {
            "main": str(entry_path),
            "output": str(blob_path),
            "disableExperimentalSEAWarning": True,
        }
        config_path.write_text(json.dumps(config), encoding="utf-8")

        cmd: list[str] = [*self.node, "--experimental-sea-config", str(config_path)]
        if self._logger.isEnabledFor(logging.DEBUG) is True:
            self._logger.debug(f"sea-builder: running {' '.join(cmd)}")

        t0: float = time.perf_counter()
        try:
            try:
                proc = subprocess.run(cmd, check=False)
            except OSError as e:
                raise PayloadBuildError(f"Could not run {' '.join(self.node)!r}: {e}") from e
            if proc.returncode != 0:
                raise PayloadBuildError(f"Payload generation failed (exit={proc.returncode}): {' '.join(cmd)}")
            if blob_path.is_file() is False:
                raise PayloadBuildError(f"Payload generation produced no blob at {blob_path}")
            blob: bytes = blob_path.read_bytes()
        finally:
            if self.keep is False:
                config_path.unlink(missing_ok=True)
                blob_path.unlink(missing_ok=True)
        t1: float = time.perf_counter()

        self._logger.info(f"sea-builder: built payload for {entry_path} ({len(blob)} bytes) in {t1 - t0:.2f}s")
        return blob
