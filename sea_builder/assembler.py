"""Per-target executable assembly."""

from dataclasses import dataclass
import logging
import pathlib
import shutil
import time

from sea_builder.cache import ArchiveCache
from sea_builder.errors import TargetBuildError
from sea_builder.inject import RESOURCE_NAME, SENTINEL_FUSE, Injector, Signer
from sea_builder.target import Target


@dataclass(frozen=True, slots=True)
class TargetResult:
    """Outcome of one target.

    :ivar target: The target.
    :ivar output_path: Produced executable (``None`` if the target failed).
    :ivar error: The error that skipped the target, if any.
    :ivar step: Step that failed (``download``, ``copy``, ``strip``, ``inject``, ``sign``).
    """

    target: Target
    output_path: pathlib.Path | None
    error: Exception | None = None
    step: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def output_path(prefix: str, target: Target) -> pathlib.Path:
    """Output executable path: ``<prefix><target>[.exe]``."""

    return pathlib.Path(f"{prefix}{target}{target.family.exe_suffix}")


class TargetAssembler:
    """Turn a cached runtime and a payload into one target executable.

    :param cache: Runtime archive cache.
    :param injector: Payload injector.
    :param signer: Code signer used on targets that need it.
    :param logger: Optional logger.
    """

    def __init__(
        self,
        cache: ArchiveCache,
        injector: Injector,
        signer: Signer,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache: ArchiveCache = cache
        self.injector: Injector = injector
        self.signer: Signer = signer
        self._logger: logging.Logger = logger if logger is not None else logging.getLogger("sea_builder")

    def assemble(self, *, target: Target, version: str, payload: bytes, prefix: str) -> TargetResult:
        """Build the executable for one target.

        Failures are logged and returned, never raised, so other targets are
        unaffected.

        :param target: Build target.
        :param version: Runtime version.
        :param payload: Application blob (read only).
        :param prefix: Output prefix.
        :returns: Result for this target.
        """

        self._logger.info(f"sea-builder: building {target}")
        out: pathlib.Path = output_path(prefix, target)
        step: str = "download"
        t0: float = time.perf_counter()
        try:
            runtime: pathlib.Path = self.cache.ensure(version, target)

            step = "copy"
            out.parent.mkdir(parents=True, exist_ok=True)
            if self._logger.isEnabledFor(logging.DEBUG) is True:
                self._logger.debug(f"sea-builder: copying {runtime} -> {out}")
            out.unlink(missing_ok=True)
            shutil.copyfile(runtime, out)
            if target.family.is_windows is False:
                out.chmod(0o755)

            if target.needs_codesign is True:
                step = "strip"
                self._logger.debug(f"sea-builder: removing signature from {out}")
                self.signer.strip(out)

            step = "inject"
            self._logger.debug(f"sea-builder: injecting payload into {out}")
            self.injector.inject(
                out,
                RESOURCE_NAME,
                payload,
                sentinel_fuse=SENTINEL_FUSE,
                macho_segment_name=target.family.macho_segment_name,
            )

            if target.needs_codesign is True:
                step = "sign"
                self._logger.debug(f"sea-builder: signing {out}")
                self.signer.sign(out)
        except (TargetBuildError, OSError) as e:
            self._logger.error(f"sea-builder: {target}: {step} failed: {e}")
            return TargetResult(target=target, output_path=None, error=e, step=step)

        t1: float = time.perf_counter()
        self._logger.info(f"sea-builder: wrote {out} in {t1 - t0:.2f}s")
        return TargetResult(target=target, output_path=out)
