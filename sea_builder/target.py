"""Target resolution helpers.

A target is an ``<os>-<arch>`` pair using Node.js release naming
(e.g. ``linux-x64``, ``darwin-arm64``, ``win-x64``). Per-OS differences
(archive format, executable name, injection and signing needs) live in a
single table, :data:`PLATFORM_FAMILIES`, so adding a platform is one entry.
"""

from dataclasses import dataclass
import platform
import re
import sys


class TargetResolutionError(ValueError):
    """Raised when a target spec cannot be resolved to a Node.js target."""


@dataclass(frozen=True, slots=True)
class PlatformFamily:
    """Per-OS packaging details.

    :ivar name: Node.js OS name (``linux``, ``darwin``, ``win``).
    :ivar archive_ext: Release archive extension (``.tar.gz`` or ``.zip``).
    :ivar exe_suffix: Suffix of the produced executable (``.exe`` on Windows).
    :ivar runtime_member: Path of the runtime inside the archive root directory.
    :ivar macho_segment_name: Mach-O segment name passed to the injector, if any.
    :ivar codesign_arches: Architectures that need signature strip/re-sign.
    """

    name: str
    archive_ext: str
    exe_suffix: str
    runtime_member: str
    macho_segment_name: str | None
    codesign_arches: frozenset[str]

    @property
    def is_windows(self) -> bool:
        return self.archive_ext == ".zip"


PLATFORM_FAMILIES: dict[str, PlatformFamily] = {
    "linux": PlatformFamily(
        name="linux",
        archive_ext=".tar.gz",
        exe_suffix="",
        runtime_member="bin/node",
        macho_segment_name=None,
        codesign_arches=frozenset(),
    ),
    "darwin": PlatformFamily(
        name="darwin",
        archive_ext=".tar.gz",
        exe_suffix="",
        runtime_member="bin/node",
        macho_segment_name="NODE_SEA",
        codesign_arches=frozenset({"arm64"}),
    ),
    "win": PlatformFamily(
        name="win",
        archive_ext=".zip",
        exe_suffix=".exe",
        runtime_member="node.exe",
        macho_segment_name=None,
        codesign_arches=frozenset(),
    ),
}

_OS_ALIASES: dict[str, str] = {
    "win32": "win",
    "windows": "win",
    "macos": "darwin",
    "osx": "darwin",
}

_ARCH_ALIASES: dict[str, str] = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "i386": "x86",
    "i686": "x86",
}

_TARGET_RE: re.Pattern[str] = re.compile(r"^(?P<os>[A-Za-z0-9]+)-(?P<arch>[A-Za-z0-9_]+)$")


@dataclass(frozen=True, slots=True)
class Target:
    """Build target.

    :ivar os: Node.js OS name (a key of :data:`PLATFORM_FAMILIES`).
    :ivar arch: Node.js architecture name (e.g. ``x64``, ``arm64``).
    """

    os: str
    arch: str

    def __str__(self) -> str:
        return f"{self.os}-{self.arch}"

    @property
    def family(self) -> PlatformFamily:
        return PLATFORM_FAMILIES[self.os]

    @property
    def needs_codesign(self) -> bool:
        """Whether the binary must be stripped and re-signed around injection."""

        return self.arch in self.family.codesign_arches


def parse_target(spec: str) -> Target:
    """Parse a user-supplied ``<os>-<arch>`` string.

    :param spec: Target spec such as ``linux-x64``.
    :returns: Resolved target.
    :raises TargetResolutionError: If the spec is malformed or the OS is unknown.
    """

    m = _TARGET_RE.match(spec.strip())
    if m is None:
        raise TargetResolutionError(
            f"Unrecognized target {spec!r}; expected '<os>-<arch>' (e.g. linux-x64, win-x64)."
        )

    os_name: str = m.group("os").lower()
    os_name = _OS_ALIASES.get(os_name, os_name)
    if os_name not in PLATFORM_FAMILIES:
        known: str = ", ".join(sorted(PLATFORM_FAMILIES))
        raise TargetResolutionError(f"Unsupported OS in target {spec!r} (os={os_name!r}; known: {known}).")

    arch: str = m.group("arch").lower()
    arch = _ARCH_ALIASES.get(arch, arch)
    return Target(os=os_name, arch=arch)


def host_target() -> Target:
    """Resolve the Node.js target matching the running host.

    :returns: Host target.
    :raises TargetResolutionError: If the host OS has no Node.js release.
    """

    os_name: str
    if sys.platform.startswith("linux") is True:
        os_name = "linux"
    elif sys.platform == "darwin":
        os_name = "darwin"
    elif sys.platform == "win32":
        os_name = "win"
    else:
        raise TargetResolutionError(f"No Node.js release for host platform {sys.platform!r}; pass --target.")

    machine: str = platform.machine().lower()
    arch: str = _ARCH_ALIASES.get(machine, machine)
    return Target(os=os_name, arch=arch)


def resolve_targets(specs: list[str] | None) -> tuple[Target, ...]:
    """Resolve the requested target list.

    Duplicates are dropped while keeping the first occurrence's position.

    :param specs: Target specs from the command line (``None`` or empty for the host).
    :returns: Ordered, de-duplicated targets.
    :raises TargetResolutionError: If any spec is invalid.
    """

    if specs is None or len(specs) == 0:
        return (host_target(),)

    seen: set[Target] = set()
    targets: list[Target] = []
    for spec in specs:
        target: Target = parse_target(spec)
        if target in seen:
            continue
        seen.add(target)
        targets.append(target)
    return tuple(targets)


def archive_base(version: str, target: Target) -> str:
    """Name of a Node.js release archive without its extension.

    :param version: Runtime version string (e.g. ``v20.10.0``).
    :param target: Build target.
    :returns: Archive base name, e.g. ``node-v20.10.0-linux-x64``.
    """

    return f"node-{version}-{target}"
