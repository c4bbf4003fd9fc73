"""Tests for the postject and codesign wrappers using stand-in scripts."""

from __future__ import annotations

import json
import pathlib
import sys

import pytest

from sea_builder.errors import InjectionError, SigningError
from sea_builder.inject import RESOURCE_NAME, SENTINEL_FUSE, Codesigner, PostjectInjector
from tests._support import FAKE_POSTJECT_SCRIPT, write_script


def test_postject_arguments(tmp_path: pathlib.Path) -> None:
    """postject gets the binary, resource, blob file and fuse; the blob is cleaned up."""
    command = write_script(tmp_path / "postject.py", FAKE_POSTJECT_SCRIPT)
    binary = tmp_path / "app-darwin-arm64"
    binary.write_bytes(b"RUNTIME")

    PostjectInjector(command).inject(
        binary,
        RESOURCE_NAME,
        b"PAYLOAD",
        sentinel_fuse=SENTINEL_FUSE,
        macho_segment_name="NODE_SEA",
    )

    assert binary.read_bytes() == b"RUNTIME|NODE_SEA_BLOB|PAYLOAD"
    argv = json.loads((tmp_path / "postject.log").read_text(encoding="utf-8"))
    assert argv[0] == str(binary)
    assert argv[1] == "NODE_SEA_BLOB"
    assert not pathlib.Path(argv[2]).exists()
    assert argv[3:] == [
        "--sentinel-fuse",
        "NODE_SEA_FUSE_fce680ab2cc467b6e072b8b5df1996b2",
        "--macho-segment-name",
        "NODE_SEA",
        "--overwrite",
    ]


def test_postject_without_segment(tmp_path: pathlib.Path) -> None:
    command = write_script(tmp_path / "postject.py", FAKE_POSTJECT_SCRIPT)
    binary = tmp_path / "app-linux-x64"
    binary.write_bytes(b"RUNTIME")

    PostjectInjector(command).inject(binary, RESOURCE_NAME, b"P", sentinel_fuse=SENTINEL_FUSE, macho_segment_name=None)

    argv = json.loads((tmp_path / "postject.log").read_text(encoding="utf-8"))
    assert "--macho-segment-name" not in argv


def test_postject_failure(tmp_path: pathlib.Path) -> None:
    command = [sys.executable, "-c", "import sys; sys.stderr.write('fuse not found'); sys.exit(1)"]
    with pytest.raises(InjectionError, match="fuse not found"):
        PostjectInjector(command).inject(
            tmp_path / "bin", RESOURCE_NAME, b"P", sentinel_fuse=SENTINEL_FUSE, macho_segment_name=None
        )


def test_postject_missing_tool(tmp_path: pathlib.Path) -> None:
    with pytest.raises(InjectionError):
        PostjectInjector([str(tmp_path / "no-postject")]).inject(
            tmp_path / "bin", RESOURCE_NAME, b"P", sentinel_fuse=SENTINEL_FUSE, macho_segment_name=None
        )


def test_codesign_commands(tmp_path: pathlib.Path) -> None:
    log = tmp_path / "codesign.log"
    script = f"import sys\nopen({str(log)!r}, 'a').write(' '.join(sys.argv[1:]) + '\\n')\n"
    command = write_script(tmp_path / "codesign.py", script)
    binary = tmp_path / "app"

    signer = Codesigner(command)
    signer.strip(binary)
    signer.sign(binary)

    assert log.read_text().splitlines() == [
        f"--remove-signature {binary}",
        f"--sign - {binary}",
    ]


def test_codesign_failure(tmp_path: pathlib.Path) -> None:
    with pytest.raises(SigningError):
        Codesigner([sys.executable, "-c", "import sys; sys.exit(1)"]).sign(tmp_path / "app")
