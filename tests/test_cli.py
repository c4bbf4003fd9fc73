"""Tests for the command line interface."""

from __future__ import annotations

import pathlib
import shlex

import pytest

from sea_builder import cli
from sea_builder.cli import main
from tests._support import FAKE_NODE_SCRIPT, FAKE_POSTJECT_SCRIPT, VERSION, make_archive, runtime_bytes, write_script


def test_help_exits_zero(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--help"])
    assert exc.value.code == 0
    assert "--target" in capsys.readouterr().out


def test_verbose_and_quiet_conflict(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["-v", "-q", "app.js"]) == 1
    assert "--verbose and --quiet" in capsys.readouterr().err


def test_missing_positional(tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--cache-dir", str(tmp_path / "cache")]) == 1
    assert "expected 1" in capsys.readouterr().err


def test_too_many_positionals(tmp_path: pathlib.Path) -> None:
    assert main(["a.js", "b.js", "--cache-dir", str(tmp_path / "cache")]) == 1


def test_unknown_flag_is_usage_error() -> None:
    assert main(["--frobnicate", "app.js"]) == 1


def test_clean_only(tmp_path: pathlib.Path) -> None:
    """--clean without an entry point wipes the cache root and exits 0."""
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    (cache_dir / "node-v20.10.0-linux-x64").write_bytes(b"old")

    assert main(["--clean", "--cache-dir", str(cache_dir)]) == 0
    assert not cache_dir.exists()


def test_missing_entry_file(tmp_path: pathlib.Path) -> None:
    assert main([str(tmp_path / "nope.js"), "-N", VERSION, "--cache-dir", str(tmp_path / "cache")]) == 1


def test_bad_target(tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]) -> None:
    entry = tmp_path / "app.js"
    entry.write_text("", encoding="utf-8")
    assert main([str(entry), "-t", "plan9-x64", "-N", VERSION, "--cache-dir", str(tmp_path / "cache")]) == 1
    assert "plan9" in capsys.readouterr().err


def test_end_to_end(
    tmp_path: pathlib.Path, http_root: tuple[pathlib.Path, str], capsys: pytest.CaptureFixture[str]
) -> None:
    """Full pipeline with a fake node, a fake postject and a local dist server."""
    www, base_url = http_root
    (www / VERSION).mkdir()
    make_archive(www / VERSION / "node-v20.10.0-linux-x64.tar.gz")
    make_archive(www / VERSION / "node-v20.10.0-win-x64.zip")

    entry = tmp_path / "app.js"
    entry.write_text("console.log('sea')\n", encoding="utf-8")
    node = write_script(tmp_path / "fake_node.py", FAKE_NODE_SCRIPT)
    postject = write_script(tmp_path / "fake_postject.py", FAKE_POSTJECT_SCRIPT)
    out_prefix = f"{tmp_path}/dist/app"

    code = main(
        [
            str(entry),
            "-o",
            out_prefix,
            "-t",
            "linux-x64",
            "-t",
            "win-x64",
            "-t",
            "linux-arm64",
            "--jobs",
            "2",
            "--cache-dir",
            str(tmp_path / "cache"),
            "--dist-url",
            base_url,
            "--node-path",
            shlex.join(node),
            "--postject",
            shlex.join(postject),
        ]
    )

    # linux-arm64 is missing from the server: reported, but the build still succeeds.
    assert code == 0
    suffix = b"|NODE_SEA_BLOB|BLOB:console.log('sea')\n"
    linux = tmp_path / "dist" / "app-linux-x64"
    win = tmp_path / "dist" / "app-win-x64.exe"
    assert linux.read_bytes() == runtime_bytes("node-v20.10.0-linux-x64") + suffix
    assert win.read_bytes() == runtime_bytes("node-v20.10.0-win-x64") + suffix
    assert not (tmp_path / "dist" / "app-linux-arm64").exists()

    err = capsys.readouterr().err
    assert "building linux-x64" in err
    assert "linux-arm64: download failed" in err
    assert (tmp_path / "cache" / "node-v20.10.0-linux-x64").is_file()


def test_default_version_from_node(
    tmp_path: pathlib.Path, http_root: tuple[pathlib.Path, str], capsys: pytest.CaptureFixture[str]
) -> None:
    """Without -N the version comes from ``node --version``; -q hides progress."""
    www, base_url = http_root
    (www / VERSION).mkdir()
    make_archive(www / VERSION / "node-v20.10.0-linux-x64.tar.gz")
    entry = tmp_path / "app.js"
    entry.write_text("1\n", encoding="utf-8")
    node = write_script(tmp_path / "fake_node.py", FAKE_NODE_SCRIPT)
    postject = write_script(tmp_path / "fake_postject.py", FAKE_POSTJECT_SCRIPT)

    code = main(
        [
            str(entry),
            "-q",
            "-o",
            f"{tmp_path}/",
            "-t",
            "linux-x64",
            "--cache-dir",
            str(tmp_path / "cache"),
            "--dist-url",
            base_url,
            "--node-path",
            shlex.join(node),
            "--postject",
            shlex.join(postject),
        ]
    )

    assert code == 0
    assert (tmp_path / "linux-x64").is_file()
    assert "building" not in capsys.readouterr().err


def test_payload_failure_exits_one(tmp_path: pathlib.Path) -> None:
    entry = tmp_path / "app.js"
    entry.write_text("1\n", encoding="utf-8")
    failing = write_script(tmp_path / "failing_node.py", "import sys\nsys.exit(2)\n")

    code = main(
        [
            str(entry),
            "-N",
            VERSION,
            "-t",
            "linux-x64",
            "--cache-dir",
            str(tmp_path / "cache"),
            "--node-path",
            shlex.join(failing),
        ]
    )
    assert code == 1


def test_interrupt_exits_130(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def interrupted(*args: object, **kwargs: object) -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "build_executables", interrupted)
    entry = tmp_path / "app.js"
    entry.write_text("1\n", encoding="utf-8")

    code = main([str(entry), "-N", VERSION, "-t", "linux-x64", "--cache-dir", str(tmp_path / "cache")])

    assert code == 130
    assert "interrupted" in capsys.readouterr().err
