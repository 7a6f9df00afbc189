"""
Shared pytest fixtures for duckdb_ext_tools tests.

Provides a throwaway cargo project on disk (Cargo.toml + a fake cdylib
under target/), helpers that emit cargo's JSON message lines, and a
stand-in cargo executable for exercising the subprocess path without a
Rust toolchain.
"""
import json
import sys
import textwrap
from pathlib import Path
from typing import List, Optional

import pytest

# Bytes of a "library" that is not any known binary format.
LIBRARY_BYTES = b"\x00\x01fake-cdylib\x02\x03" * 64

QUACK_MANIFEST = textwrap.dedent("""\
    [package]
    name = "quack"
    version = "0.4.0"
    edition = "2021"

    [lib]
    crate-type = ["cdylib"]

    [dependencies]
    duckdb = { version = "1.4.2", features = ["loadable-extension"] }
    serde = "1"
""")


def artifact_line(
    name: str,
    filenames: List[str],
    kind: Optional[List[str]] = None,
    package_id: Optional[str] = None,
) -> str:
    """One ``compiler-artifact`` message as cargo prints it."""
    kind = kind or ["cdylib"]
    return json.dumps({
        "reason": "compiler-artifact",
        "package_id": package_id or f"path+file:///src/{name}#0.4.0",
        "manifest_path": f"/src/{name}/Cargo.toml",
        "target": {
            "kind": kind,
            "crate_types": kind,
            "name": name,
            "src_path": f"/src/{name}/src/lib.rs",
            "edition": "2021",
            "doctest": False,
            "test": True,
        },
        "profile": {"opt_level": "3", "debuginfo": 0, "test": False},
        "features": [],
        "filenames": filenames,
        "executable": None,
        "fresh": False,
    })


def finished_line(success: bool = True) -> str:
    return json.dumps({"reason": "build-finished", "success": success})


def dependency_lines() -> List[str]:
    """Noise cargo emits before the interesting artifact."""
    return [
        json.dumps({
            "reason": "build-script-executed",
            "package_id": "registry+https://github.com/rust-lang/crates.io-index#libduckdb-sys@1.4.2",
            "linked_libs": [],
            "linked_paths": [],
            "cfgs": [],
            "env": [],
            "out_dir": "/src/quack/target/release/build/libduckdb-sys-1/out",
        }),
        artifact_line(
            "serde",
            ["/src/quack/target/release/deps/libserde-abc.rlib"],
            kind=["lib"],
            package_id="registry+https://github.com/rust-lang/crates.io-index#serde@1.0.200",
        ),
        json.dumps({"reason": "some-future-reason", "payload": 1}),
    ]


@pytest.fixture()
def quack_project(tmp_path: Path) -> dict:
    """A cargo project named quack with a built cdylib in target/release."""
    root = tmp_path / "quack"
    release = root / "target" / "release"
    release.mkdir(parents=True)
    manifest = root / "Cargo.toml"
    manifest.write_text(QUACK_MANIFEST)
    library = release / "libquack.so"
    library.write_bytes(LIBRARY_BYTES)
    messages = dependency_lines() + [
        artifact_line("quack", [str(library)]),
        finished_line(True),
    ]
    return {
        "root": root,
        "manifest": manifest,
        "library": library,
        "messages": messages,
    }


_FAKE_CARGO = textwrap.dedent("""\
    import sys
    from pathlib import Path

    here = Path(__file__).parent
    (here / "cargo_args.json").write_text(__import__("json").dumps(sys.argv[1:]))
    sys.stderr.write("   Compiling quack v0.4.0\\n")
    for line in (here / "cargo_stdout.jsonl").read_text().splitlines():
        print(line, flush=True)
    code = (here / "cargo_exit").read_text()
    if code == "kill":
        import os, signal
        os.kill(os.getpid(), signal.SIGKILL)
    sys.exit(int(code))
""")


@pytest.fixture()
def fake_cargo(tmp_path: Path):
    """
    Factory for a stand-in cargo: prints the given lines, exits with *code*
    (or kills itself with SIGKILL when code is "kill").

    Returns the argv prefix to run it with; the arguments it received are
    recorded in cargo_args.json next to the script.
    """
    bin_dir = tmp_path / "fake_cargo"
    bin_dir.mkdir()
    script = bin_dir / "cargo.py"
    script.write_text(_FAKE_CARGO)

    def make(lines: List[str], code="0") -> List[str]:
        (bin_dir / "cargo_stdout.jsonl").write_text("\n".join(lines) + "\n")
        (bin_dir / "cargo_exit").write_text(str(code))
        return [sys.executable, str(script)]

    make.args_file = bin_dir / "cargo_args.json"
    return make
