"""
test_runner — Packager stages end to end.

Build output comes from fixture message streams or from a stand-in cargo
process, so no Rust toolchain is needed.
"""
import json
import sys

import pytest

from conftest import artifact_line, finished_line

from duckdb_ext_tools import runner
from duckdb_ext_tools.core.footer import FOOTER_SIZE, decode, encode
from duckdb_ext_tools.core.introspect import PackOverrides
from duckdb_ext_tools.errors import (
    ArtifactNotFound,
    BuildFailed,
    ConfigError,
    EngineVersionUnresolved,
    FieldTooLong,
    IoError,
)
from duckdb_ext_tools.io.schema import ExtensionMetadata
from duckdb_ext_tools.runner import Packager, Stage, pack_library, stream_build_output

E2E_METADATA = ExtensionMetadata(
    abi_type="C_STRUCT_UNSTABLE",
    extension_version="v0.4.0",
    platform="osx_arm64",
    engine_version="v1.4.2",
)


@pytest.fixture()
def use_fake_cargo(monkeypatch, fake_cargo):
    """Route Packager's cargo invocation to the stand-in script."""
    def install(lines, code="0"):
        prefix = fake_cargo(lines, code)
        monkeypatch.setattr(
            runner,
            "cargo_build_command",
            lambda cargo, manifest, args: prefix + ["build", *args],
        )
    return install


class TestEndToEnd:

    def test_scenario_from_messages(self, quack_project):
        packager = Packager(
            manifest_path=quack_project["manifest"],
            overrides=PackOverrides(platform="osx_arm64"),
            build=False,
            messages=quack_project["messages"],
        )
        result = packager.run()

        expected = quack_project["library"].read_bytes() + encode(E2E_METADATA)
        out = quack_project["library"].parent / "quack.duckdb_extension"
        assert result.extension_path == out
        assert out.read_bytes() == expected
        assert result.metadata == E2E_METADATA
        assert packager.stage == Stage.DONE
        assert packager.history == [
            Stage.IDLE, Stage.LOCATING, Stage.RESOLVING,
            Stage.ENCODING, Stage.WRITING, Stage.DONE,
        ]

    def test_scenario_with_build(self, quack_project, use_fake_cargo, fake_cargo):
        use_fake_cargo(quack_project["messages"])
        packager = Packager(
            manifest_path=quack_project["manifest"],
            overrides=PackOverrides(platform="osx_arm64"),
            build_args=["--release"],
        )
        result = packager.run()

        assert decode(result.extension_path.read_bytes()) == E2E_METADATA
        assert packager.history[:3] == [Stage.IDLE, Stage.BUILDING, Stage.LOCATING]
        assert json.loads(fake_cargo.args_file.read_text()) == ["build", "--release"]

    def test_rerun_is_byte_identical(self, quack_project):
        def once():
            return Packager(
                manifest_path=quack_project["manifest"],
                overrides=PackOverrides(platform="osx_arm64"),
                build=False,
                messages=quack_project["messages"],
            ).run().extension_path.read_bytes()

        assert once() == once()

    def test_report_written(self, quack_project, tmp_path):
        report = tmp_path / "report.json"
        result = Packager(
            manifest_path=quack_project["manifest"],
            overrides=PackOverrides(platform="osx_arm64"),
            build=False,
            messages=quack_project["messages"],
            report_path=report,
        ).run()
        doc = json.loads(report.read_text())
        assert result.report_path == report
        assert doc["metadata"]["extension_version"] == "v0.4.0"
        assert doc["library"]["format"] == "UNKNOWN"
        assert doc["extension_size_bytes"] == quack_project["library"].stat().st_size + FOOTER_SIZE

    def test_manifest_found_from_subdirectory(self, quack_project, monkeypatch):
        src = quack_project["root"] / "src"
        src.mkdir()
        monkeypatch.chdir(src)
        result = Packager(
            overrides=PackOverrides(platform="osx_arm64"),
            build=False,
            messages=quack_project["messages"],
        ).run()
        assert decode(result.extension_path.read_bytes()) == E2E_METADATA


class TestFailures:

    def test_build_failure(self, quack_project, use_fake_cargo):
        use_fake_cargo([finished_line(False)], code="101")
        packager = Packager(manifest_path=quack_project["manifest"])
        with pytest.raises(BuildFailed) as exc:
            packager.run()
        assert exc.value.returncode == 101
        assert packager.stage == Stage.FAILED
        assert isinstance(packager.failure, BuildFailed)
        assert not (quack_project["library"].parent / "quack.duckdb_extension").exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_killed_build(self, quack_project, use_fake_cargo):
        use_fake_cargo(quack_project["messages"], code="kill")
        with pytest.raises(BuildFailed) as exc:
            Packager(manifest_path=quack_project["manifest"]).run()
        assert exc.value.returncode < 0

    def test_cargo_missing(self, quack_project, tmp_path):
        packager = Packager(
            manifest_path=quack_project["manifest"],
            environ={"CARGO": str(tmp_path / "no-such-cargo")},
        )
        with pytest.raises(BuildFailed):
            packager.run()

    def test_no_artifact(self, quack_project):
        packager = Packager(
            manifest_path=quack_project["manifest"],
            build=False,
            messages=[finished_line()],
        )
        with pytest.raises(ArtifactNotFound):
            packager.run()
        assert packager.history[-2:] == [Stage.LOCATING, Stage.FAILED]

    def test_engine_unresolved(self, quack_project):
        quack_project["manifest"].write_text(
            '[package]\nname = "quack"\nversion = "0.4.0"\n'
        )
        with pytest.raises(EngineVersionUnresolved):
            Packager(
                manifest_path=quack_project["manifest"],
                overrides=PackOverrides(platform="osx_arm64"),
                build=False,
                messages=quack_project["messages"],
            ).run()

    def test_no_messages_without_build(self, quack_project):
        with pytest.raises(ConfigError):
            Packager(manifest_path=quack_project["manifest"], build=False).run()

    def test_single_use(self, quack_project):
        packager = Packager(
            manifest_path=quack_project["manifest"],
            overrides=PackOverrides(platform="osx_arm64"),
            build=False,
            messages=quack_project["messages"],
        )
        packager.run()
        with pytest.raises(RuntimeError):
            packager.run()


class TestStreamBuildOutput:

    def test_yields_lines_then_checks_status(self, fake_cargo):
        cmd = fake_cargo([artifact_line("quack", ["/t/libquack.so"]), finished_line()])
        lines = list(stream_build_output(cmd))
        assert len(lines) == 2
        assert json.loads(lines[0])["reason"] == "compiler-artifact"

    def test_nonzero_after_output(self, fake_cargo):
        cmd = fake_cargo([finished_line(False)], code="2")
        stream = stream_build_output(cmd)
        assert json.loads(next(stream))["reason"] == "build-finished"
        with pytest.raises(BuildFailed):
            next(stream)

    def test_early_close_reaps_process(self, fake_cargo):
        cmd = fake_cargo([finished_line()] * 5)
        stream = stream_build_output(cmd)
        next(stream)
        stream.close()


class TestPackLibrary:

    def test_overflow_writes_nothing(self, quack_project, tmp_path):
        out = tmp_path / "q.duckdb_extension"
        bad = E2E_METADATA.model_copy(update={"platform": "p" * 33})
        with pytest.raises(FieldTooLong):
            pack_library(quack_project["library"], out, bad)
        assert not out.exists()

    def test_report_read_back_failure_is_io_error(self, quack_project, tmp_path, monkeypatch):
        def unreadable(path):
            raise PermissionError(f"denied: {path}")

        monkeypatch.setattr(runner, "sha256_file", unreadable)
        with pytest.raises(IoError):
            pack_library(
                quack_project["library"],
                tmp_path / "q.duckdb_extension",
                E2E_METADATA,
                report_path=tmp_path / "report.json",
            )
        assert not (tmp_path / "report.json").exists()

    def test_warns_on_existing_footer(self, quack_project, tmp_path, caplog):
        first = pack_library(quack_project["library"], tmp_path / "a.duckdb_extension", E2E_METADATA)
        pack_library(first.extension_path, tmp_path / "b.duckdb_extension", E2E_METADATA)
        assert "already ends with an extension footer" in caplog.text
