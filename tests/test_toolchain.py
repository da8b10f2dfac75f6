"""
Toolchain stage tests for the Wheel compiler.

External tools are stubbed by replacing subprocess.run, so these tests run
without as/ld/objcopy/clang installed.
"""

import subprocess
from pathlib import Path

import pytest
from wheel_compiler import toolchain as tc_mod
from wheel_compiler.toolchain import (
    Toolchain, ToolchainError, build_ir, build_native, run_tool,
)


class FakeRun:
    """Records every argv and fakes the output files tools would write."""

    def __init__(self, fail_tool=None, returncode=1, stderr="boom"):
        self.calls = []
        self.fail_tool = fail_tool
        self.returncode = returncode
        self.stderr = stderr
        self.temp_dirs = set()

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        if "-o" in argv:
            out = Path(argv[argv.index("-o") + 1])
            self.temp_dirs.add(out.parent)
            out.write_bytes(b"\x7fELF")
        if argv[0] == "objcopy":
            Path(argv[-1]).write_bytes(b"\x90")
        if argv[0] == self.fail_tool:
            return subprocess.CompletedProcess(argv, self.returncode, "", self.stderr)
        return subprocess.CompletedProcess(argv, 0, "", "")


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(tc_mod.subprocess, "run", fake)
    return fake


# ─── Configuration ────────────────────────

class TestConfig:
    def test_defaults(self):
        tc = Toolchain.from_env({})
        assert tc.assembler == ["as"]
        assert tc.cc == ["clang"]
        assert tc.cc_flags == ["-O2"]
        assert tc.timeout == 120.0

    def test_env_overrides(self):
        tc = Toolchain.from_env({
            "WHEELC_AS": "x86_64-linux-gnu-as",
            "CC": "gcc -fno-pie",
            "WHEELC_TOOL_TIMEOUT": "5",
            "WHEELC_CFLAGS": "-O0 -g",
        })
        assert tc.assembler == ["x86_64-linux-gnu-as"]
        assert tc.cc == ["gcc", "-fno-pie"]
        assert tc.timeout == 5.0
        assert tc.cc_flags == ["-O0", "-g"]

    def test_wheelc_cc_wins_over_cc(self):
        tc = Toolchain.from_env({"WHEELC_CC": "clang-18", "CC": "gcc"})
        assert tc.cc == ["clang-18"]

    def test_bad_timeout(self):
        with pytest.raises(ToolchainError):
            Toolchain.from_env({"WHEELC_TOOL_TIMEOUT": "soon"})


# ─── Running tools ────────────────────────

class TestRunTool:
    def test_nonzero_exit_carries_stderr(self, monkeypatch):
        monkeypatch.setattr(tc_mod.subprocess, "run", FakeRun(fail_tool="ld", stderr="undefined reference"))
        with pytest.raises(ToolchainError) as exc:
            run_tool(["ld", "-o", "/dev/null"])
        assert exc.value.returncode == 1
        assert exc.value.tool == "ld"
        assert "undefined reference" in str(exc.value)

    def test_missing_tool(self, monkeypatch):
        def missing(argv, **kwargs):
            raise FileNotFoundError(argv[0])
        monkeypatch.setattr(tc_mod.subprocess, "run", missing)
        with pytest.raises(ToolchainError) as exc:
            run_tool(["no-such-assembler"])
        assert "not found" in str(exc.value)

    def test_timeout(self, monkeypatch):
        def slow(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"])
        monkeypatch.setattr(tc_mod.subprocess, "run", slow)
        with pytest.raises(ToolchainError) as exc:
            run_tool(["clang"], timeout=0.5)
        assert "timed out" in str(exc.value)


# ─── Builds ───────────────────────────────

class TestBuilds:
    def test_native_elf(self, fake_run, tmp_path):
        out = tmp_path / "prog"
        build_native("nop\n", out, toolchain=Toolchain())
        assert [c[0] for c in fake_run.calls] == ["as", "ld"]
        assert fake_run.calls[0][1] == "--64"
        assert out.read_bytes() == b"\x7fELF"

    def test_native_flat_binary(self, fake_run, tmp_path):
        out = tmp_path / "prog.bin"
        build_native("nop\n", out, flat=True, toolchain=Toolchain())
        assert [c[0] for c in fake_run.calls] == ["as", "ld", "objcopy"]
        assert fake_run.calls[2][1:3] == ["-O", "binary"]
        assert out.read_bytes() == b"\x90"

    def test_ir_build(self, fake_run, tmp_path):
        out = tmp_path / "prog"
        build_ir("; module", out, toolchain=Toolchain(link_objects=["shim.o"]))
        argv = fake_run.calls[0]
        assert argv[:2] == ["clang", "-O2"]
        assert argv[-2].endswith("program.ll")
        assert argv[-1] == "shim.o"

    def test_temps_removed(self, fake_run, tmp_path):
        build_native("nop\n", tmp_path / "prog", toolchain=Toolchain())
        assert fake_run.temp_dirs
        for d in fake_run.temp_dirs:
            if d != tmp_path:
                assert not d.exists()

    def test_temps_removed_on_failure(self, monkeypatch, tmp_path):
        fake = FakeRun(fail_tool="ld")
        monkeypatch.setattr(tc_mod.subprocess, "run", fake)
        with pytest.raises(ToolchainError):
            build_native("nop\n", tmp_path / "prog", toolchain=Toolchain())
        assert not (tmp_path / "prog").exists()
        for d in fake.temp_dirs:
            assert not d.exists()

    def test_unwritable_output_is_toolchain_error(self, fake_run, tmp_path):
        out = tmp_path / "missing-dir" / "prog"
        with pytest.raises(ToolchainError) as exc:
            build_native("nop\n", out, toolchain=Toolchain())
        assert "cannot write" in str(exc.value)
        assert [c[0] for c in fake_run.calls] == ["as", "ld"]

    def test_keep_temps(self, fake_run, tmp_path):
        keep = tmp_path / "keep"
        build_native("nop\n", tmp_path / "prog", toolchain=Toolchain(), keep_temps=keep)
        assert (keep / "program.s").read_text() == "nop\n"
        assert (keep / "program.o").exists()
