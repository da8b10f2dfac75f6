"""
External toolchain stage for the Wheel compiler.

Turns generated text into a finished artifact by running black-box tools:

  ge:  as --64 -> ld                       ELF executable
  gb:  as --64 -> ld -> objcopy -O binary  flat binary
  ll:  clang -O2 program.ll                native executable via LLVM

Intermediate files live in a temporary directory that is removed on every
exit path; ``keep_temps`` copies them somewhere first. Every invocation is
synchronous with captured output and a timeout.
"""

from __future__ import annotations
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import CompileError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


class ToolchainError(CompileError):
    stage = "Toolchain"

    def __init__(self, message: str, tool: str = "", argv: Sequence[str] = (),
                 returncode: Optional[int] = None, stderr: str = ""):
        self.tool = tool
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        detail = message
        if stderr.strip():
            detail += "\n" + stderr.rstrip()
        super().__init__(detail)


def _split(value: str) -> List[str]:
    return shlex.split(value)


@dataclass
class Toolchain:
    """Commands and settings used to finish a compilation."""
    assembler: List[str] = field(default_factory=lambda: ["as"])
    linker: List[str] = field(default_factory=lambda: ["ld"])
    objcopy: List[str] = field(default_factory=lambda: ["objcopy"])
    cc: List[str] = field(default_factory=lambda: ["clang"])
    cc_flags: List[str] = field(default_factory=lambda: ["-O2"])
    link_objects: List[str] = field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> Toolchain:
        """Defaults overridden by WHEELC_* environment variables."""
        env = os.environ if environ is None else environ
        tc = cls()
        if env.get("WHEELC_AS"):
            tc.assembler = _split(env["WHEELC_AS"])
        if env.get("WHEELC_LD"):
            tc.linker = _split(env["WHEELC_LD"])
        if env.get("WHEELC_OBJCOPY"):
            tc.objcopy = _split(env["WHEELC_OBJCOPY"])
        cc = env.get("WHEELC_CC") or env.get("CC")
        if cc:
            tc.cc = _split(cc)
        if env.get("WHEELC_CFLAGS") is not None:
            tc.cc_flags = _split(env["WHEELC_CFLAGS"])
        if env.get("WHEELC_TOOL_TIMEOUT"):
            try:
                tc.timeout = float(env["WHEELC_TOOL_TIMEOUT"])
            except ValueError:
                raise ToolchainError(
                    f"WHEELC_TOOL_TIMEOUT must be a number of seconds, "
                    f"got {env['WHEELC_TOOL_TIMEOUT']!r}") from None
        return tc

    def describe(self) -> str:
        return (f"as={shlex.join(self.assembler)} ld={shlex.join(self.linker)} "
                f"objcopy={shlex.join(self.objcopy)} cc={shlex.join(self.cc)}")


def run_tool(argv: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> subprocess.CompletedProcess:
    """Run one external tool; any failure becomes a ToolchainError."""
    tool = os.path.basename(argv[0])
    log.debug("Running: %s", shlex.join(argv))
    try:
        proc = subprocess.run(list(argv), capture_output=True, text=True,
                              timeout=timeout, check=False)
    except FileNotFoundError:
        raise ToolchainError(f"{tool} not found (is it installed and on PATH?)",
                             tool, argv) from None
    except subprocess.TimeoutExpired as e:
        stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
        raise ToolchainError(f"{tool} timed out after {timeout:g}s", tool, argv,
                             stderr=stderr) from None
    except OSError as e:
        raise ToolchainError(f"cannot run {tool}: {e}", tool, argv) from None

    if proc.returncode != 0:
        raise ToolchainError(f"{tool} failed with exit status {proc.returncode}",
                             tool, argv, proc.returncode, proc.stderr or "")
    if proc.stderr:
        log.debug("%s: %s", tool, proc.stderr.rstrip())
    return proc


def _keep(files: Sequence[Path], keep_temps: Optional[Path]):
    if keep_temps is None:
        return
    keep_temps.mkdir(parents=True, exist_ok=True)
    for f in files:
        if f.exists():
            shutil.copy2(f, keep_temps / f.name)
            log.info("Kept %s", keep_temps / f.name)


def _install(built: Path, output: Path):
    """Copy the linked image to *output* and mark it executable."""
    try:
        shutil.copyfile(built, output)
        output.chmod(0o755)
    except OSError as e:
        raise ToolchainError(f"cannot write {output}: {e.strerror or e}") from None


def build_native(asm_text: str, output: Path, *, flat: bool = False,
                 toolchain: Optional[Toolchain] = None,
                 keep_temps: Optional[Path] = None) -> Path:
    """Assemble and link x86-64 assembly; ``flat`` strips it to a raw binary."""
    tc = toolchain or Toolchain.from_env()
    output = Path(output)
    with tempfile.TemporaryDirectory(prefix="wheelc-") as tmp:
        tmpdir = Path(tmp)
        asm_path = tmpdir / "program.s"
        obj_path = tmpdir / "program.o"
        elf_path = tmpdir / "program.elf"
        asm_path.write_text(asm_text, encoding="utf-8")
        try:
            run_tool(tc.assembler + ["--64", "-o", str(obj_path), str(asm_path)], tc.timeout)
            run_tool(tc.linker + ["-o", str(elf_path), str(obj_path)] + tc.link_objects,
                     tc.timeout)
            if flat:
                run_tool(tc.objcopy + ["-O", "binary", str(elf_path), str(output)],
                         tc.timeout)
            else:
                _install(elf_path, output)
        finally:
            _keep([asm_path, obj_path, elf_path], keep_temps)
    log.info("Wrote %s", output)
    return output


def build_ir(ir_text: str, output: Path, *,
             toolchain: Optional[Toolchain] = None,
             keep_temps: Optional[Path] = None) -> Path:
    """Compile and link a textual LLVM module with the C compiler driver."""
    tc = toolchain or Toolchain.from_env()
    output = Path(output)
    with tempfile.TemporaryDirectory(prefix="wheelc-") as tmp:
        ll_path = Path(tmp) / "program.ll"
        ll_path.write_text(ir_text, encoding="utf-8")
        try:
            run_tool(tc.cc + tc.cc_flags + ["-Wno-override-module", "-o", str(output),
                                            str(ll_path)] + tc.link_objects,
                     tc.timeout)
        finally:
            _keep([ll_path], keep_temps)
    log.info("Wrote %s", output)
    return output
