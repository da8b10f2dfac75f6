"""
Command-line tests for wheelc.

Exercises the argparse front end in-process: debug dumps, --emit, error
exit statuses and the toolchain options handed to compile_file.
"""

import pytest
import wheelc


def _run(argv, capsys):
    with pytest.raises(SystemExit) as exc:
        wheelc.main(argv)
    out, err = capsys.readouterr()
    return exc.value.code, out, err


@pytest.fixture
def hello(tmp_path):
    path = tmp_path / "hello.wheel"
    path.write_text('let x = 2 + 3;\nprint("hi");\nprint(x);\n', encoding="utf-8")
    return path


class TestDumps:
    def test_tokens(self, hello, capsys):
        code, out, _ = _run([str(hello), "--tokens"], capsys)
        assert code == 0
        assert "Token(KW_LET, 'let', L1:1)" in out
        assert "EOF" in out

    def test_ast(self, hello, capsys):
        code, out, _ = _run([str(hello), "--ast"], capsys)
        assert code == 0
        assert "Program:" in out
        assert "Let:" in out
        assert "name: x" in out

    def test_emit_asm(self, hello, capsys):
        code, out, _ = _run([str(hello), "--emit", "asm"], capsys)
        assert code == 0
        assert "_start:" in out
        assert "mov rax, 5" in out

    def test_emit_ir(self, hello, capsys):
        code, out, _ = _run([str(hello), "--emit", "ir",
                             "--triple", "x86_64-unknown-linux-gnu"], capsys)
        assert code == 0
        assert "wheel_main" in out


class TestErrors:
    def test_missing_file(self, tmp_path, capsys):
        code, _, err = _run([str(tmp_path / "nope.wheel")], capsys)
        assert code == 1
        assert "File not found" in err

    def test_resolve_error_exit_1(self, tmp_path, capsys):
        path = tmp_path / "bad.wheel"
        path.write_text("print(y);\n", encoding="utf-8")
        code, _, err = _run([str(path), "--emit", "asm"], capsys)
        assert code == 1
        assert "Resolve error at L1:7" in err

    def test_lex_error_exit_1(self, tmp_path, capsys):
        path = tmp_path / "bad.wheel"
        path.write_text('print("open);\n', encoding="utf-8")
        code, _, err = _run([str(path)], capsys)
        assert code == 1
        assert "Lexer error at L1:7" in err

    def test_bad_extern_signature(self, hello, capsys):
        code, _, err = _run([str(hello), "--extern", "beep(float)"], capsys)
        assert code == 1
        assert "unknown type" in err

    @pytest.mark.parametrize("sig", ["free(int) -> int", "main() -> int", "beep() = str_0"])
    def test_reserved_extern_symbol_exit_1(self, hello, capsys, sig):
        code, _, err = _run([str(hello), "--emit", "ir", "--extern", sig], capsys)
        assert code == 1
        assert "reserved" in err
        assert "Internal compiler error" not in err

    def test_internal_error_exit_2(self, hello, capsys, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("kaboom")
        monkeypatch.setattr(wheelc, "compile_source", explode)
        code, _, err = _run([str(hello), "--emit", "asm"], capsys)
        assert code == 2
        assert "Internal compiler error: kaboom" in err


class TestBuildOptions:
    def test_options_reach_compile_file(self, hello, tmp_path, capsys, monkeypatch):
        seen = {}

        def fake_compile_file(path, output, mode, **kwargs):
            seen.update(path=path, output=output, mode=mode, **kwargs)
            return output

        monkeypatch.setattr(wheelc, "compile_file", fake_compile_file)
        wheelc.main([str(hello), "-o", str(tmp_path / "hello"), "--mode", "gb",
                     "--extern", "beep(int) -> int", "--link", "beep.o",
                     "--timeout", "7", "--keep-temps", str(tmp_path / "keep")])
        assert seen["mode"] == "gb"
        assert seen["output"] == str(tmp_path / "hello")
        assert seen["toolchain"].link_objects == ["beep.o"]
        assert seen["toolchain"].timeout == 7.0
        assert seen["keep_temps"] == tmp_path / "keep"
        assert seen["source"] == hello.read_text(encoding="utf-8")
        assert "beep" in seen["externs"]

