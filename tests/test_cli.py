"""
CLI tests — main(argv) against source files in tmp_path.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from stackvm.cli import main


@pytest.fixture
def write_src(tmp_path):
    def _write(text, name="prog.svm"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


class TestRun:
    """Exit status and printed output."""

    def test_halt(self, write_src, capsys):
        rc = main([write_src("push 21\npush 21\nadd\nhalt\n")])
        out = capsys.readouterr().out
        assert rc == 0
        assert "Stack: [I32(42)]" in out

    def test_out_to_stdout(self, write_src, capsys):
        rc = main([write_src('out 1, "hi"\nout 2, true\nhalt\n')])
        out = capsys.readouterr().out
        assert rc == 0
        assert "[port 1] hi" in out
        assert "[port 2] true" in out

    def test_fault_exit(self, write_src, capsys):
        rc = main([write_src("push 1\npop\npop\nhalt\n")])
        err = capsys.readouterr().err
        assert rc == 1
        assert "Fault: StackUnderflow at pc=2" in err

    def test_step_limit(self, write_src, capsys):
        rc = main([write_src("loop: jmp loop\n"), "--max-steps", "10"])
        assert rc == 1
        assert "StepLimitExceeded" in capsys.readouterr().err

    def test_listing_and_trace(self, write_src, capsys):
        rc = main([write_src("jmp end\npush 1\nend: halt\n"), "--listing", "--trace"])
        out = capsys.readouterr().out
        assert rc == 0
        assert "end:" in out
        assert "0000  jmp Address(2)" in out
        assert "0002: halt" in out

    def test_strict_profile_float_div(self, write_src, capsys):
        src = write_src("push 1.0\npush 0.0\ndiv\nhalt\n")
        assert main([src]) == 0
        assert "F64(inf)" in capsys.readouterr().out
        assert main([src, "--profile", "strict"]) == 1
        assert "DivisionByZero" in capsys.readouterr().err


class TestBuildErrors:

    def test_unresolved_label_warns(self, write_src, capsys):
        """Non-strict: warning, program still runs."""
        rc = main([write_src("halt\njmp nowhere\n")])
        err = capsys.readouterr().err
        assert rc == 0
        assert "Warning: cannot resolve 'nowhere'" in err

    def test_unresolved_label_strict(self, write_src, capsys):
        rc = main([write_src("halt\njmp nowhere\n"), "--strict"])
        assert rc == 1
        assert "Build error" in capsys.readouterr().err

    def test_syntax_error(self, write_src, capsys):
        rc = main([write_src("push 1\nbogus\n")])
        assert rc == 2
        assert "Unknown mnemonic: bogus" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        rc = main([str(tmp_path / "missing.svm")])
        assert rc == 2
        assert "Error reading" in capsys.readouterr().err

    def test_bad_serial_url(self, write_src, capsys):
        rc = main([write_src("halt\n"), "--serial", "nosuchproto://x"])
        assert rc == 2
        assert "Channel error" in capsys.readouterr().err

    def test_unknown_profile(self, write_src):
        with pytest.raises(SystemExit):
            main([write_src("halt\n"), "--profile", "turbo"])

    def test_bad_max_steps(self, write_src, capsys):
        """Non-positive step ceilings are rejected as usage errors."""
        src = write_src("halt\n")
        for value in ("0", "-5", "ten"):
            with pytest.raises(SystemExit) as exc:
                main([src, "--max-steps", value])
            assert exc.value.code == 2
        assert "--max-steps" in capsys.readouterr().err
