"""Tests for command execution and concurrent log capture."""

import io
import sys

import pytest

from provbuild.kernel.errors import CommandError, LogCaptureError
from provbuild.kernel.process import (
    OUTPUT_BANNER,
    CommandLogs,
    run_command,
    save_to_temp_files,
)

# stdout gets 10,000 lines, stderr gets one, written in whatever order the
# OS pipes allow. Either side blocking on the other would hang the test.
CHATTY_CHILD = (
    "import sys\n"
    "for i in range(10000):\n"
    "    sys.stdout.write('out %d\\n' % i)\n"
    "sys.stderr.write('the only error line\\n')\n"
)


def _py(code):
    return [sys.executable, "-c", code]


@pytest.fixture
def cleanup_logs():
    paths = []
    yield paths
    for p in paths:
        if p.exists():
            p.unlink()


class TestSaveToTempFiles:
    """Tests for draining several streams into temp files."""

    def test_files_in_stream_order(self, cleanup_logs):
        files = save_to_temp_files([io.BytesIO(b"a\nb\n"), io.BytesIO(b"c\n")])
        cleanup_logs.extend(files)
        assert [f.read_bytes() for f in files] == [b"a\nb\n", b"c\n"]

    def test_missing_final_newline_is_added(self, cleanup_logs):
        files = save_to_temp_files([io.BytesIO(b"x\ny")])
        cleanup_logs.extend(files)
        assert files[0].read_bytes() == b"x\ny\n"

    def test_empty_stream(self, cleanup_logs):
        files = save_to_temp_files([io.BytesIO(b"")])
        cleanup_logs.extend(files)
        assert files[0].read_bytes() == b""

    def test_verbose_echoes_every_line(self, cleanup_logs):
        echoed = []
        files = save_to_temp_files(
            [io.BytesIO(b"one\ntwo\n"), io.BytesIO(b"three\n")],
            verbose=True,
            echo=echoed.append,
        )
        cleanup_logs.extend(files)
        assert echoed[0] == OUTPUT_BANNER
        assert sorted(echoed[1:]) == ["one", "three", "two"]
        # Lines of one stream keep their relative order
        assert echoed.index("one") < echoed.index("two")

    def test_quiet_echoes_nothing(self, cleanup_logs):
        echoed = []
        files = save_to_temp_files([io.BytesIO(b"one\n")], echo=echoed.append)
        cleanup_logs.extend(files)
        assert echoed == []

    def test_write_failure_is_log_capture_error(self, monkeypatch):
        def broken_mkstemp(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("provbuild.kernel.process.tempfile.mkstemp", broken_mkstemp)
        with pytest.raises(LogCaptureError, match="disk full"):
            save_to_temp_files([io.BytesIO(b"a\n"), io.BytesIO(b"b\n")])

    def test_log_capture_error_is_an_io_error(self):
        assert issubclass(LogCaptureError, OSError)


class TestRunCommand:
    """Tests for running a child process with captured output."""

    def test_many_lines_against_one_line(self, tmp_path, cleanup_logs):
        logs = run_command(_py(CHATTY_CHILD), cwd=tmp_path)
        cleanup_logs.extend([logs.stdout_log, logs.stderr_log])

        out_lines = logs.stdout_log.read_text().splitlines()
        assert len(out_lines) == 10000
        assert out_lines == [f"out {i}" for i in range(10000)]
        assert logs.stderr_log.read_text() == "the only error line\n"

    def test_many_error_lines_against_one_line(self, tmp_path, cleanup_logs):
        code = (
            "import sys\n"
            "sys.stdout.write('single\\n')\n"
            "for i in range(10000):\n"
            "    sys.stderr.write('err %d\\n' % i)\n"
        )
        logs = run_command(_py(code), cwd=tmp_path)
        cleanup_logs.extend([logs.stdout_log, logs.stderr_log])
        assert logs.stdout_log.read_text() == "single\n"
        assert logs.stderr_log.read_text().splitlines() == [f"err {i}" for i in range(10000)]

    def test_verbose_echo_while_capturing(self, tmp_path, cleanup_logs):
        echoed = []
        logs = run_command(_py("print('hello')"), cwd=tmp_path, verbose=True, echo=echoed.append)
        cleanup_logs.extend([logs.stdout_log, logs.stderr_log])
        assert "hello" in echoed

    def test_runs_in_given_directory(self, tmp_path, cleanup_logs):
        logs = run_command(_py("import os; print(os.getcwd())"), cwd=tmp_path)
        cleanup_logs.extend([logs.stdout_log, logs.stderr_log])
        assert logs.stdout_log.read_text().strip() == str(tmp_path.resolve())

    def test_non_zero_exit_names_log_files(self, tmp_path, cleanup_logs):
        code = "import sys; print('partial'); sys.stderr.write('boom\\n'); sys.exit(3)"
        with pytest.raises(CommandError) as exc_info:
            run_command(_py(code), cwd=tmp_path)
        err = exc_info.value
        cleanup_logs.extend([err.stdout_log, err.stderr_log])

        assert err.returncode == 3
        assert err.stdout_log.read_text() == "partial\n"
        assert err.stderr_log.read_text() == "boom\n"
        assert str(err.stdout_log) in str(err)
        assert str(err.stderr_log) in str(err)

    def test_missing_program(self, tmp_path):
        with pytest.raises(CommandError) as exc_info:
            run_command(["provbuild-no-such-program"], cwd=tmp_path)
        assert exc_info.value.stdout_log is None
        assert exc_info.value.returncode is None


def test_command_logs_remove(tmp_path):
    out = tmp_path / "out.txt"
    err = tmp_path / "err.txt"
    out.write_text("x")
    logs = CommandLogs(stdout_log=out, stderr_log=err)  # err never existed
    logs.remove()
    logs.remove()
    assert not out.exists()
