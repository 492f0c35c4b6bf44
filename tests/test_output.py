"""ProcessOutput end-to-end tests.

Test coverage:
- Buffered capture of stdout/stderr lines and exit codes
- Live redirection (buffers stay empty, per-stream order kept)
- Launch failures never raise
- Argument quoting reaches the child intact
- wait / wait(timeout) / wait_async, kill, exit callbacks
- Priority, dispose and context-manager behavior
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from process_output.config import Config
from process_output.errors import LaunchError
from process_output.output import (
    BufferedSink,
    LaunchSpec,
    LiveSink,
    ProcessOutput,
    ProcessState,
    launch,
    run,
    run_hidden_and_capture,
    run_visible,
)
from process_output.priority import PriorityClass
from process_output.quoting import quote_argument
from process_output.redirector import Redirector


class RecordingRedirector(Redirector):
    """Records lines and disposal calls."""

    def __init__(self) -> None:
        self.out: list[str] = []
        self.err: list[str] = []
        self.disposed = 0

    def write_line(self, line: str) -> None:
        self.out.append(line)

    def write_error_line(self, line: str) -> None:
        self.err.append(line)

    def dispose(self) -> None:
        self.disposed += 1


@pytest.fixture
def missing_exe(tmp_path: Path) -> str:
    return str(tmp_path / "no-such-program")


# =============================================================================
# LaunchSpec Tests
# =============================================================================


class TestLaunchSpec:
    """Test the LaunchSpec dataclass."""

    def test_frozen(self):
        spec = LaunchSpec("prog", ["a"])
        with pytest.raises(AttributeError):
            spec.executable = "other"  # type: ignore[misc]

    def test_arguments_copied_to_tuple(self):
        args = ["a", "b"]
        spec = LaunchSpec("prog", args)
        args.append("c")
        assert spec.arguments == ("a", "b")

    def test_env_read_only(self):
        spec = LaunchSpec("prog", env={"A": "1"})
        with pytest.raises(TypeError):
            spec.env["A"] = "2"  # type: ignore[index]

    def test_defaults(self):
        spec = LaunchSpec("prog")
        assert spec.arguments == ()
        assert spec.working_directory is None
        assert spec.env is None
        assert spec.visible is False
        assert spec.redirector is None
        assert spec.quote_args is True
        assert spec.encoding is None

    @pytest.mark.parametrize(
        "visible, with_redirector, expected",
        [
            (False, False, True),
            (False, True, True),
            (True, True, True),
            (True, False, False),
        ],
    )
    def test_redirects_output(self, visible: bool, with_redirector: bool, expected: bool):
        redirector = RecordingRedirector() if with_redirector else None
        spec = LaunchSpec("prog", visible=visible, redirector=redirector)
        assert spec.redirects_output is expected


# =============================================================================
# Buffered Capture Tests
# =============================================================================


class TestBufferedCapture:
    """Test capture into stdout_lines / stderr_lines."""

    def test_single_line(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--out", "hello") as output:
            assert output.wait(10)
            assert output.exit_code == 0
            assert output.stdout_lines == ["hello"]
            assert output.stderr_lines == []
            assert output.state is ProcessState.EXITED
            assert isinstance(output.sink, BufferedSink)

    def test_stderr_and_exit_code(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(
            python_exe, fake_tool, "--err", "bad thing", "--exit-code", "3"
        ) as output:
            assert output.wait(10)
            assert output.exit_code == 3
            assert output.stdout_lines == []
            assert output.stderr_lines == ["bad thing"]

    def test_per_stream_order(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--interleave", "50") as output:
            assert output.wait(10)
            assert output.stdout_lines == [f"out {i}" for i in range(50)]
            assert output.stderr_lines == [f"err {i}" for i in range(50)]

    def test_mixed_terminators(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(
            python_exe, fake_tool, "--raw", "a\\r\\nb\\nc\\rd"
        ) as output:
            assert output.wait(10)
            assert output.stdout_lines == ["a", "b", "c", "d"]

    def test_line_split_across_reads(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(
            python_exe, fake_tool, "--split-raw", "hello world\\n"
        ) as output:
            assert output.wait(10)
            assert output.stdout_lines == ["hello world"]

    def test_chunk_local_lines(self, python_exe: str, fake_tool: str):
        spec = LaunchSpec(python_exe, [fake_tool, "--split-raw", "hello world\\n"])
        with launch(spec, Config(chunk_local_lines=True)) as output:
            assert output.wait(10)
            assert output.stdout_lines == ["hello ", "world"]

    def test_snapshot_is_a_copy(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--out", "x") as output:
            assert output.wait(10)
            lines = output.stdout_lines
            lines.append("mutated")
            assert output.stdout_lines == ["x"]

    def test_working_directory_and_env(
        self, python_exe: str, fake_tool: str, tmp_path: Path
    ):
        output = run(
            python_exe,
            [fake_tool, "--echo-cwd", "--echo-env", "PROCOUT_OUTPUT_VAR"],
            working_directory=tmp_path,
            env={"PROCOUT_OUTPUT_VAR": "value with spaces"},
        )
        with output:
            assert output.wait(10)
            cwd_line, env_line = output.stdout_lines
            assert Path(cwd_line).resolve() == tmp_path.resolve()
            assert env_line == "value with spaces"

    def test_env_overlay_keeps_inherited(self, python_exe: str, fake_tool: str):
        output = run(
            python_exe,
            [fake_tool, "--echo-env", "PATH"],
            env={"PROCOUT_OTHER": "1"},
        )
        with output:
            assert output.wait(10)
            assert output.stdout_lines == [os.environ.get("PATH", "<unset>")]

    def test_streams_lock_independently(self):
        sink = BufferedSink()
        with sink._stdout_lock:
            writer = threading.Thread(target=sink.write_stderr, args=("err",))
            writer.start()
            writer.join(5)
            assert not writer.is_alive()
        assert sink.stderr_snapshot() == ["err"]
        assert sink.stdout_snapshot() == []


# =============================================================================
# Argument Quoting Tests
# =============================================================================


class TestArguments:
    """Test that arguments reach the child as given."""

    def test_quoted_arguments_round_trip(self, python_exe: str, fake_tool: str):
        args = ["a b", 'say "hi"', "", "trail\\", "C:\\dir name\\"]
        with run_hidden_and_capture(python_exe, fake_tool, "--echo-args", *args) as output:
            assert output.wait(10)
            assert output.stdout_lines == [f"[{a}]" for a in args]

    def test_none_arguments_skipped(self, python_exe: str, fake_tool: str):
        with run(python_exe, [fake_tool, None, "--echo-args", None, "x"]) as output:
            assert output.wait(10)
            assert output.stdout_lines == ["[x]"]

    def test_unquoted_arguments_joined_verbatim(self, python_exe: str, fake_tool: str):
        with run(
            python_exe, [fake_tool, "--echo-args", "a b"], quote_args=False
        ) as output:
            assert output.wait(10)
            assert output.stdout_lines == ["[a]", "[b]"]

    def test_path_executable_and_arguments(self, python_exe: str, fake_tool: str):
        with run(Path(python_exe), [Path(fake_tool), "--echo-args", Path("a b")]) as output:
            assert output.wait(10)
            assert output.exit_code == 0
            assert output.stdout_lines == ["[a b]"]
            assert output.command_line.startswith(quote_argument(python_exe))

    def test_command_line(self, python_exe: str, fake_tool: str):
        with run(python_exe, [fake_tool, "--out", "two words"]) as output:
            assert output.command_line == (
                f'{quote_argument(python_exe)} {quote_argument(fake_tool)} --out "two words"'
            )
            assert output.wait(10)


# =============================================================================
# Live Redirection Tests
# =============================================================================


class TestRedirection:
    """Test forwarding lines to a redirector."""

    def test_lines_go_only_to_redirector(self, python_exe: str, fake_tool: str):
        redirector = RecordingRedirector()
        spec = LaunchSpec(
            python_exe, [fake_tool, "--interleave", "20"], redirector=redirector
        )
        with launch(spec) as output:
            assert output.wait(10)
            assert isinstance(output.sink, LiveSink)
            assert output.redirector is redirector
            assert output.stdout_lines == []
            assert output.stderr_lines == []
            assert redirector.out == [f"out {i}" for i in range(20)]
            assert redirector.err == [f"err {i}" for i in range(20)]

    def test_visible_with_redirector_still_captures(self, python_exe: str, fake_tool: str):
        redirector = RecordingRedirector()
        with run(
            python_exe, [fake_tool, "--out", "shown"], visible=True, redirector=redirector
        ) as output:
            assert output.wait(10)
            assert redirector.out == ["shown"]

    def test_launch_failure_not_sent_to_redirector(self, missing_exe: str):
        redirector = RecordingRedirector()
        with run(missing_exe, redirector=redirector) as output:
            assert output.state is ProcessState.FAILED_TO_START
            assert redirector.out == []
            assert redirector.err == []
            assert len(output.stderr_lines) == 1

    def test_redirector_calls_serialized(self, python_exe: str, fake_tool: str):
        active = 0
        overlaps = 0
        lock = threading.Lock()

        class Checking(RecordingRedirector):
            def _enter(self) -> None:
                nonlocal active, overlaps
                with lock:
                    active += 1
                    if active > 1:
                        overlaps += 1

            def _leave(self) -> None:
                nonlocal active
                with lock:
                    active -= 1

            def write_line(self, line: str) -> None:
                self._enter()
                super().write_line(line)
                self._leave()

            def write_error_line(self, line: str) -> None:
                self._enter()
                super().write_error_line(line)
                self._leave()

        redirector = Checking()
        with run(python_exe, [fake_tool, "--interleave", "200"], redirector=redirector) as output:
            assert output.wait(10)
        assert overlaps == 0
        assert len(redirector.out) == 200
        assert len(redirector.err) == 200


# =============================================================================
# Launch Failure Tests
# =============================================================================


class TestLaunchFailure:
    """Test that a failed launch is recorded, not raised."""

    def test_missing_executable(self, missing_exe: str):
        output = run_hidden_and_capture(missing_exe)

        assert output.state is ProcessState.FAILED_TO_START
        assert not output.started
        assert output.pid is None
        assert output.exit_code is None
        assert output.stdout_lines == []
        assert len(output.stderr_lines) == 1
        assert output.stderr_lines[0]
        assert isinstance(output.launch_error, LaunchError)

    def test_operations_are_noops(self, missing_exe: str):
        output = run_hidden_and_capture(missing_exe)

        assert output.wait() is True
        assert output.wait(0) is True
        assert output.exited_event.is_set()
        output.kill()
        assert output.priority is PriorityClass.NORMAL
        output.priority = PriorityClass.HIGH
        assert output.exit_code is None
        output.dispose()

    def test_unknown_encoding(self, python_exe: str, fake_tool: str):
        output = launch(LaunchSpec(python_exe, [fake_tool], encoding="no-such-codec"))

        assert output.state is ProcessState.FAILED_TO_START
        assert output.pid is None
        assert output.stderr_lines[0].startswith("LookupError")

    def test_env_value_none(self, python_exe: str, fake_tool: str):
        output = run(python_exe, [fake_tool], env={"PROCOUT_TEST_VAR": None})

        assert output.state is ProcessState.FAILED_TO_START
        assert output.pid is None
        assert output.stderr_lines[0].startswith("TypeError")
        assert output.wait(0) is True

    def test_argument_of_wrong_type(self, python_exe: str, fake_tool: str):
        output = run(python_exe, [fake_tool, 42])

        assert output.state is ProcessState.FAILED_TO_START
        assert output.command_line == str(python_exe)
        assert isinstance(output.launch_error.cause, TypeError)
        assert len(output.stderr_lines) == 1

    def test_failure_is_logged(self, missing_exe: str, caplog: pytest.LogCaptureFixture):
        with caplog.at_level("WARNING", logger="process_output"):
            run_hidden_and_capture(missing_exe)
        assert any("Failed to start" in r.getMessage() for r in caplog.records)

    def test_exit_callbacks_not_called(self, missing_exe: str):
        calls: list[ProcessOutput] = []
        output = run_hidden_and_capture(missing_exe)
        output.add_exit_callback(calls.append)
        assert calls == []


# =============================================================================
# Wait / Kill Tests
# =============================================================================


class TestWaitAndKill:
    """Test waiting for and stopping processes."""

    def test_timed_wait_then_kill(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--sleep", "30") as output:
            assert output.wait(0.2) is False
            assert output.state is ProcessState.RUNNING
            assert output.exit_code is None

            output.kill()
            assert output.wait(10)
            assert output.exit_code is not None
            assert output.exit_code != 0
            assert output.state is ProcessState.EXITED

    def test_exit_code_fixed_after_exit(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--exit-code", "5") as output:
            assert output.wait(10)
            output.kill()
            assert output.wait(10)
            assert output.exit_code == 5

    def test_visible_without_redirector(self, python_exe: str, fake_tool: str):
        with run_visible(python_exe, fake_tool, "--exit-code", "4") as output:
            assert output.wait(10)
            assert output.exit_code == 4
            assert output.stdout_lines == []
            assert output.stderr_lines == []

    @pytest.mark.asyncio
    async def test_wait_async(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--out", "async") as output:
            assert await output.wait_async(10)
            assert output.exit_code == 0
            assert output.stdout_lines == ["async"]

    @pytest.mark.asyncio
    async def test_wait_async_timeout(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--sleep", "30") as output:
            assert await output.wait_async(0.2) is False
            output.kill()
            assert await output.wait_async(10)


# =============================================================================
# Exit Notification Tests
# =============================================================================


class TestExitNotification:
    """Test exit callbacks and the exited event."""

    def test_callback_fires_once(self, python_exe: str, fake_tool: str):
        calls: list[int | None] = []
        fired = threading.Event()

        def on_exit(output: ProcessOutput) -> None:
            calls.append(output.exit_code)
            fired.set()

        with run_hidden_and_capture(python_exe, fake_tool, "--sleep", "0.3") as output:
            output.add_exit_callback(on_exit)
            assert fired.wait(10)
            assert output.wait(10)
        assert calls == [0]

    def test_callback_after_exit_runs_immediately(self, python_exe: str, fake_tool: str):
        calls: list[ProcessOutput] = []
        with run_hidden_and_capture(python_exe, fake_tool) as output:
            assert output.wait(10)
            output.add_exit_callback(calls.append)
        assert calls == [output]

    def test_failing_callback_does_not_block_others(
        self, python_exe: str, fake_tool: str
    ):
        calls: list[str] = []
        done = threading.Event()

        def broken(output: ProcessOutput) -> None:
            raise RuntimeError("callback failed")

        def working(output: ProcessOutput) -> None:
            calls.append("ok")
            done.set()

        with run_hidden_and_capture(python_exe, fake_tool, "--sleep", "0.3") as output:
            output.add_exit_callback(broken)
            output.add_exit_callback(working)
            assert done.wait(10)
        assert calls == ["ok"]

    def test_exited_event(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool) as output:
            assert output.exited_event.wait(10)
            assert output.exit_code == 0


# =============================================================================
# Priority Tests
# =============================================================================


class TestPriority:
    """Test the priority property."""

    def test_lower_priority_of_running_process(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool, "--sleep", "30") as output:
            try:
                output.priority = PriorityClass.IDLE
                assert output.priority is PriorityClass.IDLE
            finally:
                output.kill()
                output.wait(10)

    def test_priority_after_exit(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool) as output:
            assert output.wait(10)
            assert output.priority is PriorityClass.NORMAL
            output.priority = PriorityClass.IDLE


# =============================================================================
# Dispose Tests
# =============================================================================


class TestDispose:
    """Test dispose() and the context manager."""

    def test_dispose_idempotent(self, python_exe: str, fake_tool: str):
        redirector = RecordingRedirector()
        output = run(python_exe, [fake_tool, "--out", "x"], redirector=redirector)
        assert output.wait(10)

        output.dispose()
        output.dispose()
        assert output.disposed
        assert redirector.disposed == 1

    def test_concurrent_dispose(self, python_exe: str, fake_tool: str):
        redirector = RecordingRedirector()
        output = run(python_exe, [fake_tool], redirector=redirector)
        assert output.wait(10)

        threads = [threading.Thread(target=output.dispose) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert redirector.disposed == 1

    def test_context_manager_disposes(self, python_exe: str, fake_tool: str):
        redirector = RecordingRedirector()
        with run(python_exe, [fake_tool], redirector=redirector) as output:
            assert output.wait(10)
            assert redirector.disposed == 0
        assert redirector.disposed == 1

    def test_redirector_without_dispose(self, python_exe: str, fake_tool: str):
        class Plain(Redirector):
            def write_line(self, line: str) -> None:
                pass

            def write_error_line(self, line: str) -> None:
                pass

        with run(python_exe, [fake_tool], redirector=Plain()) as output:
            assert output.wait(10)

    def test_dispose_failed_launch_disposes_redirector(self, missing_exe: str):
        redirector = RecordingRedirector()
        output = run(missing_exe, redirector=redirector)
        output.dispose()
        assert redirector.disposed == 1

    def test_repr(self, python_exe: str, fake_tool: str):
        with run_hidden_and_capture(python_exe, fake_tool) as output:
            assert output.wait(10)
            assert "state=exited" in repr(output)
            assert "exit_code=0" in repr(output)
