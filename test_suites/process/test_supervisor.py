"""Server process supervisor tests: arguments, launch, lifecycle, shutdown."""

import io
import json
import os
import subprocess
import threading
import time

import pytest

import serverlib.process as process_module
from runharness.errors import ProcessLaunchError
from serverlib.process import (
    DEBUG_AGENT_FLAG,
    DEBUG_PORT,
    ServerProcessSupervisor,
    build_arguments,
)
from serverlib.protocol import SessionState


def _stage(tmp_path, source):
    run_dir = tmp_path / "run"
    run_dir.mkdir(exist_ok=True)
    runtime = run_dir / "server.jar"
    runtime.write_text(source)
    return run_dir, runtime


def _supervisor(fake_java, stdin=""):
    return ServerProcessSupervisor(
        java_binary=fake_java,
        stdin=io.StringIO(stdin),
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )


class TestArguments:
    """Tests for the launcher argument list."""

    def test_without_debug(self):
        assert build_arguments("server.jar", False) == ["-jar", "server.jar"]

    def test_with_debug_flag_first(self):
        args = build_arguments("server.jar", True)
        assert args == [DEBUG_AGENT_FLAG, "-jar", "server.jar"]
        assert args.count(DEBUG_AGENT_FLAG) == 1

    def test_debug_flag_binds_port_5005(self):
        assert DEBUG_PORT == 5005
        assert DEBUG_AGENT_FLAG == "-agentlib:jdwp=transport=dt_socket,server=y,suspend=n,address=5005"

    def test_command_prefixes_launcher(self):
        supervisor = ServerProcessSupervisor()
        assert supervisor.build_command("server.jar", False) == ["java", "-jar", "server.jar"]

    def test_launcher_string_with_options(self):
        supervisor = ServerProcessSupervisor(java_binary="java -Xmx2G")
        assert supervisor.build_command("server.jar", True) == [
            "java", "-Xmx2G", DEBUG_AGENT_FLAG, "-jar", "server.jar",
        ]

    def test_empty_launcher_rejected(self):
        with pytest.raises(ValueError):
            ServerProcessSupervisor(java_binary="")


@pytest.mark.process
class TestLaunch:
    """Tests for launch() against a fake launcher."""

    def test_process_receives_arguments_and_cwd(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "import os; print(os.getcwd())")
        supervisor = _supervisor(fake_java)

        session = supervisor.launch(runtime, run_dir, debug_enabled=False)
        assert session.wait(timeout=30) == 0

        args = json.loads((run_dir / "launch-args.json").read_text())
        assert args == ["-jar", "server.jar"]
        assert os.path.samefile(supervisor.stdout.getvalue().strip(), run_dir)

    def test_debug_launch_arguments(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "pass")
        session = _supervisor(fake_java).launch(runtime, run_dir, debug_enabled=True)
        session.wait(timeout=30)

        args = json.loads((run_dir / "launch-args.json").read_text())
        assert args == [DEBUG_AGENT_FLAG, "-jar", "server.jar"]

    def test_wait_returns_exit_code(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "import sys; sys.exit(7)")
        session = _supervisor(fake_java).launch(runtime, run_dir)

        assert session.wait(timeout=30) == 7
        assert session.exit_code == 7
        assert session.exit_code == session.process.returncode

    def test_launch_failure_starts_no_relays(self, tmp_path):
        run_dir, runtime = _stage(tmp_path, "pass")
        supervisor = ServerProcessSupervisor(
            java_binary=[str(tmp_path / "no-such-java")],
            stdin=io.StringIO(),
            stdout=io.StringIO(),
            stderr=io.StringIO(),
        )
        before = {t.name for t in threading.enumerate()}

        with pytest.raises(ProcessLaunchError) as excinfo:
            supervisor.launch(runtime, run_dir)

        assert excinfo.value.command[0] == str(tmp_path / "no-such-java")
        assert isinstance(excinfo.value.cause, OSError)
        started = {t.name for t in threading.enumerate()} - before
        assert not any(name.startswith("relay-") for name in started)


@pytest.mark.process
class TestSessionLifecycle:
    """NOT_STARTED -> RUNNING -> EXITED, no restart."""

    def test_state_transitions(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "import sys; sys.stdin.read()")
        supervisor = _supervisor(fake_java)
        command = supervisor.build_command(runtime.name, False)
        session = process_module.ProcessSession(
            command, run_dir,
            stdin=supervisor.stdin, stdout=supervisor.stdout, stderr=supervisor.stderr,
        )
        assert session.state == SessionState.NOT_STARTED
        with pytest.raises(RuntimeError):
            session.wait()

        session.start()
        assert session.state == SessionState.RUNNING
        assert session.pid is not None
        assert len(session.relays) == 3

        code = session.wait(timeout=30)
        assert session.state == SessionState.EXITED
        assert session.wait() == code
        assert not session.is_running()

    def test_session_cannot_restart(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "pass")
        session = _supervisor(fake_java).launch(runtime, run_dir)
        session.wait(timeout=30)

        with pytest.raises(RuntimeError):
            session.start()

    def test_wait_timeout_keeps_running(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "import time; time.sleep(30)")
        session = _supervisor(fake_java).launch(runtime, run_dir)
        try:
            with pytest.raises(subprocess.TimeoutExpired):
                session.wait(timeout=0.2)
            assert session.state == SessionState.RUNNING
        finally:
            session.terminate()
            session.wait(timeout=30)

    def test_relays_finish_after_wait(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "print('done')")
        session = _supervisor(fake_java).launch(runtime, run_dir)
        session.wait(timeout=30)

        stdout_relay, stderr_relay = session.relays[:2]
        assert not stdout_relay.is_alive()
        assert not stderr_relay.is_alive()

    def test_wait_returns_while_grandchild_holds_output(self, tmp_path, fake_java, monkeypatch):
        monkeypatch.setattr(process_module.ProcessSession, "OUTPUT_JOIN_TIMEOUT", 0.5)
        run_dir, runtime = _stage(
            tmp_path,
            "import subprocess, sys\n"
            "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(5)'])\n"
            "print('parent done')\n",
        )
        session = _supervisor(fake_java).launch(runtime, run_dir)

        started = time.monotonic()
        assert session.wait(timeout=30) == 0
        assert time.monotonic() - started < 4
        assert session.state == SessionState.EXITED


@pytest.mark.process
class TestShutdownHook:
    """Best-effort termination when the supervising process ends."""

    def test_hook_terminates_running_child(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "import time; time.sleep(30)")
        session = _supervisor(fake_java).launch(runtime, run_dir)
        assert session.is_running()

        session._shutdown_hook()

        code = session.wait(timeout=30)
        assert code != 0

    def test_terminate_does_not_wait(self, tmp_path, fake_java, monkeypatch):
        run_dir, runtime = _stage(tmp_path, "import time; time.sleep(30)")
        session = _supervisor(fake_java).launch(runtime, run_dir)
        waited = []
        original_wait = session.process.wait
        monkeypatch.setattr(session.process, "wait", lambda *a, **kw: waited.append(1))

        session.terminate()

        assert waited == []
        monkeypatch.setattr(session.process, "wait", original_wait)
        session.wait(timeout=30)

    def test_terminate_after_exit_is_noop(self, tmp_path, fake_java):
        run_dir, runtime = _stage(tmp_path, "pass")
        session = _supervisor(fake_java).launch(runtime, run_dir)
        session.wait(timeout=30)

        session.terminate()
        session._shutdown_hook()
        assert session.exit_code == 0

    def test_hook_registered_until_exit(self, tmp_path, fake_java, monkeypatch):
        registered = []
        monkeypatch.setattr(process_module.atexit, "register", registered.append)
        monkeypatch.setattr(process_module.atexit, "unregister", registered.remove)
        run_dir, runtime = _stage(tmp_path, "pass")

        session = _supervisor(fake_java).launch(runtime, run_dir)
        assert registered == [session._shutdown_hook]

        session.wait(timeout=30)
        assert registered == []
