"""Server process supervision and console bridging.

A ProcessSession owns one child process plus three relay threads:

- relay-stdout copies the child's stdout to the console, line by line
- relay-stderr does the same for stderr
- relay-stdin forwards console input lines to the child's stdin

Line terminators pass through unchanged in both directions. A relay that hits
an I/O error stops and logs it; the process and the other relays carry on.
"""

import atexit
import io
import locale
import logging
import os
import shlex
import subprocess
import sys
import threading
from pathlib import Path
from typing import List, Optional, Sequence, TextIO, Union

from runharness.errors import ProcessLaunchError

from .protocol import SessionProtocol, SessionState, SupervisorProtocol

if os.name == "posix":
    import select
else:
    select = None

logger = logging.getLogger(__name__)

DEBUG_PORT = 5005
DEBUG_AGENT_FLAG = f"-agentlib:jdwp=transport=dt_socket,server=y,suspend=n,address={DEBUG_PORT}"
RUN_FLAG = "-jar"


def build_arguments(runtime_name: str, debug_enabled: bool) -> List[str]:
    """Arguments passed to the launcher, excluding the launcher itself."""
    args = []
    if debug_enabled:
        args.append(DEBUG_AGENT_FLAG)
    args.extend([RUN_FLAG, runtime_name])
    return args


def _fileno(stream) -> Optional[int]:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def relay_lines(source: TextIO, sink: TextIO, name: str) -> None:
    """Copy lines from source to sink until end-of-stream.

    If the sink fails, the rest of source is still read and discarded so the
    child never blocks on a full pipe.
    """
    sink_ok = True
    try:
        for line in iter(source.readline, ""):
            if not sink_ok:
                continue
            try:
                sink.write(line)
                sink.flush()
            except (OSError, ValueError) as e:
                logger.warning("%s relay stopped writing, discarding output: %s", name, e)
                sink_ok = False
    except (OSError, ValueError) as e:
        logger.warning("%s relay stopped: %s", name, e)


class ConsoleInput:
    """Line reader over console input that gives up when asked to stop.

    With a real file descriptor on POSIX the descriptor is polled, so a stop
    request is noticed within POLL_INTERVAL. Other streams fall back to a
    blocking readline and only notice the stop at the next line or EOF.
    """

    POLL_INTERVAL = 0.1

    def __init__(self, stream: TextIO, stop: threading.Event):
        self.stream = stream
        self._stop = stop
        self._fd = _fileno(stream) if select is not None else None
        self._buffer = bytearray()
        self._encoding = getattr(stream, "encoding", None) or locale.getpreferredencoding(False)

    @property
    def interruptible(self) -> bool:
        return self._fd is not None

    def readline(self) -> str:
        """Return the next line with its terminator, or "" at EOF or stop."""
        if self._fd is None:
            if self._stop.is_set():
                return ""
            return self.stream.readline()

        while True:
            newline = self._buffer.find(b"\n")
            if newline >= 0:
                line = bytes(self._buffer[:newline + 1])
                del self._buffer[:newline + 1]
                return line.decode(self._encoding, errors="replace")
            if self._stop.is_set():
                return ""
            ready, _, _ = select.select([self._fd], [], [], self.POLL_INTERVAL)
            if not ready:
                continue
            chunk = os.read(self._fd, 4096)
            if not chunk:
                # EOF: hand back whatever is left, possibly without terminator
                rest = bytes(self._buffer)
                self._buffer.clear()
                return rest.decode(self._encoding, errors="replace")
            self._buffer.extend(chunk)


def forward_input(console: ConsoleInput, child_stdin: TextIO, name: str = "stdin") -> None:
    """Forward console lines to the child until console EOF or stop."""
    try:
        while True:
            line = console.readline()
            if not line:
                break
            child_stdin.write(line)
            child_stdin.flush()
    except (OSError, ValueError) as e:
        logger.warning("%s relay stopped: %s", name, e)
        return

    # Pass end-of-stream on to the child
    try:
        child_stdin.close()
    except (OSError, ValueError) as e:
        logger.debug("Closing child stdin failed: %s", e)


class ProcessSession(SessionProtocol):
    """One run of the server process with its console bridge."""

    # Seconds wait() gives the stdin forwarder to notice the stop request
    INPUT_JOIN_TIMEOUT = 1.0

    # Seconds wait() gives the output relays to drain after the child exits.
    # A grandchild holding the pipes open would otherwise block forever.
    OUTPUT_JOIN_TIMEOUT = 5.0

    def __init__(self, command: List[str], working_dir: Path,
                 stdin: TextIO, stdout: TextIO, stderr: TextIO):
        self.command = list(command)
        self.working_dir = Path(working_dir)
        self.console_in = stdin
        self.console_out = stdout
        self.console_err = stderr
        self.process: Optional[subprocess.Popen] = None
        self.state = SessionState.NOT_STARTED
        self.exit_code: Optional[int] = None
        self._stop_input = threading.Event()
        self._child_stdin: Optional[TextIO] = None
        self._output_relays: List[threading.Thread] = []
        self._input_relay: Optional[threading.Thread] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def relays(self) -> List[threading.Thread]:
        relays = list(self._output_relays)
        if self._input_relay is not None:
            relays.append(self._input_relay)
        return relays

    def start(self) -> "ProcessSession":
        """Spawn the process, then start the relays and the shutdown hook.

        Raises:
            ProcessLaunchError: If the process cannot be spawned. No relay
                has been started at that point.
        """
        if self.state != SessionState.NOT_STARTED:
            raise RuntimeError(f"Session already {self.state}")

        logger.debug("Starting %s in %s", self.command, self.working_dir)
        try:
            self.process = subprocess.Popen(
                self.command,
                cwd=str(self.working_dir),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessLaunchError(self.command, e) from e

        self.state = SessionState.RUNNING
        atexit.register(self._shutdown_hook)
        self._start_relays()
        return self

    def _wrap(self, pipe) -> TextIO:
        return io.TextIOWrapper(
            pipe,
            encoding=locale.getpreferredencoding(False),
            errors="replace",
            newline="",
        )

    def _start_relays(self) -> None:
        child_stdout = self._wrap(self.process.stdout)
        child_stderr = self._wrap(self.process.stderr)
        self._child_stdin = self._wrap(self.process.stdin)

        self._output_relays = [
            threading.Thread(
                target=relay_lines,
                args=(child_stdout, self.console_out, "stdout"),
                name="relay-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=relay_lines,
                args=(child_stderr, self.console_err, "stderr"),
                name="relay-stderr",
                daemon=True,
            ),
        ]
        self._input_relay = threading.Thread(
            target=forward_input,
            args=(ConsoleInput(self.console_in, self._stop_input), self._child_stdin),
            name="relay-stdin",
            daemon=True,
        )
        for relay in self.relays:
            relay.start()

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the server exits and return its exit code.

        Once the process is gone the output relays are drained and joined
        (up to OUTPUT_JOIN_TIMEOUT each), and the stdin forwarder is told to
        stop.

        Raises:
            subprocess.TimeoutExpired: If timeout elapses first. The session
                stays RUNNING.
        """
        if self.state == SessionState.NOT_STARTED:
            raise RuntimeError("Session has not been started")
        if self.state == SessionState.EXITED:
            return self.exit_code

        code = self.process.wait(timeout=timeout)

        for relay in self._output_relays:
            relay.join(self.OUTPUT_JOIN_TIMEOUT)
            if relay.is_alive():
                logger.debug("%s still open after exit; another process holds the pipe", relay.name)

        self._stop_input.set()
        if self._input_relay is not None:
            self._input_relay.join(self.INPUT_JOIN_TIMEOUT)
        try:
            self._child_stdin.close()
        except (OSError, ValueError) as e:
            logger.debug("Closing child stdin failed: %s", e)
        if self._input_relay is not None and self._input_relay.is_alive():
            logger.debug("stdin relay still blocked on console input")

        atexit.unregister(self._shutdown_hook)
        self.exit_code = code
        self.state = SessionState.EXITED
        return code

    def terminate(self) -> None:
        """Send a terminate signal if the process is still alive. Never waits."""
        if not self.is_running():
            return
        try:
            self.process.terminate()
        except OSError as e:
            logger.debug("Terminate failed for pid %s: %s", self.pid, e)

    def _shutdown_hook(self) -> None:
        if self.is_running():
            print("\nStopping server...", file=sys.stderr)
            self.terminate()


def split_launcher(java_binary: Union[str, Sequence[str]]) -> List[str]:
    """Turn the configured launcher into a command prefix.

    A string is split shell-style, so "java -Xmx2G" works as a setting.
    """
    if isinstance(java_binary, str):
        return shlex.split(java_binary, posix=os.name == "posix")
    return [str(part) for part in java_binary]


class ServerProcessSupervisor(SupervisorProtocol):
    """Launches the staged runtime and bridges it to the operator console."""

    def __init__(self, java_binary: Union[str, Sequence[str]] = "java",
                 stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None,
                 stderr: Optional[TextIO] = None):
        self.launcher = split_launcher(java_binary)
        if not self.launcher:
            raise ValueError("Java launcher must not be empty")
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr

    def build_command(self, runtime_name: str, debug_enabled: bool) -> List[str]:
        return self.launcher + build_arguments(runtime_name, debug_enabled)

    def launch(self, runtime_jar_path: Path, working_dir: Path,
               debug_enabled: bool = False) -> ProcessSession:
        """Start the runtime in working_dir and begin relaying its console.

        The runtime is referred to by file name, relative to working_dir.
        """
        command = self.build_command(Path(runtime_jar_path).name, debug_enabled)
        session = ProcessSession(
            command,
            working_dir,
            stdin=self.stdin or sys.stdin,
            stdout=self.stdout or sys.stdout,
            stderr=self.stderr or sys.stderr,
        )
        return session.start()
