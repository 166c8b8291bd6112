"""Abstract protocol interfaces for supervised server processes.

This module defines the interfaces the run task depends on, so the task can be
driven by the real process supervisor or by a stand-in during tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional


class SessionState:
    """Lifecycle states of a process session.

    NOT_STARTED -> RUNNING -> EXITED. EXITED is terminal; a new launch needs
    a new session.
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"


class SessionProtocol(ABC):
    """A launched server process and its console bridge."""

    state: str = SessionState.NOT_STARTED
    exit_code: Optional[int] = None

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the server exits.

        Args:
            timeout: Seconds to wait, or None to wait forever.

        Returns:
            The exit code reported by the OS.
        """
        pass

    @abstractmethod
    def terminate(self) -> None:
        """Ask a running server to stop without waiting for it."""
        pass

    @abstractmethod
    def is_running(self) -> bool:
        """Check if the server process is still running."""
        pass


class SupervisorProtocol(ABC):
    """Launches server runtimes as child processes."""

    @abstractmethod
    def build_command(self, runtime_name: str, debug_enabled: bool) -> List[str]:
        """Build the full command line used to start the runtime."""
        pass

    @abstractmethod
    def launch(self, runtime_jar_path: Path, working_dir: Path,
               debug_enabled: bool = False) -> SessionProtocol:
        """Start the runtime and bridge its console.

        Args:
            runtime_jar_path: Staged runtime artifact inside working_dir.
            working_dir: Directory the server runs in.
            debug_enabled: Start with the debugger agent listening.

        Returns:
            A running session.

        Raises:
            ProcessLaunchError: If the process cannot be spawned.
        """
        pass
