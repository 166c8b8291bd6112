"""The run-server task and the orchestrator contract that drives it.

A task orchestrator (a build tool, the runserver CLI, a test) owns the task's
lifecycle:

1. register inputs   -> RunServerTask.inputs()
2. execute           -> RunServerTask.execute()
3. orchestrator end  -> RunServerTask.on_orchestrator_end()

execute() stages everything before spawning the server, so any harness error
is raised while no server process exists.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from serverlib.process import DEBUG_PORT, ServerProcessSupervisor
from serverlib.protocol import SessionProtocol, SupervisorProtocol

from .cache import ArtifactCache
from .config import Config
from .rundir import RunDirectoryManager

logger = logging.getLogger(__name__)


class RunServerTask:
    """Download, stage and run the server with the freshly built plugin."""

    def __init__(
        self,
        config: Config,
        plugin_artifact: Optional[Path] = None,
        cache: Optional[ArtifactCache] = None,
        supervisor: Optional[SupervisorProtocol] = None,
        run_dir: Optional[RunDirectoryManager] = None,
    ):
        self.config = config
        self.harness = config.harness
        plugin = plugin_artifact if plugin_artifact is not None else config.plugin_artifact
        if plugin is None:
            raise ValueError("No plugin artifact configured")
        self.plugin_artifact = Path(plugin)
        self.cache = cache or ArtifactCache(config.cache_dir, timeout=config.download_timeout)
        self.supervisor = supervisor or ServerProcessSupervisor(java_binary=config.java_binary)
        self.run_dir = run_dir or RunDirectoryManager(config.run_dir, runtime_name=config.runtime_name)
        self.session: Optional[SessionProtocol] = None

    def inputs(self) -> Dict[str, Any]:
        """Inputs an orchestrator should track for this task."""
        return {
            "url": self.harness.url,
            "debug": self.harness.debug,
            "plugin_artifact": str(self.plugin_artifact),
        }

    def execute(self) -> int:
        """Run the server until it exits.

        Returns:
            The server's exit code.

        Raises:
            DownloadError, MissingArtifactError, ProcessLaunchError
        """
        if self.session is not None:
            raise RuntimeError("RunServerTask has already been executed")

        url = self.harness.url
        if self.cache.lookup(url) is not None:
            print("Using cached server artifact")
        else:
            print(f"Downloading server from {url}")
        cached = self.cache.resolve(url)

        layout = self.run_dir.prepare()
        runtime = self.run_dir.install_runtime(cached)
        plugin = self.run_dir.install_plugin(self.plugin_artifact, layout.plugins_dir)
        print(f"Plugin copied to: {plugin.resolve()}")

        print("Starting server...")
        print("Press Ctrl+C to stop the server")
        if self.harness.debug:
            print(f"Debug mode enabled. Connect debugger to port {DEBUG_PORT}")

        self.session = self.supervisor.launch(runtime, layout.root, self.harness.debug)
        exit_code = self.session.wait()
        print(f"Server exited with code {exit_code}")
        return exit_code

    def on_orchestrator_end(self) -> None:
        """Stop a server that is still running. Does not wait for it."""
        if self.session is not None and self.session.is_running():
            print("\nStopping server...")
            self.session.terminate()


class TaskOrchestrator:
    """Minimal orchestrator: execute the task, always fire the end event."""

    def run(self, task: RunServerTask) -> int:
        logger.debug("Task inputs: %s", task.inputs())
        try:
            return task.execute()
        finally:
            task.on_orchestrator_end()
