"""Exception types raised by the run-server harness.

Every error here is fatal to the current invocation and is raised before a
server process exists, so there is never a child left to clean up.
"""

from pathlib import Path
from typing import List, Optional


class HarnessError(RuntimeError):
    """Base class for harness failures."""


class DownloadError(HarnessError):
    """Fetching the runtime artifact failed; the cache was left untouched."""

    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        message = f"Failed to download {url}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class MissingArtifactError(HarnessError):
    """The built plugin artifact to install does not exist."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"Build artifact not found: {self.path}")


class ProcessLaunchError(HarnessError):
    """The OS refused to spawn the server process."""

    def __init__(self, command: List[str], cause: Optional[BaseException] = None):
        self.command = list(command)
        self.cause = cause
        message = f"Could not start server: {' '.join(self.command)}"
        if cause is not None:
            message += f" ({cause})"
        super().__init__(message)
