"""Run directory staging.

The run directory is the server's working directory for one test session:

    <root>/<runtime_name>
    <root>/plugins/<plugin file>

It is reused between invocations; staging always overwrites the previous
runtime and plugin copies so a run tests the latest artifacts.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import DEFAULT_RUNTIME_NAME
from .errors import MissingArtifactError

logger = logging.getLogger(__name__)

PLUGINS_DIR_NAME = "plugins"


@dataclass(frozen=True)
class RunDirectory:
    """Paths making up a prepared run directory."""
    root: Path
    plugins_dir: Path
    runtime_path: Path


class RunDirectoryManager:
    """Owns the contents of one run directory."""

    def __init__(self, root: Path, runtime_name: str = DEFAULT_RUNTIME_NAME):
        self.root = Path(root)
        self.runtime_name = runtime_name

    @property
    def plugins_dir(self) -> Path:
        return self.root / PLUGINS_DIR_NAME

    def layout(self) -> RunDirectory:
        return RunDirectory(
            root=self.root,
            plugins_dir=self.plugins_dir,
            runtime_path=self.root / self.runtime_name,
        )

    def prepare(self) -> RunDirectory:
        """Create the run and plugins directories. Safe to call repeatedly."""
        self.root.mkdir(parents=True, exist_ok=True)
        self.plugins_dir.mkdir(parents=True, exist_ok=True)
        return self.layout()

    def install_runtime(self, cached_path: Path, dest_name: Optional[str] = None) -> Path:
        """Copy a cached runtime artifact into the run directory.

        Args:
            cached_path: File returned by the artifact cache.
            dest_name: Name to stage it under (default: runtime_name).

        Returns:
            Path to the staged runtime.
        """
        cached_path = Path(cached_path)
        if not cached_path.is_file():
            raise MissingArtifactError(cached_path)

        destination = self.root / (dest_name or self.runtime_name)
        shutil.copyfile(cached_path, destination)
        logger.debug("Staged runtime %s -> %s", cached_path, destination)
        return destination

    def install_plugin(self, built_artifact_path: Path, plugins_dir: Optional[Path] = None) -> Path:
        """Copy the built plugin artifact into the plugins directory.

        Args:
            built_artifact_path: The plugin produced by the build.
            plugins_dir: Target directory (default: <root>/plugins).

        Returns:
            Path to the installed plugin, same file name as the source.

        Raises:
            MissingArtifactError: If the built artifact does not exist.
        """
        built_artifact_path = Path(built_artifact_path)
        if not built_artifact_path.is_file():
            raise MissingArtifactError(built_artifact_path)

        target_dir = Path(plugins_dir) if plugins_dir is not None else self.plugins_dir
        destination = target_dir / built_artifact_path.name
        shutil.copyfile(built_artifact_path, destination)
        logger.debug("Installed plugin %s -> %s", built_artifact_path, destination)
        return destination
