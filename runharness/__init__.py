"""Test harness for running a server runtime with a locally built plugin.

This package provides utilities for:
- Downloading and caching server runtime artifacts by URL
- Staging the runtime and plugin into a run directory
- Configuration management for the harness
- Listing and cleaning the artifact cache

The run task itself lives in runharness.task.
"""

from .cache import ArtifactCache, cache_key
from .rundir import RunDirectory, RunDirectoryManager
from .config import load_config, Config, HarnessConfig
from .errors import HarnessError, DownloadError, MissingArtifactError, ProcessLaunchError
from .clean import clean_directory, list_cache_contents

__all__ = [
    # Cache
    'ArtifactCache',
    'cache_key',
    # Run directory
    'RunDirectory',
    'RunDirectoryManager',
    # Config
    'load_config',
    'Config',
    'HarnessConfig',
    # Errors
    'HarnessError',
    'DownloadError',
    'MissingArtifactError',
    'ProcessLaunchError',
    # Clean functions
    'clean_directory',
    'list_cache_contents',
]
