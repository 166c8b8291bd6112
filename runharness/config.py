"""Configuration management for the run-server harness.

This module handles configuration for the harness, including:
- The runtime artifact URL and debug-attach flag
- Artifact cache and run directory locations
- The built plugin artifact path
- The Java launcher to run the server with

Configuration is loaded from (in order of precedence):
1. Explicit overrides (usually from the command line)
2. Environment variables (RUNSERVER_* prefix)
3. Project-local .runserver.toml
4. User config ~/.config/runserver-harness/config.toml
5. Built-in defaults

Every call to load_config() builds a new immutable Config. Nothing is cached
at module level; callers pass the value into the components that need it.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Any
from urllib.parse import urlparse

# Try to import tomllib (Python 3.11+) or tomli as fallback
try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None


DEFAULT_URL = "https://example.com/hytale-server.jar"
DEFAULT_RUNTIME_NAME = "server.jar"
DEFAULT_JAVA_BINARY = "java"
DEFAULT_DOWNLOAD_TIMEOUT = 60.0
SUPPORTED_URL_SCHEMES = ("http", "https")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def validate_url(url: str) -> str:
    """Check that url is an absolute http(s) URL.

    Only schemes the downloader can fetch are accepted, so a file:// URL is
    rejected here rather than failing later as a download error.

    Returns:
        The url unchanged.

    Raises:
        ValueError: If the URL is not http(s) or has no network location.
    """
    if not isinstance(url, str) or not url.strip():
        raise ValueError("Artifact URL is required")
    parsed = urlparse(url)
    if parsed.scheme.lower() not in SUPPORTED_URL_SCHEMES or not parsed.netloc:
        raise ValueError(f"Artifact URL must be an absolute http(s) URL: {url!r}")
    return url


@dataclass(frozen=True)
class HarnessConfig:
    """The runtime artifact to test against and whether to attach a debugger."""
    url: str
    debug: bool = False

    def __post_init__(self):
        validate_url(self.url)


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "runserver-harness" / "artifacts"


@dataclass(frozen=True)
class Config:
    """Main configuration for the harness."""

    # Remote runtime artifact
    url: str = DEFAULT_URL

    # Launch the runtime with a debugger agent listening
    debug: bool = False

    # Directory for caching downloaded runtime artifacts
    cache_dir: Path = field(default_factory=_default_cache_dir)

    # Ephemeral staging directory for the runtime and plugins
    run_dir: Path = field(default_factory=lambda: Path("run"))

    # Locally built plugin artifact (if known)
    plugin_artifact: Optional[Path] = None

    # File name the runtime is staged under inside run_dir
    runtime_name: str = DEFAULT_RUNTIME_NAME

    # Launcher used to run the staged runtime
    java_binary: str = DEFAULT_JAVA_BINARY

    # Seconds to wait on the artifact server before giving up
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT

    def __post_init__(self):
        # Ensure paths are Path objects with ~ expanded
        object.__setattr__(self, "cache_dir", Path(self.cache_dir).expanduser())
        object.__setattr__(self, "run_dir", Path(self.run_dir).expanduser())
        if self.plugin_artifact is not None:
            object.__setattr__(self, "plugin_artifact", Path(self.plugin_artifact).expanduser())
        object.__setattr__(self, "download_timeout", float(self.download_timeout))

    @property
    def harness(self) -> HarnessConfig:
        """The validated url/debug pair consumed by the run task."""
        return HarnessConfig(url=self.url, debug=self.debug)


# Default configuration file locations
USER_CONFIG_PATH = Path.home() / ".config" / "runserver-harness" / "config.toml"
PROJECT_CONFIG_NAME = ".runserver.toml"

# Environment variable -> Config field
ENV_VARS: Dict[str, str] = {
    "RUNSERVER_URL": "url",
    "RUNSERVER_DEBUG": "debug",
    "RUNSERVER_CACHE_DIR": "cache_dir",
    "RUNSERVER_RUN_DIR": "run_dir",
    "RUNSERVER_PLUGIN": "plugin_artifact",
    "RUNSERVER_RUNTIME_NAME": "runtime_name",
    "RUNSERVER_JAVA": "java_binary",
    "RUNSERVER_DOWNLOAD_TIMEOUT": "download_timeout",
}


def parse_bool(value: Any) -> bool:
    """Interpret a config or environment value as a boolean."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean value: {value!r}")


def _find_project_config(start: Optional[Path] = None) -> Optional[Path]:
    """Find project-local config file by walking up from cwd."""
    current = (start or Path.cwd()).resolve()
    while True:
        config_path = current / PROJECT_CONFIG_NAME
        if config_path.exists():
            return config_path
        if current == current.parent:
            return None
        current = current.parent


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file and return its contents."""
    if tomllib is None:
        # No TOML parser available, return empty dict
        return {}
    if not path.exists():
        return {}
    with open(path, "rb") as f:
        return tomllib.load(f)


def _settings_from_toml(data: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    """Flatten the [server] and [paths] sections into Config keyword arguments.

    Relative paths are resolved against the directory holding the file, so a
    project config means the same thing from any subdirectory.
    """
    settings: Dict[str, Any] = {}

    server = data.get("server", {})
    if "url" in server:
        settings["url"] = server["url"]
    if "debug" in server:
        settings["debug"] = parse_bool(server["debug"])
    if "runtime_name" in server:
        settings["runtime_name"] = server["runtime_name"]
    if "java" in server:
        settings["java_binary"] = server["java"]
    if "download_timeout" in server:
        settings["download_timeout"] = float(server["download_timeout"])

    paths = data.get("paths", {})
    for key, attr in (("cache_dir", "cache_dir"), ("run_dir", "run_dir"), ("plugin", "plugin_artifact")):
        if key in paths:
            path = Path(paths[key]).expanduser()
            if not path.is_absolute():
                path = base_dir / path
            settings[attr] = path

    return settings


def _settings_from_env(environ: Dict[str, str]) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    for var, attr in ENV_VARS.items():
        value = environ.get(var)
        if not value:
            continue
        if attr == "debug":
            settings[attr] = parse_bool(value)
        elif attr == "download_timeout":
            settings[attr] = float(value)
        else:
            settings[attr] = value
    return settings


def load_config(
    environ: Optional[Dict[str, str]] = None,
    user_config: Optional[Path] = None,
    project_config: Optional[Path] = None,
    **overrides: Any,
) -> Config:
    """Load configuration from files, environment and explicit overrides.

    Args:
        environ: Environment mapping (default: os.environ).
        user_config: User config file (default: USER_CONFIG_PATH).
        project_config: Project config file (default: found from cwd).
        **overrides: Config fields that win over everything else. None values
            are ignored so argparse results can be passed straight through.

    Returns:
        Config object with merged settings.
    """
    environ = os.environ if environ is None else environ
    user_path = USER_CONFIG_PATH if user_config is None else Path(user_config)
    project_path = _find_project_config() if project_config is None else Path(project_config)

    settings: Dict[str, Any] = {}

    # Project config overrides user config
    for path in (user_path, project_path):
        if path is None:
            continue
        data = _load_toml(path)
        if data:
            settings.update(_settings_from_toml(data, path.parent))

    # Environment overrides files
    settings.update(_settings_from_env(environ))

    # Explicit overrides (highest precedence)
    settings.update({k: v for k, v in overrides.items() if v is not None})

    return Config(**settings)


def with_overrides(config: Config, **overrides: Any) -> Config:
    """Return a copy of config with the non-None overrides applied."""
    return replace(config, **{k: v for k, v in overrides.items() if v is not None})


def generate_sample_config() -> str:
    """Generate a sample configuration file.

    Returns:
        Sample TOML configuration as a string.
    """
    return f'''# Run-server harness configuration
# Place this file at ~/.config/runserver-harness/config.toml (user)
# or .runserver.toml in your project directory (project)

[server]
# Server runtime artifact to download and run
url = "{DEFAULT_URL}"

# Start the runtime with a debugger listening on port 5005
debug = false

# Name the runtime is staged under in the run directory
runtime_name = "{DEFAULT_RUNTIME_NAME}"

# Java launcher
java = "{DEFAULT_JAVA_BINARY}"

# Seconds to wait on the artifact server
download_timeout = {DEFAULT_DOWNLOAD_TIMEOUT:g}

[paths]
# Directory for caching downloaded runtime artifacts
cache_dir = "~/.cache/runserver-harness/artifacts"

# Staging directory for the runtime and plugins (relative to this file)
run_dir = "run"

# Built plugin artifact to install (relative to this file)
# plugin = "build/libs/my-plugin.jar"
'''
