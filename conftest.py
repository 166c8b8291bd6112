"""Pytest configuration and fixtures for the run-server harness test suite.

This module provides fixtures for:
- A local HTTP artifact server that counts downloads
- A fake requests session for failure injection
- A fake Java launcher that runs the staged "jar" as a Python script
- Isolation from the user's own harness configuration

Usage:
    pytest
    pytest -m "not process"
"""

import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest
import requests

import runharness.config


# ============================================================================
# Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "process: marks tests that spawn a server process"
    )
    config.addinivalue_line(
        "markers", "network: marks tests that use the local HTTP artifact server"
    )


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep the user's config files and RUNSERVER_* variables out of tests."""
    for var in runharness.config.ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(runharness.config, "USER_CONFIG_PATH", tmp_path / "no-user-config.toml")
    workdir = tmp_path / "project"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return workdir


# ============================================================================
# Artifact Server Fixtures
# ============================================================================

class ArtifactServer:
    """In-memory HTTP server for runtime artifacts."""

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.requests: List[str] = []
        self._lock = threading.Lock()
        server = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                with server._lock:
                    server.requests.append(self.path)
                    body = server.files.get(self.path)
                if body is None:
                    self.send_error(404)
                    return
                self.send_response(200)
                self.send_header("Content-Type", "application/octet-stream")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, fmt, *args):  # silence
                return

        self.httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.port = self.httpd.server_address[1]
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    def start(self) -> "ArtifactServer":
        self.thread.start()
        return self

    def stop(self) -> None:
        self.httpd.shutdown()
        self.httpd.server_close()

    def add(self, path: str, content: bytes) -> str:
        """Serve content at path and return its URL."""
        self.files[path] = content
        return self.url(path)

    def url(self, path: str) -> str:
        return f"http://127.0.0.1:{self.port}{path}"

    def count(self, path: str) -> int:
        with self._lock:
            return self.requests.count(path)


@pytest.fixture
def artifact_server() -> Generator[ArtifactServer, None, None]:
    """Provide a running local artifact server."""
    server = ArtifactServer().start()
    yield server
    server.stop()


class FakeResponse:
    """Stand-in for a streamed requests.Response."""

    def __init__(self, chunks, error: Optional[Exception] = None, status: int = 200):
        self.chunks = list(chunks)
        self.error = error
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Stand-in for requests.Session that records every GET."""

    def __init__(self, content: bytes = b"runtime", error: Optional[Exception] = None,
                 status: int = 200):
        self.content = content
        self.error = error
        self.status = status
        self.calls: List[str] = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append(url)
        half = len(self.content) // 2
        return FakeResponse(
            [self.content[:half], self.content[half:]],
            error=self.error,
            status=self.status,
        )


@pytest.fixture
def fake_session() -> FakeSession:
    """Provide a session that serves b"runtime" for any URL."""
    return FakeSession()


@pytest.fixture
def session_factory():
    """Return the FakeSession class for tests that need a custom one."""
    return FakeSession


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    """Return an artifact cache directory (not yet created)."""
    return tmp_path / "cache"


# ============================================================================
# Server Process Fixtures
# ============================================================================

FAKE_LAUNCHER = '''\
import json
import sys

args = sys.argv[1:]
with open("launch-args.json", "w") as f:
    json.dump(args, f)

index = args.index("-jar")
jar = args[index + 1]
sys.argv = [jar] + args[index + 2:]
with open(jar) as f:
    source = f.read()
exec(compile(source, jar, "exec"), {"__name__": "__main__"})
'''


@pytest.fixture(scope='session')
def fake_java(tmp_path_factory) -> List[str]:
    """Launcher command that runs the staged runtime as a Python script.

    It also records its arguments to launch-args.json in its working
    directory.
    """
    script = tmp_path_factory.mktemp("launcher") / "fake_java.py"
    script.write_text(FAKE_LAUNCHER)
    return [sys.executable, str(script)]


@pytest.fixture
def write_runtime(tmp_path):
    """Write a Python "runtime" script and return its path.

    Usage:
        def test_something(write_runtime):
            runtime = write_runtime("print('hello')")
    """
    counter = {"n": 0}

    def write(source: str, name: Optional[str] = None) -> Path:
        counter["n"] += 1
        runtime_dir = tmp_path / "runtimes"
        runtime_dir.mkdir(exist_ok=True)
        path = runtime_dir / (name or f"runtime_{counter['n']}.jar")
        path.write_text(source)
        return path

    return write

