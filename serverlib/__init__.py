"""Server process library.

This module provides:
- ServerProcessSupervisor: launches the runtime as a child process
- ProcessSession: one running server with its console relays
- SessionProtocol / SupervisorProtocol: interfaces the run task depends on
"""

from .protocol import SessionProtocol, SessionState, SupervisorProtocol
from .process import (
    DEBUG_AGENT_FLAG,
    DEBUG_PORT,
    ProcessSession,
    ServerProcessSupervisor,
    build_arguments,
)

__all__ = [
    'SessionProtocol',
    'SessionState',
    'SupervisorProtocol',
    'ProcessSession',
    'ServerProcessSupervisor',
    'build_arguments',
    'DEBUG_AGENT_FLAG',
    'DEBUG_PORT',
]
