"""Terminal sessions for termbridge.

Public API:
    PtySession -- One interactive shell on a pseudo-terminal
    IdleCompletionDetector -- Quiet-period command completion
    SessionRegistry -- Owner of sessions and the active pointer
"""

from termbridge.terminal.detector import IdleCompletionDetector, classify
from termbridge.terminal.pty_session import PtySession, SpawnError
from termbridge.terminal.registry import ManagedSession, SessionRegistry

__all__ = [
    "IdleCompletionDetector",
    "ManagedSession",
    "PtySession",
    "SessionRegistry",
    "SpawnError",
    "classify",
]
