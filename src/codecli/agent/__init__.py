"""
Agent module - the conversation runtime.

Includes:
- AgentLoop: model/tool iteration for one user turn
- ContextManager: system prompt, token budget and compaction
- SessionStore: persistent sessions with checkpoints
"""

from .compaction import ContextManager, ContextUsage, estimate_tokens
from .core import AgentLoop, AgentState, TurnResult
from .session import Checkpoint, SessionInfo, SessionNotFoundError, SessionStore

__all__ = [
    "AgentLoop",
    "AgentState",
    "TurnResult",
    "ContextManager",
    "ContextUsage",
    "estimate_tokens",
    "Checkpoint",
    "SessionInfo",
    "SessionNotFoundError",
    "SessionStore",
]
