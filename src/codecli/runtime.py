"""
Process-wide mutable state, owned by the application object and passed
explicitly to the components that read or update it.
"""

from dataclasses import dataclass, field
from pathlib import Path

from .llm.base import TokenUsage


@dataclass
class RuntimeContext:
    """State shared by the agent loop, permission gate and tool executor."""

    cwd: Path = field(default_factory=Path.cwd)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    session_approvals: set[str] = field(default_factory=set)
    session_denials: set[str] = field(default_factory=set)
    god_mode_root: Path | None = None

    @property
    def god_mode(self) -> bool:
        return self.god_mode_root is not None
