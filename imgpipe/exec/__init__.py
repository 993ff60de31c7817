"""
Execution module for imgpipe.
Handles external process execution and lifecycle hooks.
"""

from .command_runner import CommandRunner, CommandResult
from .hooks import HookRunner

__all__ = [
    "CommandRunner",
    "CommandResult",
    "HookRunner",
]
