"""CLI command handlers."""

from .catalog import list_command, show_command, validate_command
from .deps import check_deps_command
from .preset import preset_command
from .run import run_command

__all__ = [
    'run_command', 'list_command', 'show_command', 'validate_command',
    'check_deps_command', 'preset_command',
]
