"""imgpipe: configuration-driven image pipeline runner."""

from .config import Config, load_config
from .engine import run_workflow
from .exceptions import LoadError
from .loader import WorkflowLoader
from .models import ResolvedWorkflow, RunResult

__version__ = "0.1.0"

__all__ = [
    "Config",
    "load_config",
    "run_workflow",
    "LoadError",
    "WorkflowLoader",
    "ResolvedWorkflow",
    "RunResult",
]
