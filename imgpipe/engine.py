"""
Programmatic entry point.

``run_workflow`` loads (or accepts) a resolved workflow, layers settings,
prepares the run directories and drives the steps. The CLI is a thin wrapper
around it.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .config import Config
from .context import ExecutionContext
from .exec.command_runner import CommandRunner
from .loader import WorkflowLoader
from .models import ResolvedWorkflow, RunResult, StepType
from .variables.substitution import TemplateSubstitutor
from .workflow.executor import HandlerFactory, WorkflowExecutor

logger = logging.getLogger(__name__)


def effective_settings(
    workflow: ResolvedWorkflow,
    config: Config,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Settings for a run: configuration < workflow/preset < flag overrides.

    Each layer is a shallow key overwrite.
    """
    settings = dict(config.settings)
    settings.update(workflow.settings)
    settings.update(overrides or {})
    return settings


def run_workflow(
    workflow: Union[str, Path, ResolvedWorkflow],
    input_path: Union[str, Path],
    overrides: Optional[Dict[str, Any]] = None,
    config: Optional[Config] = None,
    handlers: Optional[Mapping[StepType, HandlerFactory]] = None,
    command_runner: Optional[CommandRunner] = None,
    on_error: str = 'continue',
) -> RunResult:
    """
    Run a workflow or preset against one input.

    Args:
        workflow: Workflow/preset name, YAML path, or an already resolved workflow
        input_path: File the run processes
        overrides: Settings from command-line flags (output_dir, temp_dir, ...)
        config: Loaded configuration (default: built-in defaults)
        handlers: Replacement handler table
        command_runner: Runner for handler subprocesses and hooks
        on_error: 'continue' or 'stop'

    Returns:
        RunResult for the run

    Raises:
        LoadError: If the workflow cannot be loaded or validated
        FileNotFoundError: If the input does not exist
        InvalidExpressionError: If a dynamic condition, range or template is invalid
    """
    config = config or Config()

    if isinstance(workflow, ResolvedWorkflow):
        resolved = WorkflowLoader(config).validate(workflow)
    else:
        resolved = WorkflowLoader(config).load(workflow)

    source = Path(input_path)
    if not source.exists():
        raise FileNotFoundError(f"Input not found: {source}")

    settings = effective_settings(resolved, config, overrides)
    context = build_context(resolved, source, settings)

    Path(context.output_dir).mkdir(parents=True, exist_ok=True)
    Path(context.temp_dir).mkdir(parents=True, exist_ok=True)
    logger.debug(f"Output directory: {context.output_dir}, temp directory: {context.temp_dir}")

    executor = WorkflowExecutor(
        workflow=resolved,
        context=context,
        settings=settings,
        handlers=handlers,
        command_runner=command_runner,
        on_error=on_error,
    )
    return executor.execute()


def build_context(
    workflow: ResolvedWorkflow,
    input_path: Path,
    settings: Dict[str, Any],
) -> ExecutionContext:
    """
    Fresh context for a run.

    ``output_dir`` and ``temp_dir`` settings may themselves use the static
    placeholders (``{timestamp}``, ``{workflow_name}``, ...).
    """
    context = ExecutionContext(
        workflow_input=str(input_path),
        output_dir=str(settings.get('output_dir') or './output'),
        temp_dir=str(settings.get('temp_dir') or 'tmp'),
        workflow_name=workflow.name,
    )
    substitutor = TemplateSubstitutor()
    variables = context.variables()
    context.output_dir = substitutor.substitute(context.output_dir, variables)
    context.temp_dir = substitutor.substitute(context.temp_dir, variables)
    return context
