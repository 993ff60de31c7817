"""Run command implementation."""

import json
import logging
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from imgpipe.config import Config, load_config
from imgpipe.engine import effective_settings, run_workflow
from imgpipe.exceptions import InvalidExpressionError, LoadError
from imgpipe.loader import WorkflowLoader
from imgpipe.models import ResolvedWorkflow


logger = logging.getLogger(__name__)


def configure_logging(args: Namespace, config: Optional[Config] = None) -> None:
    """Set up logging from flags, falling back to the configured log_level."""
    level_name = getattr(args, 'log_level', None)
    if level_name is None and config is not None:
        level_name = str(config.setting('log_level', 'info'))
    log_level = getattr(logging, (level_name or 'info').upper(), logging.INFO)
    if getattr(args, 'debug', False):
        log_level = logging.DEBUG
    elif getattr(args, 'quiet', False):
        log_level = logging.ERROR
    elif getattr(args, 'verbose', False):
        log_level = logging.DEBUG

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def load_cli_config(args: Namespace) -> Config:
    """Load the configuration named by --config, or the default one."""
    config_path = getattr(args, 'config', None)
    return load_config(Path(config_path) if config_path else None)


def report_load_error(error: LoadError) -> int:
    for item in error.errors:
        if item.path:
            logger.error(f"Validation error ({item.path}): {item.message}")
        else:
            logger.error(f"Validation error: {item.message}")
    return error.exit_code


def parse_overrides(args: Namespace) -> Dict[str, Any]:
    """Collect settings overrides from --set KEY=VALUE and the directory flags."""
    overrides: Dict[str, Any] = {}

    for item in args.set or []:
        if '=' not in item:
            raise ValueError(f"Invalid setting format: {item}. Expected KEY=VALUE")
        key, value = item.split('=', 1)
        if not key:
            raise ValueError(f"Invalid setting format: {item}. Expected KEY=VALUE")
        # YAML scalars, so parallel_jobs=8 is an int and stop_on_failure=true a bool
        overrides[key] = yaml.safe_load(value) if value else ""

    if args.output_dir:
        overrides['output_dir'] = args.output_dir
    if args.temp_dir:
        overrides['temp_dir'] = args.temp_dir
    if args.parallel is not None:
        overrides['parallel_jobs'] = args.parallel
    if args.timeout is not None:
        overrides['timeout'] = args.timeout

    return overrides


def describe_plan(workflow: ResolvedWorkflow, settings: Dict[str, Any]) -> List[str]:
    """Human-readable lines describing what a run would do."""
    lines = [f"Workflow: {workflow.name}"]
    if workflow.preset:
        lines[0] += f" (preset of {workflow.base_workflow})"
    lines.append(f"Output directory: {settings.get('output_dir')}")
    for index, step in enumerate(workflow.steps, start=1):
        state = "" if step.enabled else " [disabled]"
        lines.append(f"  {index}. {step.name} ({step.type.value}){state}")
        if step.condition:
            lines.append(f"     when: {step.condition}")
    return lines


def run_command(args: Namespace) -> int:
    """
    Run a workflow or preset against one input.

    Exit codes: 0 all steps succeeded, 1 a step failed or a file was missing,
    2 load or validation error, 130 cancelled.
    """
    try:
        config = load_cli_config(args)
    except LoadError as e:
        configure_logging(args)
        return report_load_error(e)

    configure_logging(args, config)

    try:
        overrides = parse_overrides(args)

        logger.info(f"Loading workflow: {args.workflow}")
        loader = WorkflowLoader(config)
        try:
            workflow = loader.load(args.workflow)
        except LoadError as e:
            return report_load_error(e)

        on_error = args.on_error
        if on_error is None:
            on_error = 'stop' if effective_settings(workflow, config, overrides).get('stop_on_failure') else 'continue'

        if args.dry_run:
            if not Path(args.input).exists():
                logger.warning(f"Input not found: {args.input}")
            for line in describe_plan(workflow, effective_settings(workflow, config, overrides)):
                logger.info(f"[DRY RUN] {line}")
            logger.info("[DRY RUN] Workflow validation successful")
            return 0

        result = run_workflow(
            workflow,
            args.input,
            overrides=overrides,
            config=config,
            on_error=on_error,
        )

        print(f"{result.workflow_name}: {result.total} steps, {result.processed} processed, "
              f"{result.failed} failed, {result.skipped} skipped")
        if result.failed:
            failed_step = result.context.get('failed_step')
            print(f"First failed step: {failed_step} ({result.context.get('error_message')})")

        if args.report:
            report_path = Path(args.report)
            report_path.parent.mkdir(parents=True, exist_ok=True)
            with open(report_path, 'w') as f:
                json.dump(result.to_dict(), f, indent=2, default=str)
            logger.info(f"Wrote run report to {report_path}")

        return result.exit_code

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except InvalidExpressionError as e:
        logger.error(f"Validation error: {e}")
        return e.exit_code
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return 2
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
