"""Commands that inspect workflows and presets without running them."""

import logging
from argparse import Namespace

import yaml

from imgpipe.exceptions import LoadError
from imgpipe.loader import WorkflowLoader

from .run import configure_logging, load_cli_config, report_load_error


logger = logging.getLogger(__name__)


def list_command(args: Namespace) -> int:
    """Print available workflows and presets with their sources."""
    try:
        config = load_cli_config(args)
    except LoadError as e:
        configure_logging(args)
        return report_load_error(e)
    configure_logging(args, config)

    loader = WorkflowLoader(config)
    workflows = loader.list_workflows()
    presets = loader.list_presets()

    print("Workflows:")
    for name in sorted(workflows):
        print(f"  {name:<24} {workflows[name]}")
    print("Presets:")
    for name in sorted(presets):
        print(f"  {name:<24} {presets[name]}")
    return 0


def validate_command(args: Namespace) -> int:
    """Load, merge and validate a workflow or preset."""
    try:
        config = load_cli_config(args)
        configure_logging(args, config)
        WorkflowLoader(config).load(args.workflow)
    except LoadError as e:
        configure_logging(args)
        return report_load_error(e)

    print(f"{args.workflow}: valid")
    return 0


def show_command(args: Namespace) -> int:
    """Print the resolved workflow (preset merged) as YAML."""
    try:
        config = load_cli_config(args)
        configure_logging(args, config)
        resolved = WorkflowLoader(config).load(args.workflow)
    except LoadError as e:
        configure_logging(args)
        return report_load_error(e)

    print(yaml.safe_dump(resolved.to_dict(), sort_keys=False, default_flow_style=False), end='')
    return 0
