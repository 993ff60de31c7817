"""Main CLI entry point for imgpipe."""

import argparse
import sys
from typing import Optional

from .commands import (
    check_deps_command,
    list_command,
    preset_command,
    run_command,
    show_command,
    validate_command,
)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--config',
        type=str,
        metavar='PATH',
        help='Configuration file (default: $IMGPIPE_CONFIG or ~/.imgpipe/config.yaml)'
    )
    parser.add_argument(
        '--log-level',
        choices=['debug', 'info', 'warn', 'error'],
        default=None,
        help='Set log level (default: log_level setting)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress non-error output'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the imgpipe CLI."""
    parser = argparse.ArgumentParser(
        prog='imgpipe',
        description='Configuration-driven image pipeline runner'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a workflow or preset')
    run_parser.add_argument(
        'workflow',
        type=str,
        help='Workflow or preset name, or path to a YAML file'
    )
    run_parser.add_argument(
        'input',
        type=str,
        help='Input file (PDF, workbook or image)'
    )
    run_parser.add_argument(
        '--output-dir',
        type=str,
        help='Override the output directory'
    )
    run_parser.add_argument(
        '--temp-dir',
        type=str,
        help='Override the temporary directory'
    )
    run_parser.add_argument(
        '--parallel',
        type=int,
        help='Parallel jobs hint for batch steps'
    )
    run_parser.add_argument(
        '--timeout',
        type=float,
        help='Per-step timeout in seconds'
    )
    run_parser.add_argument(
        '--set',
        action='append',
        metavar='KEY=VALUE',
        help='Override a setting (can be specified multiple times)'
    )
    run_parser.add_argument(
        '--on-error',
        choices=['stop', 'continue'],
        default=None,
        help='Error handling strategy (default: continue, or stop_on_failure setting)'
    )
    run_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate and show the plan without execution'
    )
    run_parser.add_argument(
        '--report',
        type=str,
        metavar='PATH',
        help='Write a JSON run report'
    )
    add_common_arguments(run_parser)

    list_parser = subparsers.add_parser('list', help='List workflows and presets')
    add_common_arguments(list_parser)

    validate_parser = subparsers.add_parser('validate', help='Validate a workflow or preset')
    validate_parser.add_argument('workflow', type=str, help='Workflow or preset name, or path')
    add_common_arguments(validate_parser)

    show_parser = subparsers.add_parser('show', help='Show a resolved workflow or preset')
    show_parser.add_argument('workflow', type=str, help='Workflow or preset name, or path')
    add_common_arguments(show_parser)

    deps_parser = subparsers.add_parser('check-deps', help='Check external tool availability')
    add_common_arguments(deps_parser)

    # Preset management
    preset_parser = subparsers.add_parser('preset', help='Create, delete, export or import presets')
    preset_subparsers = preset_parser.add_subparsers(dest='preset_command', help='Preset actions')

    preset_create = preset_subparsers.add_parser('create', help='Create an empty preset on a workflow')
    preset_create.add_argument('name', type=str, help='New preset name')
    preset_create.add_argument('base_workflow', type=str, help='Workflow the preset builds on')
    preset_create.add_argument('--description', type=str, help='Preset description')
    add_common_arguments(preset_create)

    delete_parser = preset_subparsers.add_parser('delete', help='Delete a user preset')
    delete_parser.add_argument('name', type=str, help='Preset name')
    add_common_arguments(delete_parser)

    export_parser = preset_subparsers.add_parser('export', help='Write a preset to a YAML file')
    export_parser.add_argument('name', type=str, help='Preset name')
    export_parser.add_argument('output', type=str, help='Output YAML file')
    add_common_arguments(export_parser)

    import_parser = preset_subparsers.add_parser('import', help='Add a preset from a YAML file')
    import_parser.add_argument('input', type=str, help='Preset YAML file')
    import_parser.add_argument('--name', type=str, help='Store under this name instead')
    add_common_arguments(import_parser)

    return parser


COMMANDS = {
    'run': run_command,
    'list': list_command,
    'validate': validate_command,
    'show': show_command,
    'check-deps': check_deps_command,
    'preset': preset_command,
}


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    command = COMMANDS.get(parsed_args.command)
    if command is None:
        parser.print_help()
        return 1
    return command(parsed_args)


if __name__ == '__main__':
    sys.exit(main())
