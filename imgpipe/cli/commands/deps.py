"""check-deps command: report which external tools are installed."""

import logging
from argparse import Namespace

from imgpipe.exec.command_runner import CommandRunner
from imgpipe.handlers import HANDLERS

from .run import configure_logging


logger = logging.getLogger(__name__)


def check_deps_command(args: Namespace) -> int:
    """
    List the tools each step type needs and whether they are on PATH.

    Returns 1 when any tool is missing.
    """
    configure_logging(args)
    runner = CommandRunner()
    missing_any = False

    for step_type, handler_class in HANDLERS.items():
        handler = handler_class(runner)
        missing = handler.missing_tools()
        tools = ', '.join(handler.required_tools) or '(none)'
        status = 'ok' if not missing else f"missing: {', '.join(missing)}"
        print(f"  {step_type.value:<14} {tools:<28} {status}")
        if missing:
            missing_any = True

    if missing_any:
        logger.warning("Some external tools are missing; steps of those types will fail")
    return 1 if missing_any else 0
