"""
Lifecycle hook execution.

Hooks are plain command strings. They are template-substituted immediately
before they run and handed to the command runner through ``sh -c``. A hook
failure is logged and never changes step or run status.
"""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import InvalidExpressionError, StepTimeoutError
from ..variables.substitution import TemplateSubstitutor
from .command_runner import CommandRunner

logger = logging.getLogger(__name__)


class HookRunner:
    """Runs the commands registered for one lifecycle point."""

    def __init__(self, command_runner: Optional[CommandRunner] = None,
                 substitutor: Optional[TemplateSubstitutor] = None):
        self.command_runner = command_runner or CommandRunner()
        self.substitutor = substitutor or TemplateSubstitutor()

    def run_hooks(self, hook_name: str, commands: List[str], variables: Dict[str, Any]) -> bool:
        """
        Run each command of a hook in order.

        Args:
            hook_name: Lifecycle point (pre_workflow, post_step, on_success, on_failure)
            commands: Command templates
            variables: Current context bindings

        Returns:
            True if every command exited 0
        """
        all_ok = True
        for index, template in enumerate(commands):
            try:
                command = self.substitutor.substitute(template, variables)
            except InvalidExpressionError as e:
                logger.warning(f"Hook {hook_name}[{index}] not run: {e}")
                all_ok = False
                continue

            logger.debug(f"Hook {hook_name}[{index}]: {command}")
            try:
                result = self.command_runner.run(command, shell=True)
            except (OSError, StepTimeoutError) as e:
                logger.warning(f"Hook {hook_name}[{index}] failed: {e}")
                all_ok = False
                continue

            if result.stdout.strip():
                logger.info(f"Hook {hook_name}: {result.stdout.strip()}")
            if not result.ok:
                logger.warning(f"Hook {hook_name}[{index}] failed: {result.describe_failure()}")
                all_ok = False
        return all_ok
