"""User-supplied shell scripts."""

import logging
from typing import Any, Dict

from ..models import HandlerResult, StepType
from .base import Handler

logger = logging.getLogger(__name__)


class CustomScriptHandler(Handler):
    """
    Runs ``script`` through ``sh -c``; the exit status decides success.

    The script arrives already template-substituted. Optional ``items_produced``
    and ``bytes_produced`` params let a workflow declare what the script produced.
    """

    step_type = StepType.CUSTOM
    required_tools = ('sh',)

    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        script = params.get('script')
        if not script:
            return HandlerResult.failure("custom step requires 'script'")

        result = self.runner.run(str(script), shell=True)
        for line in result.stdout.splitlines():
            logger.info(f"[script] {line}")
        if not result.ok:
            return HandlerResult.failure(f"Custom script failed: {result.describe_failure()}")

        return HandlerResult(
            succeeded=True,
            items_produced=int(params.get('items_produced', 0)),
            bytes_produced=int(params.get('bytes_produced', 0)),
        )
