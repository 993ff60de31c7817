"""
Step execution driver.
Runs the steps of a resolved workflow in order against one ExecutionContext.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..context import ExecutionContext
from ..exceptions import InvalidExpressionError, StepTimeoutError
from ..exec.command_runner import CommandRunner
from ..exec.hooks import HookRunner
from ..handlers import HANDLERS
from ..models import (
    HandlerResult,
    ResolvedWorkflow,
    RunResult,
    StepDefinition,
    StepOutcome,
    StepType,
)
from ..variables.substitution import ITEM_NAMES, TemplateSubstitutor
from .conditions import ConditionEvaluator
from .presets import deep_merge

logger = logging.getLogger(__name__)


HandlerFactory = Callable[[CommandRunner], Any]


class WorkflowExecutor:
    """
    Main workflow execution engine.

    Per step: pending -> condition checked -> skipped or dispatched ->
    completed or failed. Only this class mutates the execution context, and
    only after a handler has returned.
    """

    def __init__(
        self,
        workflow: ResolvedWorkflow,
        context: ExecutionContext,
        settings: Optional[Dict[str, Any]] = None,
        handlers: Optional[Mapping[StepType, HandlerFactory]] = None,
        command_runner: Optional[CommandRunner] = None,
        hook_runner: Optional[HookRunner] = None,
        on_error: str = 'continue',
    ):
        """
        Initialize workflow executor.

        Args:
            workflow: Resolved workflow to run
            context: Fresh execution context for this run
            settings: Effective settings (defaults, workflow and flag overrides)
            handlers: Step type to handler factory; factories receive a command
                runner bounded by the step timeout
            command_runner: Runner for handler subprocesses and hooks
            hook_runner: Hook runner (default: one built on command_runner)
            on_error: 'continue' (default) or 'stop' after the first failed step
        """
        if on_error not in ('continue', 'stop'):
            raise ValueError(f"on_error must be 'continue' or 'stop', got '{on_error}'")

        self.workflow = workflow
        self.context = context
        self.settings = dict(settings if settings is not None else workflow.settings)
        self.handlers = dict(handlers if handlers is not None else HANDLERS)
        self.command_runner = command_runner or CommandRunner()
        self.substitutor = TemplateSubstitutor()
        self.hook_runner = hook_runner or HookRunner(self.command_runner, self.substitutor)
        self.condition_evaluator = ConditionEvaluator()
        self.stop_on_failure = on_error == 'stop' or bool(self.settings.get('stop_on_failure'))
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; the run stops before dispatching the next step."""
        logger.warning("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def execute(self) -> RunResult:
        """
        Execute the workflow.

        Returns:
            RunResult with per-step outcomes and the final context

        Raises:
            InvalidExpressionError: A condition, range or template that could
                only be checked at first use turned out invalid; on_failure
                hooks run before it propagates
        """
        outcomes: List[StepOutcome] = []
        logger.info(f"Starting workflow '{self.workflow.name}' on {self.context.workflow_input}")

        self._run_hooks('pre_workflow')

        for step in self.workflow.steps:
            if self.cancelled:
                logger.warning(f"Run cancelled before step '{step.name}'")
                break

            if not step.enabled:
                logger.info(f"Step '{step.name}' is disabled")
                outcomes.append(StepOutcome(name=step.name, type=step.type.value, status='disabled'))
                continue

            outcome = None
            try:
                outcome = self._execute_step(step)
                if outcome.status == 'completed':
                    self._run_hooks('post_step')
            except KeyboardInterrupt:
                self._cancel_event.set()
                if outcome is None:
                    self.context.record_failure(step.name, "Cancelled by user")
                    outcome = StepOutcome(
                        name=step.name,
                        type=step.type.value,
                        status='cancelled',
                        step_number=self.context.step_number,
                        error="Cancelled by user",
                    )
                outcomes.append(outcome)
                logger.warning(f"Step '{step.name}' interrupted")
                break
            except InvalidExpressionError as e:
                self.context.record_failure(step.name, str(e))
                logger.error(f"Step '{step.name}' aborted the run: {e}")
                self._run_hooks('on_failure')
                raise

            outcomes.append(outcome)

            if outcome.status == 'failed' and self.stop_on_failure:
                logger.error(f"Step '{step.name}' failed. Stopping execution (on_error=stop)")
                break
            if outcome.status == 'failed':
                logger.warning(f"Step '{step.name}' failed. Continuing execution (on_error=continue)")

        if self.context.failed_count == 0 and not self.cancelled:
            self._run_hooks('on_success')
        else:
            self._run_hooks('on_failure')

        result = RunResult(
            workflow_name=self.workflow.name,
            steps=outcomes,
            context=self.context.to_dict(),
            cancelled=self.cancelled,
        )
        logger.info(
            f"Workflow '{self.workflow.name}' finished: {result.processed} processed, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result

    def _execute_step(self, step: StepDefinition) -> StepOutcome:
        step_number = self.context.begin_step(step.name)
        variables = self.context.variables()

        params = step.params
        used_else = False
        if not self.condition_evaluator.evaluate(step.condition, variables):
            if step.else_params is None:
                logger.info(f"Skipping step '{step.name}': condition '{step.condition}' is false")
                return StepOutcome(
                    name=step.name,
                    type=step.type.value,
                    status='skipped',
                    step_number=step_number,
                )
            logger.info(f"Step '{step.name}': condition false, using else params")
            params = deep_merge(step.params, step.else_params)
            used_else = True

        params = self.substitute_params(params, variables)
        logger.info(f"Step {step_number}: {step.name} ({step.type.value})")

        start_time = time.time()
        result = self._dispatch(step, params)
        duration_ms = int((time.time() - start_time) * 1000)

        outcome = StepOutcome(
            name=step.name,
            type=step.type.value,
            status='completed' if result.succeeded else 'failed',
            step_number=step_number,
            items_produced=result.items_produced,
            bytes_produced=result.bytes_produced,
            duration_ms=duration_ms,
            used_else=used_else,
            error=result.error_message,
        )

        if result.succeeded:
            self.context.record_success(step.type, result)
            logger.info(f"Step '{step.name}' completed: {result.items_produced} item(s)")
        else:
            message = result.error_message or f"Step '{step.name}' failed"
            self.context.record_failure(step.name, message)
            logger.error(f"Step '{step.name}' failed: {message}")

        return outcome

    def _dispatch(self, step: StepDefinition, params: Dict[str, Any]) -> HandlerResult:
        factory = self.handlers.get(step.type)
        if factory is None:
            return HandlerResult.failure(f"No handler registered for step type '{step.type.value}'")

        try:
            timeout_sec = self.step_timeout(params)
        except ValueError as e:
            return HandlerResult.failure(str(e))
        handler = factory(self.command_runner.with_timeout(timeout_sec))

        try:
            return handler.run(params, self.handler_settings())
        except StepTimeoutError as e:
            return HandlerResult.failure(str(e))
        except InvalidExpressionError:
            raise
        except Exception as e:
            logger.error(f"Handler for step '{step.name}' raised: {e}", exc_info=True)
            return HandlerResult.failure(f"{type(e).__name__}: {e}")

    def step_timeout(self, params: Dict[str, Any]) -> Optional[float]:
        """Step wall-clock budget in seconds: the step's ``timeout`` param, else the setting."""
        timeout = params.get('timeout', self.settings.get('timeout'))
        if timeout is None or timeout == '':
            return None
        try:
            seconds = float(timeout)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid timeout '{timeout}': expected a number of seconds") from None
        if seconds <= 0:
            raise ValueError(f"Invalid timeout '{timeout}': must be positive")
        return seconds

    def substitute_params(self, params: Dict[str, Any], variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Substitute context bindings into step params.

        Keys ending in ``_template`` keep their per-item placeholders for the
        handler to render once per produced item.
        """
        item_free = {key: value for key, value in variables.items() if key not in ITEM_NAMES}
        substituted = {}
        for key, value in params.items():
            bindings = item_free if key.endswith('_template') else variables
            substituted[key] = self.substitutor.substitute(value, bindings)
        return substituted

    def handler_settings(self) -> Dict[str, Any]:
        """Settings handed to handlers, including the run's locations."""
        settings = dict(self.settings)
        settings.update({
            'workflow_input': self.context.workflow_input,
            'workflow_name': self.context.workflow_name,
            'output_dir': self.context.output_dir,
            'temp_dir': self.context.temp_dir,
        })
        return settings

    def _run_hooks(self, hook_name: str) -> None:
        commands = self.workflow.hook_commands(hook_name)
        if commands:
            logger.debug(f"Running {len(commands)} {hook_name} hook(s)")
            self.hook_runner.run_hooks(hook_name, commands, self.context.variables())
