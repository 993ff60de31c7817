"""Test doubles: a fake command runner and stub step handlers."""

import shlex
from typing import Any, Callable, Dict, List, Optional

from imgpipe.exceptions import StepTimeoutError
from imgpipe.exec.command_runner import CommandResult, CommandRunner
from imgpipe.models import HandlerResult, ResolvedWorkflow, StepDefinition, StepType


class FakeCommandRunner(CommandRunner):
    """
    Records commands instead of spawning them.

    ``results`` and ``stdout`` are keyed by the tool name (argv[0]) or, for
    shell commands, the full command string. ``effects`` callables receive the
    argv and may create files or raise.
    """

    def __init__(self, results: Optional[Dict[str, int]] = None,
                 stdout: Optional[Dict[str, str]] = None,
                 effects: Optional[Dict[str, Callable[[List[str]], Any]]] = None):
        super().__init__()
        self.results = results or {}
        self.stdout = stdout or {}
        self.effects = effects or {}
        self.calls: List[List[str]] = []
        self.timeouts: List[Optional[float]] = []

    def with_timeout(self, timeout_sec):
        self.timeouts.append(timeout_sec)
        return self

    def run(self, command, timeout_sec=None, shell=False, input_text=None):
        if shell:
            text = command if isinstance(command, str) else ' '.join(command)
            argv = ['sh', '-c', text]
            key = text
        else:
            argv = shlex.split(command) if isinstance(command, str) else [str(a) for a in command]
            key = argv[0]
        self.calls.append(argv)
        effect = self.effects.get(key)
        if effect is not None:
            effect(argv)
        return CommandResult(
            argv=argv,
            exit_code=self.results.get(key, 0),
            stdout=self.stdout.get(key, ""),
            stderr="simulated failure" if self.results.get(key, 0) else "",
        )

    def commands(self, tool: str) -> List[List[str]]:
        return [argv for argv in self.calls if argv[0] == tool]

    def shell_commands(self) -> List[str]:
        return [argv[2] for argv in self.calls if argv[:2] == ['sh', '-c']]


class StubHandler:
    """
    Handler double driven by its params.

    ``fail: true`` returns a failure, ``raise: true`` raises, ``timeout: true``
    raises StepTimeoutError, ``items``/``bytes`` set the reported output.
    """

    def __init__(self, runner, calls):
        self.runner = runner
        self.calls = calls

    def run(self, params, settings):
        self.calls.append((dict(params), dict(settings)))
        if params.get('raise'):
            raise RuntimeError("handler crashed")
        if params.get('time_out'):
            raise StepTimeoutError(5)
        if params.get('interrupt'):
            raise KeyboardInterrupt()
        if params.get('fail'):
            return HandlerResult.failure("boom")
        return HandlerResult(
            succeeded=True,
            items_produced=int(params.get('items', 1)),
            bytes_produced=int(params.get('bytes', 0)),
        )


class StubHandlers:
    """Handler table mapping every step type to StubHandler."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.table = {step_type: self.factory for step_type in StepType}

    def factory(self, runner):
        return StubHandler(runner, self.calls)

    @property
    def params(self) -> List[Dict[str, Any]]:
        return [params for params, _ in self.calls]


def make_step(name: str, type: str = 'custom', params: Optional[Dict[str, Any]] = None,
              condition: Optional[str] = None, else_params: Optional[Dict[str, Any]] = None,
              enabled: bool = True) -> StepDefinition:
    return StepDefinition(
        name=name,
        type=StepType(type),
        condition=condition,
        params=params if params is not None else {'script': f'echo {name}'},
        else_params=else_params,
        enabled=enabled,
    )


def make_workflow(steps: List[StepDefinition], hooks: Optional[Dict[str, List[str]]] = None,
                  settings: Optional[Dict[str, Any]] = None, name: str = 'test-workflow') -> ResolvedWorkflow:
    return ResolvedWorkflow(
        name=name,
        description="",
        version="1.0",
        settings=settings or {},
        steps=steps,
        hooks=hooks or {},
    )

