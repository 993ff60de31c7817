"""
Workflow, preset and run result types.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StepType(str, Enum):
    """Closed set of step handler types."""
    PDF_EXTRACT = "pdf_extract"
    EXCEL_EXTRACT = "excel_extract"
    CONVERT = "convert"
    RESIZE = "resize"
    WATERMARK = "watermark"
    OCR = "ocr"
    CUSTOM = "custom"

    @property
    def is_extraction(self) -> bool:
        return self in (StepType.PDF_EXTRACT, StepType.EXCEL_EXTRACT)


HOOK_NAMES = ('pre_workflow', 'post_step', 'on_success', 'on_failure')


@dataclass
class StepDefinition:
    """
    One named unit of work.

    Attributes:
        name: Unique name within the workflow
        type: Handler type
        description: Free text
        condition: Optional condition expression
        params: Handler parameters, values may hold placeholders
        else_params: Params merged over ``params`` when the condition is false
        enabled: Disabled steps keep their position but never run
    """
    name: str
    type: StepType
    description: str = ""
    condition: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    else_params: Optional[Dict[str, Any]] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
        }
        if self.description:
            result["description"] = self.description
        if self.condition is not None:
            result["condition"] = self.condition
        result["params"] = copy.deepcopy(self.params)
        if self.else_params is not None:
            result["else"] = copy.deepcopy(self.else_params)
        if not self.enabled:
            result["enabled"] = False
        return result


@dataclass
class WorkflowDefinition:
    """A complete, named, ordered pipeline definition."""
    name: str
    description: str = ""
    version: str = "1.0"
    settings: Dict[str, Any] = field(default_factory=dict)
    steps: List[StepDefinition] = field(default_factory=list)
    hooks: Dict[str, List[str]] = field(default_factory=dict)
    source: Optional[str] = None

    def get_step(self, name: str) -> Optional[StepDefinition]:
        for step in self.steps:
            if step.name == name:
                return step
        return None


@dataclass
class StepOverride:
    """
    Preset fragment addressed at a step by name.

    Only the fields present in the fragment are set; None means "keep base".
    """
    name: str
    params: Optional[Dict[str, Any]] = None
    else_params: Optional[Dict[str, Any]] = None
    condition: Optional[str] = None
    type: Optional[StepType] = None
    enabled: Optional[bool] = None
    description: Optional[str] = None
    has_condition: bool = False


@dataclass
class PresetDefinition:
    """Named set of overrides applied to a base workflow."""
    name: str
    base_workflow: str
    description: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)
    steps: Dict[str, StepOverride] = field(default_factory=dict)
    hooks: Dict[str, List[str]] = field(default_factory=dict)
    source: Optional[str] = None


@dataclass
class ResolvedWorkflow:
    """
    Ready-to-run workflow: a base workflow with any preset merged in.

    ``steps`` keeps every step, including disabled ones, in resolved order.
    """
    name: str
    description: str
    version: str
    settings: Dict[str, Any]
    steps: List[StepDefinition]
    hooks: Dict[str, List[str]]
    base_workflow: Optional[str] = None
    preset: Optional[str] = None

    @property
    def active_steps(self) -> List[StepDefinition]:
        return [step for step in self.steps if step.enabled]

    def hook_commands(self, hook: str) -> List[str]:
        return list(self.hooks.get(hook, []))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "settings": copy.deepcopy(self.settings),
            "steps": [step.to_dict() for step in self.steps],
            "hooks": copy.deepcopy(self.hooks),
        }
        if self.preset:
            result["preset"] = self.preset
            result["base_workflow"] = self.base_workflow
        return result


@dataclass
class HandlerResult:
    """Aggregated outcome a handler reports back to the driver."""
    succeeded: bool
    items_produced: int = 0
    bytes_produced: int = 0
    error_message: Optional[str] = None
    outputs: List[str] = field(default_factory=list)

    @classmethod
    def failure(cls, message: str, items_produced: int = 0, bytes_produced: int = 0) -> "HandlerResult":
        return cls(
            succeeded=False,
            items_produced=items_produced,
            bytes_produced=bytes_produced,
            error_message=message,
        )


@dataclass
class StepOutcome:
    """Per-step record in the run result."""
    name: str
    type: str
    status: str
    step_number: Optional[int] = None
    items_produced: int = 0
    bytes_produced: int = 0
    duration_ms: int = 0
    used_else: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for key, value in self.__dict__.items():
            if value is not None:
                result[key] = value
        return result


@dataclass
class RunResult:
    """Final report of one engine run."""
    workflow_name: str
    steps: List[StepOutcome]
    context: Dict[str, Any]
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return sum(1 for step in self.steps if step.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for step in self.steps if step.status in ("failed", "cancelled"))

    @property
    def skipped(self) -> int:
        return sum(1 for step in self.steps if step.status in ("skipped", "disabled"))

    @property
    def total(self) -> int:
        return len(self.steps)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0 and not self.cancelled

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        return 0 if self.failed == 0 else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow_name,
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "exit_code": self.exit_code,
            "steps": [step.to_dict() for step in self.steps],
            "context": self.context,
        }
