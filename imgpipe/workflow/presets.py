"""
Preset merging.

A preset never reorders its base workflow: overrides are matched to base steps
by name and applied in place. Override names that match no base step become
new steps, appended after the base steps in the order the preset mapping
yields them (PyYAML keeps document order; nothing stronger is promised).
"""

import copy
import logging
from typing import Any, Dict, List

from ..exceptions import LoadError, ValidationError
from ..models import (
    PresetDefinition,
    ResolvedWorkflow,
    StepDefinition,
    StepOverride,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dicts, override takes precedence."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class PresetMerger:
    """Produces ResolvedWorkflow values from workflows and presets."""

    def resolve(self, workflow: WorkflowDefinition) -> ResolvedWorkflow:
        """Wrap a plain workflow as a resolved one (deep copies, no overrides)."""
        return ResolvedWorkflow(
            name=workflow.name,
            description=workflow.description,
            version=workflow.version,
            settings=copy.deepcopy(workflow.settings),
            steps=[copy.deepcopy(step) for step in workflow.steps],
            hooks=copy.deepcopy(workflow.hooks),
        )

    def merge(self, base: WorkflowDefinition, preset: PresetDefinition) -> ResolvedWorkflow:
        """
        Apply a preset's overrides to its base workflow.

        Args:
            base: Loaded base workflow
            preset: Preset whose base_workflow names ``base``

        Returns:
            ResolvedWorkflow named after the preset

        Raises:
            LoadError: If an override names a missing step and gives no type
        """
        errors: List[ValidationError] = []

        settings = copy.deepcopy(base.settings)
        # Settings are a shallow key overwrite
        settings.update(copy.deepcopy(preset.settings))

        steps = []
        for step in base.steps:
            override = preset.steps.get(step.name)
            if override is None:
                steps.append(copy.deepcopy(step))
            else:
                steps.append(self._apply(step, override))
                logger.debug(f"Preset '{preset.name}' overrides step '{step.name}'")

        base_names = {step.name for step in base.steps}
        for name, override in preset.steps.items():
            if name in base_names:
                continue
            if override.type is None:
                errors.append(ValidationError(
                    f"Preset '{preset.name}': override for step '{name}' matches no step in "
                    f"base workflow '{base.name}' and has no 'type' to create it",
                    preset.source or "",
                ))
                continue
            steps.append(self._create(override))
            logger.debug(f"Preset '{preset.name}' adds step '{name}'")

        if errors:
            raise LoadError(errors)

        hooks = copy.deepcopy(base.hooks)
        for hook, commands in preset.hooks.items():
            hooks.setdefault(hook, []).extend(commands)

        return ResolvedWorkflow(
            name=preset.name,
            description=preset.description or base.description,
            version=base.version,
            settings=settings,
            steps=steps,
            hooks=hooks,
            base_workflow=base.name,
            preset=preset.name,
        )

    def _apply(self, step: StepDefinition, override: StepOverride) -> StepDefinition:
        merged = copy.deepcopy(step)
        if override.params is not None:
            merged.params = deep_merge(step.params, override.params)
        if override.else_params is not None:
            merged.else_params = deep_merge(step.else_params or {}, override.else_params)
        if override.type is not None:
            merged.type = override.type
        if override.has_condition:
            merged.condition = override.condition
        if override.enabled is not None:
            merged.enabled = override.enabled
        if override.description is not None:
            merged.description = override.description
        return merged

    def _create(self, override: StepOverride) -> StepDefinition:
        return StepDefinition(
            name=override.name,
            type=override.type,
            description=override.description or "",
            condition=override.condition,
            params=copy.deepcopy(override.params or {}),
            else_params=copy.deepcopy(override.else_params),
            enabled=True if override.enabled is None else override.enabled,
        )
