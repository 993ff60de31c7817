"""Workflow and preset loading with strict validation."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from imgpipe.config import Config
from imgpipe.exceptions import LoadError, RangeSpecError, ValidationError
from imgpipe.handlers.imaging import GRAVITY
from imgpipe.models import (
    HOOK_NAMES,
    PresetDefinition,
    ResolvedWorkflow,
    StepDefinition,
    StepOverride,
    StepType,
    WorkflowDefinition,
)
from imgpipe.variables.substitution import KNOWN_NAMES, TemplateSubstitutor
from imgpipe.workflow.conditions import ConditionEvaluator
from imgpipe.workflow.presets import PresetMerger
from imgpipe.workflow.ranges import RangeResolver

logger = logging.getLogger(__name__)


BUILTIN_CATALOG = Path(__file__).parent / "builtin_workflows.yaml"

WORKFLOW_FIELDS = {'name', 'description', 'version', 'settings', 'steps', 'hooks'}
PRESET_FIELDS = {'name', 'description', 'base_workflow', 'overrides'}
OVERRIDE_SECTIONS = {'settings', 'steps', 'hooks'}
STEP_FIELDS = {'name', 'type', 'description', 'condition', 'params', 'else', 'enabled'}
OVERRIDE_FIELDS = STEP_FIELDS - {'name'}

RANGE_PARAMS = ('pages', 'range', 'items')
DIMENSION_PARAMS = ('width', 'height', 'max_width', 'max_height')
PDF_FORMATS = {'png', 'jpg', 'jpeg', 'ppm', 'pbm', 'tiff'}
IMAGE_FORMATS = {'jpg', 'jpeg', 'png', 'webp', 'tiff', 'bmp', 'gif'}
OCR_FORMATS = {'txt', 'pdf', 'hocr', 'tsv'}
POSITIONS = set(GRAVITY)
DANGEROUS_SCRIPT_PATTERN = re.compile(r'rm\s+-rf|sudo|\bsu\s|chmod\s+777')


class WorkflowLoader:
    """
    Loads workflows and presets by name or path and merges them.

    Name lookup order: an existing file path, the ``workflows``/``presets``
    sections of the user configuration, ``<config_dir>/workflows/<name>.yaml``
    and ``<config_dir>/presets/<name>.yaml``, then the packaged built-ins.
    """

    def __init__(self, config: Optional[Config] = None):
        """Initialize loader with the user configuration."""
        self.config = config or Config()
        self.errors: List[ValidationError] = []
        self.warnings: List[str] = []
        self.substitutor = TemplateSubstitutor()
        self.condition_evaluator = ConditionEvaluator()
        self.range_resolver = RangeResolver()
        self.merger = PresetMerger()
        self._builtin: Optional[Dict[str, Any]] = None

    def load(self, ref: Union[str, Path]) -> ResolvedWorkflow:
        """
        Load a workflow or preset and return the merged, validated result.

        Args:
            ref: Workflow/preset name or path to a YAML file

        Raises:
            LoadError: On any load, merge or validation problem
        """
        self.errors = []
        self.warnings = []

        kind, document, source = self._locate(ref)
        if kind == 'preset':
            preset = self._parse_preset(document, source, default_name=str(ref))
            self._raise_if_errors()
            base = self.load_workflow(preset.base_workflow)
            resolved = self.merger.merge(base, preset)
        else:
            workflow = self._parse_workflow(document, source, default_name=str(ref))
            self._raise_if_errors()
            resolved = self.merger.resolve(workflow)

        self.validate_resolved(resolved)
        self._raise_if_errors()

        for warning in self.warnings:
            logger.warning(warning)
        return resolved

    def validate(self, resolved: ResolvedWorkflow) -> ResolvedWorkflow:
        """
        Validate an already merged workflow the same way ``load`` does.

        Raises:
            LoadError: On any validation problem
        """
        self.errors = []
        self.warnings = []
        self.validate_resolved(resolved)
        self._raise_if_errors()

        for warning in self.warnings:
            logger.warning(warning)
        return resolved

    def load_workflow(self, ref: Union[str, Path]) -> WorkflowDefinition:
        """Load a plain workflow definition (never a preset)."""
        kind, document, source = self._locate(ref, kinds=('workflow',))
        workflow = self._parse_workflow(document, source, default_name=str(ref))
        self._raise_if_errors()
        return workflow

    def load_preset(self, ref: Union[str, Path]) -> PresetDefinition:
        """Load a preset definition without merging it."""
        kind, document, source = self._locate(ref, kinds=('preset',))
        preset = self._parse_preset(document, source, default_name=str(ref))
        self._raise_if_errors()
        return preset

    def preset_document(self, ref: Union[str, Path]) -> Dict[str, Any]:
        """Return the raw, unmerged document of a preset."""
        return self._locate(ref, kinds=('preset',))[1]

    def list_workflows(self) -> Dict[str, str]:
        """Return available workflow names mapped to where they come from."""
        return self._list('workflow')

    def list_presets(self) -> Dict[str, str]:
        """Return available preset names mapped to where they come from."""
        return self._list('preset')

    # ---- lookup ----

    def _list(self, kind: str) -> Dict[str, str]:
        section = 'workflows' if kind == 'workflow' else 'presets'
        found: Dict[str, str] = {}
        for name in self._builtin_catalog().get(section) or {}:
            found[name] = 'builtin'
        if self.config.config_dir is not None:
            directory = self.config.config_dir / section
            if directory.is_dir():
                for path in sorted(directory.glob('*.y*ml')):
                    found[path.stem] = str(path)
        for name in getattr(self.config, section):
            found[name] = str(self.config.path) if self.config.path else 'config'
        return dict(sorted(found.items()))

    def _locate(self, ref: Union[str, Path],
                kinds: Tuple[str, ...] = ('workflow', 'preset')) -> Tuple[str, Dict[str, Any], str]:
        """Find a definition document; returns (kind, document, source)."""
        path = Path(ref).expanduser()
        if path.is_file():
            document = self._read_yaml(path)
            kind = 'preset' if 'base_workflow' in document else 'workflow'
            if kind not in kinds:
                raise LoadError.single(f"Expected a {kinds[0]} definition, found a {kind}", str(path))
            return kind, document, str(path)

        name = str(ref)
        for kind in kinds:
            section = 'workflows' if kind == 'workflow' else 'presets'

            configured = getattr(self.config, section)
            if name in configured:
                return kind, self._as_document(configured[name], name), f"config:{section}.{name}"

            if self.config.config_dir is not None:
                for suffix in ('.yaml', '.yml'):
                    candidate = self.config.config_dir / section / f"{name}{suffix}"
                    if candidate.is_file():
                        return kind, self._read_yaml(candidate), str(candidate)

            builtin = self._builtin_catalog().get(section) or {}
            if name in builtin:
                return kind, self._as_document(builtin[name], name), f"builtin:{section}.{name}"

        label = ' or '.join(kinds)
        raise LoadError.single(f"{label.capitalize()} not found: {name}")

    def _builtin_catalog(self) -> Dict[str, Any]:
        if self._builtin is None:
            self._builtin = self._read_yaml(BUILTIN_CATALOG)
        return self._builtin

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise LoadError.single(f"Failed to load YAML: {e}", str(path))

        if document is None or not isinstance(document, dict):
            raise LoadError.single("Definition must be a YAML object/dictionary", str(path))
        return document

    def _as_document(self, value: Any, name: str) -> Dict[str, Any]:
        if not isinstance(value, dict):
            raise LoadError.single(f"Definition '{name}' must be a dictionary")
        return value

    # ---- parsing ----

    def _parse_workflow(self, document: Dict[str, Any], source: str,
                        default_name: str = "") -> WorkflowDefinition:
        """Validate and convert a workflow document."""
        for key in document:
            if key not in WORKFLOW_FIELDS:
                self._add_error(f"Unknown workflow field '{key}'", source)

        name = self._string_field(document, 'name', source) or Path(default_name).stem
        settings = document.get('settings') or {}
        if not isinstance(settings, dict):
            self._add_error("'settings' must be a dictionary", source)
            settings = {}

        steps_doc = document.get('steps')
        steps: List[StepDefinition] = []
        if not steps_doc:
            self._add_error("'steps' field is required and must not be empty", source)
        elif isinstance(steps_doc, dict):
            self._add_error("'steps' must be a list of step definitions, not a mapping", source)
        elif not isinstance(steps_doc, list):
            self._add_error("'steps' must be a list", source)
        else:
            steps = self._parse_steps(steps_doc, source)

        hooks = self._parse_hooks(document.get('hooks'), source, 'hooks')

        version = document.get('version', '1.0')
        return WorkflowDefinition(
            name=name,
            description=self._string_field(document, 'description', source) or "",
            version=str(version),
            settings=dict(settings),
            steps=steps,
            hooks=hooks,
            source=source,
        )

    def _parse_steps(self, steps_doc: List[Any], source: str) -> List[StepDefinition]:
        steps = []
        step_names = set()

        for i, step in enumerate(steps_doc):
            if not isinstance(step, dict):
                self._add_error(f"Step {i} must be a dictionary", source)
                continue

            name = step.get('name')
            if not name:
                self._add_error(f"Step {i} missing required 'name' field", source)
                name = f"<step_{i}>"
            elif not isinstance(name, str):
                self._add_error(f"Step {i} name must be a string, got {type(name).__name__}", source)
                name = f"<step_{i}>"
            elif name in step_names:
                self._add_error(f"Duplicate step name '{name}'", source)
            else:
                step_names.add(name)

            for key in step:
                if key not in STEP_FIELDS:
                    self._add_error(f"Step '{name}': unknown field '{key}'", source)

            step_type = self._step_type(step.get('type'), name, source, required=True)
            params = self._mapping(step.get('params'), f"Step '{name}': params", source)
            else_params = None
            if 'else' in step:
                else_params = self._mapping(step['else'], f"Step '{name}': else", source)

            condition = step.get('condition')
            if condition is not None and not isinstance(condition, str):
                self._add_error(f"Step '{name}': condition must be a string", source)
                condition = None

            enabled = step.get('enabled', True)
            if not isinstance(enabled, bool):
                self._add_error(f"Step '{name}': enabled must be true or false", source)
                enabled = True

            if step_type is None:
                continue
            steps.append(StepDefinition(
                name=name,
                type=step_type,
                description=str(step.get('description') or ""),
                condition=condition,
                params=params,
                else_params=else_params,
                enabled=enabled,
            ))

        return steps

    def _parse_preset(self, document: Dict[str, Any], source: str,
                      default_name: str = "") -> PresetDefinition:
        """Validate and convert a preset document."""
        for key in document:
            if key not in PRESET_FIELDS:
                self._add_error(f"Unknown preset field '{key}'", source)

        name = self._string_field(document, 'name', source) or Path(default_name).stem
        base_workflow = self._string_field(document, 'base_workflow', source)
        if not base_workflow:
            self._add_error(f"Preset '{name}' missing required 'base_workflow' field", source)

        overrides = document.get('overrides') or {}
        if not isinstance(overrides, dict):
            self._add_error(f"Preset '{name}': overrides must be a dictionary", source)
            overrides = {}
        for key in overrides:
            if key not in OVERRIDE_SECTIONS:
                self._add_error(f"Preset '{name}': unknown overrides section '{key}'", source)

        settings = overrides.get('settings') or {}
        if not isinstance(settings, dict):
            self._add_error(f"Preset '{name}': overrides.settings must be a dictionary", source)
            settings = {}

        step_overrides = self._parse_step_overrides(overrides.get('steps'), name, source)
        hooks = self._parse_hooks(overrides.get('hooks'), source, 'overrides.hooks')

        return PresetDefinition(
            name=name,
            base_workflow=base_workflow or "",
            description=self._string_field(document, 'description', source) or "",
            settings=dict(settings),
            steps=step_overrides,
            hooks=hooks,
            source=source,
        )

    def _parse_step_overrides(self, steps_doc: Any, preset_name: str,
                              source: str) -> Dict[str, StepOverride]:
        if steps_doc is None:
            return {}
        if isinstance(steps_doc, list):
            # Overrides are addressed by name, never by position
            self._add_error(
                f"Preset '{preset_name}': overrides.steps must be a mapping of step name "
                f"to override, not a sequence", source
            )
            return {}
        if not isinstance(steps_doc, dict):
            self._add_error(f"Preset '{preset_name}': overrides.steps must be a dictionary", source)
            return {}

        overrides = {}
        for step_name, fragment in steps_doc.items():
            label = f"Preset '{preset_name}' step '{step_name}'"
            if fragment is None:
                fragment = {}
            if not isinstance(fragment, dict):
                self._add_error(f"{label}: override must be a dictionary", source)
                continue
            for key in fragment:
                if key not in OVERRIDE_FIELDS:
                    self._add_error(f"{label}: unknown override field '{key}'", source)

            override = StepOverride(name=str(step_name))
            if 'params' in fragment:
                override.params = self._mapping(fragment['params'], f"{label}: params", source)
            if 'else' in fragment:
                override.else_params = self._mapping(fragment['else'], f"{label}: else", source)
            if 'type' in fragment:
                override.type = self._step_type(fragment['type'], step_name, source, required=True)
            if 'condition' in fragment:
                condition = fragment['condition']
                if condition is not None and not isinstance(condition, str):
                    self._add_error(f"{label}: condition must be a string", source)
                else:
                    override.condition = condition
                    override.has_condition = True
            if 'enabled' in fragment:
                if not isinstance(fragment['enabled'], bool):
                    self._add_error(f"{label}: enabled must be true or false", source)
                else:
                    override.enabled = fragment['enabled']
            if 'description' in fragment:
                override.description = str(fragment['description'] or "")
            overrides[str(step_name)] = override

        return overrides

    def _parse_hooks(self, hooks_doc: Any, source: str, label: str) -> Dict[str, List[str]]:
        if hooks_doc is None:
            return {}
        if not isinstance(hooks_doc, dict):
            self._add_error(f"'{label}' must be a dictionary", source)
            return {}

        hooks = {}
        for hook, commands in hooks_doc.items():
            if hook not in HOOK_NAMES:
                self._add_error(f"Unknown hook '{hook}' in {label}; expected one of {list(HOOK_NAMES)}", source)
                continue
            if commands is None:
                commands = []
            if not isinstance(commands, list) or not all(isinstance(c, str) for c in commands):
                self._add_error(f"{label}.{hook} must be a list of command strings", source)
                continue
            hooks[hook] = list(commands)
        return hooks

    def _step_type(self, value: Any, step_name: str, source: str,
                   required: bool = False) -> Optional[StepType]:
        if value is None:
            if required:
                self._add_error(f"Step '{step_name}' missing required 'type' field", source)
            return None
        try:
            return StepType(value)
        except ValueError:
            valid = [t.value for t in StepType]
            self._add_error(f"Step '{step_name}': unknown step type '{value}', expected one of {valid}", source)
            return None

    def _mapping(self, value: Any, label: str, source: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            self._add_error(f"{label} must be a dictionary", source)
            return {}
        return dict(value)

    def _string_field(self, document: Dict[str, Any], key: str, source: str) -> Optional[str]:
        value = document.get(key)
        if value is None:
            return None
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            self._add_error(f"'{key}' must be a string, got {type(value).__name__}", source)
            return None
        return str(value)

    # ---- resolved workflow validation ----

    def validate_resolved(self, resolved: ResolvedWorkflow) -> None:
        """
        Validate a merged workflow: names, conditions, templates and per-type params.

        Errors accumulate on the loader; warnings are collected for logging.
        """
        source = f"workflow '{resolved.name}'"
        seen = set()
        has_extraction = False

        self._check_timeout(resolved.settings.get('timeout'), "Setting", source)

        for index, step in enumerate(resolved.steps):
            if step.name in seen:
                self._add_error(f"Duplicate step name '{step.name}'", source)
            seen.add(step.name)

            for message in self.condition_evaluator.validate(step.condition):
                self._add_error(f"Step '{step.name}': {message}", source)

            for message in self.substitutor.check_format_specs([step.params, step.else_params or {}]):
                self._add_error(f"Step '{step.name}': {message}", source)

            for name in sorted(self.substitutor.placeholders([step.params, step.else_params or {}])):
                if name not in KNOWN_NAMES:
                    self._add_warning(f"Step '{step.name}': Unknown template variable '{{{name}}}'")

            effective = dict(step.params)
            if step.else_params:
                effective.update(step.else_params)
            self._validate_step_params(step, step.params, source)
            if step.else_params:
                self._validate_step_params(step, effective, source)

            if step.type.is_extraction:
                has_extraction = True
            elif step.type in (StepType.CONVERT, StepType.RESIZE, StepType.WATERMARK):
                if not has_extraction and index > 0:
                    self._add_warning(
                        f"Step '{step.name}': image processing step found without prior extraction step"
                    )

        for hook, commands in resolved.hooks.items():
            for message in self.substitutor.check_format_specs(commands):
                self._add_error(f"Hook '{hook}': {message}", source)

    def _validate_step_params(self, step: StepDefinition, params: Dict[str, Any], source: str):
        label = f"Step '{step.name}'"
        self._check_timeout(params.get('timeout'), label, source)

        def require(*keys):
            if not any(self._present(params.get(k)) for k in keys):
                names = "' or '".join(keys)
                self._add_error(f"{label}: missing required parameter '{names}'", source)

        if step.type in (StepType.PDF_EXTRACT, StepType.EXCEL_EXTRACT):
            require('input')
            require('output_dir')
            for key in RANGE_PARAMS:
                value = params.get(key)
                if self._is_static(value):
                    try:
                        self.range_resolver.parse(value if isinstance(value, str) else str(value))
                    except RangeSpecError as e:
                        self._add_error(f"{label}: {e}", source)
            if step.type == StepType.PDF_EXTRACT:
                self._warn_unknown(params.get('format'), PDF_FORMATS, f"{label}: format", "pdfimages")

        elif step.type == StepType.CONVERT:
            require('format')
            self._warn_unknown(params.get('format'), IMAGE_FORMATS, f"{label}: format", "ImageMagick")
            self._check_int_range(params, 'quality', 1, 100, label, source)

        elif step.type == StepType.RESIZE:
            if not any(self._present(params.get(k)) for k in DIMENSION_PARAMS):
                self._add_error(
                    f"{label}: must specify at least one dimension "
                    f"(width, height, max_width, or max_height)", source
                )
            for key in DIMENSION_PARAMS:
                self._check_int_range(params, key, 1, None, label, source)
            self._check_int_range(params, 'quality', 1, 100, label, source)

        elif step.type == StepType.WATERMARK:
            require('watermark', 'watermark_file', 'text')
            self._warn_unknown(params.get('position'), POSITIONS, f"{label}: position", "ImageMagick")
            self._check_int_range(params, 'transparency', 0, 100, label, source)

        elif step.type == StepType.OCR:
            require('input')
            self._warn_unknown(params.get('output_format'), OCR_FORMATS, f"{label}: output format", "Tesseract")

        elif step.type == StepType.CUSTOM:
            require('script')
            script = params.get('script')
            if isinstance(script, str):
                if len(script.strip()) < 10:
                    self._add_warning(f"{label}: script content seems very short, may be incomplete")
                if DANGEROUS_SCRIPT_PATTERN.search(script):
                    self._add_warning(f"{label}: script contains potentially dangerous commands")

    def _check_int_range(self, params: Dict[str, Any], key: str, low: int,
                         high: Optional[int], label: str, source: str):
        value = params.get(key)
        if not self._is_static(value):
            return
        number = value if isinstance(value, int) and not isinstance(value, bool) else None
        if isinstance(value, str) and value.isdigit():
            number = int(value)
        if number is None or number < low or (high is not None and number > high):
            bound = f"between {low} and {high}" if high is not None else "a positive integer"
            self._add_error(f"{label}: parameter '{key}' must be {bound}, got '{value}'", source)

    def _check_timeout(self, value: Any, label: str, source: str):
        if not self._is_static(value) or value == "":
            return
        try:
            seconds = float(value) if not isinstance(value, bool) else None
        except (TypeError, ValueError):
            seconds = None
        if seconds is None or seconds <= 0:
            self._add_error(f"{label}: 'timeout' must be a positive number of seconds, got '{value}'", source)

    def _warn_unknown(self, value: Any, allowed: set, label: str, tool: str):
        if self._is_static(value) and str(value).lower() not in allowed:
            self._add_warning(f"{label} '{value}' may not be supported by {tool}")

    @staticmethod
    def _present(value: Any) -> bool:
        return value is not None and value != ""

    @staticmethod
    def _is_static(value: Any) -> bool:
        if value is None:
            return False
        return not (isinstance(value, str) and '{' in value)

    def _add_error(self, message: str, path: str = "", exit_code: int = 2):
        """Add validation error."""
        self.errors.append(ValidationError(message, path, exit_code))

    def _add_warning(self, message: str):
        self.warnings.append(message)

    def _raise_if_errors(self):
        """Raise LoadError with accumulated errors."""
        if self.errors:
            errors, self.errors = self.errors, []
            raise LoadError(errors)
