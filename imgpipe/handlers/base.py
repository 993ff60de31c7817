"""
Common machinery for step handlers.

A handler receives the step's merged, substituted params and the run settings
and returns one aggregated HandlerResult. Handlers never touch the execution
context; per-item placeholders (counter, input_name, input_ext) inside
``*_template`` params are rendered here, once per produced item.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import HandlerError, StepTimeoutError
from ..exec.command_runner import CommandResult, CommandRunner
from ..models import HandlerResult, StepType
from ..variables.substitution import TemplateSubstitutor

logger = logging.getLogger(__name__)


IMAGE_SUFFIXES = {'.jpg', '.jpeg', '.png', '.webp', '.tiff', '.tif', '.bmp', '.gif', '.ppm', '.pbm'}


@dataclass
class WorkItem:
    """One input file and the output ordinal it is written under."""
    source: Path
    ordinal: int


class Handler(ABC):
    """Base class for all step handlers."""

    step_type: StepType
    required_tools: Tuple[str, ...] = ()

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()
        self.substitutor = TemplateSubstitutor()

    @abstractmethod
    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        """Perform the step's work."""

    def missing_tools(self) -> List[str]:
        """External programs this handler needs that are not on PATH."""
        return [tool for tool in self.required_tools if not self.runner.which(tool)]

    def collect_inputs(self, params: Dict[str, Any], settings: Dict[str, Any]) -> List[Path]:
        """
        Resolve the image files a batch step works on.

        ``input`` may be a file, a directory or a glob pattern; ``input_dir``
        is a directory. Without either, the workflow input is used.
        """
        spec = params.get('input') or params.get('input_dir') or settings.get('workflow_input')
        if not spec:
            return []

        path = Path(str(spec)).expanduser()
        if any(ch in str(spec) for ch in '*?['):
            parent = path.parent
            return sorted(p for p in parent.glob(path.name) if p.is_file())
        if path.is_dir():
            candidates = path.rglob('*') if params.get('recursive') else path.iterdir()
            return sorted(p for p in candidates if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)
        if path.is_file():
            return [path]
        return []

    def output_dir(self, params: Dict[str, Any], settings: Dict[str, Any]) -> Path:
        return Path(str(params.get('output_dir') or settings.get('output_dir') or '.'))

    def output_path(
        self,
        params: Dict[str, Any],
        settings: Dict[str, Any],
        source: Path,
        ordinal: int,
        default_name: str,
        ext: Optional[str] = None,
    ) -> Path:
        """
        Destination for one produced item.

        Renders ``output_template`` with the item bindings when present,
        otherwise places ``default_name`` in the output directory. Parent
        directories are created.
        """
        template = params.get('output_template')
        if template:
            bindings = {
                'counter': ordinal,
                'input_name': source.stem,
                'input_ext': ext if ext is not None else source.suffix.lstrip('.'),
            }
            target = Path(self.substitutor.substitute(str(template), bindings))
        else:
            target = self.output_dir(params, settings) / default_name
        target.parent.mkdir(parents=True, exist_ok=True)
        return target

    def parallel_jobs(self, params: Dict[str, Any], settings: Dict[str, Any]) -> int:
        for source in (params, settings):
            for key in ('parallel_jobs', 'max_parallel'):
                value = source.get(key)
                if value is not None:
                    try:
                        return max(1, int(value))
                    except (TypeError, ValueError):
                        logger.warning(f"Ignoring invalid {key} '{value}'")
        return 1

    def quality(self, params: Dict[str, Any], settings: Dict[str, Any], fmt: str) -> Optional[int]:
        """Explicit quality param, else the per-format default from settings."""
        if params.get('quality') is not None:
            return int(params['quality'])
        defaults = settings.get('quality')
        if isinstance(defaults, dict) and fmt:
            value = defaults.get(fmt.lower())
            return int(value) if value is not None else None
        return None

    def execute(self, argv: List[Any]) -> CommandResult:
        """Run one tool invocation; a non-zero exit raises HandlerError."""
        result = self.runner.run([str(token) for token in argv])
        if not result.ok:
            raise HandlerError(result.describe_failure())
        return result

    def run_batch(
        self,
        items: List[WorkItem],
        work: Callable[[WorkItem], Path],
        jobs: int,
    ) -> HandlerResult:
        """
        Process items, fanning out to ``jobs`` worker threads.

        ``work`` returns the produced file or raises HandlerError. The outcome
        is aggregated into one HandlerResult; any failed item fails the step.
        A step timeout cancels the remaining items and propagates.
        """
        if not items:
            return HandlerResult.failure("No input images found")

        outputs: Dict[int, Path] = {}
        errors: List[str] = []

        with ThreadPoolExecutor(max_workers=min(jobs, len(items))) as executor:
            futures = {executor.submit(work, item): item for item in items}

            for future in as_completed(futures):
                item = futures[future]
                try:
                    outputs[item.ordinal] = future.result()
                except StepTimeoutError:
                    for pending in futures:
                        pending.cancel()
                    raise
                except (HandlerError, OSError) as e:
                    logger.error(f"Failed to process '{item.source}': {e}")
                    errors.append(f"{item.source.name}: {e}")

        produced = [outputs[ordinal] for ordinal in sorted(outputs)]
        size = sum(path.stat().st_size for path in produced if path.exists())
        logger.info(f"Processed {len(produced)}/{len(items)} item(s)")

        if errors:
            return HandlerResult(
                succeeded=False,
                items_produced=len(produced),
                bytes_produced=size,
                error_message=f"{len(errors)} of {len(items)} item(s) failed: {errors[0]}",
                outputs=[str(path) for path in produced],
            )
        return HandlerResult(
            succeeded=True,
            items_produced=len(produced),
            bytes_produced=size,
            outputs=[str(path) for path in produced],
        )

    @staticmethod
    def work_items(sources: List[Path]) -> List[WorkItem]:
        return [WorkItem(source=source, ordinal=ordinal) for ordinal, source in enumerate(sources, start=1)]
