"""Run-scoped execution context.

One ExecutionContext belongs to one engine run. Only the workflow executor
mutates it, after each step returns.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .models import HandlerResult, StepType


PDF_SUFFIXES = {'.pdf'}
EXCEL_SUFFIXES = {'.xlsx', '.xlsm', '.xls'}


@dataclass
class ExecutionContext:
    """
    Mutable state threaded through a run.

    ``image_count``, ``total_size`` and ``extracted_count`` stay None until a
    handler reports them, so conditions over them are false until then.
    """
    workflow_input: str
    output_dir: str
    temp_dir: str
    workflow_name: str
    step_name: Optional[str] = None
    counter: int = 1
    image_count: Optional[int] = None
    total_size: Optional[int] = None
    processed_count: int = 0
    failed_count: int = 0
    extracted_count: Optional[int] = None
    step_number: int = 0
    failed_step: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    _started_monotonic: float = field(default_factory=time.monotonic, repr=False)

    @property
    def workflow_duration(self) -> float:
        """Seconds elapsed since the run started."""
        return round(time.monotonic() - self._started_monotonic, 3)

    @property
    def input_path(self) -> Path:
        return Path(self.workflow_input)

    @property
    def pdf_name(self) -> Optional[str]:
        if self.input_path.suffix.lower() in PDF_SUFFIXES:
            return self.input_path.stem
        return None

    @property
    def excel_name(self) -> Optional[str]:
        if self.input_path.suffix.lower() in EXCEL_SUFFIXES:
            return self.input_path.stem
        return None

    def begin_step(self, step_name: str) -> int:
        """Enter condition checking for a step; returns its step number."""
        self.step_name = step_name
        self.step_number += 1
        return self.step_number

    def record_success(self, step_type: StepType, result: HandlerResult) -> None:
        """Fold a successful handler result into the running totals."""
        self.processed_count += 1
        self._add_output(step_type, result)

    def record_failure(self, step_name: str, message: str) -> None:
        """Record a failed step. ``failed_step`` keeps the first failure."""
        self.failed_count += 1
        if self.failed_step is None:
            self.failed_step = step_name
        self.error_message = message

    def _add_output(self, step_type: StepType, result: HandlerResult) -> None:
        items = max(result.items_produced, 0)
        self.image_count = (self.image_count or 0) + items
        self.total_size = (self.total_size or 0) + max(result.bytes_produced, 0)
        if step_type.is_extraction:
            self.extracted_count = (self.extracted_count or 0) + items
        if items > 0:
            self.counter += 1

    def variables(self) -> Dict[str, Any]:
        """
        Bindings for templates and conditions.

        Unset values are None and therefore left unrendered by the substitutor.
        timestamp, date and time are fixed at run start so every step agrees.
        """
        now = self.started_at
        return {
            'workflow_input': self.workflow_input,
            'output_dir': self.output_dir,
            'temp_dir': self.temp_dir,
            'workflow_name': self.workflow_name,
            'timestamp': now.strftime('%Y%m%d_%H%M%S'),
            'date': now.strftime('%Y-%m-%d'),
            'time': now.strftime('%H:%M:%S'),
            'step_name': self.step_name,
            'step_number': self.step_number,
            'pdf_name': self.pdf_name,
            'excel_name': self.excel_name,
            'counter': self.counter,
            'extracted_count': self.extracted_count,
            'processed_count': self.processed_count,
            'failed_count': self.failed_count,
            'image_count': self.image_count,
            'total_size': self.total_size,
            'failed_step': self.failed_step,
            'error_message': self.error_message,
            'workflow_duration': self.workflow_duration,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Final snapshot reported in the run result."""
        snapshot = self.variables()
        for key in ('timestamp', 'date', 'time'):
            snapshot.pop(key)
        snapshot['started_at'] = self.started_at.isoformat()
        return snapshot
