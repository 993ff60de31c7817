"""Text recognition through tesseract."""

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..models import HandlerResult, StepType
from .base import Handler, WorkItem

logger = logging.getLogger(__name__)


# tesseract appends the extension itself; txt needs no config name
OUTPUT_CONFIGS = {
    'txt': [],
    'pdf': ['pdf'],
    'hocr': ['hocr'],
    'tsv': ['tsv'],
}


class OcrHandler(Handler):
    """Runs tesseract over each input image."""

    step_type = StepType.OCR
    required_tools = ('tesseract',)

    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        fmt = str(params.get('output_format', 'txt')).lower()
        if fmt not in OUTPUT_CONFIGS:
            return HandlerResult.failure(f"Unsupported OCR output format: {fmt}")
        language = str(params.get('language', 'eng'))

        def work(item: WorkItem) -> Path:
            target = self.output_path(
                params, settings, item.source, item.ordinal,
                default_name=f"{item.source.stem}.{fmt}", ext=fmt,
            )
            # tesseract takes an output base without extension
            base = target.with_suffix('') if target.suffix == f".{fmt}" else target
            argv: List[Any] = ['tesseract', item.source, base, '-l', language]
            self.execute(argv + OUTPUT_CONFIGS[fmt])
            return base.with_name(f"{base.name}.{fmt}")

        items = self.work_items(self.collect_inputs(params, settings))
        return self.run_batch(items, work, self.parallel_jobs(params, settings))
