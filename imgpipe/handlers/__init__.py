"""
Step handlers.
One handler class per step type, selected through the HANDLERS table.
"""

from typing import Dict, Type

from ..models import StepType
from .base import Handler, WorkItem
from .custom import CustomScriptHandler
from .excel import ExcelExtractHandler
from .imaging import ConvertHandler, ResizeHandler, WatermarkHandler
from .ocr import OcrHandler
from .pdf import PdfExtractHandler

HANDLERS: Dict[StepType, Type[Handler]] = {
    StepType.PDF_EXTRACT: PdfExtractHandler,
    StepType.EXCEL_EXTRACT: ExcelExtractHandler,
    StepType.CONVERT: ConvertHandler,
    StepType.RESIZE: ResizeHandler,
    StepType.WATERMARK: WatermarkHandler,
    StepType.OCR: OcrHandler,
    StepType.CUSTOM: CustomScriptHandler,
}


def get_handler(step_type: StepType) -> Type[Handler]:
    """Handler class registered for a step type."""
    return HANDLERS[StepType(step_type)]


__all__ = [
    "Handler",
    "WorkItem",
    "HANDLERS",
    "get_handler",
    "PdfExtractHandler",
    "ExcelExtractHandler",
    "ConvertHandler",
    "ResizeHandler",
    "WatermarkHandler",
    "OcrHandler",
    "CustomScriptHandler",
]
