"""Embedded image extraction from Office Open XML workbooks."""

import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List

from ..models import HandlerResult, StepType
from ..workflow.ranges import RangeResolver
from .base import Handler

logger = logging.getLogger(__name__)


MEDIA_PREFIX = 'xl/media/'


class ExcelExtractHandler(Handler):
    """
    Copies the images stored under ``xl/media/`` of a workbook.

    The optional ``items`` spec selects media entries by their 1-based position
    in archive name order. ``keep_names`` keeps the archive file names when no
    ``output_template`` is given.
    """

    step_type = StepType.EXCEL_EXTRACT

    def __init__(self, runner=None):
        super().__init__(runner)
        self.range_resolver = RangeResolver()

    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        source = Path(str(params.get('input') or settings.get('workflow_input') or ''))
        if not source.is_file():
            return HandlerResult.failure(f"Excel file not found: {source}")

        selection = self.range_resolver.parse(str(params.get('items', params.get('range', 'all'))))
        keep_names = bool(params.get('keep_names', False))
        produced: List[Path] = []
        completed = False

        try:
            with zipfile.ZipFile(source) as archive:
                members = sorted(
                    name for name in archive.namelist()
                    if name.startswith(MEDIA_PREFIX) and not name.endswith('/')
                )
                if not members:
                    return HandlerResult.failure(f"No embedded images found in {source}")

                for item in selection.items(len(members)):
                    member = PurePosixPath(members[item.source - 1])
                    ext = member.suffix.lstrip('.')
                    default_name = member.name if keep_names else f"{source.stem}_img_{item.ordinal:03d}.{ext}"
                    target = self.output_path(
                        params, settings, Path(member.name), item.ordinal,
                        default_name=default_name, ext=ext,
                    )
                    target.write_bytes(archive.read(str(member)))
                    produced.append(target)
                    self.runner.check_deadline()
            completed = True

        except zipfile.BadZipFile:
            return HandlerResult.failure(
                f"{source} is not an Open XML workbook; legacy .xls files have no media archive"
            )

        finally:
            if not completed:
                for path in produced:
                    path.unlink(missing_ok=True)

        if not produced:
            return HandlerResult.failure(f"No images selected from {source} by '{selection.spec}'")

        size = sum(path.stat().st_size for path in produced)
        logger.info(f"Extracted {len(produced)} image(s) from {source.name}")
        return HandlerResult(
            succeeded=True,
            items_produced=len(produced),
            bytes_produced=size,
            outputs=[str(path) for path in produced],
        )
