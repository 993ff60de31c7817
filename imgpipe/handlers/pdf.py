"""PDF image extraction through poppler's pdfimages/pdftoppm."""

import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import HandlerError
from ..models import HandlerResult, StepType
from ..workflow.ranges import RangeResolver
from .base import Handler

logger = logging.getLogger(__name__)


# pdfimages output flag per requested format; ppm/pbm is its native output
PDFIMAGES_FORMAT_FLAGS = {
    'png': ['-png'],
    'jpg': ['-j'],
    'jpeg': ['-j'],
    'tiff': ['-tiff'],
    'ppm': [],
    'pbm': [],
}

PDFTOPPM_FORMAT_FLAGS = {
    'png': ['-png'],
    'jpg': ['-jpeg'],
    'jpeg': ['-jpeg'],
    'tiff': ['-tiff'],
    'ppm': [],
}

PAGES_PATTERN = re.compile(r'^Pages:\s+(\d+)', re.MULTILINE)


class PdfExtractHandler(Handler):
    """
    Extracts images from selected PDF pages.

    ``mode: images`` (default) pulls embedded images with pdfimages;
    ``mode: render`` rasterizes each page with pdftoppm. Pages come from the
    ``pages`` (or ``range``) spec. Outputs are numbered contiguously from 1 in
    page order, independent of the page numbers themselves.
    """

    step_type = StepType.PDF_EXTRACT
    required_tools = ('pdfimages', 'pdfinfo', 'pdftoppm')

    def __init__(self, runner=None):
        super().__init__(runner)
        self.range_resolver = RangeResolver()

    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        source = Path(str(params.get('input') or settings.get('workflow_input') or ''))
        if not source.is_file():
            return HandlerResult.failure(f"PDF file not found: {source}")

        fmt = str(params.get('format', 'png')).lower()
        mode = str(params.get('mode', 'images')).lower()
        flags_table = PDFTOPPM_FORMAT_FLAGS if mode == 'render' else PDFIMAGES_FORMAT_FLAGS
        if fmt not in flags_table:
            return HandlerResult.failure(f"Unsupported {mode} format for PDF extraction: {fmt}")

        selection = self.range_resolver.parse(str(params.get('pages', params.get('range', 'all'))))
        total = self.page_count(source)
        if total is None and not selection.is_bounded:
            return HandlerResult.failure(f"Cannot determine page count of {source} for range '{selection.spec}'")
        pages = selection.indices(total)
        if not pages:
            return HandlerResult.failure(f"No pages selected from {source} by '{selection.spec}'")

        temp_root = Path(str(settings.get('temp_dir') or tempfile.gettempdir()))
        temp_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix='pdf_extract_', dir=str(temp_root)))
        produced: List[Path] = []
        completed = False

        try:
            ordinal = 0
            for page in pages:
                prefix = scratch / f"page{page:05d}_{len(produced):05d}"
                if mode == 'render':
                    dpi = int(params.get('dpi', 150))
                    self.execute(['pdftoppm', '-f', page, '-l', page, '-r', dpi] + flags_table[fmt]
                                 + [source, prefix])
                else:
                    self.execute(['pdfimages', '-f', page, '-l', page] + flags_table[fmt] + [source, prefix])

                extracted = sorted(scratch.glob(f"{prefix.name}*"))
                if not extracted:
                    logger.debug(f"No images on page {page} of {source}")
                for image in extracted:
                    ordinal += 1
                    ext = image.suffix.lstrip('.')
                    target = self.output_path(
                        params, settings, source, ordinal,
                        default_name=f"{source.stem}_{ordinal:03d}.{ext}", ext=ext,
                    )
                    shutil.move(str(image), str(target))
                    produced.append(target)
                self.runner.check_deadline()
            completed = True

        except HandlerError as e:
            return HandlerResult.failure(f"PDF extraction failed: {e}")

        finally:
            shutil.rmtree(scratch, ignore_errors=True)
            if not completed:
                for path in produced:
                    path.unlink(missing_ok=True)

        if not produced:
            return HandlerResult.failure(f"No images found in {source}")

        size = sum(path.stat().st_size for path in produced)
        logger.info(f"Extracted {len(produced)} image(s) from {len(pages)} page(s) of {source.name}")
        return HandlerResult(
            succeeded=True,
            items_produced=len(produced),
            bytes_produced=size,
            outputs=[str(path) for path in produced],
        )

    def page_count(self, source: Path) -> Optional[int]:
        """Number of pages reported by pdfinfo, or None if unavailable."""
        result = self.runner.run(['pdfinfo', str(source)])
        if not result.ok:
            logger.warning(f"pdfinfo failed for {source}: {result.describe_failure()}")
            return None
        match = PAGES_PATTERN.search(result.stdout)
        return int(match.group(1)) if match else None
