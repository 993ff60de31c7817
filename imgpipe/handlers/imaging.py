"""Raster image handlers backed by ImageMagick."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import HandlerResult, StepType
from .base import Handler, WorkItem

logger = logging.getLogger(__name__)


# Watermark position names to ImageMagick gravity
GRAVITY = {
    'top-left': 'northwest',
    'top': 'north',
    'top-center': 'north',
    'top-right': 'northeast',
    'left': 'west',
    'center-left': 'west',
    'center': 'center',
    'right': 'east',
    'center-right': 'east',
    'bottom-left': 'southwest',
    'bottom': 'south',
    'bottom-center': 'south',
    'bottom-right': 'southeast',
}
GRAVITY.update((name, name) for name in (
    'northwest', 'north', 'northeast', 'west', 'center', 'east',
    'southwest', 'south', 'southeast',
))


class ConvertHandler(Handler):
    """Converts each input image to ``format``."""

    step_type = StepType.CONVERT
    required_tools = ('convert',)

    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        fmt = str(params.get('format', '')).lower()
        if not fmt:
            return HandlerResult.failure("convert step requires 'format'")
        quality = self.quality(params, settings, fmt)

        def work(item: WorkItem) -> Path:
            target = self.output_path(
                params, settings, item.source, item.ordinal,
                default_name=f"{item.source.stem}.{fmt}", ext=fmt,
            )
            argv: List[Any] = ['convert', item.source]
            if params.get('strip'):
                argv.append('-strip')
            if quality is not None:
                argv += ['-quality', quality]
            self.execute(argv + [target])
            return target

        items = self.work_items(self.collect_inputs(params, settings))
        return self.run_batch(items, work, self.parallel_jobs(params, settings))


class ResizeHandler(Handler):
    """
    Resizes each input image.

    ``width``/``height`` give the target box; with ``maintain_aspect: false``
    the image is stretched to it. ``max_width``/``max_height`` only shrink.
    """

    step_type = StepType.RESIZE
    required_tools = ('convert',)

    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        geometry = self.geometry(params)
        if geometry is None:
            return HandlerResult.failure(
                "resize step requires width, height, max_width or max_height"
            )
        fmt = str(params.get('format', '')).lower()

        def work(item: WorkItem) -> Path:
            ext = fmt or item.source.suffix.lstrip('.')
            target = self.output_path(
                params, settings, item.source, item.ordinal,
                default_name=f"{item.source.stem}_resized.{ext}", ext=ext,
            )
            argv: List[Any] = ['convert', item.source, '-resize', geometry]
            quality = self.quality(params, settings, target.suffix.lstrip('.'))
            if quality is not None:
                argv += ['-quality', quality]
            self.execute(argv + [target])
            return target

        items = self.work_items(self.collect_inputs(params, settings))
        return self.run_batch(items, work, self.parallel_jobs(params, settings))

    @staticmethod
    def geometry(params: Dict[str, Any]) -> Optional[str]:
        """ImageMagick geometry for the requested dimensions."""
        width, height = params.get('width'), params.get('height')
        if width or height:
            box = f"{width or ''}x{height or ''}"
            if params.get('maintain_aspect', True) is False and width and height:
                box += '!'
            return box
        max_width, max_height = params.get('max_width'), params.get('max_height')
        if max_width or max_height:
            return f"{max_width or ''}x{max_height or ''}>"
        return None


class WatermarkHandler(Handler):
    """
    Applies an image watermark (``watermark_file``/``watermark``) with
    composite, or a ``text`` annotation with convert.
    """

    step_type = StepType.WATERMARK
    required_tools = ('composite', 'convert')

    def run(self, params: Dict[str, Any], settings: Dict[str, Any]) -> HandlerResult:
        mark = params.get('watermark_file') or params.get('watermark')
        text = params.get('text')
        if not mark and not text:
            return HandlerResult.failure("watermark step requires 'watermark_file', 'watermark' or 'text'")
        if mark and not Path(str(mark)).is_file():
            return HandlerResult.failure(f"Watermark file not found: {mark}")

        position = str(params.get('position', 'bottom-right')).lower()
        gravity = GRAVITY.get(position)
        if gravity is None:
            logger.warning(f"Unknown watermark position '{position}', using bottom-right")
            gravity = 'southeast'
        # transparency is how see-through the mark is; dissolve is its opacity
        opacity = 100 - int(params.get('transparency', 30))

        def work(item: WorkItem) -> Path:
            target = self.output_path(
                params, settings, item.source, item.ordinal,
                default_name=f"{item.source.stem}_watermarked{item.source.suffix}",
            )
            if mark:
                argv: List[Any] = [
                    'composite', '-dissolve', f"{opacity}%", '-gravity', gravity,
                    mark, item.source, target,
                ]
            else:
                argv = [
                    'convert', item.source, '-gravity', gravity,
                    '-pointsize', params.get('font_size', 24),
                    '-fill', params.get('color', 'white'),
                    '-annotate', '+10+10', text, target,
                ]
            self.execute(argv)
            return target

        items = self.work_items(self.collect_inputs(params, settings))
        return self.run_batch(items, work, self.parallel_jobs(params, settings))
