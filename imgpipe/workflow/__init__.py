"""Workflow resolution and evaluation module."""

from .conditions import ConditionEvaluator
from .presets import PresetMerger, deep_merge
from .ranges import RangeResolver, RangeSelection, SelectedItem

__all__ = [
    'ConditionEvaluator',
    'PresetMerger',
    'deep_merge',
    'RangeResolver',
    'RangeSelection',
    'SelectedItem',
]
