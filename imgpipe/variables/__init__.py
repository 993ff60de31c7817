"""
Template substitution module.
Implements {name} / {name:03d} placeholder rendering.
"""

from .substitution import TemplateSubstitutor, substitute, KNOWN_NAMES, ITEM_NAMES

__all__ = ['TemplateSubstitutor', 'substitute', 'KNOWN_NAMES', 'ITEM_NAMES']
