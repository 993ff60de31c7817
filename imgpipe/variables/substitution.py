"""
Template substitution implementation.
Handles {name} and {name:03d} placeholders in step params, output templates
and hook commands.
"""

import re
from typing import Any, Dict, List, Optional, Set, Union

from ..exceptions import TemplateError


# Names resolvable for the whole run
STATIC_NAMES = (
    'workflow_input', 'output_dir', 'temp_dir', 'timestamp', 'date', 'time',
    'workflow_name',
)

# Names that only become meaningful once a step (or an item) is running
STEP_NAMES = (
    'step_name', 'step_number', 'input_name', 'input_ext', 'pdf_name',
    'excel_name', 'counter', 'extracted_count', 'processed_count',
    'failed_count', 'image_count', 'total_size', 'failed_step',
    'error_message', 'workflow_duration',
)

# Bound per produced item by handlers, inside *_template params
ITEM_NAMES = ('counter', 'input_name', 'input_ext')

KNOWN_NAMES = frozenset(STATIC_NAMES + STEP_NAMES)


class TemplateSubstitutor:
    """
    Replaces placeholders in strings and data structures.

    Placeholders are ``{name}`` or ``{name:spec}``. The only supported spec is
    an integer width, optionally zero-padded (``{counter:03d}``). Names missing
    from the bindings are left verbatim so a later pass can fill them in.
    """

    PLACEHOLDER_PATTERN = re.compile(r'\{([A-Za-z_][A-Za-z0-9_]*)(?::([^{}]*))?\}')
    FORMAT_SPEC_PATTERN = re.compile(r'^(0?)(\d+)d?$')

    def __init__(self):
        self.unresolved: Set[str] = set()

    def substitute(
        self,
        value: Union[str, List, Dict, Any],
        bindings: Dict[str, Any],
    ) -> Union[str, List, Dict, Any]:
        """
        Substitute placeholders in a value (string, list, or dict).

        Args:
            value: The value to substitute into
            bindings: Mapping of placeholder name to current value. A value of
                None counts as unbound.

        Returns:
            Value with recognised placeholders replaced

        Raises:
            TemplateError: If a bound placeholder carries an unsupported spec
        """
        self.unresolved.clear()
        return self._substitute(value, bindings)

    def _substitute(self, value: Any, bindings: Dict[str, Any]) -> Any:
        if isinstance(value, str):
            return self._substitute_string(value, bindings)
        elif isinstance(value, list):
            return [self._substitute(item, bindings) for item in value]
        elif isinstance(value, dict):
            return {k: self._substitute(v, bindings) for k, v in value.items()}
        return value

    def _substitute_string(self, text: str, bindings: Dict[str, Any]) -> str:
        def replace(match):
            name, spec = match.group(1), match.group(2)
            value = bindings.get(name)
            if value is None:
                self.unresolved.add(name)
                return match.group(0)
            return self.render(value, spec, placeholder=match.group(0))

        return self.PLACEHOLDER_PATTERN.sub(replace, text)

    def render(self, value: Any, spec: Optional[str], placeholder: str = "") -> str:
        """Render one bound value, applying a width spec if present."""
        if spec is None:
            if isinstance(value, bool):
                return 'true' if value else 'false'
            return str(value)

        zero, width = self.parse_format_spec(spec, placeholder)
        number = self._as_int(value)
        if number is None:
            raise TemplateError(
                f"Format spec '{spec}' in {placeholder or 'placeholder'} "
                f"requires a numeric value, got {value!r}"
            )
        fill = '0' if zero else ' '
        return format(number, f"{fill}>{width}d") if number >= 0 else str(number)

    @classmethod
    def parse_format_spec(cls, spec: str, placeholder: str = "") -> tuple:
        """Return (zero_pad, width) for a spec such as '03d'."""
        match = cls.FORMAT_SPEC_PATTERN.match(spec)
        if not match:
            raise TemplateError(
                f"Unsupported format spec '{spec}' in {placeholder or 'placeholder'}: "
                f"only integer widths such as '03d' are allowed"
            )
        return bool(match.group(1)), int(match.group(2))

    @staticmethod
    def _as_int(value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return None

    def check_format_specs(self, value: Any) -> List[str]:
        """
        Statically check the spec syntax of every known placeholder in a value.

        Used by the loader so bad specs fail before any step runs.

        Returns:
            List of error messages (empty if all specs are valid)
        """
        errors = []
        if isinstance(value, str):
            for match in self.PLACEHOLDER_PATTERN.finditer(value):
                spec = match.group(2)
                if spec is None or match.group(1) not in KNOWN_NAMES:
                    continue
                try:
                    self.parse_format_spec(spec, match.group(0))
                except TemplateError as e:
                    errors.append(str(e))
        elif isinstance(value, list):
            for item in value:
                errors.extend(self.check_format_specs(item))
        elif isinstance(value, dict):
            for item in value.values():
                errors.extend(self.check_format_specs(item))
        return errors

    def placeholders(self, value: Any) -> Set[str]:
        """Collect placeholder names used anywhere in a value."""
        names: Set[str] = set()
        if isinstance(value, str):
            names.update(m.group(1) for m in self.PLACEHOLDER_PATTERN.finditer(value))
        elif isinstance(value, list):
            for item in value:
                names |= self.placeholders(item)
        elif isinstance(value, dict):
            for item in value.values():
                names |= self.placeholders(item)
        return names


def substitute(template: str, bindings: Dict[str, Any]) -> str:
    """Convenience wrapper for one-off string rendering."""
    return TemplateSubstitutor().substitute(template, bindings)
