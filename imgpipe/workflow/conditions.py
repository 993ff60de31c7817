"""
Condition evaluation for workflow steps.
Supports numeric comparisons over execution context variables joined by &&.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import ConditionError

logger = logging.getLogger(__name__)


SIZE_UNITS = {
    'b': 1,
    'kb': 1024,
    'mb': 1024 ** 2,
    'gb': 1024 ** 3,
    'tb': 1024 ** 4,
}


@dataclass(frozen=True)
class Operand:
    """Either a context variable name or a numeric literal (bytes for sizes)."""
    variable: Optional[str] = None
    literal: Optional[float] = None

    def resolve(self, variables: Dict[str, Any]) -> Optional[float]:
        if self.variable is None:
            return self.literal
        return to_number(variables.get(self.variable))


@dataclass(frozen=True)
class Comparison:
    left: Operand
    op: str
    right: Operand


class ConditionEvaluator:
    """
    Evaluates step conditions to determine if a step should be executed.

    Grammar::

        condition  := comparison ('&&' comparison)*
        comparison := operand OP operand
        OP         := '>' | '<' | '>=' | '<=' | '==' | '!='
        operand    := NAME | NUMBER [UNIT]

    Anything else (including ``||`` and ``!``) is rejected with ConditionError.
    A comparison that references an unset or non-numeric variable makes the
    whole condition false.
    """

    TOKEN_PATTERN = re.compile(
        r'\s*(?:'
        r'(?P<and>&&)'
        r'|(?P<op>>=|<=|==|!=|>|<)'
        r'|(?P<number>\d+(?:\.\d+)?)(?P<unit>[A-Za-z]+)?'
        r'|(?P<name>[A-Za-z_][A-Za-z0-9_]*)'
        r'|(?P<other>\S+?)(?=\s|$|&&|[<>=!]|\d)'
        r'|(?P<bad>\S)'
        r')'
    )

    OPERATORS = {
        '>': lambda a, b: a > b,
        '<': lambda a, b: a < b,
        '>=': lambda a, b: a >= b,
        '<=': lambda a, b: a <= b,
        '==': lambda a, b: a == b,
        '!=': lambda a, b: a != b,
    }

    def __init__(self):
        self._cache: Dict[str, List[Comparison]] = {}

    def parse(self, condition: str) -> List[Comparison]:
        """
        Parse a condition into its conjunctive comparisons.

        Raises:
            ConditionError: If the condition is outside the grammar
        """
        if condition in self._cache:
            return self._cache[condition]

        if not isinstance(condition, str):
            raise ConditionError(f"Invalid condition format: expected string, got {type(condition).__name__}")

        if '||' in condition:
            raise ConditionError(f"Unsupported operator '||' in condition '{condition}': only && is supported")

        tokens = self._tokenize(condition)
        if not tokens:
            raise ConditionError("Condition must not be empty")

        comparisons = []
        position = 0
        while True:
            if position + 3 > len(tokens):
                raise ConditionError(f"Incomplete comparison in condition '{condition}'")
            left, op, right = tokens[position:position + 3]
            comparisons.append(Comparison(
                left=self._operand(left, condition),
                op=self._operator(op, condition),
                right=self._operand(right, condition),
            ))
            position += 3
            if position == len(tokens):
                break
            if tokens[position] != ('and', '&&'):
                raise ConditionError(
                    f"Expected '&&' in condition '{condition}', found '{tokens[position][1]}'"
                )
            position += 1

        self._cache[condition] = comparisons
        return comparisons

    def validate(self, condition: Optional[str]) -> List[str]:
        """Return grammar errors for a condition (empty if valid or absent)."""
        if condition is None:
            return []
        try:
            self.parse(condition)
        except ConditionError as e:
            return [str(e)]
        return []

    def evaluate(self, condition: Optional[str], variables: Dict[str, Any]) -> bool:
        """
        Evaluate a step condition.

        Args:
            condition: The condition string from the step (None means always true)
            variables: Context variables

        Returns:
            True if the condition is met, False otherwise

        Raises:
            ConditionError: If the condition format is invalid
        """
        if condition is None:
            return True

        for comparison in self.parse(condition):
            left = comparison.left.resolve(variables)
            right = comparison.right.resolve(variables)
            if left is None or right is None:
                # Unset variables make the condition false rather than an error
                logger.debug(f"Condition '{condition}' references an unset variable")
                return False
            if not self.OPERATORS[comparison.op](left, right):
                return False

        return True

    def _tokenize(self, condition: str) -> List[Tuple[str, str]]:
        tokens = []
        position = 0
        text = condition.rstrip()
        while position < len(text):
            match = self.TOKEN_PATTERN.match(text, position)
            if not match or match.end() == position:
                raise ConditionError(f"Cannot parse condition '{condition}' at position {position}")
            position = match.end()
            kind = match.lastgroup
            if kind == 'unit':
                kind = 'number'
            if kind in ('other', 'bad'):
                raise ConditionError(
                    f"Unsupported token '{match.group(kind)}' in condition '{condition}'"
                )
            if kind == 'number':
                tokens.append(('number', match.group('number') + (match.group('unit') or '')))
            else:
                tokens.append((kind, match.group(kind)))
        return tokens

    def _operand(self, token: Tuple[str, str], condition: str) -> Operand:
        kind, text = token
        if kind == 'name':
            return Operand(variable=text)
        if kind == 'number':
            return Operand(literal=parse_size(text))
        raise ConditionError(f"Expected a variable or number in condition '{condition}', found '{text}'")

    def _operator(self, token: Tuple[str, str], condition: str) -> str:
        kind, text = token
        if kind != 'op':
            raise ConditionError(f"Expected a comparison operator in condition '{condition}', found '{text}'")
        return text


def parse_size(text: str) -> float:
    """
    Parse a number with an optional size unit into bytes.

    >>> parse_size("50MB")
    52428800.0
    """
    match = re.match(r'^(\d+(?:\.\d+)?)([A-Za-z]*)$', text)
    if not match:
        raise ConditionError(f"Invalid number '{text}'")
    number = float(match.group(1))
    unit = match.group(2).lower()
    if not unit:
        return number
    if unit not in SIZE_UNITS:
        raise ConditionError(f"Unknown size unit '{match.group(2)}' in '{text}'")
    return number * SIZE_UNITS[unit]


def to_number(value: Any) -> Optional[float]:
    """Coerce a context value for comparison; None when not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return parse_size(value.strip())
        except ConditionError:
            return None
    return None
