"""
Page/item range resolution for extraction steps.

A range spec is a comma-separated list of terms:

- ``7``    a single item
- ``3-9``  a closed range (start must not exceed end)
- ``5-``   an open range, "5 through the last item"

Selected items are processed in ascending numeric order regardless of the
order terms appear in. Duplicates produced by overlapping terms are kept.
Output numbering is independent of the source numbers: the Nth selected item
always gets ordinal N.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

from ..exceptions import RangeSpecError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RangeTerm:
    """One term of a range spec. ``end`` is None for an open range."""
    start: int
    end: Optional[int] = None
    is_open: bool = False

    def expand(self, total: Optional[int] = None) -> List[int]:
        """
        Expand the term into item numbers.

        Args:
            total: Number of items available, if known

        Raises:
            RangeSpecError: If the term is open and no total is known
        """
        if self.is_open:
            if total is None:
                raise RangeSpecError(
                    f"Open range '{self}' cannot be expanded without a known item count"
                )
            return list(range(self.start, total + 1))
        end = self.end if self.end is not None else self.start
        return list(range(self.start, end + 1))

    def __str__(self) -> str:
        if self.is_open:
            return f"{self.start}-"
        if self.end is None or self.end == self.start:
            return str(self.start)
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class SelectedItem:
    """A selected source item and the output ordinal it is written under."""
    source: int
    ordinal: int


class RangeSelection:
    """Parsed range spec; expansion is deferred until the item count is known."""

    def __init__(self, spec: str, terms: List[RangeTerm]):
        self.spec = spec
        self.terms = terms

    @property
    def is_bounded(self) -> bool:
        """True when every term can be expanded without an item count."""
        return not any(term.is_open for term in self.terms)

    def indices(self, total: Optional[int] = None) -> List[int]:
        """
        Resolve to the ordered list of item numbers.

        Args:
            total: Number of items available. When given, open ranges expand
                up to it and numbers beyond it are dropped.

        Returns:
            Ascending item numbers, duplicates retained
        """
        expanded: List[int] = []
        for term in self.terms:
            expanded.extend(term.expand(total))

        # sorted() is stable, so repeated numbers stay adjacent in term order
        ordered = sorted(expanded)

        if total is not None:
            in_bounds = [index for index in ordered if index <= total]
            if len(in_bounds) != len(ordered):
                dropped = sorted(set(ordered) - set(in_bounds))
                logger.warning(
                    f"Range '{self.spec}' selects items beyond the last item ({total}): {dropped}"
                )
            ordered = in_bounds

        return ordered

    def items(self, total: Optional[int] = None) -> Iterator[SelectedItem]:
        """Yield each selected item with its 1-based output ordinal."""
        for ordinal, source in enumerate(self.indices(total), start=1):
            yield SelectedItem(source=source, ordinal=ordinal)

    def __len__(self) -> int:
        if not self.is_bounded:
            raise TypeError(f"Range '{self.spec}' has no length until the item count is known")
        return len(self.indices())

    def __repr__(self) -> str:
        return f"RangeSelection({self.spec!r})"


class RangeResolver:
    """Parses and validates range specs."""

    TERM_PATTERN = re.compile(r'^(\d+)(?:-(\d*))?$')
    ALL_ITEMS = ('', 'all')

    def parse(self, spec: str) -> RangeSelection:
        """
        Parse a range spec.

        Args:
            spec: Range text such as ``"1-3,5,7-"``. ``""`` and ``"all"`` select
                every item.

        Returns:
            RangeSelection with one term per comma-separated part

        Raises:
            RangeSpecError: If the spec is malformed
        """
        if not isinstance(spec, str):
            if isinstance(spec, int) and not isinstance(spec, bool):
                spec = str(spec)
            else:
                raise RangeSpecError(f"Range spec must be a string, got {type(spec).__name__}")

        if spec in self.ALL_ITEMS:
            return RangeSelection(spec, [RangeTerm(start=1, is_open=True)])

        if any(ch.isspace() for ch in spec):
            raise RangeSpecError(f"Range spec '{spec}' must not contain whitespace")

        terms = []
        for part in spec.split(','):
            terms.append(self._parse_term(part, spec))
        return RangeSelection(spec, terms)

    def _parse_term(self, part: str, spec: str) -> RangeTerm:
        if not part:
            raise RangeSpecError(f"Range spec '{spec}' contains an empty term")

        match = self.TERM_PATTERN.match(part)
        if not match:
            raise RangeSpecError(f"Malformed range term '{part}' in '{spec}'")

        start = int(match.group(1))
        if start < 1:
            raise RangeSpecError(f"Range term '{part}' in '{spec}': items are numbered from 1")

        if match.group(2) is None:
            return RangeTerm(start=start, end=start)
        if match.group(2) == '':
            return RangeTerm(start=start, is_open=True)

        end = int(match.group(2))
        if start > end:
            raise RangeSpecError(f"Range term '{part}' in '{spec}': start > end")
        return RangeTerm(start=start, end=end)

    def resolve(self, spec: str, total: Optional[int] = None) -> List[int]:
        """Parse and expand in one call."""
        return self.parse(spec).indices(total)


def parse_range(spec: str) -> RangeSelection:
    return RangeResolver().parse(spec)
