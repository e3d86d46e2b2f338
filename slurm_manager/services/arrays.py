"""Job array selector parsing and validation for bulk cancellation."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

# Selections larger than this need an extra confirmation from the caller.
CONFIRM_THRESHOLD = 100

ENTIRE_ARRAY_TOKENS = {"", "all", "*"}


class InvalidSelectorError(ValueError):
    """Raised when a selector cannot be parsed or falls outside the array."""


@dataclass(frozen=True)
class ArrayBounds:
    low: int
    high: int


@dataclass(frozen=True)
class EntireArray:
    pass


@dataclass(frozen=True)
class IndexRange:
    low: int
    high: int


@dataclass(frozen=True)
class SteppedRange:
    low: int
    high: int
    step: int


@dataclass(frozen=True)
class ExplicitList:
    indices: Tuple[int, ...]


Selector = Union[EntireArray, IndexRange, SteppedRange, ExplicitList]


@dataclass(frozen=True)
class ArraySelection:
    """A validated selector ready to be cancelled."""

    base_id: str
    selector: Selector
    targets: List[str]
    requires_confirmation: bool = False

    @property
    def count(self) -> int:
        return len(self.targets)


_RANGE = re.compile(r"^(\d+)-(\d+)$")
_STEPPED = re.compile(r"^(\d+)-(\d+):(\d+)$")
_LIST = re.compile(r"^\d+(\s*,\s*\d+)*$")


def parse_array_selector(selector: str) -> Selector:
    """
    Parse a user-entered array selector.

    Accepted forms, tried in order:
        ""  / "all" / "*"  - entire array
        "L-H"              - inclusive index range
        "L-H:S"            - inclusive range with step S >= 1
        "i1,i2,..."        - explicit list of indices

    Raises:
        InvalidSelectorError: if the text matches none of the forms
    """
    text = (selector or "").strip()

    if text.lower() in ENTIRE_ARRAY_TOKENS:
        return EntireArray()

    match = _RANGE.match(text)
    if match:
        low, high = int(match.group(1)), int(match.group(2))
        if low > high:
            raise InvalidSelectorError(f"Range start {low} is greater than range end {high}")
        return IndexRange(low, high)

    match = _STEPPED.match(text)
    if match:
        low, high, step = (int(g) for g in match.groups())
        if low > high:
            raise InvalidSelectorError(f"Range start {low} is greater than range end {high}")
        if step < 1:
            raise InvalidSelectorError("Step must be at least 1")
        return SteppedRange(low, high, step)

    if _LIST.match(text):
        return ExplicitList(tuple(int(part) for part in text.split(",")))

    raise InvalidSelectorError(
        f"Invalid selector '{selector}'. Use a range (0-10), a stepped range (0-20:2) "
        "or a comma-separated list (1,3,5)"
    )


def resolve_indices(selector: Selector) -> List[int]:
    """Concrete indices a selector refers to (empty for the entire array)."""
    if isinstance(selector, IndexRange):
        return list(range(selector.low, selector.high + 1))
    if isinstance(selector, SteppedRange):
        return list(range(selector.low, selector.high + 1, selector.step))
    if isinstance(selector, ExplicitList):
        return list(selector.indices)
    return []


def _range_extent(selector: Selector) -> Optional[Tuple[int, int]]:
    """First and last index a range selects, without expanding it."""
    if isinstance(selector, IndexRange):
        return selector.low, selector.high
    if isinstance(selector, SteppedRange):
        last = selector.low + (selector.high - selector.low) // selector.step * selector.step
        return selector.low, last
    return None


def _raise_out_of_bounds(base_id: str, index: int, bounds: ArrayBounds) -> None:
    raise InvalidSelectorError(
        f"Index {index} is out of bounds for array {base_id} ({bounds.low}-{bounds.high})"
    )


def validate_array_selection(
    base_id: str,
    selector: str,
    bounds: ArrayBounds,
    confirm_threshold: int = CONFIRM_THRESHOLD,
) -> ArraySelection:
    """
    Parse a selector and check it against the array's real bounds.

    Returns an ArraySelection whose targets are `base_index` ids in the
    order given, or the bare base id when the whole array is selected.

    Raises:
        InvalidSelectorError: malformed selector, duplicate index or an
            index outside bounds
    """
    parsed = parse_array_selector(selector)
    if isinstance(parsed, EntireArray):
        return ArraySelection(base_id=base_id, selector=parsed, targets=[base_id])

    extent = _range_extent(parsed)
    if extent is not None:
        first, last = extent
        if last > bounds.high or first < bounds.low:
            _raise_out_of_bounds(base_id, last if last > bounds.high else first, bounds)

    indices = resolve_indices(parsed)

    if isinstance(parsed, ExplicitList):
        seen = set()
        for index in indices:
            if index in seen:
                raise InvalidSelectorError(f"Duplicate index {index} in selector")
            seen.add(index)

    offending = [i for i in indices if i < bounds.low or i > bounds.high]
    if offending:
        _raise_out_of_bounds(
            base_id, max(offending) if max(offending) > bounds.high else min(offending), bounds
        )

    return ArraySelection(
        base_id=base_id,
        selector=parsed,
        targets=[f"{base_id}_{index}" for index in indices],
        requires_confirmation=len(indices) > confirm_threshold,
    )


def parse_array_task_spec(spec: str) -> List[int]:
    """
    Expand a scheduler array task spec into its indices.

    Handles "5", "0-99", "0-99%5" (throttle), "0-20:2" and mixed lists
    such as "1,3,7-10". Unparseable parts are skipped.
    """
    spec = spec.strip().strip("[]")
    spec = re.sub(r"%\d+$", "", spec)

    indices: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        match = re.match(r"^(\d+)-(\d+)(?::(\d+))?$", part)
        if match:
            low, high = int(match.group(1)), int(match.group(2))
            step = int(match.group(3) or 1)
            if step >= 1 and high >= low:
                indices.extend(range(low, high + 1, step))
            continue
        if part.isdigit():
            indices.append(int(part))
    return indices


def bounds_from_indices(indices: List[int]) -> Optional[ArrayBounds]:
    if not indices:
        return None
    return ArrayBounds(low=min(indices), high=max(indices))


def cancel_targets(selection: ArraySelection) -> List[str]:
    """
    scancel arguments for a selection.

    A contiguous range goes out as a single `base_[L-H]` request; every
    other form is cancelled one task at a time.
    """
    if isinstance(selection.selector, IndexRange):
        low, high = selection.selector.low, selection.selector.high
        return [f"{selection.base_id}_[{low}-{high}]"]
    return list(selection.targets)
