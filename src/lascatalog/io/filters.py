# src/lascatalog/io/filters.py

"""
This module implements the filter mini-language applied to points at read time.

A filter string concatenates whitelisted flags such as '-keep_first -drop_z_below 2'. Every flag
becomes one or more comparison predicates on declared fields and all predicates are combined with
AND. The same PointFilter evaluates on decoded columns while streaming and on in-memory point sets,
so both paths keep exactly the same points.
"""

import logging
import operator
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from lascatalog.errors import FilterSyntaxError
from lascatalog.io.fields import format_fields

log = logging.getLogger(__name__)

__all__ = [
    "Predicate",
    "PointFilter",
    "parse_filter",
    "box_filter",
    "apply_filter",
    "FILTER_FLAGS"
]

_COMPARATORS: Dict[str, Callable] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

@dataclass(frozen=True)
class Predicate:
    """
    Comparison of one field against a constant, a set of constants or another field.

    Args:
        field (str): Logical field name.
        op (str): One of '==', '!=', '<', '<=', '>', '>=', 'in', 'not in', '==field', '!=field'.
        value: Constant, tuple of constants, or the name of the other field.
    """
    field: str
    op: str
    value: Union[float, Tuple[float, ...], str]

    @property
    def fields(self) -> Tuple[str, ...]:
        if self.op.endswith("field"):
            return (self.field, self.value)
        return (self.field,)

    def evaluate(self, columns: Mapping[str, np.ndarray], n: int) -> np.ndarray:
        values = _column(columns, self.field, n)
        if self.op == "in":
            return np.isin(values, self.value)
        if self.op == "not in":
            return ~np.isin(values, self.value)
        if self.op == "==field":
            return values == _column(columns, self.value, n)
        if self.op == "!=field":
            return values != _column(columns, self.value, n)
        return _COMPARATORS[self.op](values, self.value)

def _column(columns: Mapping[str, np.ndarray], name: str, n: int) -> np.ndarray:
    # Fields the point format does not carry read as zero.
    values = columns.get(name)
    return np.zeros(n) if values is None else values

# flag -> (arity, builder). Arity -1 means one or more arguments.
FILTER_FLAGS: Dict[str, Tuple[int, Callable[..., List[Predicate]]]] = {
    "-keep_first": (0, lambda: [Predicate("return_number", "==", 1)]),
    "-drop_first": (0, lambda: [Predicate("return_number", "!=", 1)]),
    "-keep_last": (0, lambda: [Predicate("return_number", "==field", "number_of_returns")]),
    "-drop_last": (0, lambda: [Predicate("return_number", "!=field", "number_of_returns")]),
    "-keep_single": (0, lambda: [Predicate("number_of_returns", "==", 1)]),
    "-drop_single": (0, lambda: [Predicate("number_of_returns", "!=", 1)]),
    "-keep_return": (-1, lambda *v: [Predicate("return_number", "in", tuple(v))]),
    "-drop_return": (-1, lambda *v: [Predicate("return_number", "not in", tuple(v))]),
    "-keep_class": (-1, lambda *v: [Predicate("classification", "in", tuple(v))]),
    "-drop_class": (-1, lambda *v: [Predicate("classification", "not in", tuple(v))]),
    "-drop_z_below": (1, lambda v: [Predicate("z", ">=", v)]),
    "-drop_z_above": (1, lambda v: [Predicate("z", "<=", v)]),
    "-keep_z": (2, lambda lo, hi: [Predicate("z", ">=", lo), Predicate("z", "<=", hi)]),
    "-keep_xy": (4, lambda x0, y0, x1, y1: [
        Predicate("x", ">=", x0), Predicate("y", ">=", y0),
        Predicate("x", "<=", x1), Predicate("y", "<=", y1)
    ]),
    "-keep_intensity_above": (1, lambda v: [Predicate("intensity", ">", v)]),
    "-keep_intensity_below": (1, lambda v: [Predicate("intensity", "<", v)]),
    "-drop_intensity_above": (1, lambda v: [Predicate("intensity", "<=", v)]),
    "-drop_intensity_below": (1, lambda v: [Predicate("intensity", ">=", v)]),
    "-drop_withheld": (0, lambda: [Predicate("withheld", "==", False)]),
    "-drop_synthetic": (0, lambda: [Predicate("synthetic", "==", False)]),
    "-drop_overlap": (0, lambda: [Predicate("overlap", "==", False)]),
}

def _as_number(token: str) -> Optional[float]:
    try:
        value = float(token)
    except ValueError:
        return None
    return int(value) if value.is_integer() else value

class PointFilter:
    """
    Conjunction of predicates parsed from a filter string.

    An empty filter keeps every point.
    """
    def __init__(self, predicates: Sequence[Predicate] = (), source: str = ""):
        self.predicates = tuple(predicates)
        self.source = source.strip()

    @classmethod
    def from_string(cls, text: Optional[str]) -> "PointFilter":
        return parse_filter(text)

    @property
    def fields(self) -> Tuple[str, ...]:
        """Fields that must be decoded to evaluate the filter."""
        names = []
        for pred in self.predicates:
            for name in pred.fields:
                if name not in names:
                    names.append(name)
        return tuple(names)

    def mask(self, columns: Mapping[str, np.ndarray]) -> np.ndarray:
        n = len(columns["x"])
        keep = np.ones(n, dtype=bool)
        for pred in self.predicates:
            keep &= pred.evaluate(columns, n)
        return keep

    def __and__(self, other: "PointFilter") -> "PointFilter":
        return PointFilter(self.predicates + other.predicates, f"{self.source} {other.source}")

    def __bool__(self) -> bool:
        return bool(self.predicates)

    def __str__(self) -> str:
        return self.source

    def __repr__(self) -> str:
        return f"<PointFilter '{self.source}' predicates={len(self.predicates)}>"

def parse_filter(text: Optional[Union[str, PointFilter]]) -> PointFilter:
    """
    Parses a filter string into a PointFilter.

    Args:
        text: Filter string such as '-keep_first -drop_z_below 5', an existing PointFilter, or None.

    Returns:
        PointFilter: The conjunction of all flags.

    Raises:
        FilterSyntaxError: Unknown flag, missing or non-numeric argument.
    """
    if isinstance(text, PointFilter):
        return text
    if not text or not text.strip():
        return PointFilter()

    tokens = text.split()
    predicates: List[Predicate] = []
    i = 0
    while i < len(tokens):
        flag = tokens[i]
        if flag not in FILTER_FLAGS:
            raise FilterSyntaxError(f"Unknown filter flag '{flag}'. Allowed: {sorted(FILTER_FLAGS)}")
        arity, build = FILTER_FLAGS[flag]
        i += 1
        args = []
        while i < len(tokens) and (arity < 0 or len(args) < arity):
            value = _as_number(tokens[i])
            if value is None:
                break
            args.append(value)
            i += 1
        if (arity >= 0 and len(args) != arity) or (arity < 0 and not args):
            expected = "at least 1" if arity < 0 else str(arity)
            raise FilterSyntaxError(f"Flag '{flag}' expects {expected} numeric argument(s), got {len(args)}")
        predicates.extend(build(*args))
    return PointFilter(predicates, text)

def box_filter(xmin: float, ymin: float, xmax: float, ymax: float) -> PointFilter:
    """Inclusive planimetric box as a read-time filter."""
    bounds = [float(v) for v in (xmin, ymin, xmax, ymax)]
    _, build = FILTER_FLAGS["-keep_xy"]
    return PointFilter(build(*bounds), "-keep_xy " + " ".join(repr(v) for v in bounds))

def apply_filter(point_set, point_filter: Union[str, PointFilter]):
    """
    Filters an in-memory point set with the same semantics as read-time filtering.

    Args:
        point_set (PointSet): Points to filter.
        point_filter: Filter string or PointFilter.

    Returns:
        PointSet: New point set holding the kept points in their original order.

    Raises:
        ValueError: If the filter tests a field the point format carries but the set did not load.
    """
    point_filter = parse_filter(point_filter)
    carried = format_fields(point_set.header.point_format)
    unloaded = [n for n in point_filter.fields if n in carried and n not in point_set.fields]
    if unloaded:
        raise ValueError(
            f"Filter '{point_filter.source}' tests fields that were not loaded: {unloaded}. "
            "Read them with the selection, or filter at read time"
        )
    return point_set[point_filter.mask(point_set.columns)]
