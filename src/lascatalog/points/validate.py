# src/lascatalog/points/validate.py

"""
This module implements structural validation of in-memory point sets.

Checks run on demand, never at read time. Every check is independent and reports every
violation it finds. Data problems do not raise; they are returned in a report.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .layer import PointSet

log = logging.getLogger(__name__)

__all__ = [
    "Severity",
    "ValidationIssue",
    "ValidationReport",
    "validate",
    "CHECKS"
]

MAX_RECOMMENDED_SCALE = 0.01

class Severity(Enum):
    """
    Options:
        WARNING: Suspicious but usable data.
        ERROR: Data that breaks a format invariant.
    """
    WARNING = "warning"
    ERROR = "error"

@dataclass
class ValidationIssue:
    """
    One finding of a validation check.

    Args:
        check (str): Name of the check that produced the issue.
        message (str): Human-readable description.
        severity (Severity): Warning or error.
        indices (np.ndarray): Offending point indices, empty for set-level issues.
    """
    check: str
    message: str
    severity: Severity
    indices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))

    @property
    def count(self) -> int:
        return len(self.indices)

@dataclass
class ValidationReport:
    warnings: List[ValidationIssue] = field(default_factory=list)
    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def issues(self) -> List[ValidationIssue]:
        return self.errors + self.warnings

    def by_check(self, check: str) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.check == check]

    def add(self, issue: ValidationIssue):
        if issue.severity == Severity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def summary(self) -> str:
        lines = [f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"]
        for issue in self.issues:
            lines.append(f"  [{issue.severity.value}] {issue.check}: {issue.message}")
        return "\n".join(lines)

def _has(point_set: PointSet, *names: str) -> bool:
    return all(name in point_set.columns for name in names)

def _check_duplicates(ps: PointSet) -> List[ValidationIssue]:
    if len(ps) < 2:
        return []
    coords = np.column_stack([ps.x, ps.y, ps.z])
    order = np.lexsort((coords[:, 2], coords[:, 1], coords[:, 0]))
    sorted_coords = coords[order]
    same_as_previous = np.all(sorted_coords[1:] == sorted_coords[:-1], axis=1)
    duplicates = np.sort(order[1:][same_as_previous])
    if duplicates.size == 0:
        return []
    return [ValidationIssue(
        "duplicates",
        f"{duplicates.size} point(s) duplicate the X, Y, Z of another point",
        Severity.WARNING,
        duplicates
    )]

def _check_return_numbers(ps: PointSet) -> List[ValidationIssue]:
    if not _has(ps, "return_number", "number_of_returns"):
        return []
    rn, nr = ps["return_number"], ps["number_of_returns"]
    issues = []
    beyond = np.flatnonzero(rn > nr)
    if beyond.size:
        issues.append(ValidationIssue(
            "return_numbers",
            f"{beyond.size} point(s) have a return number greater than their number of returns",
            Severity.ERROR,
            beyond
        ))
    zero = np.flatnonzero((rn == 0) | (nr == 0))
    if zero.size:
        issues.append(ValidationIssue(
            "return_numbers",
            f"{zero.size} point(s) have a return number or number of returns equal to 0",
            Severity.ERROR,
            zero
        ))
    return issues

def _check_first_returns(ps: PointSet) -> List[ValidationIssue]:
    if not _has(ps, "return_number", "number_of_returns", "gps_time"):
        return []
    df = pd.DataFrame({
        "t": ps["gps_time"],
        "p": ps["point_source_id"] if _has(ps, "point_source_id") else 0,
        "first": ps["return_number"] == 1,
    })
    multi = df[ps["number_of_returns"] > 1]
    if multi.empty:
        return []
    has_first = multi.groupby(["t", "p"])["first"].transform("any")
    orphans = multi.index[~has_first.to_numpy()].to_numpy(dtype=np.int64)
    if orphans.size == 0:
        return []
    n_pulses = multi[~has_first].groupby(["t", "p"]).ngroups
    return [ValidationIssue(
        "first_returns",
        f"{n_pulses} multi-return pulse(s) ({orphans.size} points) have no first return",
        Severity.WARNING,
        orphans
    )]

def _check_crs(ps: PointSet) -> List[ValidationIssue]:
    if ps.header.crs is not None:
        return []
    return [ValidationIssue("crs", "No coordinate reference system declared", Severity.WARNING)]

def _check_degenerate_bbox(ps: PointSet) -> List[ValidationIssue]:
    if len(ps) == 0:
        return [ValidationIssue("bbox", "Point set is empty", Severity.WARNING)]
    xmin, ymin, xmax, ymax = ps.bounds
    if len(ps) > 1 and (xmax - xmin == 0 or ymax - ymin == 0):
        return [ValidationIssue(
            "bbox",
            f"Degenerate bounding box: extent {xmax - xmin} x {ymax - ymin}",
            Severity.WARNING
        )]
    return []

def _check_header_bbox(ps: PointSet) -> List[ValidationIssue]:
    header = ps.header
    if len(ps) == 0 or not header.has_bounds:
        return []
    tol = max(header.scales) / 2
    outside = np.zeros(len(ps), dtype=bool)
    for axis, name in enumerate(("x", "y", "z")):
        values = ps[name]
        outside |= (values < header.mins[axis] - tol) | (values > header.maxs[axis] + tol)
    indices = np.flatnonzero(outside)
    if indices.size == 0:
        return []
    return [ValidationIssue(
        "header_bbox",
        f"{indices.size} point(s) fall outside the header bounding box",
        Severity.ERROR,
        indices
    )]

def _check_header_count(ps: PointSet) -> List[ValidationIssue]:
    issues = []
    if ps.header.point_count != len(ps):
        issues.append(ValidationIssue(
            "header_count",
            f"Header declares {ps.header.point_count} points but the set holds {len(ps)}",
            Severity.ERROR
        ))
    elif _has(ps, "return_number"):
        expected = ps.updated_header().points_by_return
        if tuple(ps.header.points_by_return) != tuple(expected):
            issues.append(ValidationIssue(
                "header_count",
                f"Header points by return {ps.header.points_by_return} disagree with data {expected}",
                Severity.WARNING
            ))
    return issues

def _check_scales(ps: PointSet) -> List[ValidationIssue]:
    coarse = [s for s in ps.header.scales if s > MAX_RECOMMENDED_SCALE]
    if not coarse:
        return []
    return [ValidationIssue(
        "scale_factors",
        f"Scale factors {ps.header.scales} are coarser than {MAX_RECOMMENDED_SCALE}",
        Severity.WARNING
    )]

CHECKS: Dict[str, Callable[[PointSet], List[ValidationIssue]]] = {
    "duplicates": _check_duplicates,
    "return_numbers": _check_return_numbers,
    "first_returns": _check_first_returns,
    "crs": _check_crs,
    "bbox": _check_degenerate_bbox,
    "header_bbox": _check_header_bbox,
    "header_count": _check_header_count,
    "scale_factors": _check_scales,
}

def validate(point_set: PointSet, checks: Optional[Sequence[str]] = None) -> ValidationReport:
    """
    Runs structural checks on a point set.

    Args:
        point_set (PointSet): Points to inspect.
        checks (Sequence[str]): Subset of CHECKS to run. Defaults to all.

    Returns:
        ValidationReport: Warnings and errors, each listing every violation found.
    """
    names = list(CHECKS) if checks is None else list(checks)
    unknown = set(names) - set(CHECKS)
    if unknown:
        raise ValueError(f"Unknown checks: {sorted(unknown)}. Available: {list(CHECKS)}")

    report = ValidationReport()
    for name in names:
        for issue in CHECKS[name](point_set):
            report.add(issue)

    if report.issues:
        log.warning(f"Validation found {report.summary()}")
    else:
        log.info(f"Validation passed for {len(point_set)} points")
    return report
