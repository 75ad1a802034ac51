"""Checking single spectra against trained inter-percentile ranges."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from spectro_qc.engine.plugin_api import FieldKey, Spectrum
from spectro_qc.engine.ranges import InterPercentileRange, IPRModel

__all__ = [
    "IssueKind",
    "ShapeIssue",
    "RangeViolation",
    "ValidationReport",
    "Validator",
    "validate",
    "reports_to_frame",
    "sample_type_matches",
]

MATCH_ALL = (".*", "")


class IssueKind(str, Enum):
    COUNT_MISMATCH = "count_mismatch"
    SAMPLE_TYPE_MISMATCH = "sample_type_mismatch"
    MISSING_KEY = "missing_key"
    INVALID_VALUE = "invalid_value"
    OUT_OF_RANGE = "out_of_range"


@dataclass(frozen=True)
class ShapeIssue:
    kind: IssueKind
    message: str
    key: Any = None


@dataclass(frozen=True)
class RangeViolation:
    key: Any
    value: float
    lower: float
    upper: float
    ipr: InterPercentileRange
    factor: float
    kind: IssueKind = IssueKind.OUT_OF_RANGE

    @property
    def message(self) -> str:
        width = self.ipr.width
        if self.value < self.lower:
            detail = f"{self.value} < {self.lower} (= {self.ipr.low} - {width} * {self.factor})"
        else:
            detail = f"{self.value} > {self.upper} (= {self.ipr.high} + {width} * {self.factor})"
        if isinstance(self.key, FieldKey):
            return f"Field '{self.key}' failed: {detail}"
        return f"Wave number {self.key} failed: {detail}"


Issue = ShapeIssue | RangeViolation


@dataclass(frozen=True)
class ValidationReport:
    sample_id: Any = None
    issues: Tuple[Issue, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.issues

    @property
    def first(self) -> Optional[Issue]:
        return self.issues[0] if self.issues else None

    @property
    def violations(self) -> List[RangeViolation]:
        return [issue for issue in self.issues if isinstance(issue, RangeViolation)]

    @property
    def shape_issues(self) -> List[ShapeIssue]:
        return [issue for issue in self.issues if isinstance(issue, ShapeIssue)]

    @property
    def message(self) -> Optional[str]:
        if not self.issues:
            return None
        text = "; ".join(issue.message for issue in self.issues)
        if self.sample_id is not None and any(isinstance(i, RangeViolation) for i in self.issues):
            return f"#{self.sample_id}\t{text}"
        return text


def sample_type_matches(pattern: str, sample_type: Optional[str]) -> bool:
    if pattern in MATCH_ALL or sample_type is None:
        return True
    return re.fullmatch(pattern, sample_type) is not None


def _check_value(rng: InterPercentileRange, value: float, factor: float) -> Optional[RangeViolation]:
    lower, upper = rng.bounds(factor)
    if lower <= value <= upper:
        return None
    return RangeViolation(key=rng.key, value=value, lower=lower, upper=upper, ipr=rng, factor=factor)


class Validator:
    def __init__(
        self,
        factor: float = 3.0,
        *,
        report_all: bool = False,
        pre_filter: Callable[[Spectrum], Spectrum] | None = None,
    ) -> None:
        if factor < 0:
            raise ValueError(f"Tolerance factor must be non-negative, got {factor}")
        self.factor = float(factor)
        self.report_all = report_all
        self.pre_filter = pre_filter

    def validate(self, model: IPRModel, sample: Spectrum) -> ValidationReport:
        if sample is None:
            raise ValueError("Cannot validate a missing spectrum")
        if self.pre_filter is not None:
            sample = self.pre_filter(sample)

        if sample.amplitude_count != model.amplitude_count:
            return self._report(sample, [ShapeIssue(
                IssueKind.COUNT_MISMATCH,
                f"Number of amplitudes differ - expected: {model.amplitude_count}, "
                f"found: {sample.amplitude_count}",
            )])

        sample_type = sample.sample_type
        if not sample_type_matches(model.sample_type, sample_type):
            return self._report(sample, [ShapeIssue(
                IssueKind.SAMPLE_TYPE_MISMATCH,
                f"Sample mismatch: '{sample_type}' does not match '{model.sample_type}'!",
            )])

        issues: List[Issue] = []
        amplitudes = sample.amplitudes()
        for wave_number, rng in model.amplitude_ranges.items():
            value = amplitudes.get(wave_number)
            if value is None:
                issue: Optional[Issue] = ShapeIssue(
                    IssueKind.MISSING_KEY,
                    f"Wave number {wave_number} not present in sample",
                    key=wave_number,
                )
            else:
                issue = _check_value(rng, value, self.factor)
            if issue is not None:
                issues.append(issue)
                if not self.report_all:
                    return self._report(sample, issues)

        fields = sample.numeric_fields()
        invalid = sample.invalid_numeric_fields()
        for key, rng in model.field_ranges.items():
            if key in invalid:
                issue = ShapeIssue(
                    IssueKind.INVALID_VALUE,
                    f"Field '{key.name}' is not numeric: {invalid[key]!r}",
                    key=key,
                )
            elif key in fields:
                issue = _check_value(rng, fields[key], self.factor)
            else:
                continue
            if issue is not None:
                issues.append(issue)
                if not self.report_all:
                    break

        return self._report(sample, issues)

    def validate_many(self, model: IPRModel, samples: Iterable[Spectrum]) -> List[ValidationReport]:
        return [self.validate(model, sample) for sample in samples]

    def clean(self, model: IPRModel, samples: Iterable[Spectrum]) -> List[Spectrum]:
        return [sample for sample in samples if self.validate(model, sample).clean]

    @staticmethod
    def _report(sample: Spectrum, issues: Sequence[Issue]) -> ValidationReport:
        return ValidationReport(sample_id=sample.id, issues=tuple(issues))


def validate(model: IPRModel, sample: Spectrum, factor: float = 3.0, *, report_all: bool = False) -> ValidationReport:
    return Validator(factor, report_all=report_all).validate(model, sample)


def reports_to_frame(reports: Iterable[ValidationReport]) -> pd.DataFrame:
    rows = []
    for report in reports:
        if report.clean:
            rows.append({"sample_id": report.sample_id, "kind": None, "key": None,
                         "value": np.nan, "lower": np.nan, "upper": np.nan, "message": None})
            continue
        for issue in report.issues:
            is_violation = isinstance(issue, RangeViolation)
            rows.append({
                "sample_id": report.sample_id,
                "kind": issue.kind.value,
                "key": None if issue.key is None else str(issue.key),
                "value": issue.value if is_violation else np.nan,
                "lower": issue.lower if is_violation else np.nan,
                "upper": issue.upper if is_violation else np.nan,
                "message": issue.message,
            })
    return pd.DataFrame(rows, columns=["sample_id", "kind", "key", "value", "lower", "upper", "message"])
