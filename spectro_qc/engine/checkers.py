from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Optional

from spectro_qc.engine.chunking import ChunkAggregator
from spectro_qc.engine.errors import ConfigurationError
from spectro_qc.engine.plugin_api import FieldKey, FieldKind, Spectrum, TrainableChecker, TrainingPopulation
from spectro_qc.engine.ranges import InterPercentileRange, IPRModel, synthesize_model
from spectro_qc.engine.recipe_model import CleanerRecipe
from spectro_qc.engine.validator import IssueKind, RangeViolation, ShapeIssue, ValidationReport, Validator

logger = logging.getLogger(__name__)


class InterPercentileRangeChecker(TrainableChecker):
    """Inter-percentile ranges learned from a population read in chunks.

    A value X is unclean unless
    ``low - IPR * factor <= X <= high + IPR * factor``.
    """

    id = "ipr"
    label = "Inter-percentile range"

    def __init__(
        self,
        *,
        chunk_size: int = 1000,
        lower_percentile: float = 0.25,
        upper_percentile: float = 0.75,
        factor: float = 3.0,
        report_all: bool = False,
        pre_filter: Callable[[Spectrum], Spectrum] | None = None,
    ) -> None:
        if lower_percentile > upper_percentile:
            raise ConfigurationError(
                f"Lower percentile {lower_percentile} exceeds upper percentile {upper_percentile}"
            )
        self.chunk_size = chunk_size
        self.lower_percentile = lower_percentile
        self.upper_percentile = upper_percentile
        self.validator = Validator(factor, report_all=report_all, pre_filter=pre_filter)

    @property
    def factor(self) -> float:
        return self.validator.factor

    def train(self, population: TrainingPopulation, *, should_stop=None) -> IPRModel:
        ids = population.ids()
        if not ids:
            raise ConfigurationError(
                f"No training population matches filter '{population.population_filter}'"
            )
        logger.info("Training on %d records in chunks of %d", len(ids), self.chunk_size)
        aggregator = ChunkAggregator(
            population.source,
            ids,
            chunk_size=self.chunk_size,
            lower_percentile=self.lower_percentile,
            upper_percentile=self.upper_percentile,
            should_stop=should_stop,
        )
        return synthesize_model(
            aggregator.aggregate(),
            sample_type=population.population_filter,
            lower_percentile=self.lower_percentile,
            upper_percentile=self.upper_percentile,
        )

    def check(self, sample: Spectrum, model: IPRModel) -> ValidationReport:
        return self.validator.validate(model, sample)


@dataclass(frozen=True)
class FieldBoundsModel:
    field: FieldKey
    minimum: Optional[float] = None
    maximum: Optional[float] = None


class MinMaxChecker(TrainableChecker):
    """Checks one numeric field against fixed inclusive bounds."""

    id = "minmax"
    label = "Min/max"

    def __init__(self, field: str, minimum: float | None = None, maximum: float | None = None) -> None:
        self.field = FieldKey(field, FieldKind.NUMERIC)
        self.minimum = None if minimum is None else float(minimum)
        self.maximum = None if maximum is None else float(maximum)

    def train(self, population: TrainingPopulation | None = None, *, should_stop=None) -> FieldBoundsModel:
        return FieldBoundsModel(self.field, self.minimum, self.maximum)

    def check(self, sample: Spectrum, model: FieldBoundsModel) -> ValidationReport:
        invalid = sample.invalid_numeric_fields()
        if model.field in invalid:
            issue: Any = ShapeIssue(
                IssueKind.INVALID_VALUE,
                f"Field '{model.field.name}' is not numeric: {invalid[model.field]!r}",
                key=model.field,
            )
            return ValidationReport(sample.id, (issue,))
        value = sample.numeric_fields().get(model.field)
        if value is None:
            issue = ShapeIssue(IssueKind.MISSING_KEY, f"Field '{model.field}' not present", key=model.field)
            return ValidationReport(sample.id, (issue,))
        low = float("-inf") if model.minimum is None else model.minimum
        high = float("inf") if model.maximum is None else model.maximum
        if low <= value <= high:
            return ValidationReport(sample.id)
        bounds = InterPercentileRange(model.field, low, high)
        return ValidationReport(sample.id, (RangeViolation(model.field, value, low, high, bounds, 0.0),))


def checker_for_recipe(recipe: CleanerRecipe, **kwargs: Any) -> TrainableChecker:
    if recipe.checker == "minmax":
        options: Dict[str, Any] = dict(recipe.params.get("minmax", {}))
        return MinMaxChecker(options.get("field", ""), options.get("min"), options.get("max"))
    if recipe.checker == "ipr":
        return InterPercentileRangeChecker(
            chunk_size=int(recipe.chunk_size),
            lower_percentile=float(recipe.lower_percentile),
            upper_percentile=float(recipe.upper_percentile),
            factor=float(recipe.factor),
            report_all=bool(recipe.report_all),
            **kwargs,
        )
    raise ConfigurationError(f"Unknown checker '{recipe.checker}'")
