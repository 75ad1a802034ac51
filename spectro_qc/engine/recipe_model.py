from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from pathlib import Path
import re
from typing import Dict, Any, Optional

import yaml

TRAINING_PROPERTIES = frozenset({
    "checker",
    "chunk_size",
    "lower_percentile",
    "upper_percentile",
    "population_filter",
    "model_source",
    "model_file",
    "override_model_file",
    "model_storage",
    "params",
})


class ModelSource(str, Enum):
    AUTO = "auto"
    FILE = "file"
    UPSTREAM = "upstream"
    STORAGE = "storage"


@dataclass
class CleanerRecipe:
    checker: str = "ipr"
    chunk_size: int = 1000
    lower_percentile: float = 0.25
    upper_percentile: float = 0.75
    factor: float = 3.0
    population_filter: str = ".*"
    model_source: str = "auto"
    model_file: Optional[str] = None
    override_model_file: bool = False
    model_storage: Optional[str] = None
    use_reset_variable: bool = False
    reset_variable: Optional[str] = None
    report_all: bool = False
    details_output: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    version: str = "0.1.0"

    @property
    def source(self) -> ModelSource:
        return ModelSource(str(self.model_source).lower())

    def validate(self) -> list[str]:
        errs = []
        try:
            if int(self.chunk_size) < 1:
                errs.append("Chunk size must be a positive integer")
        except (TypeError, ValueError):
            errs.append("Chunk size must be a positive integer")

        try:
            lower = float(self.lower_percentile)
            upper = float(self.upper_percentile)
        except (TypeError, ValueError):
            errs.append("Percentiles must be numeric")
        else:
            if not 0.0 <= lower <= 1.0:
                errs.append("Lower percentile must lie within [0, 1]")
            if not 0.0 <= upper <= 1.0:
                errs.append("Upper percentile must lie within [0, 1]")
            if lower > upper:
                errs.append("Lower percentile must not exceed upper percentile")

        try:
            if float(self.factor) < 0:
                errs.append("Tolerance factor must be non-negative")
        except (TypeError, ValueError):
            errs.append("Tolerance factor must be numeric")

        try:
            re.compile(self.population_filter or ".*")
        except re.error as exc:
            errs.append(f"Population filter is not a valid pattern: {exc}")

        try:
            source = self.source
        except ValueError:
            errs.append(f"Unknown model source '{self.model_source}'")
        else:
            if source is ModelSource.FILE and not self.model_file:
                errs.append("Model source 'file' requires a model file")
            if source is ModelSource.STORAGE and not self.model_storage:
                errs.append("Model source 'storage' requires a storage name")

        if self.use_reset_variable and not self.reset_variable:
            errs.append("Monitoring is enabled but no reset variable is named")

        if self.checker == "minmax":
            minmax = self.params.get("minmax", {})
            if not minmax.get("field"):
                errs.append("Min/max checker requires a field name")
            lo, hi = minmax.get("min"), minmax.get("max")
            try:
                if lo is not None and hi is not None and float(lo) > float(hi):
                    errs.append("Min/max checker minimum exceeds maximum")
            except (TypeError, ValueError):
                errs.append("Min/max checker bounds must be numeric")
        elif self.checker != "ipr":
            errs.append(f"Unknown checker '{self.checker}'")
        return errs

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "CleanerRecipe":
        known = {f.name for f in fields(cls)}
        data = dict(data or {})
        extra = {k: data.pop(k) for k in list(data) if k not in known}
        recipe = cls(**data)
        if extra:
            recipe.params = {**extra, **recipe.params}
        return recipe

    def replace(self, **changes: Any) -> "CleanerRecipe":
        data = self.to_dict()
        data.update(changes)
        return CleanerRecipe.from_dict(data)


def load_recipe(path: str | Path) -> CleanerRecipe:
    with Path(path).open("r", encoding="utf-8") as handle:
        content = yaml.safe_load(handle) or {}
    if not isinstance(content, dict):
        raise ValueError(f"Recipe file {path} must contain a mapping")
    return CleanerRecipe.from_dict(content)


def save_recipe(recipe: CleanerRecipe, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(recipe.to_dict(), handle, sort_keys=False)
