from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence
import numpy as np

SAMPLE_TYPE = "sample_type"


class FieldKind(str, Enum):
    NUMERIC = "numeric"
    STRING = "string"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class FieldKey:
    name: str
    kind: FieldKind = FieldKind.NUMERIC

    def __str__(self) -> str:
        return f"{self.name}[{self.kind.value[0].upper()}]"


@dataclass
class Spectrum:
    wave_number: np.ndarray         # x axis, identical across a population
    amplitude: np.ndarray
    fields: Dict[FieldKey, Any] = field(default_factory=dict)
    id: Optional[Any] = None

    @property
    def amplitude_count(self) -> int:
        return int(np.asarray(self.amplitude).size)

    @property
    def sample_type(self) -> Optional[str]:
        value = self.fields.get(FieldKey(SAMPLE_TYPE, FieldKind.STRING))
        return None if value is None else str(value)

    def amplitudes(self) -> Dict[float, float]:
        wn = np.asarray(self.wave_number, dtype=float)
        amp = np.asarray(self.amplitude, dtype=float)
        return {float(x): float(y) for x, y in zip(wn, amp)}

    def numeric_fields(self) -> Dict[FieldKey, float]:
        """Numeric fields as floats; values that do not convert are left out."""

        result: Dict[FieldKey, float] = {}
        for key, value in self.fields.items():
            if key.kind is not FieldKind.NUMERIC or value is None:
                continue
            number = _as_float(value)
            if number is not None:
                result[key] = number
        return result

    def invalid_numeric_fields(self) -> Dict[FieldKey, Any]:
        return {
            key: value
            for key, value in self.fields.items()
            if key.kind is FieldKind.NUMERIC and value is not None and _as_float(value) is None
        }


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def spectrum_from_mapping(
    amplitudes: Mapping[float, float],
    fields: Mapping[Any, Any] | None = None,
    *,
    id: Any = None,
) -> Spectrum:
    """Build a spectrum from a wave-number mapping.

    Plain string field names are treated as numeric unless the value is a
    ``str`` or ``bool``, in which case the matching kind is inferred.
    """

    keyed: Dict[FieldKey, Any] = {}
    for name, value in (fields or {}).items():
        if isinstance(name, FieldKey):
            keyed[name] = value
        elif isinstance(value, bool):
            keyed[FieldKey(str(name), FieldKind.BOOLEAN)] = value
        elif isinstance(value, str):
            keyed[FieldKey(str(name), FieldKind.STRING)] = value
        else:
            keyed[FieldKey(str(name), FieldKind.NUMERIC)] = value
    wn = np.fromiter((float(x) for x in amplitudes.keys()), dtype=float, count=len(amplitudes))
    amp = np.fromiter((float(y) for y in amplitudes.values()), dtype=float, count=len(amplitudes))
    return Spectrum(wave_number=wn, amplitude=amp, fields=keyed, id=id)


class RecordSource(Protocol):
    """Where training populations come from."""

    def load(self, record_id: Any) -> Spectrum:
        ...

    def ids_matching(self, population_filter: str) -> List[Any]:
        ...


@dataclass(frozen=True)
class TrainingPopulation:
    source: RecordSource
    population_filter: str = ".*"

    def ids(self) -> List[Any]:
        return list(self.source.ids_matching(self.population_filter))


class TrainableChecker:
    """Checker capability: learn a model once, then check many spectra."""

    id: str = "base"
    label: str = "Base"

    def train(self, population: TrainingPopulation, *, should_stop=None) -> Any:
        raise NotImplementedError

    def check(self, sample: Spectrum, model: Any):
        raise NotImplementedError

    def check_many(self, samples: Iterable[Spectrum], model: Any) -> Sequence:
        return [self.check(sample, model) for sample in samples]
