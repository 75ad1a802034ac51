from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from types import MappingProxyType
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Sequence

import numpy as np

from spectro_qc.engine.chunking import AggregationResult, ChunkPercentiles
from spectro_qc.engine.plugin_api import FieldKey

__all__ = ["InterPercentileRange", "IPRModel", "RangeSynthesizer", "synthesize_model"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterPercentileRange:
    key: Any
    low: float
    high: float

    @property
    def width(self) -> float:
        return self.high - self.low

    @property
    def clamped_width(self) -> float:
        return max(self.width, 0.0)

    def bounds(self, factor: float) -> tuple[float, float]:
        width = self.width
        return self.low - factor * width, self.high + factor * width

    def __str__(self) -> str:
        return f"id={self.key}, lp={self.low}, up={self.high}"


@dataclass(frozen=True)
class IPRModel:
    amplitude_ranges: Mapping[float, InterPercentileRange]
    field_ranges: Mapping[FieldKey, InterPercentileRange]
    sample_type: str = ""
    lower_percentile: float = 0.25
    upper_percentile: float = 0.75
    chunk_size: int = 0
    chunk_count: int = 0
    trained_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __post_init__(self) -> None:
        # read-only views; models are shared across lifecycles and storage slots
        object.__setattr__(self, "amplitude_ranges", MappingProxyType(dict(self.amplitude_ranges)))
        object.__setattr__(self, "field_ranges", MappingProxyType(dict(self.field_ranges)))

    def __hash__(self) -> int:
        return hash((
            tuple(self.amplitude_ranges.items()),
            tuple(self.field_ranges.items()),
            self.sample_type,
            self.trained_at,
        ))

    @property
    def amplitude_count(self) -> int:
        return len(self.amplitude_ranges)

    def same_ranges(self, other: "IPRModel") -> bool:
        return (
            dict(self.amplitude_ranges) == dict(other.amplitude_ranges)
            and dict(self.field_ranges) == dict(other.field_ranges)
            and self.sample_type == other.sample_type
        )


class RangeSynthesizer:
    """Merge per-chunk percentile pairs into one range per key.

    Each side is the median over the chunks in which the key occurred, so
    the outcome does not depend on the order the chunks were produced in.
    """

    def __init__(self, chunks: Sequence[ChunkPercentiles]) -> None:
        self.chunks = list(chunks)

    def _synthesize(self, keys: Iterable[Hashable], attr: str) -> Dict[Any, InterPercentileRange]:
        result: Dict[Any, InterPercentileRange] = {}
        for key in keys:
            pairs = [getattr(chunk, attr)[key] for chunk in self.chunks if key in getattr(chunk, attr)]
            if not pairs:
                continue
            lows = np.sort(np.array([p[0] for p in pairs], dtype=float))
            highs = np.sort(np.array([p[1] for p in pairs], dtype=float))
            result[key] = InterPercentileRange(key, float(np.median(lows)), float(np.median(highs)))
        return result

    def amplitude_ranges(self, wave_numbers: Iterable[float] | None = None) -> Dict[float, InterPercentileRange]:
        if wave_numbers is None:
            wave_numbers = _ordered_keys(chunk.amplitudes for chunk in self.chunks)
        return self._synthesize(wave_numbers, "amplitudes")

    def field_ranges(self, fields: Iterable[FieldKey] | None = None) -> Dict[FieldKey, InterPercentileRange]:
        if fields is None:
            fields = _ordered_keys(chunk.fields for chunk in self.chunks)
        return self._synthesize(fields, "fields")


def _ordered_keys(mappings: Iterable[Mapping[Any, Any]]) -> List[Any]:
    seen: Dict[Any, None] = {}
    for mapping in mappings:
        seen.update(dict.fromkeys(mapping))
    return list(seen)


def synthesize_model(
    result: AggregationResult,
    *,
    sample_type: str = "",
    lower_percentile: float = 0.25,
    upper_percentile: float = 0.75,
) -> IPRModel:
    synthesizer = RangeSynthesizer(result.chunks)
    model = IPRModel(
        amplitude_ranges=synthesizer.amplitude_ranges(result.wave_numbers),
        field_ranges=synthesizer.field_ranges(result.fields),
        sample_type=sample_type,
        lower_percentile=lower_percentile,
        upper_percentile=upper_percentile,
        chunk_size=result.chunk_size,
        chunk_count=result.chunk_count,
    )
    logger.info(
        "Synthesized %d amplitude and %d field ranges from %d chunk(s)",
        len(model.amplitude_ranges),
        len(model.field_ranges),
        model.chunk_count,
    )
    return model
