"""Chunked collection of per-key percentile pairs from a training population.

Large populations are read in fixed-size chunks.  Each chunk is reduced to a
low/high percentile pair per wave number and per numeric field before the
next chunk is loaded, so only one chunk's samples are held at a time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Sequence, Tuple

from spectro_qc.engine.errors import ConfigurationError, TrainingCancelled
from spectro_qc.engine.percentile import PercentileAccumulator
from spectro_qc.engine.plugin_api import FieldKey, RecordSource

__all__ = [
    "ChunkPercentiles",
    "AggregationResult",
    "ChunkAggregator",
    "chunk_bounds",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkPercentiles:
    index: int
    size: int
    amplitudes: Dict[float, Tuple[float, float]]
    fields: Dict[FieldKey, Tuple[float, float]]


@dataclass
class AggregationResult:
    chunks: List[ChunkPercentiles]
    wave_numbers: List[float]
    fields: List[FieldKey]
    chunk_size: int
    population_size: int
    discarded: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


def chunk_bounds(total: int, chunk_size: int) -> Tuple[List[Tuple[int, int]], Optional[str]]:
    """Return ``(start, stop)`` slices to use and an optional warning.

    A short trailing chunk is dropped when at least one full chunk precedes
    it; a lone short chunk is kept because nothing else is available.
    """

    if chunk_size < 1:
        raise ConfigurationError(f"Chunk size must be at least 1, got {chunk_size}")
    bounds = [(start, min(start + chunk_size, total)) for start in range(0, total, chunk_size)]
    if not bounds:
        return bounds, None
    start, stop = bounds[-1]
    if stop - start == chunk_size:
        return bounds, None
    if len(bounds) == 1:
        return bounds, (
            f"Only one chunk collected, which is incomplete ({stop - start} of {chunk_size} records)"
        )
    return bounds[:-1], (
        f"Discarded last chunk, as it was incomplete ({stop - start} of {chunk_size} records)"
    )


class ChunkAggregator:
    def __init__(
        self,
        source: RecordSource,
        ids: Sequence[Any],
        *,
        chunk_size: int = 1000,
        lower_percentile: float = 0.25,
        upper_percentile: float = 0.75,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.source = source
        self.ids = list(ids)
        self.chunk_size = int(chunk_size)
        self.lower_percentile = float(lower_percentile)
        self.upper_percentile = float(upper_percentile)
        self.should_stop = should_stop
        self.warnings: List[str] = []
        self.discarded = 0

    def _raise_if_cancelled(self, index: int) -> None:
        if self.should_stop is not None and self.should_stop():
            raise TrainingCancelled(f"Training cancelled before chunk {index}")

    def collect_chunk(self, index: int, chunk_ids: Sequence[Any]) -> ChunkPercentiles:
        amplitudes: Dict[float, PercentileAccumulator] = {}
        fields: Dict[FieldKey, PercentileAccumulator] = {}

        for record_id in chunk_ids:
            record = self.source.load(record_id)
            for wave_number, amplitude in record.amplitudes().items():
                acc = amplitudes.get(wave_number)
                if acc is None:
                    acc = amplitudes[wave_number] = PercentileAccumulator()
                acc.add(amplitude)
            for key, value in record.numeric_fields().items():
                acc = fields.get(key)
                if acc is None:
                    acc = fields[key] = PercentileAccumulator()
                acc.add(value)

        return ChunkPercentiles(
            index=index,
            size=len(chunk_ids),
            amplitudes=_reduce(amplitudes, self.lower_percentile, self.upper_percentile),
            fields=_reduce(fields, self.lower_percentile, self.upper_percentile),
        )

    def iter_chunks(self) -> Iterator[ChunkPercentiles]:
        if not self.ids:
            raise ConfigurationError("No training population available")
        bounds, warning = chunk_bounds(len(self.ids), self.chunk_size)
        self.warnings = []
        self.discarded = len(self.ids) - sum(stop - start for start, stop in bounds)
        if warning:
            logger.warning(warning)
            self.warnings.append(warning)

        for index, (start, stop) in enumerate(bounds):
            self._raise_if_cancelled(index)
            chunk = self.collect_chunk(index, self.ids[start:stop])
            logger.debug(
                "Chunk %d: %d records, %d wave numbers, %d fields",
                index,
                chunk.size,
                len(chunk.amplitudes),
                len(chunk.fields),
            )
            yield chunk

    def aggregate(self) -> AggregationResult:
        chunks: List[ChunkPercentiles] = []
        wave_numbers: Dict[float, None] = {}
        fields: Dict[FieldKey, None] = {}
        for chunk in self.iter_chunks():
            chunks.append(chunk)
            wave_numbers.update(dict.fromkeys(chunk.amplitudes))
            fields.update(dict.fromkeys(chunk.fields))
        return AggregationResult(
            chunks=chunks,
            wave_numbers=list(wave_numbers),
            fields=list(fields),
            chunk_size=self.chunk_size,
            population_size=len(self.ids),
            discarded=self.discarded,
            warnings=list(self.warnings),
        )


def _reduce(
    accumulators: Dict[Hashable, PercentileAccumulator],
    lower: float,
    upper: float,
) -> Dict[Any, Tuple[float, float]]:
    return {key: (acc.percentile(lower), acc.percentile(upper)) for key, acc in accumulators.items()}
