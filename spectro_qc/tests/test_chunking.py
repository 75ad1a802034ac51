import logging

import pytest

from spectro_qc.engine.chunking import ChunkAggregator, chunk_bounds
from spectro_qc.engine.errors import ConfigurationError, TrainingCancelled
from spectro_qc.engine.plugin_api import FieldKey, FieldKind
from spectro_qc.engine.record_store import InMemoryRecordSource
from spectro_qc.tests.spectra_test_utils import make_spectrum, random_population, single_key_population


def test_chunk_bounds_discards_short_trailing_chunk():
    bounds, warning = chunk_bounds(2500, 1000)
    assert bounds == [(0, 1000), (1000, 2000)]
    assert "Discarded last chunk" in warning


def test_chunk_bounds_keeps_lone_short_chunk():
    bounds, warning = chunk_bounds(500, 1000)
    assert bounds == [(0, 500)]
    assert "Only one chunk" in warning


def test_chunk_bounds_exact_multiple_has_no_warning():
    bounds, warning = chunk_bounds(3000, 1000)
    assert len(bounds) == 3
    assert warning is None


def test_chunk_bounds_rejects_non_positive_chunk_size():
    with pytest.raises(ConfigurationError):
        chunk_bounds(10, 0)


def test_aggregator_uses_two_chunks_for_2500_records(caplog):
    source = InMemoryRecordSource(single_key_population(range(2500)))
    aggregator = ChunkAggregator(source, list(range(2500)), chunk_size=1000)
    with caplog.at_level(logging.WARNING):
        result = aggregator.aggregate()
    assert result.chunk_count == 2
    assert result.discarded == 500
    assert [chunk.size for chunk in result.chunks] == [1000, 1000]
    assert source.loads == 2000
    assert any("Discarded last chunk" in rec.message for rec in caplog.records)


def test_aggregator_keeps_single_short_chunk(caplog):
    source = InMemoryRecordSource(single_key_population(range(500)))
    aggregator = ChunkAggregator(source, list(range(500)), chunk_size=1000)
    with caplog.at_level(logging.WARNING):
        result = aggregator.aggregate()
    assert result.chunk_count == 1
    assert result.chunks[0].size == 500
    assert result.discarded == 0
    assert result.warnings and "Only one chunk" in result.warnings[0]


def test_aggregator_reduces_each_chunk_to_percentile_pairs():
    values = list(range(10)) + list(range(100, 110))
    source = InMemoryRecordSource(single_key_population(values))
    result = ChunkAggregator(
        source, list(range(20)), chunk_size=10, lower_percentile=0.0, upper_percentile=1.0
    ).aggregate()
    assert result.chunks[0].amplitudes == {1500.0: (0.0, 9.0)}
    assert result.chunks[1].amplitudes == {1500.0: (100.0, 109.0)}
    assert result.wave_numbers == [1500.0]


def test_aggregator_ignores_non_numeric_fields():
    spectra = random_population(6)
    source = InMemoryRecordSource(spectra)
    result = ChunkAggregator(source, list(range(6)), chunk_size=3).aggregate()
    assert result.fields == [FieldKey("moisture", FieldKind.NUMERIC)]
    for chunk in result.chunks:
        assert set(chunk.fields) == {FieldKey("moisture", FieldKind.NUMERIC)}


def test_aggregator_tracks_fields_missing_from_some_chunks():
    spectra = [make_spectrum([1.0, 1.0, 1.0]) for _ in range(2)]
    spectra += [make_spectrum([1.0, 1.0, 1.0], {"protein": 4.0}) for _ in range(2)]
    result = ChunkAggregator(InMemoryRecordSource(spectra), list(range(4)), chunk_size=2).aggregate()
    assert result.chunks[0].fields == {}
    assert FieldKey("protein") in result.chunks[1].fields
    assert result.fields == [FieldKey("protein")]


def test_aggregator_loads_chunks_lazily():
    source = InMemoryRecordSource(single_key_population(range(30)))
    chunks = ChunkAggregator(source, list(range(30)), chunk_size=10).iter_chunks()
    next(chunks)
    assert source.loads == 10
    next(chunks)
    assert source.loads == 20


def test_aggregator_stops_at_chunk_boundary():
    source = InMemoryRecordSource(single_key_population(range(30)))
    calls = []

    def should_stop():
        calls.append(source.loads)
        return len(calls) > 1

    aggregator = ChunkAggregator(source, list(range(30)), chunk_size=10, should_stop=should_stop)
    with pytest.raises(TrainingCancelled):
        aggregator.aggregate()
    assert source.loads == 10
    assert calls == [0, 10]


def test_aggregator_requires_population():
    with pytest.raises(ConfigurationError):
        ChunkAggregator(InMemoryRecordSource(), [], chunk_size=10).aggregate()


def test_aggregator_skips_non_numeric_values_of_numeric_fields():
    moisture = FieldKey("moisture", FieldKind.NUMERIC)
    spectra = [make_spectrum([1.0], {moisture: float(i)}, wave_numbers=(1500.0,)) for i in range(9)]
    spectra.append(make_spectrum([1.0], {moisture: "n/a"}, wave_numbers=(1500.0,)))
    chunk = ChunkAggregator(InMemoryRecordSource(spectra), range(10), chunk_size=10).aggregate().chunks[0]
    assert chunk.fields[moisture] == (2.0, 6.0)
