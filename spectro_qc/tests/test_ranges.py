import numpy as np
import pytest

from spectro_qc.engine.chunking import ChunkAggregator, ChunkPercentiles
from spectro_qc.engine.plugin_api import FieldKey
from spectro_qc.engine.ranges import InterPercentileRange, IPRModel, RangeSynthesizer, synthesize_model
from spectro_qc.engine.record_store import InMemoryRecordSource
from spectro_qc.engine.validator import validate
from spectro_qc.tests.spectra_test_utils import chunk_values, make_spectrum, single_key_population


def _chunk(index, amplitudes, fields=None):
    return ChunkPercentiles(index=index, size=10, amplitudes=amplitudes, fields=fields or {})


def test_synthesizer_takes_median_of_each_side():
    chunks = [
        _chunk(0, {1500.0: (1.0, 9.0)}),
        _chunk(1, {1500.0: (2.0, 8.0)}),
        _chunk(2, {1500.0: (0.0, 10.0)}),
    ]
    ranges = RangeSynthesizer(chunks).amplitude_ranges()
    assert ranges == {1500.0: InterPercentileRange(1500.0, 1.0, 9.0)}


def test_synthesizer_is_invariant_to_chunk_order():
    rng = np.random.default_rng(11)
    chunks = [
        _chunk(i, {float(wn): tuple(sorted(rng.normal(size=2))) for wn in range(5)})
        for i in range(7)
    ]
    forward = RangeSynthesizer(chunks)
    backward = RangeSynthesizer(list(reversed(chunks)))
    assert forward.amplitude_ranges() == backward.amplitude_ranges()


def test_synthesizer_uses_only_chunks_containing_key():
    protein = FieldKey("protein")
    chunks = [
        _chunk(0, {1.0: (0.0, 1.0)}, {protein: (4.0, 6.0)}),
        _chunk(1, {1.0: (0.0, 1.0)}),
        _chunk(2, {1.0: (0.0, 1.0)}, {protein: (5.0, 8.0)}),
    ]
    ranges = RangeSynthesizer(chunks).field_ranges()
    assert ranges[protein] == InterPercentileRange(protein, 4.5, 7.0)


def test_synthesizer_tolerates_inverted_ranges():
    chunks = [_chunk(0, {1.0: (5.0, 3.0)})]
    ipr = RangeSynthesizer(chunks).amplitude_ranges()[1.0]
    assert ipr.width == -2.0
    assert ipr.clamped_width == 0.0


def test_single_chunk_matches_direct_percentiles():
    rng = np.random.default_rng(5)
    values = rng.normal(10.0, 2.0, size=200)
    source = InMemoryRecordSource(single_key_population(values))
    result = ChunkAggregator(source, list(range(200)), chunk_size=200).aggregate()
    model = synthesize_model(result)
    ipr = model.amplitude_ranges[1500.0]
    assert ipr.low == pytest.approx(np.quantile(values, 0.25), abs=0, rel=1e-12)
    assert ipr.high == pytest.approx(np.quantile(values, 0.75), abs=0, rel=1e-12)


def test_three_chunk_scenario_end_to_end():
    values = chunk_values(1, 9) + chunk_values(2, 8) + chunk_values(0, 10)
    source = InMemoryRecordSource(single_key_population(values))
    result = ChunkAggregator(
        source, list(range(30)), chunk_size=10, lower_percentile=0.0, upper_percentile=1.0
    ).aggregate()
    assert [chunk.amplitudes[1500.0] for chunk in result.chunks] == [(1.0, 9.0), (2.0, 8.0), (0.0, 10.0)]

    model = synthesize_model(result, lower_percentile=0.0, upper_percentile=1.0)
    assert model.amplitude_ranges[1500.0] == InterPercentileRange(1500.0, 1.0, 9.0)
    assert model.amplitude_count == 1
    assert model.chunk_count == 3

    inside = make_spectrum([-23.0], wave_numbers=(1500.0,))
    assert validate(model, inside, 3.0).clean
    for value in (-24.0, -25.0):
        report = validate(model, make_spectrum([value], wave_numbers=(1500.0,)), 3.0)
        assert not report.clean
        assert report.first.lower == -23.0


def test_model_ranges_are_read_only_and_model_is_hashable():
    model = IPRModel(amplitude_ranges={1500.0: InterPercentileRange(1500.0, 1.0, 9.0)}, field_ranges={})
    with pytest.raises(TypeError):
        model.amplitude_ranges[1500.0] = InterPercentileRange(1500.0, 0.0, 0.0)
    assert hash(model) == hash(model)
    assert model in {model}
