import numpy as np
import pytest

from spectro_qc.engine.checkers import InterPercentileRangeChecker
from spectro_qc.engine.plugin_api import FieldKey, FieldKind, TrainingPopulation
from spectro_qc.engine.record_store import DuckDBRecordSource, InMemoryRecordSource
from spectro_qc.tests.spectra_test_utils import make_spectrum, random_population


def test_duckdb_source_round_trips_spectra(tmp_path):
    db_path = tmp_path / "spectra.duckdb"
    spec = make_spectrum([0.1, 0.25, 1.0 / 3.0], {"moisture": 12.5, "sample_type": "NIR", "verified": False}, id="A1")
    with DuckDBRecordSource(db_path) as source:
        assert source.validate_schema() == []
        record_id = source.insert_spectrum(spec)

    with DuckDBRecordSource(db_path, read_only=True) as source:
        loaded = source.load(record_id)
    assert loaded.id == "A1"
    np.testing.assert_array_equal(loaded.wave_number, spec.wave_number)
    np.testing.assert_array_equal(loaded.amplitude, spec.amplitude)
    assert loaded.fields[FieldKey("moisture", FieldKind.NUMERIC)] == 12.5
    assert loaded.fields[FieldKey("verified", FieldKind.BOOLEAN)] is False
    assert loaded.sample_type == "NIR"


def test_duckdb_source_filters_population_by_sample_type():
    with DuckDBRecordSource() as source:
        source.insert_many(random_population(3, sample_type="NIR"))
        source.insert_many(random_population(2, sample_type="MIR"))
        source.insert_spectrum(make_spectrum([1.0, 1.0, 1.0]))
        assert source.ids_matching("NIR") == [1, 2, 3]
        assert source.ids_matching("MIR") == [4, 5]
        assert source.ids_matching(".*") == [1, 2, 3, 4, 5, 6]
        with pytest.raises(KeyError):
            source.load(99)


def test_duckdb_source_reports_missing_tables(tmp_path):
    import duckdb

    db_path = tmp_path / "empty.duckdb"
    duckdb.connect(str(db_path)).close()
    with DuckDBRecordSource(db_path, read_only=True) as source:
        errors = source.validate_schema()
    assert "Missing table 'spectra'." in errors


def test_training_from_duckdb_matches_in_memory():
    spectra = random_population(20, seed=4)
    checker = InterPercentileRangeChecker(chunk_size=5)
    with DuckDBRecordSource() as source:
        source.insert_many(spectra)
        from_db = checker.train(TrainingPopulation(source, "NIR"))
    in_memory = checker.train(TrainingPopulation(InMemoryRecordSource(spectra), "NIR"))
    assert from_db.same_ranges(in_memory)


def test_in_memory_source_rejects_invalid_filter():
    with pytest.raises(ValueError):
        InMemoryRecordSource(random_population(2)).ids_matching("[")
