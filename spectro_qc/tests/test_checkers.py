import pytest

from spectro_qc.engine.checkers import InterPercentileRangeChecker, MinMaxChecker, checker_for_recipe
from spectro_qc.engine.errors import ConfigurationError
from spectro_qc.engine.recipe_model import CleanerRecipe
from spectro_qc.engine.validator import IssueKind
from spectro_qc.tests.spectra_test_utils import in_memory_population, make_spectrum, random_population


def test_ipr_checker_trains_and_checks():
    checker = InterPercentileRangeChecker(chunk_size=10)
    model = checker.train(in_memory_population(random_population(30)))
    assert model.amplitude_count == 3
    assert model.sample_type == ".*"
    assert checker.check(make_spectrum([1.0, 1.0, 1.0], {"moisture": 12.0}), model).clean
    assert not checker.check(make_spectrum([50.0, 1.0, 1.0]), model).clean


def test_ipr_checker_records_population_filter_as_sample_type():
    checker = InterPercentileRangeChecker(chunk_size=10)
    model = checker.train(in_memory_population(random_population(10), "NIR"))
    report = checker.check(make_spectrum([1.0, 1.0, 1.0], {"sample_type": "MIR"}), model)
    assert report.first.kind is IssueKind.SAMPLE_TYPE_MISMATCH


def test_ipr_checker_rejects_empty_population_and_bad_percentiles():
    checker = InterPercentileRangeChecker(chunk_size=10)
    with pytest.raises(ConfigurationError):
        checker.train(in_memory_population(random_population(5), "UV"))
    with pytest.raises(ConfigurationError):
        InterPercentileRangeChecker(lower_percentile=0.9, upper_percentile=0.1)


def test_minmax_checker_bounds_are_inclusive():
    checker = MinMaxChecker("moisture", minimum=10.0, maximum=14.0)
    model = checker.train()
    assert checker.check(make_spectrum([1, 1, 1], {"moisture": 14.0}), model).clean
    assert not checker.check(make_spectrum([1, 1, 1], {"moisture": 14.5}), model).clean
    missing = checker.check(make_spectrum([1, 1, 1]), model)
    assert missing.first.kind is IssueKind.MISSING_KEY


def test_checker_selected_from_recipe():
    assert isinstance(checker_for_recipe(CleanerRecipe()), InterPercentileRangeChecker)
    minmax = checker_for_recipe(CleanerRecipe(checker="minmax", params={"minmax": {"field": "fat", "max": 3}}))
    assert isinstance(minmax, MinMaxChecker)
    assert minmax.minimum is None and minmax.maximum == 3.0
    with pytest.raises(ConfigurationError):
        checker_for_recipe(CleanerRecipe(checker="pca"))
