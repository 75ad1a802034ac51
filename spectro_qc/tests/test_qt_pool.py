import pytest

pytest.importorskip("PyQt6.QtCore")

from spectro_qc.engine.checkers import InterPercentileRangeChecker
from spectro_qc.engine.errors import TrainingCancelled
from spectro_qc.engine.lifecycle import LifecycleState, ModelLifecycle
from spectro_qc.engine.qt_pool import QtWorkerPool
from spectro_qc.engine.recipe_model import CleanerRecipe
from spectro_qc.engine.run_controller import TrainingJob
from spectro_qc.tests.spectra_test_utils import in_memory_population, make_spectrum, random_population


def test_qt_pool_runs_training_job():
    checker = InterPercentileRangeChecker(chunk_size=10)
    population = in_memory_population(random_population(30))
    handle = QtWorkerPool().submit(TrainingJob(checker, population))
    model = handle.wait(10)
    assert handle.done()
    assert model.same_ranges(checker.train(population))


def test_qt_pool_reports_cancellation():
    job = TrainingJob(InterPercentileRangeChecker(chunk_size=10), in_memory_population(random_population(30)))
    job.request_stop()
    handle = QtWorkerPool().submit(job)
    with pytest.raises(TrainingCancelled):
        handle.wait(10)


def test_lifecycle_offloads_to_qt_pool():
    lifecycle = ModelLifecycle(
        CleanerRecipe(chunk_size=10),
        population=in_memory_population(random_population(30)),
        worker_pool=QtWorkerPool(),
    )
    assert lifecycle.validate(make_spectrum([1.0, 1.0, 1.0])).clean
    assert lifecycle.state is LifecycleState.READY
