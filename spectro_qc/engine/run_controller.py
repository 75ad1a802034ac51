from concurrent.futures import Future, ThreadPoolExecutor
import logging
import threading
from typing import Any, Optional, Protocol

from spectro_qc.engine.errors import TrainingCancelled
from spectro_qc.engine.plugin_api import TrainableChecker, TrainingPopulation

logger = logging.getLogger(__name__)


class TrainingJob:
    """One model (re)build, runnable on any thread."""

    def __init__(self, checker: TrainableChecker, population: TrainingPopulation):
        self.checker, self.population = checker, population
        self._stop = threading.Event()

    def run(self):
        self._raise_if_cancelled()
        try:
            return self.checker.train(self.population, should_stop=self.is_stop_requested)
        except TrainingCancelled:
            logger.info("Training job stopped on request")
            raise
        except Exception:
            logger.exception("Training job failed")
            raise

    def request_stop(self):
        self._stop.set()

    def is_stop_requested(self) -> bool:
        return self._stop.is_set()

    def _raise_if_cancelled(self):
        if self._stop.is_set():
            raise TrainingCancelled("Cancelled before training started")


class JobHandle(Protocol):
    job: TrainingJob

    def wait(self) -> Any:
        ...

    def cancel(self) -> None:
        ...


class WorkerPool(Protocol):
    def submit(self, job: TrainingJob) -> JobHandle:
        ...


class FutureJobHandle:
    def __init__(self, job: TrainingJob, future: Future):
        self.job, self.future = job, future

    def wait(self, timeout: Optional[float] = None) -> Any:
        return self.future.result(timeout=timeout)

    def cancel(self) -> None:
        self.job.request_stop()
        self.future.cancel()

    def done(self) -> bool:
        return self.future.done()


class ThreadWorkerPool:
    def __init__(self, max_workers: int = 1):
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="spectro-qc-train")

    def submit(self, job: TrainingJob) -> FutureJobHandle:
        return FutureJobHandle(job, self.executor.submit(job.run))

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
