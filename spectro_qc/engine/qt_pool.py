from PyQt6.QtCore import QObject, pyqtSignal, QThreadPool, QRunnable
import threading
from typing import Any, Optional

from spectro_qc.engine.run_controller import TrainingJob


class JobSignals(QObject):
    message = pyqtSignal(str)
    finished = pyqtSignal(object)  # model or Exception


class TrainingRunnable(QRunnable):
    def __init__(self, job: TrainingJob):
        super().__init__()
        self.job = job
        self.signals = JobSignals()
        self._done = threading.Event()
        self._result: Any = None
        self._error: Optional[BaseException] = None

    def run(self):
        try:
            self.signals.message.emit("Training model...")
            self._result = self.job.run()
            self.signals.finished.emit(self._result)
        except Exception as e:
            self._error = e
            self.signals.finished.emit(e)
        finally:
            self._done.set()

    def wait(self, timeout: Optional[float] = None) -> Any:
        if not self._done.wait(timeout):
            raise TimeoutError("Training job did not finish in time")
        if self._error is not None:
            raise self._error
        return self._result

    def cancel(self) -> None:
        self.job.request_stop()
        self.signals.message.emit("Cancellation requested")

    def done(self) -> bool:
        return self._done.is_set()


class QtWorkerPool:
    """Worker pool backed by ``QThreadPool`` for Qt hosted cleaners."""

    def __init__(self, pool: Optional[QThreadPool] = None):
        self.pool = pool or QThreadPool.globalInstance()

    def submit(self, job: TrainingJob) -> TrainingRunnable:
        runnable = TrainingRunnable(job)
        runnable.setAutoDelete(False)
        self.pool.start(runnable)
        return runnable

    def wait_for_done(self, msecs: int = -1) -> bool:
        return self.pool.waitForDone(msecs)
