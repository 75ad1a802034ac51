"""Model lifecycle for cleaners: resolve once, validate many times.

A model is resolved from (in AUTO order) a model file, an upstream model
provider, a named storage slot, or by training on the configured population.
Resolution is serialized per lifecycle; the finished model is published with
a single reference swap so concurrent validations never see a partial model.
"""

from __future__ import annotations

from enum import Enum
import logging
from pathlib import Path
import threading
from typing import Any, Callable, Iterable, List, Optional, Tuple

from spectro_qc.engine.audit import AuditTrail
from spectro_qc.engine.checkers import FieldBoundsModel, InterPercentileRangeChecker, MinMaxChecker, checker_for_recipe
from spectro_qc.engine.errors import ConfigurationError, TrainingCancelled
from spectro_qc.engine.model_store import export_model_details, load_model, save_model
from spectro_qc.engine.plugin_api import Spectrum, TrainableChecker, TrainingPopulation
from spectro_qc.engine.ranges import IPRModel
from spectro_qc.engine.recipe_model import TRAINING_PROPERTIES, CleanerRecipe, ModelSource
from spectro_qc.engine.run_controller import TrainingJob, WorkerPool
from spectro_qc.engine.storage import FlowContext
from spectro_qc.engine.validator import ValidationReport, reports_to_frame

__all__ = ["LifecycleState", "ModelLifecycle", "CleanerActor"]

logger = logging.getLogger(__name__)

_UNSET = object()


class LifecycleState(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    READY = "ready"
    STALE = "stale"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ModelLifecycle:
    def __init__(
        self,
        recipe: CleanerRecipe | None = None,
        *,
        population: TrainingPopulation | None = None,
        context: FlowContext | None = None,
        model_provider: Callable[[], Any] | None = None,
        worker_pool: WorkerPool | None = None,
        pre_filter: Callable[[Spectrum], Spectrum] | None = None,
    ) -> None:
        self.recipe = recipe or CleanerRecipe()
        self.population = population
        self.context = context
        self.model_provider = model_provider
        self.worker_pool = worker_pool
        self.pre_filter = pre_filter
        self.audit = AuditTrail()

        self._publish_lock = threading.Lock()
        self._build_lock = threading.Lock()
        self._stopped = threading.Event()
        self._state = LifecycleState.UNRESOLVED
        self._model: Any = None
        self._checker: Optional[TrainableChecker] = None
        self._error: Optional[BaseException] = None
        self._generation = 0
        self._job: Optional[TrainingJob] = None
        self.model_origin: Optional[str] = None

        self._monitored_value: Any = _UNSET
        self._attached = False
        self.attach()

    # state -------------------------------------------------------------
    @property
    def state(self) -> LifecycleState:
        with self._publish_lock:
            return self._state

    def current_model(self) -> Any:
        with self._publish_lock:
            return self._model if self._state is LifecycleState.READY else None

    def attach(self) -> None:
        """Listen for monitored-variable changes again, e.g. after close()."""

        if self.context is None or self._attached:
            return
        self.context.add_listener(self.variable_changed)
        self._attached = True
        self._remember_monitored_value()

    def _remember_monitored_value(self) -> None:
        name = self.recipe.reset_variable
        if self.context is not None and self.recipe.use_reset_variable and name:
            self._monitored_value = self.context.variable(name, _UNSET)

    def invalidate(self, reason: str) -> None:
        with self._publish_lock:
            self._generation += 1
            if self._state is LifecycleState.READY:
                self._state = LifecycleState.STALE
                logger.info("Model marked stale: %s", reason)
                self.audit.step(f"Stale: {reason}")

    def reconfigure(self, **changes: Any) -> None:
        unknown = set(changes) - set(CleanerRecipe().to_dict())
        if unknown:
            raise ValueError(f"Unknown cleaner options: {', '.join(sorted(unknown))}")
        current = self.recipe.to_dict()
        changed = {key for key, value in changes.items() if current.get(key) != value}
        if not changed:
            return
        recipe = self.recipe.replace(**changes)
        with self._publish_lock:
            if self._state is LifecycleState.CANCELLED:
                raise TrainingCancelled("Cleaner has been stopped")
            self.recipe = recipe
            self._checker = None
            if self._state is LifecycleState.FAILED:
                self._state = LifecycleState.UNRESOLVED
                self._error = None
        if changed & TRAINING_PROPERTIES:
            self.invalidate(f"configuration changed ({', '.join(sorted(changed))})")
        self._remember_monitored_value()

    def variable_changed(self, name: str, value: Any) -> None:
        recipe = self.recipe
        if not recipe.use_reset_variable or name != recipe.reset_variable:
            return
        if value == self._monitored_value:
            return
        self._monitored_value = value
        self.invalidate(f"variable '{name}' changed")

    # resolution --------------------------------------------------------
    def ensure_model(self) -> Tuple[TrainableChecker, Any]:
        """Return the checker and model to validate with, resolving if needed."""

        self.attach()
        with self._publish_lock:
            if self._state is LifecycleState.READY and self._checker is not None:
                return self._checker, self._model

        with self._build_lock:
            while True:
                with self._publish_lock:
                    state = self._state
                    if state is LifecycleState.READY and self._checker is not None:
                        return self._checker, self._model
                    if state is LifecycleState.FAILED:
                        raise self._error  # type: ignore[misc]
                    if state is LifecycleState.CANCELLED:
                        raise TrainingCancelled("Cleaner has been stopped")
                    recipe = self.recipe
                    generation = self._generation
                    needs_model = state is not LifecycleState.READY
                    if needs_model:
                        self._state = LifecycleState.RESOLVING

                try:
                    checker = self._make_checker(recipe)
                    model = self._resolve(recipe, checker) if needs_model else self._model
                    if self._stopped.is_set():
                        raise TrainingCancelled("Cleaner stopped during model resolution")
                except TrainingCancelled as exc:
                    self._fail(LifecycleState.CANCELLED, exc)
                    raise
                except Exception as exc:
                    self._fail(LifecycleState.FAILED, exc)
                    raise

                with self._publish_lock:
                    if generation != self._generation:
                        # superseded while resolving; never hand out this model
                        self._state = LifecycleState.STALE
                        self._model = None
                        self._checker = None
                        logger.info("Configuration changed during resolution, resolving again")
                        self.audit.step("Superseded during resolution")
                        continue
                    self._model = model
                    self._state = LifecycleState.READY
                    if self.recipe is recipe:
                        self._checker = checker
                        return checker, model
                    self._checker = None

    def _fail(self, state: LifecycleState, exc: BaseException) -> None:
        with self._publish_lock:
            self._state = state
            self._error = exc
            self._model = None
            self._checker = None
        logger.error("Model resolution %s: %s", state.value, exc)
        self.audit.step(f"Resolution {state.value}: {exc}")

    def _make_checker(self, recipe: CleanerRecipe) -> TrainableChecker:
        errors = recipe.validate()
        if errors:
            raise ConfigurationError("Invalid cleaner setup", errors)
        if recipe.checker == "ipr":
            return checker_for_recipe(recipe, pre_filter=self.pre_filter)
        return checker_for_recipe(recipe)

    def _resolve(self, recipe: CleanerRecipe, checker: TrainableChecker) -> Any:
        source = recipe.source
        attempts = {
            ModelSource.FILE: ("file", self._from_file),
            ModelSource.UPSTREAM: ("upstream", self._from_provider),
            ModelSource.STORAGE: ("storage", self._from_storage),
        }
        if source is ModelSource.AUTO:
            order = [ModelSource.FILE, ModelSource.UPSTREAM, ModelSource.STORAGE]
        else:
            order = [source]

        for candidate in order:
            origin, loader = attempts[candidate]
            model = loader(recipe, pinned=source is not ModelSource.AUTO)
            if model is not None:
                self._check_model_type(checker, model, origin)
                self._record_origin(origin)
                return model
            if source is not ModelSource.AUTO:
                raise ConfigurationError(f"Model source '{origin}' is not available")

        model = self._train(checker, recipe)
        self._record_origin("trained")
        if isinstance(model, IPRModel):
            if recipe.model_file:
                path = Path(recipe.model_file).expanduser()
                if recipe.override_model_file or not path.exists():
                    save_model(model, path)
                    self.audit.step(f"Saved model to {path}")
            if recipe.details_output:
                export_model_details(model, recipe.details_output)
        return model

    def _record_origin(self, origin: str) -> None:
        self.model_origin = origin
        logger.info("Model resolved from %s", origin)
        self.audit.step(f"Model resolved from {origin}")

    @staticmethod
    def _check_model_type(checker: TrainableChecker, model: Any, origin: str) -> None:
        if isinstance(checker, InterPercentileRangeChecker) and not isinstance(model, IPRModel):
            raise ConfigurationError(
                f"Model from {origin} is a {type(model).__name__}, expected inter-percentile ranges"
            )
        if isinstance(checker, MinMaxChecker) and not isinstance(model, FieldBoundsModel):
            raise ConfigurationError(
                f"Model from {origin} is a {type(model).__name__}, expected field bounds"
            )

    def _from_file(self, recipe: CleanerRecipe, *, pinned: bool) -> Any:
        if not recipe.model_file:
            return None
        if recipe.override_model_file and not pinned:
            return None
        path = Path(recipe.model_file).expanduser()
        if not path.is_file():
            return None
        return load_model(path)

    def _from_provider(self, recipe: CleanerRecipe, *, pinned: bool) -> Any:
        if self.model_provider is None:
            return None
        return self.model_provider()

    def _from_storage(self, recipe: CleanerRecipe, *, pinned: bool) -> Any:
        if not recipe.model_storage or self.context is None:
            return None
        return self.context.get(recipe.model_storage)

    def _train(self, checker: TrainableChecker, recipe: CleanerRecipe) -> Any:
        population = self.population
        if population is None:
            if recipe.checker == "ipr":
                raise ConfigurationError("No training population configured")
        elif population.population_filter != recipe.population_filter:
            population = TrainingPopulation(population.source, recipe.population_filter)

        job = TrainingJob(checker, population)
        with self._publish_lock:
            self._job = job
        if self._stopped.is_set():
            job.request_stop()
        try:
            if self.worker_pool is None:
                return job.run()
            return self.worker_pool.submit(job).wait()
        finally:
            with self._publish_lock:
                self._job = None

    # validation --------------------------------------------------------
    def validate(self, sample: Spectrum) -> ValidationReport:
        checker, model = self.ensure_model()
        return checker.check(sample, model)

    def validate_many(self, samples: Iterable[Spectrum]) -> List[ValidationReport]:
        checker, model = self.ensure_model()
        return [checker.check(sample, model) for sample in samples]

    # shutdown ----------------------------------------------------------
    def stop(self) -> None:
        self._stopped.set()
        with self._publish_lock:
            job = self._job
            if self._state is not LifecycleState.RESOLVING:
                self._state = LifecycleState.CANCELLED
                self._model = None
                self._checker = None
        if job is not None:
            job.request_stop()
        self.audit.step("Stop requested")

    def close(self) -> None:
        with self._publish_lock:
            if self._state in (LifecycleState.READY, LifecycleState.STALE):
                self._state = LifecycleState.UNRESOLVED
            self._model = None
            self._checker = None
        if self.context is not None:
            self.context.remove_listener(self.variable_changed)
        self._attached = False


class CleanerActor:
    """Flow-style host: set up once, then check spectra one by one."""

    def __init__(self, name: str = "Cleaner", recipe: CleanerRecipe | None = None, **kwargs: Any) -> None:
        self.name = name
        self.lifecycle = ModelLifecycle(recipe, **kwargs)
        self.reports: List[ValidationReport] = []

    def setup(self) -> Optional[str]:
        self.lifecycle.attach()
        errors = self.lifecycle.recipe.validate()
        if errors:
            return "; ".join(errors)
        return None

    def execute(self, sample: Spectrum) -> Tuple[Spectrum, ValidationReport]:
        report = self.lifecycle.validate(sample)
        self.reports.append(report)
        if not report.clean:
            logger.debug("%s: %s", self.name, report.message)
        return sample, report

    def execute_batch(self, samples: Iterable[Spectrum]) -> Tuple[List[Spectrum], List[ValidationReport]]:
        samples = list(samples)
        reports = self.lifecycle.validate_many(samples)
        self.reports.extend(reports)
        cleaned = [sample for sample, report in zip(samples, reports) if report.clean]
        return cleaned, reports

    def checks(self):
        frame = reports_to_frame(self.reports)
        frame.insert(0, "cleaner", self.name)
        return frame

    def stop(self) -> None:
        self.lifecycle.stop()

    def wrap_up(self) -> None:
        self.lifecycle.close()
        self.reports = []
