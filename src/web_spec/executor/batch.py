import os
import time
import logging
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..bdd.parser import parse_file
from ..core.base import ErrorKind, Status
from ..core.exceptions import BackendSessionError, ParseError, SchedulingError, ValidationError
from .executor import ExecutionEngine, ExecutorConfig
from .result import FeatureResult, Summary
from .step_definitions import StepDefinitionRegistry

logger = logging.getLogger(__name__)

UNIT_PASSED = "passed"
UNIT_FAILED = "failed"
UNIT_ERROR = "error"
UNIT_NOT_RUN = "not_run"


@dataclass
class BatchConfig:
    """Configuration for the Batch Scheduler"""
    parallel: bool = True
    max_workers: Optional[int] = None  # None = available hardware parallelism
    continue_on_failure: bool = False
    pattern: str = "*.feature"
    strict: bool = False  # unknown steps make a unit an error before it runs

    @classmethod
    def from_config(cls, manager, **overrides) -> "BatchConfig":
        section = dict(manager.get_module_config('batch') or {})
        section.update({k: v for k, v in overrides.items() if v is not None})
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in section.items() if k in known})

    @property
    def worker_count(self) -> int:
        if not self.parallel:
            return 1
        return max(1, self.max_workers or os.cpu_count() or 1)


@dataclass
class BatchUnit:
    """Per-file record of a batch run"""
    path: str
    name: str
    status: str
    duration_ms: int = 0
    scenarios_passed: int = 0
    scenarios_failed: int = 0
    result: Optional[FeatureResult] = None

    @property
    def passed(self) -> bool:
        return self.status == UNIT_PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'name': self.name,
            'status': self.status,
            'duration_ms': self.duration_ms,
            'scenarios_passed': self.scenarios_passed,
            'scenarios_failed': self.scenarios_failed,
        }


@dataclass
class BatchError:
    """An execution error that is not a test failure, e.g. an unparsable file"""
    path: str
    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'kind': self.kind.value, 'message': self.message}


@dataclass
class BatchSummary:
    """Aggregated outcome of a batch, ordered by path"""
    units: List[BatchUnit] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def results(self) -> List[FeatureResult]:
        return [unit.result for unit in self.units if unit.result is not None]

    @property
    def summary(self) -> Summary:
        """Scenario and step counts over executed units only"""
        total = Summary()
        for result in self.results:
            total.merge(result.summary)
        return total

    def count(self, status: str) -> int:
        return sum(1 for unit in self.units if unit.status == status)

    @property
    def total_features(self) -> int:
        return len(self.units)

    @property
    def passed(self) -> bool:
        return not self.errors and all(unit.passed for unit in self.units)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': Status.PASSED.value if self.passed else Status.FAILED.value,
            'total_features': self.total_features,
            'passed_features': self.count(UNIT_PASSED),
            'failed_features': self.count(UNIT_FAILED),
            'error_features': self.count(UNIT_ERROR),
            'not_run_features': self.count(UNIT_NOT_RUN),
            'total_duration_ms': self.duration_ms,
            'summary': self.summary.to_dict(),
            'features': [unit.to_dict() for unit in self.units],
            'errors': [error.to_dict() for error in self.errors],
            'results': [result.to_dict() for result in self.results],
        }


@dataclass
class _UnitOutcome:
    unit: BatchUnit
    error: Optional[BatchError] = None


class BatchScheduler:
    """
    Runs many scenario files through independent Execution Engines.

    Work is fed to a bounded thread pool one unit at a time, so the stop
    policy can hold back units that were never dispatched. Each unit gets
    its own engine and backend sessions; only the frozen registry is shared.
    Results are collected by the scheduling thread and ordered by path.
    """

    def __init__(
            self,
            registry: StepDefinitionRegistry,
            config: Optional[BatchConfig] = None,
            executor_config: Optional[ExecutorConfig] = None,
            engine_factory: Optional[Callable[[], ExecutionEngine]] = None,
    ):
        self.registry = registry
        self.config = config or BatchConfig()
        self.executor_config = executor_config or ExecutorConfig()
        self.cancel_event = threading.Event()
        self.engine_factory = engine_factory or self._default_engine_factory

    def _default_engine_factory(self) -> ExecutionEngine:
        return ExecutionEngine(self.registry, self.executor_config, cancel_event=self.cancel_event)

    def discover(self, root: Union[str, Path]) -> List[Path]:
        """Scenario files under root, sorted by path"""
        root = Path(root)
        if root.is_file():
            return [root]
        if not root.is_dir():
            raise FileNotFoundError(f"No such file or directory: {root}")
        paths = sorted(path for path in root.rglob(self.config.pattern) if path.is_file())
        logger.info(f"Discovered {len(paths)} scenario file(s) under {root}")
        return paths

    def run(self, root: Union[str, Path]) -> BatchSummary:
        return self.run_paths(self.discover(root))

    def run_paths(self, paths: Iterable[Union[str, Path]]) -> BatchSummary:
        """Schedule every path, honoring the stop policy, and aggregate in path order"""
        ordered = sorted(Path(path) for path in paths)
        workers = min(self.config.worker_count, max(1, len(ordered)))
        logger.info(
            f"Running {len(ordered)} unit(s) with {workers} worker(s), "
            f"continue_on_failure={self.config.continue_on_failure}"
        )

        outcomes: Dict[int, _UnitOutcome] = {}
        queue = deque(enumerate(ordered))
        stopped = False
        started = time.perf_counter()

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="web-spec") as pool:
            running = {}
            while queue or running:
                while queue and not stopped and len(running) < workers:
                    index, path = queue.popleft()
                    running[pool.submit(self._run_unit, path)] = index
                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    index = running.pop(future)
                    try:
                        outcome = future.result()
                    except BackendSessionError:
                        logger.error("Cannot start a backend session, aborting batch")
                        self.cancel_event.set()
                        raise
                    outcomes[index] = outcome
                    if not outcome.unit.passed and not self.config.continue_on_failure and not stopped:
                        logger.info(f"{outcome.unit.path} did not pass, no further units will be scheduled")
                        stopped = True

        summary = BatchSummary(duration_ms=int(round((time.perf_counter() - started) * 1000)))
        for index, path in enumerate(ordered):
            outcome = outcomes.get(index)
            if outcome is None:
                summary.units.append(BatchUnit(path=str(path), name=path.stem, status=UNIT_NOT_RUN))
                continue
            summary.units.append(outcome.unit)
            if outcome.error is not None:
                summary.errors.append(outcome.error)

        logger.info(
            f"Batch finished: {summary.count(UNIT_PASSED)}/{summary.total_features} passed "
            f"in {summary.duration_ms}ms"
        )
        return summary

    def load_unit(self, path: Path):
        """Parse one unit, raising SchedulingError when it cannot be loaded"""
        try:
            return parse_file(path)
        except ParseError as e:
            raise SchedulingError(str(path), f"line {e.line}: {e.reason}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise SchedulingError(str(path), str(e)) from e

    def _run_unit(self, path: Path) -> _UnitOutcome:
        """Worker body: one file, one engine"""
        started = time.perf_counter()
        try:
            feature = self.load_unit(path)
        except SchedulingError as e:
            logger.warning(f"Scheduling error: {e}")
            kind = ErrorKind.PARSE_ERROR if isinstance(e.__cause__, ParseError) else ErrorKind.SCHEDULING_ERROR
            return _UnitOutcome(
                unit=BatchUnit(path=str(path), name=path.stem, status=UNIT_ERROR,
                               duration_ms=int(round((time.perf_counter() - started) * 1000))),
                error=BatchError(path=str(path), kind=kind, message=e.reason),
            )

        engine = self.engine_factory()
        if self.config.strict:
            try:
                engine.ensure_valid(feature)
            except ValidationError as e:
                logger.warning(f"{path}: {e}")
                return _UnitOutcome(
                    unit=BatchUnit(path=str(path), name=feature.name or path.stem, status=UNIT_ERROR,
                                   duration_ms=int(round((time.perf_counter() - started) * 1000))),
                    error=BatchError(path=str(path), kind=ErrorKind.VALIDATION_ERROR, message=str(e)),
                )

        result = engine.execute_feature(feature)
        summary = result.summary
        return _UnitOutcome(unit=BatchUnit(
            path=str(path),
            name=feature.name or path.stem,
            status=UNIT_PASSED if result.passed else UNIT_FAILED,
            duration_ms=result.duration_ms,
            scenarios_passed=summary.passed_scenarios,
            scenarios_failed=summary.failed_scenarios,
            result=result,
        ))
