import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.base import Status
from .result import FeatureResult

logger = logging.getLogger(__name__)

REGRESSION = "regression"
IMPROVEMENT = "improvement"
IDENTICAL = "identical"
CHANGED = "changed"
ADDED = "added"
REMOVED = "removed"


@dataclass
class ComparisonConfig:
    """Configuration for the Comparison Engine"""
    # Duration changes within this percentage count as equal
    duration_tolerance_percent: float = 5.0

    @classmethod
    def from_config(cls, manager, **overrides) -> "ComparisonConfig":
        section = dict(manager.get_module_config('comparison') or {})
        section.update({k: v for k, v in overrides.items() if v is not None})
        return cls(duration_tolerance_percent=float(section.get('duration_tolerance_percent', 5.0)))


def percent_change(baseline: float, current: float) -> Optional[float]:
    """Relative change in percent; None when the baseline is zero and current is not"""
    if baseline == 0:
        return 0.0 if current == 0 else None
    return (current - baseline) / baseline * 100


@dataclass
class ScenarioDelta:
    name: str
    change: str
    baseline_status: Optional[str] = None
    current_status: Optional[str] = None
    baseline_duration_ms: Optional[int] = None
    current_duration_ms: Optional[int] = None
    duration_delta_percent: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'change': self.change,
            'baseline_status': self.baseline_status,
            'current_status': self.current_status,
            'baseline_duration_ms': self.baseline_duration_ms,
            'current_duration_ms': self.current_duration_ms,
            'duration_delta_percent': _rounded(self.duration_delta_percent),
        }


@dataclass
class MetricDiff:
    name: str
    baseline: int
    current: int

    @property
    def difference(self) -> int:
        return self.current - self.baseline

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'baseline': self.baseline,
            'current': self.current,
            'difference': self.difference,
            'percent_change': _rounded(percent_change(self.baseline, self.current)),
        }


@dataclass
class StepPerformanceChange:
    """Average duration of one step text across both runs"""
    step: str
    baseline_avg_ms: float
    current_avg_ms: float
    change_percent: float

    @property
    def slower(self) -> bool:
        return self.current_avg_ms > self.baseline_avg_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            'step': self.step,
            'baseline_avg_ms': _rounded(self.baseline_avg_ms),
            'current_avg_ms': _rounded(self.current_avg_ms),
            'change_percent': _rounded(self.change_percent),
            'slower': self.slower,
        }


@dataclass
class ComparisonReport:
    baseline: FeatureResult
    current: FeatureResult
    status: str
    scenarios: List[ScenarioDelta] = field(default_factory=list)
    duration_delta_percent: Optional[float] = None
    metrics: List[MetricDiff] = field(default_factory=list)
    step_changes: List[StepPerformanceChange] = field(default_factory=list)
    tolerance_percent: float = 5.0

    def _with_change(self, change: str) -> List[ScenarioDelta]:
        return [delta for delta in self.scenarios if delta.change == change]

    @property
    def regressions(self) -> List[ScenarioDelta]:
        return self._with_change(REGRESSION)

    @property
    def improvements(self) -> List[ScenarioDelta]:
        return self._with_change(IMPROVEMENT)

    @property
    def added(self) -> List[ScenarioDelta]:
        return self._with_change(ADDED)

    @property
    def removed(self) -> List[ScenarioDelta]:
        return self._with_change(REMOVED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'baseline': {
                'feature': self.baseline.name,
                'timestamp': self.baseline.timestamp,
                'status': self.baseline.status.value,
                'duration_ms': self.baseline.duration_ms,
            },
            'current': {
                'feature': self.current.name,
                'timestamp': self.current.timestamp,
                'status': self.current.status.value,
                'duration_ms': self.current.duration_ms,
            },
            'duration_delta_percent': _rounded(self.duration_delta_percent),
            'tolerance_percent': self.tolerance_percent,
            'summary': {
                'regression_count': len(self.regressions),
                'improvement_count': len(self.improvements),
                'added_count': len(self.added),
                'removed_count': len(self.removed),
            },
            'regressions': [delta.name for delta in self.regressions],
            'improvements': [delta.name for delta in self.improvements],
            'scenarios': [delta.to_dict() for delta in self.scenarios],
            'metrics': [metric.to_dict() for metric in self.metrics],
            'step_changes': [change.to_dict() for change in self.step_changes],
        }


def _rounded(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


def classify_scenario(baseline_status: Status, baseline_ms: int,
                      current_status: Status, current_ms: int, tolerance: float) -> str:
    if baseline_status is Status.PASSED and current_status is Status.FAILED:
        return REGRESSION
    if baseline_status is Status.FAILED and current_status is Status.PASSED:
        return IMPROVEMENT
    if baseline_status is not current_status:
        return CHANGED
    if baseline_status is Status.PASSED:
        delta = percent_change(baseline_ms, current_ms)
        # No relative change can be computed from a zero baseline
        if delta is None or abs(delta) <= tolerance:
            return IDENTICAL
        return IMPROVEMENT if delta < 0 else REGRESSION
    return IDENTICAL


def _step_averages(result: FeatureResult) -> Dict[str, float]:
    durations = defaultdict(list)
    for scenario in result.scenarios:
        for step in scenario.steps:
            if step.status is Status.PASSED:
                durations[step.text].append(step.duration_ms)
    return {text: sum(values) / len(values) for text, values in durations.items()}


def compare(baseline: FeatureResult, current: FeatureResult,
            config: Optional[ComparisonConfig] = None) -> ComparisonReport:
    """Diff two result trees, matching scenarios by name"""
    config = config or ComparisonConfig()
    tolerance = config.duration_tolerance_percent
    deltas = []

    current_by_name = {scenario.name: scenario for scenario in current.scenarios}
    baseline_names = set()
    for old in baseline.scenarios:
        baseline_names.add(old.name)
        new = current_by_name.get(old.name)
        if new is None:
            deltas.append(ScenarioDelta(
                name=old.name, change=REMOVED,
                baseline_status=old.status.value, baseline_duration_ms=old.duration_ms,
            ))
            continue
        deltas.append(ScenarioDelta(
            name=old.name,
            change=classify_scenario(old.status, old.duration_ms, new.status, new.duration_ms, tolerance),
            baseline_status=old.status.value,
            current_status=new.status.value,
            baseline_duration_ms=old.duration_ms,
            current_duration_ms=new.duration_ms,
            duration_delta_percent=percent_change(old.duration_ms, new.duration_ms),
        ))

    for new in current.scenarios:
        if new.name not in baseline_names:
            deltas.append(ScenarioDelta(
                name=new.name, change=ADDED,
                current_status=new.status.value, current_duration_ms=new.duration_ms,
            ))

    changes = {delta.change for delta in deltas}
    if REGRESSION in changes:
        status = REGRESSION
    elif IMPROVEMENT in changes:
        status = IMPROVEMENT
    else:
        status = IDENTICAL

    baseline_counts = baseline.summary.to_dict()
    current_counts = current.summary.to_dict()
    metrics = [MetricDiff('duration_ms', baseline.duration_ms, current.duration_ms)]
    metrics.extend(MetricDiff(name, baseline_counts[name], current_counts[name]) for name in baseline_counts)

    step_changes = []
    baseline_steps = _step_averages(baseline)
    for text, current_avg in _step_averages(current).items():
        if text not in baseline_steps:
            continue
        change = percent_change(baseline_steps[text], current_avg)
        if change is not None and abs(change) > tolerance:
            step_changes.append(StepPerformanceChange(text, baseline_steps[text], current_avg, change))

    report = ComparisonReport(
        baseline=baseline,
        current=current,
        status=status,
        scenarios=deltas,
        duration_delta_percent=percent_change(baseline.duration_ms, current.duration_ms),
        metrics=metrics,
        step_changes=step_changes,
        tolerance_percent=tolerance,
    )
    logger.info(
        f"Comparison {status}: {len(report.regressions)} regression(s), "
        f"{len(report.improvements)} improvement(s)"
    )
    return report
