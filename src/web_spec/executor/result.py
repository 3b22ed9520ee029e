import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..core.base import ErrorDetail, Status
from ..core.exceptions import ComparisonError

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


@dataclass
class StepResult:
    """Outcome of one step; created Pending and sealed exactly once"""
    keyword: str
    text: str
    line: int = 0
    status: Status = Status.PENDING
    duration_ms: int = 0
    output: Optional[str] = None
    error: Optional[ErrorDetail] = None
    pattern_id: Optional[str] = None

    def seal(self, status: Status, duration_ms: int = 0, output: Optional[str] = None,
             error: Optional[ErrorDetail] = None) -> "StepResult":
        if self.status.is_terminal:
            raise RuntimeError(f"Step result already sealed: {self.keyword} {self.text}")
        if not status.is_terminal:
            raise ValueError("A step result can only be sealed with a terminal status")
        self.status = status
        self.duration_ms = duration_ms
        self.output = output
        self.error = error
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'keyword': self.keyword,
            'line': self.line,
            'status': self.status.value,
            'duration_ms': self.duration_ms,
            'output': self.output,
            'error': self.error.to_dict() if self.error else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepResult":
        return cls(
            keyword=data.get('keyword', ''),
            text=data.get('text', ''),
            line=data.get('line') or 0,
            status=Status(data.get('status', 'skipped')),
            duration_ms=int(data.get('duration_ms') or 0),
            output=data.get('output'),
            error=ErrorDetail.from_dict(data['error']) if data.get('error') else None,
        )


@dataclass
class ScenarioResult:
    name: str
    steps: List[StepResult] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    line: int = 0
    duration_ms: int = 0
    entered: bool = True
    recorded_status: Optional[Status] = field(default=None, repr=False)  # set when loaded from a document

    @property
    def status(self) -> Status:
        if self.recorded_status is not None:
            return self.recorded_status
        if not self.entered:
            return Status.SKIPPED
        if any(step.status is Status.FAILED for step in self.steps):
            return Status.FAILED
        return Status.PASSED

    @property
    def failed_step(self) -> Optional[StepResult]:
        return next((step for step in self.steps if step.status is Status.FAILED), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'status': self.status.value,
            'duration_ms': self.duration_ms,
            'tags': list(self.tags),
            'steps': [step.to_dict() for step in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioResult":
        status = Status(data.get('status', 'skipped'))
        return cls(
            name=data.get('name', ''),
            tags=list(data.get('tags') or []),
            duration_ms=int(data.get('duration_ms') or 0),
            steps=[StepResult.from_dict(step) for step in data.get('steps') or []],
            entered=status is not Status.SKIPPED,
            recorded_status=status,
        )


@dataclass
class Summary:
    """Counts at scenario and step granularity"""
    total_scenarios: int = 0
    passed_scenarios: int = 0
    failed_scenarios: int = 0
    skipped_scenarios: int = 0
    total_steps: int = 0
    passed_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0

    @classmethod
    def from_scenarios(cls, scenarios: List[ScenarioResult]) -> "Summary":
        summary = cls()
        for scenario in scenarios:
            summary.add_scenario(scenario.status)
            for step in scenario.steps:
                summary.add_step(step.status)
        return summary

    def add_scenario(self, status: Status):
        self.total_scenarios += 1
        if status is Status.PASSED:
            self.passed_scenarios += 1
        elif status is Status.FAILED:
            self.failed_scenarios += 1
        else:
            self.skipped_scenarios += 1

    def add_step(self, status: Status):
        self.total_steps += 1
        if status is Status.PASSED:
            self.passed_steps += 1
        elif status is Status.FAILED:
            self.failed_steps += 1
        else:
            self.skipped_steps += 1

    def merge(self, other: "Summary") -> "Summary":
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        return self

    def to_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class FeatureResult:
    """Result tree of one feature run, the unit persisted and compared"""
    name: str
    file: Optional[str] = None
    description: Optional[str] = None
    scenarios: List[ScenarioResult] = field(default_factory=list)
    timestamp: str = field(default_factory=_utc_timestamp)
    duration_ms: int = 0

    @property
    def status(self) -> Status:
        if any(s.status is Status.FAILED for s in self.scenarios):
            return Status.FAILED
        return Status.PASSED

    @property
    def passed(self) -> bool:
        return self.status is Status.PASSED

    @property
    def summary(self) -> Summary:
        return Summary.from_scenarios(self.scenarios)

    def scenario(self, name: str) -> Optional[ScenarioResult]:
        return next((s for s in self.scenarios if s.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'timestamp': self.timestamp,
            'duration_ms': self.duration_ms,
            'feature': {
                'name': self.name,
                'file': self.file,
                'description': self.description,
            },
            'scenarios': [scenario.to_dict() for scenario in self.scenarios],
            'summary': self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureResult":
        """Rebuild a result tree from a persisted document"""
        problems = []
        if not isinstance(data, dict):
            raise ComparisonError("Result document must be a mapping")
        for key in ('status', 'feature', 'scenarios'):
            if key not in data:
                problems.append(f"missing field '{key}'")
        if problems:
            raise ComparisonError("Invalid result document: " + ", ".join(problems), problems)

        feature = data['feature'] or {}
        try:
            scenarios = [ScenarioResult.from_dict(s) for s in data['scenarios'] or []]
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            raise ComparisonError(f"Invalid result document: {e}", [str(e)]) from e

        return cls(
            name=feature.get('name', ''),
            file=feature.get('file'),
            description=feature.get('description'),
            scenarios=scenarios,
            timestamp=data.get('timestamp') or _utc_timestamp(),
            duration_ms=int(data.get('duration_ms') or 0),
        )


def load_result(path: Union[str, Path]) -> FeatureResult:
    """Read a persisted FeatureResult from a JSON or YAML document"""
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        try:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ComparisonError(f"Cannot parse result document {path}: {e}") from e
    return FeatureResult.from_dict(data)
