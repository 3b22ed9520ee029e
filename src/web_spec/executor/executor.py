import time
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..bdd.model import Feature, Scenario, Step, resolve_keywords
from ..bdd.parser import parse_file
from ..core.base import ErrorDetail, ErrorKind, Status
from ..core.exceptions import BackendError, BackendSessionError, ValidationError
from .backend import AutomationBackend, PlaywrightBackend
from .result import FeatureResult, ScenarioResult, StepResult
from .step_definitions import MatchResult, StepDefinitionRegistry
from .test_context import TestContext

logger = logging.getLogger(__name__)


@dataclass
class ExecutorConfig:
    """Configuration for the Execution Engine"""
    browser: str = "chromium"
    headless: bool = True
    timeout_ms: int = 30000
    slow_mo: int = 0
    viewport: Dict[str, int] = field(default_factory=lambda: {"width": 1280, "height": 720})
    base_url: Optional[str] = None
    screenshot_on_failure: bool = False
    screenshot_dir: str = "screenshots"
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, manager, **overrides) -> "ExecutorConfig":
        """Build from the 'executor' section of a ConfigManager; None overrides are ignored"""
        section = dict(manager.get_module_config('executor') or {})
        section.update({k: v for k, v in overrides.items() if v is not None})
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in section.items() if k in known})


@dataclass
class UnknownStep:
    """A step no registered pattern matches"""
    scenario: str
    line: int
    keyword: str
    text: str
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scenario': self.scenario,
            'line': self.line,
            'keyword': self.keyword,
            'text': self.text,
            'code': ErrorKind.UNMATCHED_STEP.value,
            'suggestions': list(self.suggestions),
        }


@dataclass
class ValidationReport:
    """Dry-run outcome: every step matched, or the list of unknown ones"""
    feature: str
    file: Optional[str] = None
    steps_checked: int = 0
    errors: List[UnknownStep] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'feature': self.feature,
            'file': self.file,
            'steps_checked': self.steps_checked,
            'errors': [error.to_dict() for error in self.errors],
            'warnings': list(self.warnings),
        }


def step_suggestions(registry: StepDefinitionRegistry, step_text: str) -> List[str]:
    """Hints for an unmatched step: similar patterns first, then generic advice"""
    suggestions = []
    similar = registry.suggest(step_text)
    if similar:
        suggestions.append(
            "Did you mean: " + " or ".join(f"'{registry.get(pid).template}'" for pid in similar) + "?"
        )

    lower = step_text.lower()
    if 'click' in lower:
        suggestions.append('For clicking elements, try: \'I click on "selector"\' or \'I click the "label" button\'')
    if 'type' in lower:
        suggestions.append('For typing into fields, try: \'I type "text" into "selector"\'')
    if 'should' in lower:
        suggestions.append('For assertions, try: \'the element "selector" should be visible\' '
                           'or \'I should see "text"\'')
    if not similar:
        suggestions.append("Run 'web-spec list-steps' to see all available step patterns")
    return suggestions


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


class ExecutionEngine:
    """
    Matches parsed steps against the registry and dispatches their handlers.

    One engine owns one result accumulator per run and opens one backend
    session per scenario, on the scenario's first dispatch. A failing step
    seals Failed and skips the rest of its scenario; sibling scenarios still
    run.
    """

    def __init__(
            self,
            registry: StepDefinitionRegistry,
            config: Optional[ExecutorConfig] = None,
            backend_factory: Optional[Callable[[], AutomationBackend]] = None,
            cancel_event: Optional[threading.Event] = None,
    ):
        self.registry = registry
        self.config = config or ExecutorConfig()
        self.backend_factory = backend_factory or self._default_backend_factory
        self.cancel_event = cancel_event or threading.Event()

    def _default_backend_factory(self) -> AutomationBackend:
        return PlaywrightBackend.from_config(self.config).start()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self):
        """Stop dispatch before the next step"""
        self.cancel_event.set()

    def new_context(self) -> TestContext:
        return TestContext(
            backend_factory=self.backend_factory,
            base_url=self.config.base_url,
            timeout_ms=self.config.timeout_ms,
            screenshot_dir=self.config.screenshot_dir,
        )

    def should_run(self, scenario: Scenario) -> bool:
        """Tag filter; an empty filter admits every scenario"""
        if not self.config.tags:
            return True
        wanted = {tag if tag.startswith('@') else f'@{tag}' for tag in self.config.tags}
        return bool(wanted.intersection(scenario.tags))

    # Step level

    def match_step(self, step: Step, keyword: Optional[str]) -> MatchResult:
        return self.registry.match(step.text, keyword)

    def unmatched_error(self, step: Step) -> ErrorDetail:
        return ErrorDetail(
            kind=ErrorKind.UNMATCHED_STEP,
            message=f"No step definition matches: {step.keyword} {step.text}",
            suggestions=step_suggestions(self.registry, step.text),
        )

    @staticmethod
    def pending_result(step: Step) -> StepResult:
        return StepResult(keyword=step.keyword, text=step.text, line=step.line)

    def skip_step(self, step: Step) -> StepResult:
        return self.pending_result(step).seal(Status.SKIPPED)

    def fail_step(self, step: Step, kind: ErrorKind, message: str) -> StepResult:
        return self.pending_result(step).seal(Status.FAILED, error=ErrorDetail(kind=kind, message=message))

    def run_step(self, context: TestContext, step: Step, keyword: Optional[str]) -> StepResult:
        """
        Match and dispatch one step, returning its sealed result.

        Handler failures are recovered into the result. BackendSessionError
        is fatal to the run and propagates.
        """
        result = self.pending_result(step)
        match = self.match_step(step, keyword)
        if not match:
            logger.warning(f"Unmatched step at line {step.line}: {step}")
            return result.seal(Status.FAILED, error=self.unmatched_error(step))

        result.pattern_id = match.pattern_id
        context.current_step = step
        logger.debug(f"Dispatching {match.pattern_id} for: {step}")
        started = time.perf_counter()
        try:
            output = match.pattern.handler(context, **match.params)
        except BackendSessionError:
            raise
        except BackendError as e:
            logger.warning(f"Backend error in step '{step}': {e}")
            return result.seal(Status.FAILED, _elapsed_ms(started), error=ErrorDetail(
                kind=ErrorKind.BACKEND_ERROR,
                message=str(e),
                selector=e.selector,
                timeout_ms=e.timeout_ms,
            ))
        except AssertionError as e:
            logger.info(f"Assertion failed in step '{step}': {e}")
            return result.seal(Status.FAILED, _elapsed_ms(started), error=ErrorDetail(
                kind=ErrorKind.ASSERTION_FAILED,
                message=str(e) or "Assertion failed",
            ))
        except Exception as e:
            logger.warning(f"Handler error in step '{step}': {e}")
            return result.seal(Status.FAILED, _elapsed_ms(started), error=ErrorDetail(
                kind=ErrorKind.HANDLER_ERROR,
                message=f"{type(e).__name__}: {e}",
            ))
        finally:
            context.current_step = None

        return result.seal(Status.PASSED, _elapsed_ms(started),
                           output=None if output is None else str(output))

    def dry_run_step(self, step: Step, keyword: Optional[str]) -> StepResult:
        """Keyword resolution and matching only, no handler call"""
        result = self.pending_result(step)
        match = self.match_step(step, keyword)
        if not match:
            return result.seal(Status.FAILED, error=self.unmatched_error(step))
        result.pattern_id = match.pattern_id
        return result.seal(Status.PASSED)

    def capture_failure(self, context: TestContext, scenario: Scenario, result: StepResult):
        """Best-effort screenshot of a failed step"""
        if not self.config.screenshot_on_failure or not context.has_backend:
            return
        try:
            path = context.backend.screenshot(context.screenshot_path(f"{scenario.name}_line{result.line}"))
            result.output = path if result.output is None else f"{result.output}\n{path}"
            logger.info(f"Failure screenshot saved: {path}")
        except BackendError as e:
            logger.warning(f"Could not capture failure screenshot: {e}")

    # Scenario level

    @staticmethod
    def new_scenario_result(scenario: Scenario, entered: bool = True) -> ScenarioResult:
        return ScenarioResult(
            name=scenario.name,
            tags=list(scenario.tags),
            line=scenario.line,
            entered=entered,
        )

    def skip_scenario(self, scenario: Scenario) -> ScenarioResult:
        """Record a scenario that is never entered"""
        result = self.new_scenario_result(scenario, entered=False)
        result.steps = [self.skip_step(step) for step in scenario.steps]
        return result

    def execute_scenario(self, scenario: Scenario, dry_run: bool = False) -> ScenarioResult:
        logger.info(f"Scenario: {scenario.name}")
        result = self.new_scenario_result(scenario)
        keywords = resolve_keywords(scenario.steps)
        context = None if dry_run else self.new_context()
        started = time.perf_counter()
        finished = started

        try:
            for index, step in enumerate(scenario.steps):
                if self.cancelled:
                    logger.info(f"Cancelled before step at line {step.line}")
                    result.steps.append(self.fail_step(step, ErrorKind.CANCELLED, "Execution cancelled"))
                elif dry_run:
                    result.steps.append(self.dry_run_step(step, keywords[index]))
                else:
                    result.steps.append(self.run_step(context, step, keywords[index]))

                step_result = result.steps[-1]
                finished = time.perf_counter()
                logger.debug(f"  {step_result.status.value}: {step}")
                if step_result.status is Status.FAILED:
                    if context is not None:
                        self.capture_failure(context, scenario, step_result)
                    result.steps.extend(self.skip_step(rest) for rest in scenario.steps[index + 1:])
                    break
        finally:
            if context is not None:
                context.close()

        result.duration_ms = int(round((finished - started) * 1000))
        logger.info(f"Scenario '{scenario.name}' {result.status.value} in {result.duration_ms}ms")
        return result

    # Feature level

    def execute_feature(self, feature: Feature, dry_run: bool = False) -> FeatureResult:
        """Run every scenario in document order and build the result tree"""
        logger.info(f"Feature: {feature.name}" + (" (dry run)" if dry_run else ""))
        result = FeatureResult(name=feature.name, file=feature.file, description=feature.description)
        started = time.perf_counter()

        for scenario in feature.scenarios:
            if self.cancelled or not self.should_run(scenario):
                result.scenarios.append(self.skip_scenario(scenario))
                continue
            result.scenarios.append(self.execute_scenario(scenario, dry_run=dry_run))

        result.duration_ms = _elapsed_ms(started)
        summary = result.summary
        logger.info(
            f"Feature '{feature.name}' {result.status.value}: "
            f"{summary.passed_scenarios}/{summary.total_scenarios} scenarios passed"
        )
        return result

    def execute_file(self, path: Union[str, Path], dry_run: bool = False) -> FeatureResult:
        return self.execute_feature(parse_file(path), dry_run=dry_run)

    def validate(self, feature: Feature) -> ValidationReport:
        """Match every step without dispatching; lists unknown steps with their lines"""
        report = ValidationReport(feature=feature.name, file=feature.file)
        if not feature.scenarios:
            report.warnings.append(f"Feature '{feature.name}' has no scenarios")

        for scenario in feature.scenarios:
            if not scenario.steps:
                report.warnings.append(f"Scenario '{scenario.name}' has no steps")
            for step, keyword in zip(scenario.steps, resolve_keywords(scenario.steps)):
                report.steps_checked += 1
                if not self.match_step(step, keyword):
                    report.errors.append(UnknownStep(
                        scenario=scenario.name,
                        line=step.line,
                        keyword=step.keyword,
                        text=step.text,
                        suggestions=step_suggestions(self.registry, step.text),
                    ))

        logger.info(f"Validated '{feature.name}': {report.steps_checked} steps, {len(report.errors)} unknown")
        return report

    def ensure_valid(self, feature: Feature) -> ValidationReport:
        """Validate, raising ValidationError when any step is unknown"""
        report = self.validate(feature)
        if not report.valid:
            raise ValidationError(report)
        return report
