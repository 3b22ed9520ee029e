import threading
import time

import pytest

from web_spec.bdd import parse
from web_spec.core.base import ErrorKind, Status
from web_spec.core.exceptions import BackendSessionError, ValidationError
from web_spec.executor import ExecutionEngine, ExecutorConfig, ValidationReport

LOGIN = '''Feature: Login
  Scenario: Successful login
    Given I navigate to "https://example.com/login"
    When I type "alice" into "#username"
    And I click on "#submit"
    Then I should see "Welcome back"

  Scenario: Unknown step in the middle
    Given I navigate to "https://example.com/login"
    When I do something undefined
    Then I should see "Welcome back"

  Scenario: Missing element
    Given I navigate to "https://example.com/login"
    When I click on "#missing"
    Then I should see "Welcome back"

  Scenario: Failed assertion
    Given I navigate to "https://example.com/login"
    Then I should see "Goodbye"
'''


class TestExecutorConfig:
    """Test ExecutorConfig class"""

    def test_default_config(self):
        config = ExecutorConfig()
        assert config.browser == "chromium"
        assert config.headless is True
        assert config.timeout_ms == 30000
        assert config.tags == []

    def test_from_config_applies_overrides(self):
        class Manager:
            def get_module_config(self, name):
                return {"browser": "firefox", "timeout_ms": 5000, "unknown": 1}

        config = ExecutorConfig.from_config(Manager(), browser=None, base_url="http://localhost")
        assert config.browser == "firefox"
        assert config.timeout_ms == 5000
        assert config.base_url == "http://localhost"


class TestExecuteFeature:
    """Test scenario and feature execution"""

    @pytest.fixture
    def result(self, engine):
        return engine.execute_feature(parse(LOGIN))

    def test_one_step_result_per_step(self, result):
        feature = parse(LOGIN)
        for scenario, scenario_result in zip(feature.scenarios, result.scenarios):
            assert len(scenario_result.steps) == len(scenario.steps)
            assert [s.line for s in scenario_result.steps] == [s.line for s in scenario.steps]
            assert all(s.status is not Status.PENDING for s in scenario_result.steps)

    def test_passing_scenario(self, result, backends):
        scenario = result.scenario("Successful login")
        assert scenario.status is Status.PASSED
        assert scenario.steps[0].output == "https://example.com/login"
        assert backends[0].calls[:3] == [
            ('navigate', "https://example.com/login"),
            ('type_text', "#username", "alice"),
            ('click', "#submit"),
        ]

    def test_unmatched_step_fails_and_skips_rest(self, result):
        scenario = result.scenario("Unknown step in the middle")
        statuses = [s.status for s in scenario.steps]

        assert scenario.status is Status.FAILED
        assert statuses == [Status.PASSED, Status.FAILED, Status.SKIPPED]
        assert scenario.steps[1].error.kind is ErrorKind.UNMATCHED_STEP
        assert scenario.steps[1].error.suggestions

    def test_backend_error_keeps_selector(self, result):
        step = result.scenario("Missing element").failed_step
        assert step.error.kind is ErrorKind.BACKEND_ERROR
        assert step.error.selector == "#missing"
        assert step.error.timeout_ms == 1000

    def test_assertion_failure(self, result):
        step = result.scenario("Failed assertion").failed_step
        assert step.error.kind is ErrorKind.ASSERTION_FAILED
        assert "Goodbye" in step.error.message

    def test_failures_do_not_affect_sibling_scenarios(self, result):
        assert result.scenarios[0].status is Status.PASSED
        assert result.status is Status.FAILED

    def test_one_backend_session_per_scenario(self, result, backends):
        assert len(backends) == 4
        assert all(backend.closed for backend in backends)

    def test_summary_counts(self, result):
        summary = result.summary
        assert summary.total_scenarios == 4
        assert summary.passed_scenarios == 1
        assert summary.failed_scenarios == 3
        assert summary.total_steps == 12

    def test_handler_error_is_recovered(self, engine, backends):
        feature = parse('Feature: X\n  Scenario: Y\n    When I type "${nobody}" into "#q"\n')
        step = engine.execute_feature(feature).scenarios[0].steps[0]
        assert step.status is Status.FAILED
        assert step.error.kind is ErrorKind.HANDLER_ERROR
        assert step.error.message.startswith("KeyError")

    def test_backend_opened_lazily(self, engine, backends):
        feature = parse('Feature: X\n  Scenario: Y\n    Given I set "a" to "b"\n')
        engine.execute_feature(feature)
        assert backends == []

    def test_empty_scenario_passes(self, engine):
        result = engine.execute_feature(parse('Feature: X\n  Scenario: Empty\n'))
        assert result.scenarios[0].status is Status.PASSED
        assert result.scenarios[0].duration_ms == 0

    def test_duration_excludes_backend_teardown(self, registry, make_backend):
        class SlowCloseBackend(make_backend):
            def close(self):
                time.sleep(0.5)
                super().close()

        engine = ExecutionEngine(registry, backend_factory=SlowCloseBackend)
        result = engine.execute_feature(parse('Feature: X\n  Scenario: Y\n    Given I go back\n'))
        assert result.scenarios[0].status is Status.PASSED
        assert result.scenarios[0].duration_ms < 400

    def test_session_error_is_fatal(self, registry):
        def broken():
            raise BackendSessionError("browser missing")

        engine = ExecutionEngine(registry, backend_factory=broken)
        with pytest.raises(BackendSessionError):
            engine.execute_feature(parse('Feature: X\n  Scenario: Y\n    Given I go back\n'))

    def test_screenshot_on_failure(self, registry, backend_factory, backends, tmp_path):
        config = ExecutorConfig(screenshot_on_failure=True, screenshot_dir=str(tmp_path))
        engine = ExecutionEngine(registry, config, backend_factory=backend_factory)
        feature = parse('Feature: X\n  Scenario: Y\n    Given I go back\n    Then I should see "Nope"\n')

        step = engine.execute_feature(feature).scenarios[0].failed_step
        assert step.output.startswith(str(tmp_path))
        assert backends[0].calls[-1][0] == 'screenshot'


class TestDryRun:
    """Dry runs match steps but never touch a backend"""

    def test_dry_run_makes_no_backend_calls(self, engine, backends):
        result = engine.execute_feature(parse(LOGIN), dry_run=True)

        assert backends == []
        assert result.scenario("Successful login").status is Status.PASSED
        assert result.scenario("Missing element").status is Status.PASSED
        assert result.scenario("Unknown step in the middle").steps[1].error.kind is ErrorKind.UNMATCHED_STEP


class TestTagsAndCancellation:

    FEATURE = '''Feature: Tagged
  @smoke
  Scenario: Smoke
    Given I go back

  Scenario: Untagged
    Given I go back
'''

    def test_tag_filter_skips_other_scenarios(self, registry, backend_factory):
        engine = ExecutionEngine(registry, ExecutorConfig(tags=["smoke"]), backend_factory=backend_factory)
        result = engine.execute_feature(parse(self.FEATURE))

        assert result.scenarios[0].status is Status.PASSED
        assert result.scenarios[1].status is Status.SKIPPED
        assert result.scenarios[1].steps[0].status is Status.SKIPPED

    def test_cancelled_engine_skips_scenarios(self, registry, backend_factory):
        event = threading.Event()
        event.set()
        engine = ExecutionEngine(registry, backend_factory=backend_factory, cancel_event=event)
        result = engine.execute_feature(parse(self.FEATURE))
        assert [s.status for s in result.scenarios] == [Status.SKIPPED, Status.SKIPPED]

    def test_cancel_mid_scenario(self, registry, backend_factory):
        engine = ExecutionEngine(registry, backend_factory=backend_factory)
        feature = parse('Feature: X\n  Scenario: Y\n    Given I go back\n    When I go forward\n    Then I go back\n')
        engine.cancel()
        result = engine.execute_scenario(feature.scenarios[0])
        assert result.steps[0].error.kind is ErrorKind.CANCELLED
        assert [s.status for s in result.steps] == [Status.FAILED, Status.SKIPPED, Status.SKIPPED]


class TestValidate:
    """Test feature validation"""

    def test_unknown_step_reported_with_line(self, engine, backends):
        feature = parse('Feature: X\n  Scenario: Y\n    Given I navigate to "/"\n    When I do something undefined\n')
        report = engine.validate(feature)

        assert isinstance(report, ValidationReport)
        assert not report.valid
        assert report.steps_checked == 2
        assert len(report.errors) == 1
        assert report.errors[0].line == 4
        assert report.errors[0].text == "I do something undefined"
        assert backends == []

    def test_valid_feature(self, engine):
        report = engine.validate(parse(LOGIN.replace("When I do something undefined", "When I go back")))
        assert report.valid
        assert report.to_dict()['errors'] == []

    def test_warnings_for_empty_feature(self, engine):
        report = engine.validate(parse('Feature: Nothing\n'))
        assert report.valid
        assert report.warnings == ["Feature 'Nothing' has no scenarios"]

    def test_ensure_valid_raises_with_report(self, engine):
        feature = parse('Feature: X\n  Scenario: Y\n    When I do something undefined\n')
        with pytest.raises(ValidationError) as exc_info:
            engine.ensure_valid(feature)
        assert exc_info.value.report.errors[0].line == 3
