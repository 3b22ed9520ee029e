import json
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from web_spec import __version__
from web_spec.cli import cli
from web_spec.core.base import Status
from web_spec.executor.result import FeatureResult, ScenarioResult, StepResult

PASSING = '''Feature: Login
  Scenario: Open page
    Given I navigate to "https://example.com"
    Then I should see "Welcome"
'''

FAILING = '''Feature: Broken
  Scenario: Missing element
    Given I navigate to "https://example.com"
    When I click on "#missing"
'''


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("WEB_SPEC_CONFIG", str(tmp_path / "no-config.yaml"))


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def browser(make_backend):
    """Replace the Playwright session with in-memory backends"""
    backends = []

    def open_session(config):
        backend = make_backend(page_text="Welcome back", title="Dashboard", failing_selectors={"#missing"})
        backends.append(backend)
        return Mock(start=Mock(return_value=backend))

    with patch('web_spec.executor.executor.PlaywrightBackend') as backend_cls:
        backend_cls.from_config.side_effect = open_session
        yield backends


@pytest.fixture
def passing(tmp_path):
    path = tmp_path / "login.feature"
    path.write_text(PASSING)
    return str(path)


@pytest.fixture
def failing(tmp_path):
    path = tmp_path / "broken.feature"
    path.write_text(FAILING)
    return str(path)


def saved_result(path, status, duration_ms):
    steps = [StepResult(keyword="Given", text="I go back").seal(status, duration_ms)]
    result = FeatureResult(name="Login", scenarios=[ScenarioResult(name="Open page", steps=steps,
                                                                   duration_ms=duration_ms)],
                           duration_ms=duration_ms)
    path.write_text(json.dumps(result.to_dict()))
    return str(path)


class TestCli:
    """Test command-line entry points and exit codes"""

    def test_version(self, runner):
        result = runner.invoke(cli, ['--version'])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_argument_is_usage_error(self, runner):
        assert runner.invoke(cli, ['run']).exit_code == 2

    def test_invalid_format_is_usage_error(self, runner, passing):
        assert runner.invoke(cli, ['run', passing, '--format', 'xml']).exit_code == 2


class TestRunCommand:

    def test_run_passing(self, runner, browser, passing):
        result = runner.invoke(cli, ['run', passing])

        assert result.exit_code == 0, result.output
        assert "=== Execution Report ===" in result.output
        assert browser[0].calls[0] == ('navigate', "https://example.com")

    def test_run_failing(self, runner, browser, failing):
        result = runner.invoke(cli, ['run', failing])
        assert result.exit_code == 5
        assert "Error [BackendError]" in result.output

    def test_run_missing_file(self, runner):
        result = runner.invoke(cli, ['run', 'nowhere.feature'])
        assert result.exit_code == 3
        assert "File not found" in result.output

    def test_run_parse_error(self, runner, tmp_path):
        path = tmp_path / "bad.feature"
        path.write_text("Scenario: no header\n")
        result = runner.invoke(cli, ['run', str(path)])
        assert result.exit_code == 4
        assert "Parse error" in result.output

    def test_strict_refuses_unknown_steps(self, runner, browser, tmp_path):
        path = tmp_path / "unknown.feature"
        path.write_text('Feature: V\n  Scenario: S\n    Given I go back\n    When I do something undefined\n')
        result = runner.invoke(cli, ['run', str(path), '--strict'])

        assert result.exit_code == 4
        assert browser == []

    def test_dry_run_never_opens_a_browser(self, runner, browser, failing):
        result = runner.invoke(cli, ['run', failing, '--dry-run'])
        assert result.exit_code == 0
        assert browser == []

    def test_json_report_to_file(self, runner, browser, passing, tmp_path):
        output = tmp_path / "out" / "result.json"
        result = runner.invoke(cli, ['run', passing, '--format', 'json', '--output', str(output)])

        assert result.exit_code == 0
        data = json.loads(output.read_text())
        assert data['status'] == "passed"
        assert data['feature']['name'] == "Login"

    def test_options_reach_backend_config(self, runner, passing):
        with patch('web_spec.executor.executor.PlaywrightBackend') as backend_cls:
            backend_cls.from_config.return_value.start.return_value = Mock(
                extract=Mock(return_value="Welcome"))
            runner.invoke(cli, ['run', passing, '--browser', 'firefox', '--headed', '--timeout', '500'])
            config = backend_cls.from_config.call_args[0][0]

        assert config.browser == "firefox"
        assert config.headless is False
        assert config.timeout_ms == 500


class TestValidateCommand:

    def test_unknown_step(self, runner, tmp_path):
        path = tmp_path / "unknown.feature"
        path.write_text('Feature: V\n  Scenario: S\n    When I do something undefined\n')
        result = runner.invoke(cli, ['validate', str(path)])

        assert result.exit_code == 4
        assert "line 3: When I do something undefined" in result.output

    def test_valid_file(self, runner, browser, failing):
        result = runner.invoke(cli, ['validate', failing])
        assert result.exit_code == 0
        assert "is valid (2 steps checked)" in result.output
        assert browser == []

    def test_directory_argument(self, runner, tmp_path):
        result = runner.invoke(cli, ['validate', str(tmp_path)])
        assert result.exit_code == 3
        assert "Cannot read" in result.output

    def test_undecodable_file(self, runner, tmp_path):
        path = tmp_path / "bad.feature"
        path.write_bytes(b"\xff\xfeFeature: X\n")
        result = runner.invoke(cli, ['validate', str(path)])
        assert result.exit_code == 4
        assert "Cannot decode" in result.output


class TestDebugCommand:

    def test_continue_runs_to_the_end(self, runner, browser, passing):
        result = runner.invoke(cli, ['debug', passing], input="c\n")
        assert result.exit_code == 0, result.output
        assert "Step 1/2 (line 3)" in result.output

    def test_quit_fails_the_run(self, runner, browser, passing):
        result = runner.invoke(cli, ['debug', passing], input="q\n")
        assert result.exit_code == 5
        assert "DebugAborted" in result.output

    def test_auto_step(self, runner, browser, passing):
        result = runner.invoke(cli, ['debug', passing, '--auto-step', '--delay', '0'])
        assert result.exit_code == 0

    def test_unknown_scenario(self, runner, passing):
        result = runner.invoke(cli, ['debug', passing, '--scenario', 'Nope'])
        assert result.exit_code == 2


class TestBatchCommand:

    def test_batch_stops_on_failure(self, runner, browser, feature_dir):
        result = runner.invoke(cli, ['batch', str(feature_dir), '--sequential'])

        assert result.exit_code == 5
        assert "1 not run" in result.output

    def test_batch_saves_results(self, runner, browser, feature_dir, tmp_path):
        results_dir = tmp_path / "results"
        result = runner.invoke(cli, ['batch', str(feature_dir), '--sequential', '--continue-on-failure',
                                     '--results-dir', str(results_dir)])

        assert result.exit_code == 5
        assert sorted(p.name for p in results_dir.iterdir()) == [
            "a_login.json", "b_broken.json", "c_search.json",
        ]

    def test_batch_missing_directory(self, runner, tmp_path):
        assert runner.invoke(cli, ['batch', str(tmp_path / "nope")]).exit_code == 3


class TestCompareCommand:

    def test_identical(self, runner, tmp_path):
        path = saved_result(tmp_path / "a.json", Status.PASSED, 1000)
        result = runner.invoke(cli, ['compare', path, path])

        assert result.exit_code == 0
        assert "Status: IDENTICAL" in result.output

    def test_regression(self, runner, tmp_path):
        baseline = saved_result(tmp_path / "baseline.json", Status.PASSED, 1000)
        current = saved_result(tmp_path / "current.json", Status.FAILED, 2000)
        result = runner.invoke(cli, ['compare', baseline, current, '--format', 'json'])

        assert result.exit_code == 5
        assert '"regression"' in result.output

    def test_tolerance_option(self, runner, tmp_path):
        baseline = saved_result(tmp_path / "baseline.json", Status.PASSED, 1000)
        current = saved_result(tmp_path / "current.json", Status.PASSED, 1080)

        assert runner.invoke(cli, ['compare', baseline, current]).exit_code == 5
        assert runner.invoke(cli, ['compare', baseline, current, '--tolerance', '10']).exit_code == 0

    def test_invalid_document(self, runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"status": "passed"}')
        result = runner.invoke(cli, ['compare', str(path), str(path)])
        assert result.exit_code == 1

    def test_missing_file(self, runner, tmp_path):
        path = saved_result(tmp_path / "a.json", Status.PASSED, 1000)
        assert runner.invoke(cli, ['compare', path, str(tmp_path / "b.json")]).exit_code == 3

    def test_undecodable_document(self, runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_bytes(b"\xff\xfe{}")
        assert runner.invoke(cli, ['compare', str(path), str(path)]).exit_code == 1

    def test_directory_document(self, runner, tmp_path):
        path = saved_result(tmp_path / "a.json", Status.PASSED, 1000)
        assert runner.invoke(cli, ['compare', path, str(tmp_path)]).exit_code == 3


class TestCatalogCommands:

    def test_list_steps(self, runner):
        result = runner.invoke(cli, ['list-steps'])
        assert result.exit_code == 0
        assert "navigate_to" in result.output

    def test_list_steps_by_category(self, runner):
        result = runner.invoke(cli, ['list-steps', '--category', 'Scrolling'])
        assert "Available steps (2):" in result.output

    def test_list_steps_unknown_category(self, runner):
        assert runner.invoke(cli, ['list-steps', '--category', 'Bogus']).exit_code == 2

    def test_search_steps(self, runner):
        assert "screenshot" in runner.invoke(cli, ['search-steps', 'screenshot']).output
        assert "No steps found matching 'zzz'" in runner.invoke(cli, ['search-steps', 'zzz']).output

    def test_export_schema(self, runner, tmp_path):
        output = tmp_path / "schema.json"
        result = runner.invoke(cli, ['export-schema', '--output', str(output)])

        assert result.exit_code == 0
        schema = json.loads(output.read_text())
        assert schema['metadata']['total_categories'] == 8
