import time

import pytest

from web_spec.bdd import parse
from web_spec.core.base import ErrorKind, Status
from web_spec.executor import ExecutionEngine
from web_spec.executor.debugger import (
    Breakpoint,
    DebugCommand,
    DebugMode,
    DebugSession,
    parse_command,
)

FEATURE = '''Feature: Checkout
  Scenario: Add item
    Given I navigate to "https://shop.example.com"
    When I click on "#add"
    And I click on "#cart"
    Then I should see "Welcome"

  Scenario: Second
    Given I go back
    Then I go forward
'''


class ScriptedCommands:
    """Command source that replays a fixed list, then raises EOFError"""

    def __init__(self, *commands):
        self.commands = list(commands)
        self.prompts = 0

    def __call__(self, prompt):
        self.prompts += 1
        if not self.commands:
            raise EOFError()
        return self.commands.pop(0)


@pytest.fixture
def feature():
    return parse(FEATURE)


@pytest.fixture
def output():
    return []


def make_session(engine, output, *commands, **options):
    return DebugSession(engine, ScriptedCommands(*commands), output=output.append,
                        sleep=lambda seconds: None, **options)


class TestParseCommand:

    @pytest.mark.parametrize("text,command", [
        ("c", DebugCommand.CONTINUE),
        ("next", DebugCommand.STEP),
        ("n", DebugCommand.STEP),
        ("R", DebugCommand.REPEAT),
        ("skip", DebugCommand.SKIP),
        ("i", DebugCommand.INFO),
        ("q", DebugCommand.QUIT),
        ("", DebugCommand.UNKNOWN),
        ("jump", DebugCommand.UNKNOWN),
        ("break", DebugCommand.UNKNOWN),
    ])
    def test_commands(self, text, command):
        assert parse_command(text)[0] is command

    def test_break_takes_argument(self):
        assert parse_command("break Add item") == (DebugCommand.BREAK, "Add item")
        assert parse_command("clear #2") == (DebugCommand.CLEAR, "#2")


class TestBreakpoint:

    def test_scenario_name_matches_first_step_only(self, feature):
        bp = Breakpoint("Add item")
        assert bp.matches(feature.scenarios[0], 0)
        assert not bp.matches(feature.scenarios[0], 1)

    def test_step_text(self, feature):
        assert Breakpoint('I click on "#cart"').matches(feature.scenarios[0], 2)
        assert Breakpoint('And I click on "#cart"').matches(feature.scenarios[0], 2)

    def test_step_number(self, feature):
        bp = Breakpoint("#2")
        assert bp.step_number == 2
        assert bp.matches(feature.scenarios[1], 1)
        assert not bp.matches(feature.scenarios[1], 0)


class TestDebugSession:
    """Test the pause/resume state machine"""

    def test_runs_straight_through_without_breakpoints(self, engine, feature, output):
        session = make_session(engine, output)
        result = session.run(feature)

        assert session.mode is DebugMode.TERMINATED
        assert result.scenarios[0].status is Status.PASSED
        assert session.command_source.prompts == 0

    def test_pauses_at_breakpoint_then_continues(self, engine, feature, output):
        session = make_session(engine, output, "c", breakpoints=['I click on "#cart"'])
        result = session.run(feature)

        assert session.command_source.prompts == 1
        assert "Step 3/4 (line 5): And I click on \"#cart\"" in output[0]
        assert result.scenarios[0].status is Status.PASSED

    def test_step_stays_paused(self, engine, feature, output):
        session = make_session(engine, output, "n", "n", "c", start_paused=True)
        session.run(feature)

        assert session.command_source.prompts == 3
        assert "passed: Given I navigate to \"https://shop.example.com\"" in output

    def test_skip_marks_step_skipped(self, engine, feature, output):
        session = make_session(engine, output, "s", "c", start_paused=True)
        result = session.run(feature)

        steps = result.scenarios[0].steps
        assert steps[0].status is Status.SKIPPED
        assert [s.status for s in steps[1:]] == [Status.PASSED] * 3

    def test_repeat_dispatches_again_without_advancing(self, engine, feature, output, backends):
        session = make_session(engine, output, "r", "r", "c", start_paused=True)
        result = session.run(feature)

        navigations = [call for call in backends[0].calls if call[0] == 'navigate']
        assert len(navigations) == 3
        assert len(result.scenarios[0].steps) == 4

    def test_read_only_commands_do_not_advance(self, engine, feature, output):
        session = make_session(engine, output, "info", "help", "b", "break #2", "bogus", "c",
                               start_paused=True)
        session.run(feature)

        assert "Debugger Commands:" in "\n".join(output)
        assert "No breakpoints set" in output
        assert "Breakpoint set: #2" in output
        assert "Unknown command. Type 'help' for available commands." in output
        assert "#2" in session.breakpoints

    def test_quit_aborts_and_skips_the_rest(self, engine, feature, output):
        session = make_session(engine, output, "n", "q", start_paused=True)
        result = session.run(feature)

        first, second = result.scenarios
        assert [s.status for s in first.steps] == [Status.PASSED, Status.FAILED, Status.SKIPPED, Status.SKIPPED]
        assert first.steps[1].error.kind is ErrorKind.DEBUG_ABORTED
        assert second.status is Status.SKIPPED
        assert session.mode is DebugMode.TERMINATED

    def test_end_of_input_quits(self, engine, feature, output):
        session = make_session(engine, output, start_paused=True)
        result = session.run(feature)

        assert result.scenarios[0].steps[0].error.kind is ErrorKind.DEBUG_ABORTED
        assert session.terminated

    def test_failure_under_debugger_skips_rest(self, engine, output):
        feature = parse('Feature: F\n  Scenario: S\n    Given I go back\n    When I click on "#missing"\n'
                        '    Then I go forward\n')
        session = make_session(engine, output)
        steps = session.run(feature).scenarios[0].steps
        assert [s.status for s in steps] == [Status.PASSED, Status.FAILED, Status.SKIPPED]

    def test_duration_excludes_backend_teardown(self, registry, make_backend, output):
        class SlowCloseBackend(make_backend):
            def close(self):
                time.sleep(0.5)
                super().close()

        engine = ExecutionEngine(registry, backend_factory=SlowCloseBackend)
        session = make_session(engine, output)
        result = session.run(parse('Feature: F\n  Scenario: S\n    Given I go back\n'))
        assert result.scenarios[0].status is Status.PASSED
        assert result.scenarios[0].duration_ms < 400

    def test_auto_step_never_prompts(self, engine, feature, output):
        delays = []
        session = DebugSession(engine, ScriptedCommands(), output=output.append, auto_step=True,
                               auto_step_delay=0.25, sleep=delays.append)
        result = session.run(feature)

        assert session.command_source.prompts == 0
        assert delays == [0.25] * 6
        assert result.passed

    def test_describe_without_scenario(self, engine, output):
        session = make_session(engine, output)
        assert session.describe() == "Mode: idle (no active scenario)"

    def test_clear_breakpoint(self, engine, output):
        session = make_session(engine, output, breakpoints=["Add item"])
        assert session.clear_breakpoint("Add item")
        assert not session.clear_breakpoint("Add item")
