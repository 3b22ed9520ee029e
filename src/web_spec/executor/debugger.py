import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from ..bdd.model import Feature, Scenario, Step, resolve_keywords
from ..core.base import ErrorKind, Status
from ..core.exceptions import DebugAborted
from .executor import ExecutionEngine
from .result import FeatureResult, ScenarioResult, StepResult

logger = logging.getLogger(__name__)

HELP_TEXT = """Debugger Commands:
  c, continue    - Continue execution until next breakpoint
  n, next, step  - Execute current step and pause
  r, repeat      - Execute current step again without advancing
  s, skip        - Skip current step
  i, info        - Show current step information
  b, breakpoints - List all breakpoints
  break <name>   - Set breakpoint on a scenario name, step text or #<step number>
  clear <name>   - Clear a breakpoint
  h, help        - Show this help
  q, quit        - Abort the run"""


class DebugMode(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    AUTO_STEP = "auto-step"
    TERMINATED = "terminated"


class DebugCommand(Enum):
    CONTINUE = "continue"
    STEP = "step"
    REPEAT = "repeat"
    SKIP = "skip"
    INFO = "info"
    HELP = "help"
    BREAKPOINTS = "breakpoints"
    BREAK = "break"
    CLEAR = "clear"
    QUIT = "quit"
    UNKNOWN = "unknown"


_ALIASES = {
    'c': DebugCommand.CONTINUE, 'continue': DebugCommand.CONTINUE,
    'n': DebugCommand.STEP, 'next': DebugCommand.STEP, 'step': DebugCommand.STEP,
    'r': DebugCommand.REPEAT, 'repeat': DebugCommand.REPEAT,
    's': DebugCommand.SKIP, 'skip': DebugCommand.SKIP,
    'i': DebugCommand.INFO, 'info': DebugCommand.INFO,
    'h': DebugCommand.HELP, 'help': DebugCommand.HELP,
    'b': DebugCommand.BREAKPOINTS, 'breakpoints': DebugCommand.BREAKPOINTS,
    'q': DebugCommand.QUIT, 'quit': DebugCommand.QUIT,
}


def parse_command(text: str):
    """Return (command, argument) for one line of debugger input"""
    parts = text.strip().split(None, 1)
    if not parts:
        return DebugCommand.UNKNOWN, None
    word = parts[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else None
    if word in ('break', 'clear'):
        if not argument:
            return DebugCommand.UNKNOWN, None
        return (DebugCommand.BREAK if word == 'break' else DebugCommand.CLEAR), argument
    return _ALIASES.get(word, DebugCommand.UNKNOWN), None


@dataclass(frozen=True)
class Breakpoint:
    """
    Pause point: a scenario name, a step's text, or '#N' for the Nth step
    (1-based) of every scenario.
    """
    name: str

    @property
    def step_number(self) -> Optional[int]:
        if self.name.startswith('#') and self.name[1:].isdigit():
            return int(self.name[1:])
        return None

    def matches(self, scenario: Scenario, step_index: int) -> bool:
        if self.step_number is not None:
            return self.step_number == step_index + 1
        if step_index == 0 and scenario.name == self.name:
            return True
        step = scenario.steps[step_index]
        return self.name in (step.text, str(step))


@dataclass
class Position:
    feature_index: int = 0
    scenario_index: int = 0
    step_index: int = 0


class DebugSession:
    """
    Pause/resume controller over an ExecutionEngine.

    Control returns to the command source before every step dispatch that is
    paused; read-only commands (info, help, breakpoint management) are
    answered in place, and the session only moves on for continue, step,
    repeat, skip or quit. Never suspends mid-step.
    """

    def __init__(
            self,
            engine: ExecutionEngine,
            command_source: Callable[[str], str],
            output: Callable[[str], None] = print,
            breakpoints: Sequence[str] = (),
            auto_step: bool = False,
            auto_step_delay: float = 0.5,
            start_paused: bool = False,
            sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.command_source = command_source
        self.output = output
        self.breakpoints: Dict[str, Breakpoint] = {}
        for name in breakpoints:
            self.add_breakpoint(name)
        self.auto_step = auto_step
        self.auto_step_delay = auto_step_delay
        self.start_paused = start_paused
        self._sleep = sleep
        self.mode = DebugMode.IDLE
        self.position = Position()
        self._feature: Optional[Feature] = None
        self._scenario: Optional[Scenario] = None
        self._slots: List[Optional[StepResult]] = []

    # Breakpoints

    def add_breakpoint(self, name: str) -> Breakpoint:
        breakpoint = self.breakpoints.setdefault(name, Breakpoint(name))
        logger.debug(f"Breakpoint set: {name}")
        return breakpoint

    def clear_breakpoint(self, name: str) -> bool:
        return self.breakpoints.pop(name, None) is not None

    def should_pause(self, scenario: Scenario, step_index: int) -> bool:
        if self.mode in (DebugMode.PAUSED, DebugMode.AUTO_STEP):
            return True
        return any(bp.matches(scenario, step_index) for bp in self.breakpoints.values())

    @property
    def terminated(self) -> bool:
        return self.mode is DebugMode.TERMINATED

    # Introspection

    def describe(self) -> str:
        if self._feature is None or self._scenario is None:
            return f"Mode: {self.mode.value} (no active scenario)"
        index = self.position.step_index
        lines = [
            f"Feature {self.position.feature_index + 1}: {self._feature.name}",
            f"Scenario {self.position.scenario_index + 1}: {self._scenario.name}",
            f"Mode: {self.mode.value}",
        ]
        if index < len(self._scenario.steps):
            step = self._scenario.steps[index]
            recorded = self._slots[index] if index < len(self._slots) else None
            status = recorded.status.value if recorded else Status.PENDING.value
            lines.append(f"Step {index + 1}/{len(self._scenario.steps)} (line {step.line}): {step}")
            lines.append(f"Status: {status}")
        return "\n".join(lines)

    def describe_breakpoints(self) -> str:
        if not self.breakpoints:
            return "No breakpoints set"
        return "Breakpoints:\n" + "\n".join(f"  {name}" for name in self.breakpoints)

    # Command loop

    def _prompt(self) -> DebugCommand:
        """Read commands until one that moves execution forward"""
        self.output(self.describe())
        while True:
            try:
                line = self.command_source("(debugger) >")
            except EOFError:
                line = "quit"
            command, argument = parse_command(line or "")

            if command is DebugCommand.INFO:
                self.output(self.describe())
            elif command is DebugCommand.HELP:
                self.output(HELP_TEXT)
            elif command is DebugCommand.BREAKPOINTS:
                self.output(self.describe_breakpoints())
            elif command is DebugCommand.BREAK:
                self.add_breakpoint(argument)
                self.output(f"Breakpoint set: {argument}")
            elif command is DebugCommand.CLEAR:
                if self.clear_breakpoint(argument):
                    self.output(f"Breakpoint cleared: {argument}")
                else:
                    self.output(f"No breakpoint named: {argument}")
            elif command is DebugCommand.UNKNOWN:
                self.output("Unknown command. Type 'help' for available commands.")
            else:
                return command

    def _next_command(self, scenario: Scenario, index: int) -> DebugCommand:
        if not self.should_pause(scenario, index):
            return DebugCommand.CONTINUE
        if self.auto_step:
            self.mode = DebugMode.AUTO_STEP
            self.output(self.describe())
            self._sleep(self.auto_step_delay)
            return DebugCommand.CONTINUE
        self.mode = DebugMode.PAUSED
        command = self._prompt()
        if command is DebugCommand.QUIT:
            raise DebugAborted(f"Debugger quit before: {scenario.steps[index]}")
        return command

    # Execution

    def run(self, feature: Feature) -> FeatureResult:
        return self.run_features([feature])[0]

    def run_features(self, features: Sequence[Feature]) -> List[FeatureResult]:
        """Run features under debugger control; later work is skipped after quit"""
        self.mode = DebugMode.AUTO_STEP if self.auto_step else (
            DebugMode.PAUSED if self.start_paused else DebugMode.RUNNING
        )
        results = []
        for feature_index, feature in enumerate(features):
            self.position = Position(feature_index=feature_index)
            self._feature = feature
            result = FeatureResult(name=feature.name, file=feature.file, description=feature.description)
            started = time.perf_counter()
            for scenario_index, scenario in enumerate(feature.scenarios):
                self.position.scenario_index = scenario_index
                if self.terminated or self.engine.cancelled or not self.engine.should_run(scenario):
                    result.scenarios.append(self.engine.skip_scenario(scenario))
                    continue
                result.scenarios.append(self._run_scenario(scenario))
            result.duration_ms = int(round((time.perf_counter() - started) * 1000))
            results.append(result)

        if not self.terminated:
            self.mode = DebugMode.TERMINATED
        self._scenario = None
        return results

    def _run_scenario(self, scenario: Scenario) -> ScenarioResult:
        engine = self.engine
        self._scenario = scenario
        self._slots = [None] * len(scenario.steps)
        keywords = resolve_keywords(scenario.steps)
        context = engine.new_context()
        result = engine.new_scenario_result(scenario)
        started = time.perf_counter()
        finished = started

        try:
            index = 0
            while index < len(scenario.steps):
                self.position.step_index = index
                step = scenario.steps[index]

                if engine.cancelled:
                    self._slots[index] = engine.fail_step(step, ErrorKind.CANCELLED, "Execution cancelled")
                    finished = time.perf_counter()
                    self._skip_rest(scenario, index + 1)
                    break

                try:
                    command = self._next_command(scenario, index)
                except DebugAborted as e:
                    self._abort(scenario, index, str(e))
                    finished = time.perf_counter()
                    break
                if command is DebugCommand.SKIP:
                    self._slots[index] = engine.skip_step(step)
                    finished = time.perf_counter()
                    index += 1
                    continue

                step_result = engine.run_step(context, step, keywords[index])
                self._slots[index] = step_result
                finished = time.perf_counter()
                self.output(f"{step_result.status.value}: {step}")
                if command is DebugCommand.REPEAT:
                    continue
                if command is DebugCommand.CONTINUE and self.mode is DebugMode.PAUSED:
                    self.mode = DebugMode.RUNNING

                if step_result.status is Status.FAILED:
                    engine.capture_failure(context, scenario, step_result)
                    self._skip_rest(scenario, index + 1)
                    break
                index += 1
        finally:
            context.close()

        result.steps = list(self._slots)
        result.duration_ms = int(round((finished - started) * 1000))
        return result

    def _skip_rest(self, scenario: Scenario, start: int):
        for index in range(start, len(scenario.steps)):
            self._slots[index] = self.engine.skip_step(scenario.steps[index])

    def _abort(self, scenario: Scenario, index: int, message: str):
        """Quit: seal the pending step as aborted and stop the run"""
        step: Step = scenario.steps[index]
        logger.info(f"Debugger quit at line {step.line}")
        self._slots[index] = self.engine.fail_step(step, ErrorKind.DEBUG_ABORTED, message)
        self._skip_rest(scenario, index + 1)
        self.mode = DebugMode.TERMINATED
