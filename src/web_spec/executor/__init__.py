from .executor import ExecutionEngine, ExecutorConfig, ValidationReport, UnknownStep
from .step_definitions import StepDefinitionRegistry, StepPattern, MatchResult
from .steps import build_default_registry, register_builtin_steps
from .backend import AutomationBackend, PlaywrightBackend
from .test_context import TestContext
from .result import FeatureResult, ScenarioResult, StepResult, Summary, load_result
from .debugger import DebugSession, DebugMode, DebugCommand, Breakpoint
from .batch import BatchScheduler, BatchConfig, BatchSummary, BatchUnit
from .comparison import ComparisonConfig, ComparisonReport, compare
from .report_collector import ReportCollector

__all__ = [
    'ExecutionEngine',
    'ExecutorConfig',
    'ValidationReport',
    'UnknownStep',
    'StepDefinitionRegistry',
    'StepPattern',
    'MatchResult',
    'build_default_registry',
    'register_builtin_steps',
    'AutomationBackend',
    'PlaywrightBackend',
    'TestContext',
    'FeatureResult',
    'ScenarioResult',
    'StepResult',
    'Summary',
    'load_result',
    'DebugSession',
    'DebugMode',
    'DebugCommand',
    'Breakpoint',
    'BatchScheduler',
    'BatchConfig',
    'BatchSummary',
    'BatchUnit',
    'ComparisonConfig',
    'ComparisonReport',
    'compare',
    'ReportCollector',
]

# Module metadata
__description__ = 'Execution runtime - match, dispatch, debug, batch and compare scenario runs'
