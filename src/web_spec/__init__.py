"""
web-spec - behavior-driven test runner for browser automation
"""

__version__ = "0.1.0"
__author__ = "web-spec Contributors"

from .core import ConfigManager, Status, ErrorKind, WebSpecError
from .bdd import Feature, Scenario, Step, parse, parse_file
from .executor import (
    ExecutionEngine,
    ExecutorConfig,
    StepDefinitionRegistry,
    build_default_registry,
    compare,
)

__all__ = [
    "ConfigManager",
    "Status",
    "ErrorKind",
    "WebSpecError",
    "Feature",
    "Scenario",
    "Step",
    "parse",
    "parse_file",
    "ExecutionEngine",
    "ExecutorConfig",
    "StepDefinitionRegistry",
    "build_default_registry",
    "compare",
]
