from typing import Any, List, Optional


class WebSpecError(Exception):
    """Base exception for web-spec"""
    pass


class ConfigurationError(WebSpecError):
    """Configuration-related errors"""
    pass


class ParseError(WebSpecError):
    """Malformed scenario file"""

    def __init__(self, line: int, reason: str, path: Optional[str] = None):
        self.line = line
        self.reason = reason
        self.path = path
        location = f"{path}:{line}" if path else f"line {line}"
        super().__init__(f"{location}: {reason}")


class RegistryError(WebSpecError):
    """Step registry errors (duplicate ids, bad templates, late registration)"""
    pass


class BackendError(WebSpecError):
    """An automation primitive failed"""

    def __init__(
            self,
            message: str,
            code: str = "backend_error",
            selector: Optional[str] = None,
            timeout_ms: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.selector = selector
        self.timeout_ms = timeout_ms
        super().__init__(message)


class BackendSessionError(WebSpecError):
    """A backend session could not be started. Fatal to the whole run."""
    pass


class ValidationError(WebSpecError):
    """Dry-run validation found unmatched steps"""

    def __init__(self, report: Any):
        self.report = report
        count = len(getattr(report, "errors", []))
        super().__init__(f"Validation failed with {count} unmatched step(s)")


class SchedulingError(WebSpecError):
    """A batch unit could not be parsed or loaded"""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class DebugAborted(WebSpecError):
    """The debugger was quit mid-scenario"""
    pass


class ComparisonError(WebSpecError):
    """A persisted result document could not be loaded for comparison"""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        super().__init__(message)
