from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Status(Enum):
    """Lifecycle status shared by steps, scenarios and features"""
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not Status.PENDING


class ErrorKind(Enum):
    """Error taxonomy carried in machine-readable results"""
    PARSE_ERROR = "ParseError"
    UNMATCHED_STEP = "UnmatchedStep"
    BACKEND_ERROR = "BackendError"
    ASSERTION_FAILED = "AssertionFailed"
    HANDLER_ERROR = "HandlerError"
    VALIDATION_ERROR = "ValidationError"
    SCHEDULING_ERROR = "SchedulingError"
    DEBUG_ABORTED = "DebugAborted"
    CANCELLED = "Cancelled"


@dataclass
class ErrorDetail:
    """Structured error attached to a step result or a batch unit"""
    kind: ErrorKind
    message: str
    suggestions: List[str] = field(default_factory=list)
    selector: Optional[str] = None
    timeout_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "code": self.kind.value,
            "message": self.message,
            "suggestions": list(self.suggestions),
        }
        if self.selector is not None:
            data["selector"] = self.selector
        if self.timeout_ms is not None:
            data["timeout_ms"] = self.timeout_ms
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorDetail":
        try:
            kind = ErrorKind(data.get("code", ErrorKind.HANDLER_ERROR.value))
        except ValueError:
            kind = ErrorKind.HANDLER_ERROR
        return cls(
            kind=kind,
            message=data.get("message", ""),
            suggestions=list(data.get("suggestions") or []),
            selector=data.get("selector"),
            timeout_ms=data.get("timeout_ms"),
        )
