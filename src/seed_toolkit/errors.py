from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_VALIDATION = 2
EXIT_VERIFY_FAIL = 10
EXIT_TEMPFAIL = 75
EXIT_BLOCKED = 78


class ErrorKind(str, Enum):
    SECURITY = "security"
    INPUT = "input"
    NOT_FOUND = "not_found"
    RUNTIME = "runtime"
    CONCURRENCY = "concurrency"


_KIND_EXIT_CODES: Dict[ErrorKind, int] = {
    ErrorKind.SECURITY: EXIT_BLOCKED,
    ErrorKind.INPUT: EXIT_VALIDATION,
    ErrorKind.NOT_FOUND: EXIT_VALIDATION,
    ErrorKind.RUNTIME: EXIT_FATAL,
    ErrorKind.CONCURRENCY: EXIT_TEMPFAIL,
}


def exit_code_for(kind: ErrorKind) -> int:
    return _KIND_EXIT_CODES[kind]


class ToolkitError(RuntimeError):
    """Base error carrying a stable code and the exit signal callers branch on."""

    kind: ErrorKind = ErrorKind.RUNTIME

    def __init__(
        self,
        code: str,
        message: str,
        *,
        kind: Optional[ErrorKind] = None,
        is_recoverable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        if kind is not None:
            self.kind = kind
        self.is_recoverable = is_recoverable
        self.details = dict(details or {})

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.kind)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ScenarioError(ToolkitError):
    pass


class FixtureError(ToolkitError):
    pass


class OutputPathPolicyError(ToolkitError):
    kind = ErrorKind.SECURITY

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__("OUTPUT_PATH_BLOCKED", message, **kwargs)


class HygieneError(ToolkitError):
    kind = ErrorKind.SECURITY


class ReportWriteError(ToolkitError):
    kind = ErrorKind.SECURITY


class ConcurrencyLimitError(ToolkitError):
    kind = ErrorKind.CONCURRENCY

    def __init__(self, limit: int) -> None:
        super().__init__(
            "CONCURRENCY_LIMIT",
            f"Maximum concurrent toolkit commands reached ({limit}). Retry later.",
            is_recoverable=True,
            details={"limit": limit},
        )
        self.limit = limit


__all__ = [
    "ConcurrencyLimitError",
    "EXIT_BLOCKED",
    "EXIT_FATAL",
    "EXIT_SUCCESS",
    "EXIT_TEMPFAIL",
    "EXIT_VALIDATION",
    "EXIT_VERIFY_FAIL",
    "ErrorKind",
    "FixtureError",
    "HygieneError",
    "OutputPathPolicyError",
    "ReportWriteError",
    "ScenarioError",
    "ToolkitError",
    "exit_code_for",
]
