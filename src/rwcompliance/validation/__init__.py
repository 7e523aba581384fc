"""Graded protocol checks over decoded messages, captured conversations and replies."""

from rwcompliance.validation.message import validate_message
from rwcompliance.validation.report import CheckResult, Level, Report
from rwcompliance.validation.response import ExpectedResponse, check_response

__all__ = [
    "CheckResult",
    "ExpectedResponse",
    "Level",
    "Report",
    "check_response",
    "validate_message",
]
