"""Structured failure codes for job last_error values.

Every ``last_error`` written by the engine has the shape ``<CODE>::<message>``
so tooling can group and alert on the code without matching free text.
"""

import re
from enum import Enum
from typing import Optional, Tuple


class FailureCode(str, Enum):
    """Canonical failure codes."""

    DEPENDENCY_MISSING = "DEPENDENCY_MISSING"
    PARSE_FAILED = "PARSE_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SCHEMA_INVALID = "SCHEMA_INVALID"
    PLACEHOLDER_CONTENT = "PLACEHOLDER_CONTENT"
    SEMANTIC_WEAKNESS = "SEMANTIC_WEAKNESS"
    CONTEXT_MISMATCH = "CONTEXT_MISMATCH"
    TIMEOUT = "TIMEOUT"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    PROMPT_INVALID = "PROMPT_INVALID"
    CHILD_FAILED = "CHILD_FAILED"
    UNKNOWN = "UNKNOWN"


SEPARATOR = "::"

RETRYABLE_CODES = frozenset(
    {FailureCode.TIMEOUT, FailureCode.TRANSPORT_ERROR, FailureCode.UNKNOWN}
)

# Checked in order; first match wins.
_INFERENCE_RULES = (
    (re.compile(r"timed? ?out|timeout|deadline exceeded", re.I), FailureCode.TIMEOUT),
    (
        re.compile(r"connection (reset|refused|closed)|transport|network error", re.I),
        FailureCode.TRANSPORT_ERROR,
    ),
    (
        re.compile(r"missing|not[ _]found|resolve_|no such|does not exist", re.I),
        FailureCode.DEPENDENCY_MISSING,
    ),
    (re.compile(r"parse|json|decode|invalid_llm_output", re.I), FailureCode.PARSE_FAILED),
    (re.compile(r"validat|schema", re.I), FailureCode.VALIDATION_FAILED),
)


def format_last_error(code: FailureCode, message: str) -> str:
    """Render a structured last_error value."""
    message = str(message or "").strip() or code.value.lower()
    return f"{FailureCode(code).value}{SEPARATOR}{message}"


def parse_last_error(value: Optional[str]) -> Tuple[Optional[FailureCode], str]:
    """Split a last_error value into (code, message)."""
    if not value:
        return None, ""
    if SEPARATOR in value:
        raw_code, message = value.split(SEPARATOR, 1)
        try:
            return FailureCode(raw_code), message
        except ValueError:
            return FailureCode.UNKNOWN, value
    return FailureCode.UNKNOWN, value


def infer_failure_code(text: Optional[str]) -> FailureCode:
    """Map raw exception text to a canonical failure code."""
    text = str(text or "")
    if SEPARATOR in text:
        code, _ = parse_last_error(text)
        if code and code is not FailureCode.UNKNOWN:
            return code
    for pattern, code in _INFERENCE_RULES:
        if pattern.search(text):
            return code
    return FailureCode.UNKNOWN


def is_retryable(code: Optional[FailureCode]) -> bool:
    """Whether a failure with this code may be resubmitted automatically."""
    return code in RETRYABLE_CODES
