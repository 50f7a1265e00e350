# src/fs_gateway/api/responses.py
"""
Helpers shared by the HTTP routes: the common response envelope, parsing of
the switch's line-oriented text output and validation of values that end up
inside a switch command line.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import ErrorResponse
from ..utils.errors import InvalidParameterError

# Anything that would split one argument into several, or start a new command
_UNSAFE = re.compile(r"\s")
_LEADING_INT = re.compile(r"\s*([-+]?\d+)")

def timestamp() -> str:
    """Current UTC time in ISO 8601, as used in every response body."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

def success(**fields: Any) -> Dict[str, Any]:
    """Build a ``{success: true, ...fields, timestamp}`` body."""
    return {"success": True, **fields, "timestamp": timestamp()}

def failure(error: str, code: Optional[str] = None) -> Dict[str, Any]:
    """Build the error body documented by ``ErrorResponse``."""
    return ErrorResponse(error=error, code=code or None).model_dump(exclude_none=True)

def command_arg(name: str, value: Optional[str]) -> str:
    """
    Validate a request value that is interpolated into a switch command.

    Args:
        name: Parameter name, used in the error message
        value: Raw value from the path, query or body

    Returns:
        The value unchanged

    Raises:
        InvalidParameterError: If the value is empty or contains whitespace
    """
    if value is None or value == "":
        raise InvalidParameterError(f"Parameter '{name}' is required")
    if _UNSAFE.search(value):
        raise InvalidParameterError(f"Parameter '{name}' must not contain whitespace")
    return value

def parse_key_values(text: str, separator: str) -> Dict[str, str]:
    """
    Parse ``key<sep>value`` lines into a dict.

    Only the first separator splits a line, so values may contain it. Lines
    without a separator or with an empty key are ignored.
    """
    result: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(separator)
        key = key.strip()
        if sep and key:
            result[key] = value.strip()
    return result

def parse_lines(text: str) -> List[str]:
    """Non-blank lines of command output."""
    return [line for line in text.splitlines() if line.strip()]

def leading_int(text: str) -> int:
    """Integer at the start of the output (``"3 total."`` gives 3), 0 when there is none."""
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0
