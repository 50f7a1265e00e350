# src/fs_gateway/esl/result.py
"""
Tagged command results.

Switch commands answer with free text; some (``show ... as json``) answer
with JSON. Callers state which they expect and receive a ``CommandResult``
whose ``kind`` says how ``value`` was produced.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

from ..utils.errors import ResultParseError

class ResultKind(str, Enum):
    RAW_TEXT = "raw-text"
    PARSED_JSON = "parsed-json"

@dataclass(frozen=True)
class CommandResult:
    kind: ResultKind
    value: Any

    @classmethod
    def raw(cls, text: str) -> "CommandResult":
        return cls(ResultKind.RAW_TEXT, text)

    @classmethod
    def from_json(cls, text: str) -> "CommandResult":
        """
        Parse command output as JSON.

        Raises:
            ResultParseError: If the output is not valid JSON (the switch
                usually answers ``-ERR ...`` text in that case)
        """
        try:
            return cls(ResultKind.PARSED_JSON, json.loads(text))
        except ValueError as e:
            snippet = text.strip().splitlines()[0][:200] if text.strip() else ""
            raise ResultParseError(
                f"Expected JSON from switch, got: {snippet or '<empty>'}"
            ) from e

    @property
    def is_json(self) -> bool:
        return self.kind == ResultKind.PARSED_JSON

    def rows(self) -> List[Dict[str, Any]]:
        """Rows of a ``show ... as json`` table (empty when row_count is 0)."""
        if self.is_json and isinstance(self.value, dict):
            return self.value.get("rows") or []
        return []

    def row_count(self) -> int:
        if self.is_json and isinstance(self.value, dict):
            try:
                return int(self.value.get("row_count") or 0)
            except (TypeError, ValueError):
                return 0
        return 0
