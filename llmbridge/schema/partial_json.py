"""
llmbridge - Partial JSON Parsing

Best-effort parsing of possibly truncated JSON text, as accumulated
while streaming a structured object.

States:
- undefined: empty input, nothing to parse
- successful: strict JSON parse succeeded
- repaired: strict parse failed, parse after a syntax-level repair pass
  (closing strings/objects/arrays, trimming trailing commas) succeeded
- failed: still unparseable after repair; the error is returned
"""

import json
from enum import Enum
from typing import Any, Optional, Tuple

import json_repair


class ParseState(str, Enum):
    UNDEFINED = "undefined"
    SUCCESSFUL = "successful"
    REPAIRED = "repaired"
    FAILED = "failed"


def parse_partial_json(text: str) -> Tuple[Any, ParseState, Optional[Exception]]:
    """
    Parse ``text`` strictly, falling back to generic JSON repair.

    Returns:
        (value, state, error); error is set only for FAILED
    """
    if not text or not text.strip():
        return None, ParseState.UNDEFINED, None

    try:
        return json.loads(text), ParseState.SUCCESSFUL, None
    except ValueError as strict_error:
        parse_error: Exception = strict_error

    repaired = json_repair.repair_json(text)
    if not isinstance(repaired, str) or not repaired.strip():
        return None, ParseState.FAILED, parse_error

    try:
        value = json.loads(repaired)
    except ValueError as e:
        return None, ParseState.FAILED, e

    # Repair of pure garbage yields an empty string literal
    if value == "" and text.strip() not in ('"', '""'):
        return None, ParseState.FAILED, parse_error

    return value, ParseState.REPAIRED, None
