"""
llmbridge Schema Module

Schema description, partial JSON parsing and validation used by tool
definitions and structured-object generation.
"""

from .partial_json import ParseState, parse_partial_json
from .schema import Schema, SchemaType
from .validator import (
    ObjectParseError,
    RepairFunc,
    SchemaValidationError,
    SchemaViolation,
    parse_and_validate,
    parse_and_validate_with_repair,
    validate_against_schema,
)

__all__ = [
    "ObjectParseError",
    "ParseState",
    "RepairFunc",
    "Schema",
    "SchemaType",
    "SchemaValidationError",
    "SchemaViolation",
    "parse_and_validate",
    "parse_and_validate_with_repair",
    "parse_partial_json",
    "validate_against_schema",
]
