"""
llmbridge - Schema Validation

Validates parsed values against a Schema and combines parsing with
validation for structured-object generation.

- validate_against_schema reports every violation in one error
- parse_and_validate parses (with repair) and validates
- parse_and_validate_with_repair gives a caller-supplied repair callback
  one chance to fix text that failed to parse or validate
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Union

from jsonschema import validators
from jsonschema.exceptions import SchemaError

from ..core.errors import InvalidArgumentError
from .partial_json import ParseState, parse_partial_json
from .schema import Schema

# (text, error) -> repaired text
RepairFunc = Callable[[str, Exception], Awaitable[str]]


@dataclass
class SchemaViolation:
    """Represents a single validation error."""
    path: str  # JSON path to the offending value
    message: str


class SchemaValidationError(Exception):
    """All violations of one value against one schema."""

    def __init__(self, violations: List[SchemaViolation]):
        self.violations = violations
        lines = [f"{v.path}: {v.message}" if v.path else v.message for v in violations]
        super().__init__("; ".join(lines))


class ObjectParseError(Exception):
    """
    Text could not be turned into a schema-valid object.

    Exactly one of ``parse_error`` / ``validation_error`` is set.
    """

    def __init__(
        self,
        raw_text: str,
        parse_error: Optional[Exception] = None,
        validation_error: Optional[Exception] = None,
    ):
        self.raw_text = raw_text
        self.parse_error = parse_error
        self.validation_error = validation_error
        if validation_error is not None:
            message = f"object validation failed: {validation_error}"
        else:
            message = f"failed to parse object: {parse_error}"
        super().__init__(message)


def _schema_dict(schema: Union[Schema, dict]) -> dict:
    return schema.to_dict() if isinstance(schema, Schema) else schema


def _json_path(error) -> str:
    path = "$"
    for element in error.absolute_path:
        path += f"[{element}]" if isinstance(element, int) else f".{element}"
    return path if path != "$" else ""


def validate_against_schema(value: Any, schema: Union[Schema, dict]) -> Optional[SchemaValidationError]:
    """
    Validate ``value`` against ``schema``.

    Returns:
        None when valid, otherwise one SchemaValidationError listing every violation
    """
    schema_dict = _schema_dict(schema)
    validator_cls = validators.validator_for(schema_dict)
    try:
        validator_cls.check_schema(schema_dict)
    except SchemaError as e:
        raise InvalidArgumentError("schema", e.message, cause=e) from e

    errors = sorted(
        validator_cls(schema_dict).iter_errors(value),
        key=lambda e: list(map(str, e.absolute_path)),
    )
    if not errors:
        return None
    return SchemaValidationError([
        SchemaViolation(path=_json_path(e), message=e.message) for e in errors
    ])


def parse_and_validate(text: str, schema: Union[Schema, dict]) -> Any:
    """
    Parse text (repairing syntax if needed) and validate it.

    Raises:
        ObjectParseError: on parse failure, empty input, or validation failure
    """
    value, state, err = parse_partial_json(text)
    if state == ParseState.FAILED:
        raise ObjectParseError(text, parse_error=err)
    if state == ParseState.UNDEFINED:
        raise ObjectParseError(text, parse_error=ValueError("empty input"))

    violation = validate_against_schema(value, schema)
    if violation is not None:
        raise ObjectParseError(text, validation_error=violation)
    return value


async def parse_and_validate_with_repair(
    text: str,
    schema: Union[Schema, dict],
    repair: Optional[RepairFunc] = None,
) -> Any:
    """
    Like parse_and_validate, but on failure call ``repair(text, error)``
    once and try again with its output.

    Raises:
        ObjectParseError: from the last attempt
    """
    try:
        return parse_and_validate(text, schema)
    except ObjectParseError as e:
        if repair is None:
            raise
        first_error = e

    repaired_text = await repair(text, first_error)
    return parse_and_validate(repaired_text, schema)
