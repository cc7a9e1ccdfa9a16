"""
llmbridge - Schema Definitions

Structural description of JSON values shared by tool inputs and
structured-object generation, with conversion to JSON Schema and
generation from Python types.
"""

import dataclasses
import enum
import typing
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel


class SchemaType(str, enum.Enum):
    """JSON Schema primitive types."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"


@dataclass
class Schema:
    """A JSON Schema subset: types, properties, items, enums and bounds."""
    type: Union[SchemaType, str, None] = None
    properties: Dict[str, "Schema"] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)
    items: Optional["Schema"] = None
    description: str = ""
    enum: Optional[List[Any]] = None
    format: str = ""
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    additional_properties: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON Schema dict."""
        result: Dict[str, Any] = {}
        if self.type is not None:
            result["type"] = self.type.value if isinstance(self.type, SchemaType) else self.type
        if self.description:
            result["description"] = self.description
        if self.properties:
            result["properties"] = {
                name: prop.to_dict() for name, prop in self.properties.items()
            }
        if self.required:
            result["required"] = list(self.required)
        if self.items is not None:
            items = self.items.to_dict()
            # Array items declared only by their properties are objects
            if "type" not in items and "properties" in items:
                items["type"] = "object"
            result["items"] = items
        if self.enum is not None:
            result["enum"] = list(self.enum)
        if self.format:
            result["format"] = self.format
        if self.minimum is not None:
            result["minimum"] = self.minimum
        if self.maximum is not None:
            result["maximum"] = self.maximum
        if self.min_length is not None:
            result["minLength"] = self.min_length
        if self.max_length is not None:
            result["maxLength"] = self.max_length
        if self.additional_properties is not None:
            result["additionalProperties"] = self.additional_properties
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schema":
        """Build a Schema from a JSON Schema dict (unknown keywords are ignored)."""
        return cls(
            type=data.get("type"),
            properties={
                name: cls.from_dict(prop)
                for name, prop in (data.get("properties") or {}).items()
            },
            required=list(data.get("required") or []),
            items=cls.from_dict(data["items"]) if isinstance(data.get("items"), dict) else None,
            description=data.get("description", ""),
            enum=data.get("enum"),
            format=data.get("format", ""),
            minimum=data.get("minimum"),
            maximum=data.get("maximum"),
            min_length=data.get("minLength"),
            max_length=data.get("maxLength"),
            additional_properties=data.get("additionalProperties"),
        )

    @classmethod
    def from_type(cls, tp: Any) -> "Schema":
        """
        Generate a schema from a Python type.

        Supports dataclasses, pydantic models, enums, Optional, List,
        Dict and the JSON primitives. Dataclass fields without a default
        are required; ``metadata={"description": ...}`` sets descriptions.
        """
        return _schema_for_type(tp)


_PRIMITIVES = {
    str: SchemaType.STRING,
    int: SchemaType.INTEGER,
    float: SchemaType.NUMBER,
    bool: SchemaType.BOOLEAN,
    type(None): SchemaType.NULL,
}


def _schema_for_type(tp: Any) -> Schema:
    if tp in _PRIMITIVES:
        return Schema(type=_PRIMITIVES[tp])

    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is Union:
        non_null = [a for a in args if a is not type(None)]
        if len(non_null) == 1:
            return _schema_for_type(non_null[0])
        raise TypeError(f"cannot generate schema for union {tp!r}")

    if origin in (list, List, tuple, set):
        item_type = args[0] if args else Any
        items = _schema_for_type(item_type) if item_type is not Any else Schema()
        return Schema(type=SchemaType.ARRAY, items=items)

    if origin in (dict, Dict) or tp is dict:
        return Schema(type=SchemaType.OBJECT)

    if tp is list:
        return Schema(type=SchemaType.ARRAY)

    if isinstance(tp, type) and issubclass(tp, enum.Enum):
        return Schema(type=SchemaType.STRING, enum=[m.value for m in tp])

    if isinstance(tp, type) and issubclass(tp, BaseModel):
        return Schema.from_dict(tp.model_json_schema())

    if dataclasses.is_dataclass(tp):
        hints = typing.get_type_hints(tp)
        properties: Dict[str, Schema] = {}
        required: List[str] = []
        for f in dataclasses.fields(tp):
            prop = _schema_for_type(hints[f.name])
            prop.description = f.metadata.get("description", "")
            properties[f.name] = prop
            if (
                f.default is dataclasses.MISSING
                and f.default_factory is dataclasses.MISSING  # type: ignore[misc]
            ):
                required.append(f.name)
        return Schema(type=SchemaType.OBJECT, properties=properties, required=required)

    raise TypeError(f"cannot generate schema for type {tp!r}")
