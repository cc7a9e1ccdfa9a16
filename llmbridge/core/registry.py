"""
llmbridge - Provider Type Registry

Process-wide table mapping a wire-level type tag (e.g. "anthropic.options")
to the pydantic model that decodes it. Used only at the serialization
boundary so provider options and metadata can round-trip as
``{"type": "<tag>", "data": {...}}`` without the core knowing their shape.

Registration happens at import time of each adapter module and is
write-once per tag: registering a tag twice raises RegistryError.
Lookups after initialization are read-only and need no locking.
"""

from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import RegistryError


M = TypeVar("M", bound=BaseModel)

_registry: Dict[str, Type[BaseModel]] = {}
_tags: Dict[Type[BaseModel], str] = {}


def register_provider_type(type_id: str, model: Type[M]) -> Type[M]:
    """
    Register a payload model under a wire type tag.

    Raises:
        RegistryError: if the tag is already registered
    """
    if not type_id:
        raise RegistryError("provider type id must not be empty")
    if type_id in _registry:
        raise RegistryError(f"provider data type already registered: {type_id}")
    _registry[type_id] = model
    _tags[model] = type_id
    return model


def provider_type(type_id: str):
    """Class decorator form of register_provider_type."""
    def decorator(model: Type[M]) -> Type[M]:
        return register_provider_type(type_id, model)
    return decorator


def is_registered(type_id: str) -> bool:
    return type_id in _registry


def type_id_of(payload: BaseModel) -> str:
    try:
        return _tags[type(payload)]
    except KeyError:
        raise RegistryError(
            f"unregistered provider data model: {type(payload).__name__}"
        ) from None


def encode_provider_data(payload: BaseModel) -> Dict[str, Any]:
    """Wrap a registered payload as ``{"type": tag, "data": {...}}``."""
    return {
        "type": type_id_of(payload),
        "data": payload.model_dump(mode="json", exclude_none=True),
    }


def decode_provider_data(wire: Dict[str, Any]) -> BaseModel:
    """Decode a ``{"type", "data"}`` wrapper into its registered model."""
    type_id = wire.get("type")
    model = _registry.get(type_id or "")
    if model is None:
        raise RegistryError(f"unknown provider data type: {type_id}")
    try:
        return model.model_validate(wire.get("data") or {})
    except ValidationError as e:
        raise RegistryError(f"invalid data for provider type {type_id}: {e}", cause=e) from e


def encode_provider_map(values: Dict[str, Any]) -> Dict[str, Any]:
    """Encode a provider-name -> payload mapping. Plain dicts pass through."""
    result: Dict[str, Any] = {}
    for provider, payload in values.items():
        if isinstance(payload, BaseModel):
            result[provider] = encode_provider_data(payload)
        else:
            result[provider] = payload
    return result


def decode_provider_map(wire: Dict[str, Any]) -> Dict[str, Any]:
    """Inverse of encode_provider_map."""
    result: Dict[str, Any] = {}
    for provider, value in wire.items():
        if isinstance(value, dict) and "type" in value and "data" in value:
            result[provider] = decode_provider_data(value)
        else:
            result[provider] = value
    return result
