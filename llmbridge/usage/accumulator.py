"""
llmbridge - Usage and Metadata Accumulation

Vendors report token usage and side-channel metadata (cache counters,
accepted prediction tokens, logprobs) fragmented across chunks, often
only on the last one. Usage reports are running snapshots, never deltas:
a later non-empty report replaces the earlier one wholesale, so a vendor
re-sending cumulative totals is never double counted.
"""

from typing import Any, Dict, Optional

from ..core.models import Usage


class UsageAccumulator:
    """Keeps the latest non-empty usage snapshot of a stream."""

    def __init__(self):
        self._usage: Optional[Usage] = None

    def update(self, usage: Optional[Usage]) -> None:
        """Replace the current snapshot unless ``usage`` is missing or all zero."""
        if usage is None or usage.is_empty():
            return
        self._usage = usage

    @property
    def has_usage(self) -> bool:
        return self._usage is not None

    def result(self) -> Usage:
        """Final usage; an all-zero Usage when the vendor never reported any."""
        return self._usage if self._usage is not None else Usage()


class ProviderMetadataAccumulator:
    """
    Collects provider metadata for the terminal finish event.

    Values are keyed by provider name, then by field. A later non-empty
    value for a field overwrites the earlier one; empty values (None,
    0, "", empty collections) never erase what was seen before.
    """

    def __init__(self):
        self._metadata: Dict[str, Dict[str, Any]] = {}

    def set(self, provider: str, key: str, value: Any) -> None:
        if value is None or value == 0 or value == "" or value == [] or value == {}:
            return
        self._metadata.setdefault(provider, {})[key] = value

    def merge(self, metadata: Dict[str, Dict[str, Any]]) -> None:
        for provider, values in metadata.items():
            for key, value in (values or {}).items():
                self.set(provider, key, value)

    def result(self) -> Dict[str, Dict[str, Any]]:
        return {provider: dict(values) for provider, values in self._metadata.items()}
