"""
llmbridge Usage Module

Token usage and provider metadata accumulation across stream chunks.
"""

from .accumulator import ProviderMetadataAccumulator, UsageAccumulator

__all__ = [
    "ProviderMetadataAccumulator",
    "UsageAccumulator",
]
