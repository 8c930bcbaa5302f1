"""Metadata layer - Resolución device/asset/sensor contra el store SQL."""

from .resolver import MetadataResolver, MetadataWriter, SqlMetadataResolver, resolve_context

__all__ = ["MetadataResolver", "MetadataWriter", "SqlMetadataResolver", "resolve_context"]
