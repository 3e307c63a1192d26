"""Packaging, verification, upload and propagation polling."""

from .archive import Archive, create_archive, list_files, unpack_archive
from .pipeline import PublishOptions, PublishPipeline, PublishResult, Stage, resolve_registry
from .registry import PublishMetadata, RegistryClient, index_prefix
from .scheduler import PublishOutcome, PublishScheduler, publish_order

__all__ = [
    "Archive",
    "PublishMetadata",
    "PublishOptions",
    "PublishOutcome",
    "PublishPipeline",
    "PublishResult",
    "PublishScheduler",
    "RegistryClient",
    "Stage",
    "create_archive",
    "index_prefix",
    "list_files",
    "publish_order",
    "resolve_registry",
    "unpack_archive",
]
