"""
ImpScope Pipeline
==================

Sample routing for a scanning pipeline: object storage, topic publishing
and the orchestrator that ties them together.
"""

from impscope.pipeline.orchestrator import Orchestrator, build_orchestrator, route_topics
from impscope.pipeline.pubsub import MemoryPublisher, Publisher
from impscope.pipeline.storage import LocalStorage, Storage, StorageError

__all__ = [
    "LocalStorage",
    "MemoryPublisher",
    "Orchestrator",
    "Publisher",
    "Storage",
    "StorageError",
    "build_orchestrator",
    "route_topics",
]
