"""
EdgeLog - durable batching log shipper for edge request logs.

This package provides:
- LogActor: batching/delivery state machine with exponential backoff
- ActorNamespace: named actor instances, alarms and restart recovery
- Storage backends: in-memory, JSON file and PostgreSQL

Usage:
    from edgelog import namespace_from_env

    namespace = await namespace_from_env()
    await namespace.get().append({"ClientIP": "203.0.113.9"})
"""

from .actor import ActorState, AlarmService, LogActor
from .backoff import BackoffState, JitterSource, next_backoff_ms
from .config import ConfigurationError, ShipperConfig
from .delivery import BatchSender, DeliveryOutcome, classify_status, decode_batch, encode_batch
from .host import DEFAULT_ACTOR_NAME, ActorNamespace, AlarmScheduler, namespace_from_env
from .storage import DurableStorage, FileBackend, MemoryBackend, StorageBackend

__all__ = [
    # Actor
    "LogActor",
    "ActorState",
    "AlarmService",
    # Backoff
    "BackoffState",
    "JitterSource",
    "next_backoff_ms",
    # Config
    "ShipperConfig",
    "ConfigurationError",
    # Delivery
    "BatchSender",
    "DeliveryOutcome",
    "classify_status",
    "encode_batch",
    "decode_batch",
    # Host
    "ActorNamespace",
    "AlarmScheduler",
    "DEFAULT_ACTOR_NAME",
    "namespace_from_env",
    # Storage
    "DurableStorage",
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
]

__version__ = "0.1.0"
