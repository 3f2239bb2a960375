"""
Storage layer module for RTM-Triage.

This module provides the storage backend implementations for persisting
alerts, reading clinical signals and mirroring the triage queue.
"""

from rtm_triage.storage.base import AlertStore, ObservationSource
from rtm_triage.storage.memory import InMemoryAlertStore, InMemoryObservationSource
from rtm_triage.storage.postgres import PostgreSQLAlertStore, PostgreSQLObservationSource
from rtm_triage.storage.redis import RedisQueueCache

__all__ = [
    "AlertStore",
    "ObservationSource",
    "InMemoryAlertStore",
    "InMemoryObservationSource",
    "PostgreSQLAlertStore",
    "PostgreSQLObservationSource",
    "RedisQueueCache",
]
