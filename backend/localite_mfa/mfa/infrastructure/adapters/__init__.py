"""
Infrastructure Adapters

Key-value store, SMS delivery and clock implementations.
"""

from .clock_adapter import SystemClock
from .memory_store_adapter import InMemoryKeyValueStore
from .redis_store_adapter import RedisKeyValueStore, create_redis_client
from .sms_adapter import HttpSMSAdapter, MockSMSAdapter, SimulatedSMSAdapter

__all__ = [
    "HttpSMSAdapter",
    "InMemoryKeyValueStore",
    "MockSMSAdapter",
    "RedisKeyValueStore",
    "SimulatedSMSAdapter",
    "SystemClock",
    "create_redis_client",
]
