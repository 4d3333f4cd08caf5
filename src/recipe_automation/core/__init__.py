"""Core modules for the recipe automation engine.

This package contains the shared infrastructure:
- Configuration management
- Logging utilities
- Lifecycle event fan-out
- Record persistence
"""

from .config import (
    AutomationConfig,
    EngineConfig,
    HTTPClientConfig,
    LoggingConfig,
    PersistenceConfig,
    RetryPolicyConfig,
    SchedulerConfig,
    VariableResolverConfig,
)
from .events import EventBus
from .logger import get_logger, log_exception, setup_logging
from .persistence import (
    MemoryRecordStore,
    RecordStore,
    SQLiteRecordStore,
    create_record_store,
)

__all__ = [
    # Configuration
    "AutomationConfig",
    "EngineConfig",
    "HTTPClientConfig",
    "LoggingConfig",
    "PersistenceConfig",
    "RetryPolicyConfig",
    "SchedulerConfig",
    "VariableResolverConfig",
    # Events
    "EventBus",
    # Logging
    "get_logger",
    "log_exception",
    "setup_logging",
    # Persistence
    "MemoryRecordStore",
    "RecordStore",
    "SQLiteRecordStore",
    "create_record_store",
]
