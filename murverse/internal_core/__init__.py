from .config import AppConfig, load_config
from .fragment_store import InMemoryFragmentStore
from .logging_config import setup_logging
from .position_store import (
    InMemoryPositionStore,
    JsonFilePositionStore,
    PositionStore,
    PositionStoreError,
    build_position_store,
)

__all__ = [
    "AppConfig",
    "load_config",
    "InMemoryFragmentStore",
    "setup_logging",
    "InMemoryPositionStore",
    "JsonFilePositionStore",
    "PositionStore",
    "PositionStoreError",
    "build_position_store",
]
