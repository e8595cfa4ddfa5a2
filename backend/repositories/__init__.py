from .kv import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from . import models

__all__ = ["KeyValueStore", "InMemoryKeyValueStore", "SqlKeyValueStore", "models"]
