from .base import ExecutionStore
from .memory import InMemoryExecutionStore
from .postgres import PostgresExecutionStore

__all__ = ["ExecutionStore", "InMemoryExecutionStore", "PostgresExecutionStore"]
