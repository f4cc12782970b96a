"""
Token store implementations.
"""
from .memory import MemoryTokenStore, create_memory_token_store
from .file import FileTokenStore

__all__ = [
    "MemoryTokenStore",
    "FileTokenStore",
    "create_memory_token_store",
]
