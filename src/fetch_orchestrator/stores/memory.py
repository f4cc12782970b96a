"""
Memory store implementation for token state.
"""
from typing import Any, Dict, Optional

from ..types import TokenStore


class MemoryTokenStore(TokenStore):
    """
    In-memory token store. Lost when the process exits.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        """Get a stored value, or None."""
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        """Store a value."""
        self._data[key] = value

    def remove(self, key: str) -> None:
        """Remove a value if present."""
        self._data.pop(key, None)

    def clear(self) -> None:
        """Remove all values."""
        self._data.clear()

    def size(self) -> int:
        """Get number of stored keys."""
        return len(self._data)


def create_memory_token_store(initial: Optional[Dict[str, Any]] = None) -> MemoryTokenStore:
    """Create a memory token store."""
    return MemoryTokenStore(initial)
