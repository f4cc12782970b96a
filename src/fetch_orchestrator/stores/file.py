"""
JSON file store implementation for token state.

Every write rewrites the whole file through a temporary sibling and an
atomic rename, so a crash never leaves a half-written file behind.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Union

from ..types import TokenStore

logger = logging.getLogger(__name__)


class FileTokenStore(TokenStore):
    """
    Durable token store backed by a JSON file.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._data: Dict[str, Any] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            content = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"FileTokenStore: ignoring unreadable store {self._path}: {e}")
            return {}
        if not isinstance(content, dict):
            logger.warning(f"FileTokenStore: ignoring non-object store {self._path}")
            return {}
        return content

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(json.dumps(self._data), encoding="utf-8")
        os.replace(tmp_path, self._path)

    def get(self, key: str) -> Any:
        """Get a stored value, or None."""
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        """Store a value and persist."""
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        """Remove a value if present and persist."""
        if key in self._data:
            del self._data[key]
            self._flush()

    def clear(self) -> None:
        """Remove all values and persist."""
        self._data.clear()
        self._flush()
