"""
Local Storage

Browser-equivalent persisted key/value storage. Values are strings, the way
``localStorage`` holds them; callers serialize their own payloads.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class LocalStorage:
    """
    String key/value store backed by a JSON document on disk.

    Without a path the store lives in memory only, which is what tests and
    short-lived processes want.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._items: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path or not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Could not read local storage at {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed local storage at {self.path}")
            return {}

        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._items), encoding="utf-8")

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        self._items.clear()
        self._flush()

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)
