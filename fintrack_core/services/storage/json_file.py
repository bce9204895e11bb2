"""
JSON File Storage

DESIGN DECISION: A single JSON object on disk stands in for the
browser's local storage when the core runs outside a browser.

TRADEOFFS:
- The whole file is rewritten on every write (fine for cache bookkeeping)
- No cross-process locking; same best-effort contract as local storage
"""

import json
from pathlib import Path
from typing import Optional, Union

import structlog

from fintrack_core.services.storage.interface import KeyValueStorage, StorageError


logger = structlog.get_logger(__name__)


class JsonFileKeyValueStorage(KeyValueStorage):
    """KeyValueStorage persisted as one JSON object in a file."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._items: Optional[dict[str, str]] = None

    def _load(self) -> dict[str, str]:
        if self._items is not None:
            return self._items

        self._items = {}
        if not self._path.exists():
            return self._items

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            # Unreadable file: start over rather than refusing to run
            logger.warning("storage_file_unreadable", path=str(self._path), error=str(e))
            return self._items

        if isinstance(raw, dict):
            self._items = {str(k): v for k, v in raw.items() if isinstance(v, str)}
        else:
            logger.warning("storage_file_malformed", path=str(self._path))
        return self._items

    def _flush(self, items: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(items, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            raise StorageError(f"Failed to write {self._path}: {e}")

    async def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    async def set_item(self, key: str, value: str) -> None:
        items = dict(self._load())
        items[key] = value
        self._flush(items)
        self._items = items

    async def remove_item(self, key: str) -> None:
        if key not in self._load():
            return
        items = {k: v for k, v in self._items.items() if k != key}
        self._flush(items)
        self._items = items

    async def keys(self) -> list[str]:
        return list(self._load())
