import json
import os
import tempfile
from typing import Dict, Optional

from utils.logger import get_logger

_logger = get_logger(__name__)


class FileKeyValueStore:
    """
    Durable key-value storage backed by one JSON file.

    Reads are served from memory, every write replaces the file atomically.
    An unreadable file starts out empty, write errors (OSError) propagate.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError, RecursionError) as exc:
            _logger.warning(f"Ignoring unreadable storage file {self.path}: {exc}")
            return {}
        if not isinstance(data, dict):
            _logger.warning(f"Ignoring storage file {self.path}: not an object")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        updated = dict(self._data)
        updated[key] = value
        self._write(updated)
        self._data = updated

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        updated = dict(self._data)
        del updated[key]
        self._write(updated)
        self._data = updated

    def _write(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
