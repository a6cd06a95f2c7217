# storefront/storage.py
"""Durable cart storage.

Carts are stored per session in one JSON file mapping session ids to the
list of cart items. All reads and writes of the file go through a single
lock. A missing, unreadable or malformed file reads as "no carts"; a
broken entry for one session reads as an empty cart.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List


logger = logging.getLogger(__name__)


class CartStorage:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        try:
            if self.path.exists():
                with self.path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning("Ignoring cart file %s: not a JSON object", self.path)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cart file %s: %s", self.path, exc)
        return {}

    def load(self, session_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            items = self._read_all().get(str(session_id), [])
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def save(self, session_id: str, items: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = self._read_all()
            if items:
                data[str(session_id)] = items
            else:
                data.pop(str(session_id), None)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp.replace(self.path)
