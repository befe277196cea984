"""
Persistent key/value store for the staging queue

Each key maps to one JSON file in the store directory. Payloads are tagged
with a schema version so older queues can be migrated instead of discarded.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import os
import re
import structlog

logger = structlog.get_logger()

SCHEMA_VERSION = 1

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class QueueStore:
    """JSON file store with corruption tolerance. Never raises to callers."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def save(self, key: str, collection: List[Dict[str, Any]]) -> bool:
        """Overwrite the value at key. Returns False on failure."""
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            payload = json.dumps({"version": SCHEMA_VERSION, "messages": collection})
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
            return True
        except (TypeError, ValueError, OSError) as e:
            logger.error("Queue store save failed", key=key, error=str(e))
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            return False

    def load(self, key: str) -> Optional[List[Dict[str, Any]]]:
        """Return the stored collection, or None if absent or corrupted.

        Corrupted entries are deleted so malformed data is never resurrected.
        """
        path = self._path(key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Queue store read failed", key=key, error=str(e))
            return None

        if not raw:
            return None

        try:
            messages = self._migrate(json.loads(raw.decode("utf-8")))
        except ValueError as e:
            logger.warning("Discarding corrupted queue data", key=key, error=str(e))
            self.remove(key)
            return None

        return messages

    def remove(self, key: str) -> bool:
        """Delete the entry at key. Idempotent."""
        try:
            self._path(key).unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.error("Queue store remove failed", key=key, error=str(e))
            return False

    @staticmethod
    def _migrate(payload: Any) -> List[Dict[str, Any]]:
        """Normalize any known payload version to a list of message dicts"""
        # Version 0: bare list written before payloads were tagged
        if isinstance(payload, list):
            messages = payload
        elif isinstance(payload, dict):
            version = payload.get("version")
            if version != SCHEMA_VERSION:
                raise ValueError(f"unsupported schema version: {version!r}")
            messages = payload.get("messages")
        else:
            raise ValueError("payload is not a list or object")

        if not isinstance(messages, list) or not all(isinstance(m, dict) for m in messages):
            raise ValueError("messages must be a list of objects")
        return messages
