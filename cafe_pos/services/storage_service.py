"""
Local durable key/value storage.

Holds the recovery snapshot and the settlement saga log. Redis in
deployment, an in-process dict for tests and single-box demos. Both
degrade gracefully: a storage failure is logged and reported as a miss,
it never breaks a sale.
"""

import fnmatch
import json
import logging
import threading
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask, current_app

logger = logging.getLogger(__name__)


class KeyValueStorage:
    """
    JSON key/value storage. Subclasses implement the raw string operations.

    Keys pattern: {prefix}:{key}
    """

    def __init__(self, prefix: str = 'pos'):
        self._prefix = prefix

    def _build_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _serialize(self, value: Any) -> str:
        """Serialize Python object to JSON string with Decimal precision."""
        def default_handler(obj: Any) -> Any:
            if isinstance(obj, (datetime, date)):
                return obj.isoformat()
            elif isinstance(obj, Decimal):
                return {"__decimal__": str(obj)}
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
        return json.dumps(value, default=default_handler)

    def _deserialize(self, value: str) -> Any:
        """Deserialize JSON string to Python object, reconstructing Decimals."""
        def object_hook(dct: Dict[str, Any]) -> Any:
            if "__decimal__" in dct:
                return Decimal(dct["__decimal__"])
            return dct
        return json.loads(value, object_hook=object_hook)

    def get(self, key: str) -> Optional[Any]:
        """Stored value, or None when missing, unreadable or the backend is down."""
        try:
            raw = self._read(self._build_key(key))
            if raw is None:
                return None
            return self._deserialize(raw)
        except (RedisError, ValueError, TypeError, ArithmeticError) as e:
            logger.warning(f"[STORAGE] ✗ Get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        try:
            self._write(self._build_key(key), self._serialize(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[STORAGE] ✗ Set error for {key}: {e}")
            return False

    def set_raw(self, key: str, raw: str) -> None:
        """Write an already-serialized value (imports and tests)."""
        self._write(self._build_key(key), raw)

    def delete(self, key: str) -> bool:
        try:
            self._delete(self._build_key(key))
            return True
        except RedisError as e:
            logger.warning(f"[STORAGE] ✗ Delete error for {key}: {e}")
            return False

    def keys(self, pattern: str = "*") -> List[str]:
        """Keys (without prefix) matching a glob pattern."""
        try:
            full_keys = self._scan(self._build_key(pattern))
        except RedisError as e:
            logger.warning(f"[STORAGE] ✗ Scan error: {e}")
            return []
        strip = len(self._prefix) + 1
        return sorted(key[strip:] for key in full_keys)

    def is_available(self) -> bool:
        return True

    def _read(self, full_key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, full_key: str, raw: str) -> None:
        raise NotImplementedError

    def _delete(self, full_key: str) -> None:
        raise NotImplementedError

    def _scan(self, full_pattern: str) -> List[str]:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    """Process-local storage. Survives nothing but keeps the same contract."""

    def __init__(self, prefix: str = 'pos'):
        super().__init__(prefix)
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _read(self, full_key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(full_key)

    def _write(self, full_key: str, raw: str) -> None:
        with self._lock:
            self._data[full_key] = raw

    def _delete(self, full_key: str) -> None:
        with self._lock:
            self._data.pop(full_key, None)

    def _scan(self, full_pattern: str) -> List[str]:
        with self._lock:
            return [key for key in self._data if fnmatch.fnmatchcase(key, full_pattern)]


class RedisStorage(KeyValueStorage):
    """Redis-backed storage. Disabled (every call is a miss) if Redis is unreachable."""

    def __init__(self, redis_url: str, prefix: str = 'pos'):
        super().__init__(prefix)
        self.client: Optional[redis.Redis] = None
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                socket_keepalive=True,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[STORAGE] ✓ Redis connected: {redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[STORAGE] ⚠ Redis connection failed: {e}. Durable storage DISABLED.")
            self.client = None

    def is_available(self) -> bool:
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except (ConnectionError, RedisError):
            return False

    def _require_client(self) -> redis.Redis:
        if not self.client:
            raise ConnectionError("Redis storage is not connected")
        return self.client

    def _read(self, full_key: str) -> Optional[str]:
        return self._require_client().get(full_key)

    def _write(self, full_key: str, raw: str) -> None:
        self._require_client().set(full_key, raw)

    def _delete(self, full_key: str) -> None:
        self._require_client().delete(full_key)

    def _scan(self, full_pattern: str) -> List[str]:
        client = self._require_client()
        found = []
        cursor = 0
        while True:
            cursor, keys = client.scan(cursor, match=full_pattern, count=100)
            found.extend(keys)
            if cursor == 0:
                break
        return found


def init_storage(app: Flask) -> KeyValueStorage:
    """Create the storage backend selected by STORAGE_BACKEND."""
    prefix = app.config.get('STORAGE_KEY_PREFIX', 'pos')
    backend = app.config.get('STORAGE_BACKEND', 'redis')
    if backend == 'memory':
        storage = MemoryStorage(prefix)
    else:
        storage = RedisStorage(app.config.get('REDIS_URL', 'redis://redis:6379/0'), prefix)
    app.extensions['storage'] = storage
    return storage


def get_storage() -> KeyValueStorage:
    """Get the storage instance of the current app."""
    storage = current_app.extensions.get('storage')
    if storage is None:
        raise RuntimeError("Storage not initialized.")
    return storage
