"""Durable per-visitor key/value storage.

Visitor state (browsing signals, experiment assignments) lives in a
key/value store partitioned by visitor. Values are JSON-encoded strings,
mirroring the layout the storefront frontend keeps in browser storage.
Unreadable state is always treated as absent, never as an error.
"""

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Optional, Protocol, TypeVar

import joblib

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

PARTITION_FILE_SUFFIX = ".joblib"


class KeyValueStore(Protocol):
    """Storage backend partitioned by visitor."""

    def get(self, partition: str, key: str) -> Optional[str]:
        ...

    def set(self, partition: str, key: str, value: str) -> None:
        ...

    def set_if_absent(self, partition: str, key: str, value: str) -> str:
        """Store value unless key exists; return whichever value is stored."""
        ...


class InMemoryKeyValueStore:
    """Process-local store, used for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._partitions: Dict[str, Dict[str, str]] = {}

    def get(self, partition: str, key: str) -> Optional[str]:
        with self._lock:
            return self._partitions.get(partition, {}).get(key)

    def set(self, partition: str, key: str, value: str) -> None:
        with self._lock:
            self._partitions.setdefault(partition, {})[key] = value

    def set_if_absent(self, partition: str, key: str, value: str) -> str:
        with self._lock:
            return self._partitions.setdefault(partition, {}).setdefault(key, value)


class FileKeyValueStore:
    """Store that keeps one joblib file per visitor partition.

    Partition names are hashed into file names so arbitrary visitor ids
    cannot escape the state directory. Writes, including ``set_if_absent``,
    are serialised by an in-process lock only; a state directory must not
    be shared by several server processes.
    """

    def __init__(self, state_dir: str) -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"Using file-backed visitor state in {self.state_dir}")

    def _partition_path(self, partition: str) -> Path:
        digest = hashlib.sha256(partition.encode("utf-8")).hexdigest()
        return self.state_dir / f"{digest}{PARTITION_FILE_SUFFIX}"

    def _load(self, partition: str) -> Dict[str, str]:
        path = self._partition_path(partition)
        if not path.exists():
            return {}
        try:
            data = joblib.load(path)
        except Exception as e:
            logger.warning(
                "Unreadable visitor state, treating as empty",
                extra={"path": str(path), "error": str(e)},
            )
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Visitor state has unexpected type, treating as empty",
                extra={"path": str(path), "type": type(data).__name__},
            )
            return {}
        return data

    def _save(self, partition: str, data: Dict[str, str]) -> None:
        joblib.dump(data, self._partition_path(partition))

    def get(self, partition: str, key: str) -> Optional[str]:
        with self._lock:
            return self._load(partition).get(key)

    def set(self, partition: str, key: str, value: str) -> None:
        with self._lock:
            data = self._load(partition)
            data[key] = value
            self._save(partition, data)

    def set_if_absent(self, partition: str, key: str, value: str) -> str:
        with self._lock:
            data = self._load(partition)
            if key in data:
                return data[key]
            data[key] = value
            self._save(partition, data)
            return value


class VisitorStorage:
    """View of a KeyValueStore bound to one visitor's partition."""

    def __init__(self, backend: KeyValueStore, visitor_id: str) -> None:
        self.backend = backend
        self.visitor_id = visitor_id

    def get(self, key: str) -> Optional[str]:
        return self.backend.get(self.visitor_id, key)

    def set(self, key: str, value: str) -> None:
        self.backend.set(self.visitor_id, key, value)

    def set_if_absent(self, key: str, value: str) -> str:
        return self.backend.set_if_absent(self.visitor_id, key, value)


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Outcome of decoding a persisted value: either a value or an error."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.value is None:
            return default
        return self.value


def parse_json(
    raw: Optional[str],
    validate: Callable[[Any], T],
) -> ParseResult[T]:
    """Decode a stored JSON string and validate its shape.

    Args:
        raw: Stored string, or None when the key is missing.
        validate: Converts the decoded object to the expected type, raising
            TypeError or ValueError when the shape is wrong.

    Returns:
        ParseResult holding the validated value, or an error description.
    """
    if raw is None:
        return ParseResult(error="missing")
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError, OverflowError) as e:
        return ParseResult(error=f"invalid json: {e}")
    try:
        return ParseResult(value=validate(decoded))
    except (TypeError, ValueError, OverflowError) as e:
        return ParseResult(error=f"invalid shape: {e}")
