"""Queue snapshot persistence.

The engine writes the full queue after every mutation and reads it once at
startup. Two stores are provided:
- `JsonFileSnapshotStore`: one JSON file, replaced atomically on each save
- `MemorySnapshotStore`: keeps the serialized snapshot in memory (tests, demos)

Loading never raises. A missing snapshot is an empty queue; a corrupt one is
reported through `LoadResult` so the host can tell it started from a reset.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from .errors import SnapshotError
from .models import OrderTiming


@dataclass(frozen=True)
class LoadResult:
    orders: list[OrderTiming] = field(default_factory=list)
    # True when persisted state existed but had to be discarded.
    reset: bool = False
    error: str | None = None


class SnapshotStore(Protocol):
    def load(self) -> LoadResult: ...

    def save(self, orders: list[OrderTiming]) -> None: ...


def encode_snapshot(orders: list[OrderTiming]) -> str:
    return json.dumps([o.to_dict() for o in orders], separators=(",", ":"))


def decode_snapshot(payload: str) -> list[OrderTiming]:
    try:
        data: Any = json.loads(payload)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"snapshot is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise SnapshotError(f"snapshot must be a list, got {type(data).__name__}")
    return [OrderTiming.from_dict(item) for item in data]


def _decode_or_reset(payload: str | None, source: str) -> LoadResult:
    if not payload:
        return LoadResult()
    try:
        return LoadResult(orders=decode_snapshot(payload))
    except SnapshotError as e:
        logger.error("Discarding queue snapshot from {}: {}", source, e)
        return LoadResult(reset=True, error=str(e))


class JsonFileSnapshotStore:
    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> LoadResult:
        try:
            payload = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LoadResult()
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Could not read queue snapshot {}: {}", self.path, e)
            return LoadResult(reset=True, error=str(e))
        return _decode_or_reset(payload, str(self.path))

    def save(self, orders: list[OrderTiming]) -> None:
        payload = encode_snapshot(orders)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise SnapshotError(f"could not write {self.path}: {e}") from e


class MemorySnapshotStore:
    def __init__(self, payload: str | None = None) -> None:
        self.payload = payload
        self.saves = 0
        self._lock = threading.Lock()

    def load(self) -> LoadResult:
        with self._lock:
            payload = self.payload
        return _decode_or_reset(payload, "memory")

    def save(self, orders: list[OrderTiming]) -> None:
        payload = encode_snapshot(orders)
        with self._lock:
            self.payload = payload
            self.saves += 1
