from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from threading import RLock
from typing import Dict, Iterable, Optional

from murverse.layout.models import GridPosition

from .config import AppConfig

logger = logging.getLogger(__name__)

_FILE_FORMAT_VERSION = 1


class PositionStoreError(RuntimeError):
    def __init__(self, code: str, message: str, backend_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.backend_name = backend_name


class PositionStore(ABC):
    """Durable fragment id -> grid position map.

    The origin cell means "unset": writing it removes the entry and reading
    never returns it. Writes are best-effort and report failure by returning
    False instead of raising.
    """

    @abstractmethod
    def get(self, fragment_ids: Iterable[str]) -> Dict[str, GridPosition]: ...

    @abstractmethod
    def set(self, fragment_id: str, position: GridPosition) -> bool: ...

    @abstractmethod
    def delete(self, fragment_id: str) -> bool: ...

    @abstractmethod
    def all(self) -> Dict[str, GridPosition]: ...

    @abstractmethod
    def name(self) -> str: ...


class InMemoryPositionStore(PositionStore):
    def __init__(self) -> None:
        self._lock = RLock()
        self._positions: Dict[str, GridPosition] = {}

    def get(self, fragment_ids: Iterable[str]) -> Dict[str, GridPosition]:
        with self._lock:
            return {
                fragment_id: self._positions[fragment_id]
                for fragment_id in fragment_ids
                if fragment_id in self._positions
            }

    def set(self, fragment_id: str, position: GridPosition) -> bool:
        with self._lock:
            if position.is_origin:
                self._positions.pop(fragment_id, None)
            else:
                self._positions[fragment_id] = position
        return True

    def delete(self, fragment_id: str) -> bool:
        with self._lock:
            return self._positions.pop(fragment_id, None) is not None

    def all(self) -> Dict[str, GridPosition]:
        with self._lock:
            return dict(self._positions)

    def name(self) -> str:
        return "memory"


class JsonFilePositionStore(PositionStore):
    """Positions kept in one JSON document, rewritten atomically on change."""

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = RLock()
        self._positions: Optional[Dict[str, GridPosition]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, GridPosition]:
        if self._positions is not None:
            return self._positions
        loaded: Dict[str, GridPosition] = {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raw = {}
        except (OSError, ValueError) as exc:
            logger.warning("position file unreadable path=%s error=%s", self._path, exc)
            raw = {}

        entries = raw.get("positions", {}) if isinstance(raw, dict) else {}
        for fragment_id, item in (entries or {}).items():
            try:
                position = GridPosition(row=int(item["row"]), col=int(item["col"]))
            except (KeyError, TypeError, ValueError):
                logger.warning("position entry skipped fragment_id=%s", fragment_id)
                continue
            if position.is_origin:
                continue
            loaded[str(fragment_id)] = position
        self._positions = loaded
        return loaded

    def _flush(self) -> None:
        positions = self._load()
        payload = {
            "version": _FILE_FORMAT_VERSION,
            "positions": {
                fragment_id: {"row": pos.row, "col": pos.col}
                for fragment_id, pos in sorted(positions.items())
            },
        }
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise PositionStoreError("write_failed", str(exc), self.name()) from exc

    def get(self, fragment_ids: Iterable[str]) -> Dict[str, GridPosition]:
        with self._lock:
            positions = self._load()
            return {
                fragment_id: positions[fragment_id]
                for fragment_id in fragment_ids
                if fragment_id in positions
            }

    def set(self, fragment_id: str, position: GridPosition) -> bool:
        with self._lock:
            positions = self._load()
            previous = positions.get(fragment_id)
            if position.is_origin:
                positions.pop(fragment_id, None)
            else:
                positions[fragment_id] = position
            try:
                self._flush()
            except PositionStoreError as exc:
                # Keep the cache in step with what is on disk.
                if previous is None:
                    positions.pop(fragment_id, None)
                else:
                    positions[fragment_id] = previous
                logger.warning(
                    "position write failed fragment_id=%s path=%s error=%s",
                    fragment_id,
                    self._path,
                    exc.message,
                )
                return False
        return True

    def delete(self, fragment_id: str) -> bool:
        with self._lock:
            positions = self._load()
            previous = positions.pop(fragment_id, None)
            if previous is None:
                return False
            try:
                self._flush()
            except PositionStoreError as exc:
                positions[fragment_id] = previous
                logger.warning(
                    "position delete failed fragment_id=%s path=%s error=%s",
                    fragment_id,
                    self._path,
                    exc.message,
                )
                return False
        return True

    def all(self) -> Dict[str, GridPosition]:
        with self._lock:
            return dict(self._load())

    def name(self) -> str:
        return "json"


def build_position_store(config: AppConfig) -> PositionStore:
    backend = (config.MURVERSE_POSITION_STORE or "memory").strip().lower()
    if backend == "memory":
        return InMemoryPositionStore()
    if backend == "json":
        return JsonFilePositionStore(config.position_store_path())
    raise ValueError(f"Unsupported position store backend: {config.MURVERSE_POSITION_STORE}")
