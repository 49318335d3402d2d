from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Protocol, runtime_checkable

from .config import Settings

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class StorageError(RuntimeError):
    """Base exception for storage-related errors."""


@runtime_checkable
class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


def _validate_key(key: str) -> str:
    if not _SAFE_KEY.match(key):
        raise StorageError(f"Недопустимый ключ хранилища: {key!r}")
    return key


class MemoryStorage:
    """Dictionary-backed storage; values are kept in their serialized form."""

    def __init__(self, initial: Dict[str, Any] | None = None) -> None:
        self._items: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Any:
        raw = self._items.get(_validate_key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._items[_validate_key(key)] = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Значение для ключа {key!r} не сериализуется в JSON") from exc

    def keys(self) -> list[str]:
        return list(self._items)


class JsonFileStorage:
    """One UTF-8 JSON file per key inside ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_validate_key(key)}.json"

    def get(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageError(f"Файл {path.name} поврежден") from exc
        except OSError as exc:
            raise StorageError(f"Не удалось прочитать {path.name}") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            payload = json.dumps(value, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Значение для ключа {key!r} не сериализуется в JSON") from exc
        tmp_path = path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise StorageError(f"Не удалось сохранить {path.name}") from exc
        finally:
            if tmp_path.is_file():
                tmp_path.unlink()


def create_storage(config: Settings) -> KeyValueStorage:
    if config.storage_backend == "sql":
        from .database import SqlStorage, create_session_factory

        logger.info("Using SQL storage at %s", config.resolved_database_url())
        return SqlStorage(create_session_factory(config.resolved_database_url()))
    logger.info("Using JSON file storage in %s", config.data_dir)
    return JsonFileStorage(config.data_dir)
