from __future__ import annotations

import asyncio
import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ..errors import StorageError
from .kv import KeyValueStore


class JsonFileStore(KeyValueStore):
    """One pretty-printed JSON file per key inside ``directory``."""

    backend_name = "json"

    def __init__(self, directory: str | Path, name_template: str = "chat_{key}.json") -> None:
        super().__init__()
        if "{key}" not in name_template:
            raise ValueError("name_template must contain {key}")
        self.directory = Path(directory)
        self.name_template = name_template

    def path_for(self, key: str) -> Path:
        return self.directory / self.name_template.format(key=key)

    def describe(self, key: str) -> str:
        return str(self.path_for(key))

    def _read_sync(self, path: Path) -> Any | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt JSON in {path}: {exc}") from exc

    def _write_sync(self, path: Path, value: Any) -> None:
        try:
            encoded = json.dumps(value, ensure_ascii=False, indent=4)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Failed to encode JSON for {path}: {exc}") from exc
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(encoded)
                os.replace(tmp_name, path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def _remove_sync(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete {path}: {exc}") from exc
        return True

    async def _read(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read_sync, self.path_for(key))

    async def _write(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write_sync, self.path_for(key), value)

    async def _remove(self, key: str) -> bool:
        return await asyncio.to_thread(self._remove_sync, self.path_for(key))
