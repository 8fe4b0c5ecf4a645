"""
Durable key/value storage for log actors.

Each actor instance owns one DurableStorage: a small key/value space plus a
single alarm slot holding the epoch-ms time of its next wakeup. A
StorageBackend hands out those per-actor stores and can list every stored
alarm so a restarted host can re-arm them.

Values are copied when written, so later in-memory mutation by the caller
never leaks into durable state.
"""

import asyncio
import copy
import hashlib
import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class DurableStorage(ABC):
    """Key/value space and alarm slot of a single actor."""

    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def put(self, key: str, value: Any) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def get_alarm(self) -> int | None: ...

    @abstractmethod
    async def set_alarm(self, at_ms: int) -> None: ...

    @abstractmethod
    async def delete_alarm(self) -> None: ...


class StorageBackend(ABC):
    """Factory for per-actor storage."""

    @abstractmethod
    def storage_for(self, actor_name: str) -> DurableStorage: ...

    @abstractmethod
    async def pending_alarms(self) -> dict[str, int]:
        """Map of actor name to stored alarm time, for every actor that has one."""

    @abstractmethod
    async def actors_with_key(self, key: str) -> list[str]:
        """Names of every actor whose storage holds `key`."""

    async def close(self) -> None:
        return None


class MemoryStorage(DurableStorage):
    """Process-local storage. Survives actor re-construction, not restarts."""

    def __init__(self):
        self.values: dict[str, Any] = {}
        self.alarm: int | None = None

    async def get(self, key: str) -> Any | None:
        return copy.deepcopy(self.values.get(key))

    async def put(self, key: str, value: Any) -> None:
        self.values[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)

    async def get_alarm(self) -> int | None:
        return self.alarm

    async def set_alarm(self, at_ms: int) -> None:
        self.alarm = int(at_ms)

    async def delete_alarm(self) -> None:
        self.alarm = None


class MemoryBackend(StorageBackend):
    def __init__(self):
        self._stores: dict[str, MemoryStorage] = {}

    def storage_for(self, actor_name: str) -> MemoryStorage:
        if actor_name not in self._stores:
            self._stores[actor_name] = MemoryStorage()
        return self._stores[actor_name]

    async def pending_alarms(self) -> dict[str, int]:
        return {
            name: store.alarm for name, store in self._stores.items() if store.alarm is not None
        }

    async def actors_with_key(self, key: str) -> list[str]:
        return [name for name, store in self._stores.items() if key in store.values]


_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


def actor_file_name(actor_name: str) -> str:
    """
    File name used for an actor's state document.

    Names that need sanitizing get a short hash of the raw name, so "a/b"
    and "a_b" never share a document.
    """
    safe = _UNSAFE_NAME.sub("_", actor_name)
    if safe != actor_name:
        digest = hashlib.sha256(actor_name.encode("utf-8")).hexdigest()[:12]
        safe = f"{safe}-{digest}"
    return safe + ".json"


class FileStorage(DurableStorage):
    """
    One JSON document per actor: {"actor": ..., "values": {...}, "alarm": ...}.

    Every write replaces the whole document through a temporary file and an
    atomic rename, so a crash leaves either the old or the new version.
    """

    def __init__(self, path: Path, actor_name: str):
        self.path = Path(path)
        self.actor_name = actor_name
        self._lock = asyncio.Lock()

    async def _read(self) -> dict[str, Any]:
        if not await aiofiles.os.path.exists(self.path):
            return {"actor": self.actor_name, "values": {}, "alarm": None}
        async with aiofiles.open(self.path, "r") as f:
            document = json.loads(await f.read())
        document.setdefault("values", {})
        document.setdefault("alarm", None)
        return document

    async def _write(self, document: dict[str, Any]):
        # Serialize before the first await so the snapshot is taken now
        content = json.dumps(document, ensure_ascii=False)
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(content)
        await aiofiles.os.replace(tmp_path, self.path)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            document = await self._read()
        return document["values"].get(key)

    async def put(self, key: str, value: Any) -> None:
        value = copy.deepcopy(value)
        async with self._lock:
            document = await self._read()
            document["values"][key] = value
            await self._write(document)

    async def delete(self, key: str) -> None:
        async with self._lock:
            document = await self._read()
            if key in document["values"]:
                del document["values"][key]
                await self._write(document)

    async def get_alarm(self) -> int | None:
        async with self._lock:
            document = await self._read()
        return document["alarm"]

    async def set_alarm(self, at_ms: int) -> None:
        async with self._lock:
            document = await self._read()
            document["alarm"] = int(at_ms)
            await self._write(document)

    async def delete_alarm(self) -> None:
        async with self._lock:
            document = await self._read()
            if document["alarm"] is not None:
                document["alarm"] = None
                await self._write(document)


class FileBackend(StorageBackend):
    """Stores every actor's document under one directory."""

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)
        self._stores: dict[str, FileStorage] = {}

    def storage_for(self, actor_name: str) -> FileStorage:
        if actor_name not in self._stores:
            path = self.state_dir / actor_file_name(actor_name)
            self._stores[actor_name] = FileStorage(path, actor_name)
        return self._stores[actor_name]

    async def _documents(self) -> list[tuple[Path, dict[str, Any]]]:
        """Every readable state document in the directory."""
        if not await aiofiles.os.path.isdir(self.state_dir):
            return []

        documents = []
        for path in sorted(self.state_dir.glob("*.json")):
            try:
                async with aiofiles.open(path, "r") as f:
                    document = json.loads(await f.read())
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable state file {path}: {e}")
                continue
            documents.append((path, document))
        return documents

    async def pending_alarms(self) -> dict[str, int]:
        alarms = {}
        for path, document in await self._documents():
            if document.get("alarm") is not None:
                alarms[document.get("actor", path.stem)] = int(document["alarm"])
        return alarms

    async def actors_with_key(self, key: str) -> list[str]:
        return [
            document.get("actor", path.stem)
            for path, document in await self._documents()
            if key in document.get("values", {})
        ]
