# app/prescription_engine/storage.py
"""
Object storage for uploaded prescription images.

LocalObjectStorage writes under MEDIA_ROOT and hands back URLs served by the
/media static mount in app/main.py. Any other backend only needs save/read.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from starlette.concurrency import run_in_threadpool

from app.helpers.exceptions import DependencyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str


class ObjectStorage(ABC):
    @abstractmethod
    async def save(self, data: bytes, filename: str, folder: str) -> StoredObject:
        ...

    @abstractmethod
    async def read(self, url: str) -> bytes:
        """Fetch the bytes behind a URL previously returned by save()."""


class LocalObjectStorage(ObjectStorage):
    def __init__(self, root: Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _key_for(self, filename: str, folder: str) -> str:
        suffix = Path(filename or "").suffix.lower()
        return f"{folder.strip('/')}/{uuid.uuid4().hex}{suffix}"

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise DependencyError(f"Storage key escapes media root: {key}")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_from_url(self, url: str) -> str:
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            raise DependencyError(f"URL is not served by this storage: {url}")
        return url[len(prefix):]

    async def save(self, data: bytes, filename: str, folder: str) -> StoredObject:
        key = self._key_for(filename, folder)
        path = self._path_for(key)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await run_in_threadpool(_write)
        except OSError as e:
            logger.error(f"❌ Could not store {filename}: {e}")
            raise DependencyError(f"Could not store file {filename}")

        logger.info(f"💾 Stored {filename} as {key} ({len(data)} bytes)")
        return StoredObject(key=key, url=self.url_for(key))

    async def read(self, url: str) -> bytes:
        path = self._path_for(self.key_from_url(url))
        try:
            return await run_in_threadpool(path.read_bytes)
        except OSError as e:
            raise DependencyError(f"Could not read {url}: {e}")
