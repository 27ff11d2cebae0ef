from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Iterator, Optional, Protocol

CACHE_CONTROL = "public, max-age=86400"
CHUNK_SIZE = 64 * 1024


@dataclass
class BlobInfo:
    name: str
    size: int
    content_type: str
    modified_at: datetime


@dataclass
class BlobStream:
    content_type: str
    size: int
    chunks: Iterator[bytes]
    cache_control: str = CACHE_CONTROL
    extra_headers: dict = field(default_factory=dict)

    def headers(self) -> dict:
        headers = {"Content-Length": str(self.size), "Cache-Control": self.cache_control}
        headers.update(self.extra_headers)
        return headers


class StorageBackend(Protocol):
    """
    Blob store consumed by the upload service and the cleanup worker.

    ``write`` is all-or-nothing: after a failure the key is absent.
    ``exists`` returns False only for a definitely absent key; any other
    failure raises StorageError.
    """

    def write(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> int: ...

    def stream(self, key: str) -> BlobStream: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...

    def enumerate(self, prefix: str = "") -> list[BlobInfo]: ...

    def close(self) -> None: ...
