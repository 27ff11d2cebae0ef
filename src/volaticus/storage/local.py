import os
import tempfile
from datetime import datetime, UTC
from typing import BinaryIO, Iterator, Optional

from volaticus.core.config import logger
from volaticus.core.exceptions import InvalidInput, NotFound, StorageError
from volaticus.storage.base import CACHE_CONTROL, CHUNK_SIZE, BlobInfo, BlobStream
from volaticus.storage.mime import SNIFF_LENGTH, sniff_mime

TMP_PREFIX = ".tmp-"


class LocalStorage:
    """Blobs stored as flat files under ``base_dir``."""

    def __init__(self, base_dir: str):
        self.base_dir = os.path.abspath(base_dir)
        try:
            os.makedirs(self.base_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create upload directory {self.base_dir}") from e

    def _path(self, key: str) -> str:
        if (
            not key
            or key.startswith(".")
            or "/" in key
            or "\\" in key
            or "\x00" in key
        ):
            raise InvalidInput(f"Invalid blob key: {key!r}")
        return os.path.join(self.base_dir, key)

    def write(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> int:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(prefix=TMP_PREFIX, dir=self.base_dir)
        written = 0
        try:
            with os.fdopen(fd, "wb") as dst:
                while chunk := stream.read(CHUNK_SIZE):
                    dst.write(chunk)
                    written += len(chunk)
            os.replace(tmp_path, path)
        except (OSError, ValueError) as e:
            self._discard(tmp_path)
            raise StorageError(f"Failed to write blob {key}") from e
        except BaseException:
            self._discard(tmp_path)
            raise

        logger.debug(f"Stored blob {key} ({written} bytes)")
        return written

    @staticmethod
    def _discard(tmp_path: str) -> None:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove partial blob {tmp_path}: {e}")

    def stream(self, key: str) -> BlobStream:
        path = self._path(key)
        try:
            handle = open(path, "rb")
        except FileNotFoundError:
            raise NotFound("File not found")
        except OSError as e:
            raise StorageError(f"Failed to open blob {key}") from e

        try:
            size = os.fstat(handle.fileno()).st_size
            content_type = sniff_mime(handle.read(SNIFF_LENGTH))
            handle.seek(0)
        except OSError as e:
            handle.close()
            raise StorageError(f"Failed to read blob {key}") from e

        return BlobStream(
            content_type=content_type,
            size=size,
            chunks=self._iter_file(handle),
            cache_control=CACHE_CONTROL,
        )

    @staticmethod
    def _iter_file(handle: BinaryIO) -> Iterator[bytes]:
        with handle:
            while chunk := handle.read(CHUNK_SIZE):
                yield chunk

    def exists(self, key: str) -> bool:
        path = self._path(key)
        try:
            os.stat(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Error checking blob {key}") from e
        return True

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Blob {key} already absent")
        except OSError as e:
            raise StorageError(f"Failed to delete blob {key}") from e

    def enumerate(self, prefix: str = "") -> list[BlobInfo]:
        blobs = []
        try:
            with os.scandir(self.base_dir) as entries:
                for entry in entries:
                    # temp files and dotfiles are never blobs
                    if entry.name.startswith(".") or not entry.name.startswith(prefix):
                        continue
                    if not entry.is_file():
                        continue
                    try:
                        stat = entry.stat()
                        with open(entry.path, "rb") as handle:
                            content_type = sniff_mime(handle.read(SNIFF_LENGTH))
                    except FileNotFoundError:
                        # deleted while listing
                        continue
                    blobs.append(
                        BlobInfo(
                            name=entry.name,
                            size=stat.st_size,
                            content_type=content_type,
                            modified_at=datetime.fromtimestamp(stat.st_mtime, UTC).replace(tzinfo=None),
                        )
                    )
        except OSError as e:
            raise StorageError("Error listing upload directory") from e
        return blobs

    def close(self) -> None:
        pass
