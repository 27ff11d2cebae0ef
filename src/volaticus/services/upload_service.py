import re
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import BinaryIO, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from volaticus.catalog import uploads as upload_catalog
from volaticus.core.config import logger
from volaticus.core.exceptions import (
    CatalogError,
    CollisionExhausted,
    DuplicateReference,
    Expired,
    Forbidden,
    InvalidInput,
    NotFound,
    PayloadTooLarge,
    StorageError,
    StorageWriteFailed,
    VolaticusError,
)
from volaticus.db.base import utcnow
from volaticus.models.upload import UploadedItem
from volaticus.services.shortcode import (
    MAX_ATTEMPTS,
    URLStyle,
    generate_reference,
    random_string,
    with_extension,
)
from volaticus.services.validation import ValidatedUpload, validate_upload
from volaticus.storage.base import BlobStream, StorageBackend

BLOB_PREFIX_LENGTH = 4
_SAFE_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,16}")


@dataclass
class UploadResult:
    item: UploadedItem
    url: str


@dataclass
class ResolvedUpload:
    item: UploadedItem
    blob: BlobStream


def make_blob_key(extension: str = "") -> str:
    """Opaque storage key: 4 random characters, the ns clock and the extension."""
    if not _SAFE_EXTENSION.fullmatch(extension):
        extension = ""
    return f"{random_string(BLOB_PREFIX_LENGTH)}-{time.time_ns()}{extension.lower()}"


class UploadService:
    """
    Orchestrates uploads: validate, write the blob, then commit the catalog row.

    The blob is always written before its row exists. Whenever the row
    cannot be committed the blob just written is deleted again, so a failed
    upload leaves neither bytes nor a row behind.
    """

    def __init__(
        self,
        storage: StorageBackend,
        max_size: int,
        quota: int,
        ttl: timedelta,
        base_url: str,
    ):
        self.storage = storage
        self.max_size = max_size
        self.quota = quota
        self.ttl = ttl
        self.base_url = base_url.rstrip("/")

    def file_url(self, reference: str) -> str:
        return f"{self.base_url}/f/{reference}"

    def verify(
        self,
        db: Session,
        owner_id: UUID,
        fileobj: Optional[BinaryIO],
        filename: Optional[str],
        content_length: Optional[int] = None,
        declared_size: Optional[int] = None,
    ) -> ValidatedUpload:
        """Run admission checks only, without storing anything."""
        return validate_upload(
            db,
            owner_id,
            fileobj,
            filename,
            content_length,
            declared_size,
            self.max_size,
            self.quota,
        )

    def upload(
        self,
        db: Session,
        owner_id: UUID,
        fileobj: Optional[BinaryIO],
        filename: Optional[str],
        style="",
        content_length: Optional[int] = None,
        declared_size: Optional[int] = None,
    ) -> UploadResult:
        """
        Store a file and return its public reference.

        Args:
            db: Database session
            owner_id: Uploading user
            fileobj: Readable, seekable file object
            filename: Original filename
            style: URLStyle or its name; empty means timestamp
            content_length: Request Content-Length, if known
            declared_size: Size of the file part, if known

        Returns:
            The stored item and its {base_url}/f/{reference} URL

        Raises:
            NoFile, PayloadTooLarge, QuotaExceeded, ReadError, InvalidInput:
                If the upload is not admitted
            InvalidStyle: If the style name is unknown
            StorageWriteFailed: If the blob could not be written
            CollisionExhausted: If every generated reference was taken
            CatalogError: If the row could not be committed
        """
        url_style = style if isinstance(style, URLStyle) else URLStyle.parse(style)
        validated = self.verify(db, owner_id, fileobj, filename, content_length, declared_size)

        for attempt in range(1, MAX_ATTEMPTS + 1):
            reference = with_extension(generate_reference(url_style, validated.filename), validated.filename)
            blob_key = make_blob_key(validated.extension)
            written = self._write(blob_key, fileobj, validated.mime_type)

            now = utcnow()
            item = UploadedItem(
                user_id=owner_id,
                original_name=validated.filename,
                blob_key=blob_key,
                mime_type=validated.mime_type,
                url_style=str(url_style),
                file_size=written,
                access_count=0,
                created_at=now,
                expires_at=now + self.ttl,
            )
            try:
                item = upload_catalog.create_with_reference(db, item, reference)
            except DuplicateReference:
                self._discard_blob(blob_key)
                logger.info(f"Reference collision on attempt {attempt}/{MAX_ATTEMPTS}: {reference}")
                continue
            except BaseException:
                self._discard_blob(blob_key)
                raise

            logger.info(f"Stored upload {reference} ({written} bytes) for user {owner_id}")
            return UploadResult(item=item, url=self.file_url(reference))

        raise CollisionExhausted()

    def _write(self, blob_key: str, fileobj: BinaryIO, content_type: str) -> int:
        try:
            fileobj.seek(0)
            written = self.storage.write(blob_key, fileobj, content_type)
        except (StorageError, OSError) as e:
            logger.error(f"Failed to write blob {blob_key}: {e}", exc_info=True)
            raise StorageWriteFailed() from e

        if written > self.max_size:
            self._discard_blob(blob_key)
            raise PayloadTooLarge()
        if written == 0:
            self._discard_blob(blob_key)
            raise InvalidInput("File is empty")
        return written

    def _discard_blob(self, blob_key: str) -> None:
        try:
            self.storage.delete(blob_key)
        except StorageError as e:
            logger.error(f"Failed to delete blob {blob_key} after aborted upload: {e}", exc_info=True)

    def resolve(self, db: Session, reference: str) -> ResolvedUpload:
        """
        Look up a reference and open its blob.

        Raises:
            NotFound: If no item has the reference
            Expired: If the item is past its expiry
            StorageError: If the blob cannot be read
        """
        item = upload_catalog.get_by_reference(db, reference)
        if item is None:
            raise NotFound("File not found")
        if item.expires_at <= utcnow():
            raise Expired("File has expired")

        try:
            upload_catalog.increment_access(db, item.id)
        except VolaticusError as e:
            logger.warning(f"Failed to record access for {reference}: {e}")

        return ResolvedUpload(item=item, blob=self.storage.stream(item.blob_key))

    def delete_item(self, db: Session, owner_id: UUID, item_id: UUID) -> None:
        """
        Delete an upload owned by ``owner_id``.

        The blob goes first; when it cannot be deleted the row is left intact.
        A row that survives its blob is picked up by the reconciler.

        Raises:
            NotFound: If the item does not exist
            Forbidden: If the caller does not own the item
            StorageError: If the blob could not be deleted
        """
        item = upload_catalog.get_by_id(db, item_id)
        if item is None:
            raise NotFound("File not found")
        if item.user_id != owner_id:
            raise Forbidden()

        self.storage.delete(item.blob_key)

        try:
            upload_catalog.delete(db, item.id)
        except CatalogError:
            logger.error(f"Orphaned catalog row {item.id}: blob {item.blob_key} already deleted")
            raise

        logger.info(f"Deleted upload {item.reference} for user {owner_id}")

    def list_items(
        self, db: Session, owner_id: UUID, page: int = 1, limit: int = 20
    ) -> Tuple[List[UploadedItem], int]:
        page = max(page, 1)
        items = upload_catalog.list_by_owner(db, owner_id, limit=limit, offset=(page - 1) * limit)
        return items, upload_catalog.count_by_owner(db, owner_id)

    def stats(self, db: Session, owner_id: UUID) -> upload_catalog.UploadStats:
        return upload_catalog.stats(db, owner_id)
