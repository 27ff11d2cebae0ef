"""
Admission checks run before any byte reaches storage.

Size limits are checked against what the caller declares (request content
length and multipart part size); the owner's quota is checked against one
catalog stats query. The MIME type persisted for an upload is always the
sniffed one, never the header the client sent.
"""

import os
from dataclasses import dataclass
from typing import BinaryIO, Optional
from uuid import UUID

from pydantic import HttpUrl, TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from volaticus.catalog import uploads as upload_catalog
from volaticus.core.config import logger
from volaticus.core.exceptions import (
    InvalidInput,
    NoFile,
    PayloadTooLarge,
    QuotaExceeded,
    ReadError,
)
from volaticus.storage.mime import SNIFF_LENGTH, sniff_mime

MAX_URL_LENGTH = 2048

_http_url = TypeAdapter(HttpUrl)


@dataclass
class ValidatedUpload:
    filename: str
    size: int
    mime_type: str

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1]


def _measure(fileobj: BinaryIO) -> Optional[int]:
    try:
        position = fileobj.tell()
        fileobj.seek(0, os.SEEK_END)
        size = fileobj.tell()
        fileobj.seek(position)
        return size
    except (AttributeError, OSError, ValueError):
        return None


def validate_upload(
    db: Session,
    owner_id: UUID,
    fileobj: Optional[BinaryIO],
    filename: Optional[str],
    content_length: Optional[int],
    declared_size: Optional[int],
    max_size: int,
    quota: int,
) -> ValidatedUpload:
    """
    Check an upload against the size limit and the owner's quota.

    Args:
        db: Database session
        owner_id: Uploading user
        fileobj: Readable, seekable file object
        filename: Name the client sent with the file
        content_length: Request Content-Length, if any
        declared_size: Size of the file part, measured from the stream when None
        max_size: Global per-file limit in bytes
        quota: Per-owner limit on total stored bytes

    Returns:
        The filename, size and sniffed MIME type; the stream is rewound

    Raises:
        NoFile: If there is no file or no filename
        PayloadTooLarge: If the request or file exceeds max_size
        InvalidInput: If the file is empty
        QuotaExceeded: If the upload would push the owner over quota
        ReadError: If the file cannot be read
    """
    if fileobj is None or not filename:
        raise NoFile()

    if content_length is not None and content_length > max_size:
        raise PayloadTooLarge()

    if declared_size is None:
        declared_size = _measure(fileobj)
    if declared_size is not None:
        if declared_size > max_size:
            raise PayloadTooLarge()
        if declared_size == 0:
            raise InvalidInput("File is empty")

    current = upload_catalog.stats(db, owner_id)
    if current.total_size + (declared_size or 0) > quota:
        logger.info(
            f"Quota exceeded for user {owner_id}: {current.total_size} + {declared_size} > {quota}"
        )
        raise QuotaExceeded()

    try:
        head = fileobj.read(SNIFF_LENGTH)
        fileobj.seek(0)
    except (OSError, ValueError) as e:
        raise ReadError() from e

    if not head:
        raise InvalidInput("File is empty")

    return ValidatedUpload(
        filename=filename,
        size=declared_size if declared_size is not None else len(head),
        mime_type=sniff_mime(head),
    )


def validate_url(url: str) -> str:
    """
    Accept only absolute http(s) URLs with a host and no fragment.

    Returns:
        The URL unchanged

    Raises:
        InvalidInput: If the URL is malformed or too long
    """
    if not url or len(url) > MAX_URL_LENGTH:
        raise InvalidInput(f"URL must be between 1 and {MAX_URL_LENGTH} characters")
    try:
        parsed = _http_url.validate_python(url)
    except ValidationError:
        raise InvalidInput("Invalid URL: only http and https URLs with a host are allowed")
    if not parsed.host:
        raise InvalidInput("Invalid URL: missing host")
    if parsed.fragment:
        raise InvalidInput("Invalid URL: fragments are not allowed")
    return url


__all__ = ["ValidatedUpload", "validate_upload", "validate_url", "sniff_mime"]
