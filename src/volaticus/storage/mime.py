import filetype

SNIFF_LENGTH = 512
TEXT_PLAIN = "text/plain; charset=utf-8"
OCTET_STREAM = "application/octet-stream"

_MARKUP_SIGNATURES = (
    (b"<!doctype html", "text/html; charset=utf-8"),
    (b"<html", "text/html; charset=utf-8"),
    (b"<head", "text/html; charset=utf-8"),
    (b"<body", "text/html; charset=utf-8"),
    (b"<?xml", "text/xml; charset=utf-8"),
)

# bytes that never appear in text files
_BINARY_BYTES = set(range(0x00, 0x09)) | {0x0B, 0x0E, 0x0F} | set(range(0x10, 0x1B)) | set(range(0x1C, 0x20))


def sniff_mime(head: bytes) -> str:
    """Detect a content type from the first bytes of a blob."""
    head = head[:SNIFF_LENGTH]
    if not head:
        return TEXT_PLAIN

    kind = filetype.guess(head)
    if kind is not None:
        return kind.mime

    stripped = head.lstrip().lower()
    for signature, mime in _MARKUP_SIGNATURES:
        if stripped.startswith(signature):
            return mime

    if any(byte in _BINARY_BYTES for byte in head):
        return OCTET_STREAM
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as e:
        # a multi-byte character cut off by the sniff window is still text
        if e.start < len(head) - 3:
            return OCTET_STREAM
    return TEXT_PLAIN
