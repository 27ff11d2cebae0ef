"""
Short reference generation for uploads and short URLs.

Nothing in here checks uniqueness: callers insert and retry on a unique
violation, the catalog constraint being the only source of truth.
"""

import os
import re
import secrets
import string
import time
import uuid
from datetime import date
from enum import Enum

from volaticus.core.exceptions import EntropyError, InvalidInput, InvalidStyle
from volaticus.services.wordlists import ADJECTIVES, ANIMALS, COLORS

RANDOM_ALPHABET = string.ascii_letters + string.digits
RANDOM_LENGTH = 8
MAX_ATTEMPTS = 5

VANITY_MIN_LENGTH = 4
VANITY_MAX_LENGTH = 30
VANITY_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class URLStyle(str, Enum):
    ORIGINAL_NAME = "original_name"
    TIMESTAMP = "timestamp"
    RANDOM = "random"
    DATE = "date"
    UUID = "uuid"
    GFYCAT = "gfycat"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str | None) -> "URLStyle":
        """Parse a style name; empty means timestamp, "default" is its legacy name."""
        if not value or value == "default":
            return cls.TIMESTAMP
        try:
            return cls(value)
        except ValueError:
            raise InvalidStyle(f"Invalid URL type: {value}")


def _random_hex(nbytes: int = 4) -> str:
    try:
        return secrets.token_hex(nbytes)
    except (OSError, NotImplementedError) as e:
        raise EntropyError() from e


def _random_choice(seq):
    try:
        return secrets.choice(seq)
    except (OSError, NotImplementedError) as e:
        raise EntropyError() from e


def random_string(length: int = RANDOM_LENGTH, alphabet: str = RANDOM_ALPHABET) -> str:
    return "".join(_random_choice(alphabet) for _ in range(length))


def generate_reference(style: URLStyle, original_name: str = "") -> str:
    """
    Build a reference in the given style.

    Args:
        style: One of the six URLStyle values
        original_name: Uploaded filename, used by the original_name style

    Returns:
        The reference, without the file extension appended

    Raises:
        InvalidStyle: If the style is not a URLStyle
        EntropyError: If the system random source fails
    """
    if style is URLStyle.ORIGINAL_NAME:
        base = os.path.basename(original_name.replace("\\", "/")).lower().replace(" ", "-")
        return f"{base}-{_random_hex()}"
    if style is URLStyle.TIMESTAMP:
        return str(time.time_ns())
    if style is URLStyle.RANDOM:
        return random_string()
    if style is URLStyle.DATE:
        return f"{date.today().isoformat()}-{_random_hex()}"
    if style is URLStyle.UUID:
        return str(uuid.uuid4())
    if style is URLStyle.GFYCAT:
        return f"{_random_choice(ADJECTIVES)}-{_random_choice(COLORS)}-{_random_choice(ANIMALS)}"
    raise InvalidStyle(f"Unsupported URL type: {style}")


def with_extension(reference: str, filename: str) -> str:
    """Append the extension of ``filename`` unless the reference already ends with it."""
    ext = os.path.splitext(filename)[1]
    if ext and not reference.endswith(ext):
        return reference + ext
    return reference


def generate_short_code() -> str:
    return random_string()


def validate_vanity_code(code: str) -> str:
    if not VANITY_MIN_LENGTH <= len(code) <= VANITY_MAX_LENGTH:
        raise InvalidInput(
            f"Vanity code must be between {VANITY_MIN_LENGTH} and {VANITY_MAX_LENGTH} characters"
        )
    if not VANITY_PATTERN.fullmatch(code):
        raise InvalidInput("Vanity code can only contain letters, numbers, hyphens, and underscores")
    return code
