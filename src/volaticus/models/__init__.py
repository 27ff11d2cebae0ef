from volaticus.models.user import User
from volaticus.models.upload import UploadedItem
from volaticus.models.url import ShortenedURL, ClickEvent
from volaticus.models.token import APIToken

__all__ = ["User", "UploadedItem", "ShortenedURL", "ClickEvent", "APIToken"]
