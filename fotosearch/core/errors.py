# fotosearch/core/errors.py

from typing import Optional


class FotoSearchError(Exception):
    """Base class for all fotosearch errors"""


class DecodeError(FotoSearchError):
    """
    Image bytes could not be turned into a decoded image
    """


class UnsupportedFormat(DecodeError):
    """Bytes are not a recognized image container"""


class EncodingMismatch(DecodeError):
    """Declared encoding does not match the bytes (bad base64, bad UTF-8, unknown kind)"""


class FetchFailed(DecodeError):
    """
    Remote image download failed
    """

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Could not download {url}: {reason}")


class StoreError(FotoSearchError):
    """Persistence layer I/O or serialization failure"""


class NotFound(FotoSearchError):
    def __init__(self, image_id: str):
        self.image_id = image_id
        super().__init__(f"No image with id {image_id!r}")


class BlobStorageError(FotoSearchError):
    """Remote blob upload failed"""
