# fotosearch/core/records.py

import secrets
from dataclasses import dataclass, field
from typing import Dict, Tuple

from fotosearch.core.errors import StoreError
from fotosearch.core.fingerprint import Fingerprint

ID_BYTES = 12  # 16 URL-safe characters


def generate_image_id() -> str:
    """Random URL-safe image id"""
    return secrets.token_urlsafe(ID_BYTES)


@dataclass(frozen=True)
class ImageRecord:
    """
    One stored image. Records are never mutated after insertion.
    """
    id: str
    fingerprint: Fingerprint
    owner: str
    title: str = ""
    description: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)
    storage_location: str = ""
    media_type: str = ""
    width: int = 0
    height: int = 0
    created_at: int = 0  # Unix timestamp, UTC

    def to_dict(self) -> Dict:
        """Wire format. The fingerprint is a search key and is never exposed."""
        return {
            'id': self.id,
            'owner': self.owner,
            'title': self.title,
            'description': self.description,
            'tags': list(self.tags),
            'storageLocation': self.storage_location,
            'mediaType': self.media_type,
            'width': self.width,
            'height': self.height,
            'createdAt': self.created_at,
        }

    def to_storage(self) -> Dict:
        return {
            'id': self.id,
            'fingerprint': self.fingerprint.hex(),
            'owner': self.owner,
            'title': self.title,
            'description': self.description,
            'tags': list(self.tags),
            'storage_location': self.storage_location,
            'media_type': self.media_type,
            'width': self.width,
            'height': self.height,
            'created_at': self.created_at,
        }

    @classmethod
    def from_storage(cls, data: Dict) -> 'ImageRecord':
        try:
            return cls(
                id=data['id'],
                fingerprint=Fingerprint.from_hex(data['fingerprint']),
                owner=data['owner'],
                title=data.get('title', ''),
                description=data.get('description', ''),
                tags=tuple(data.get('tags', ())),
                storage_location=data.get('storage_location', ''),
                media_type=data.get('media_type', ''),
                width=int(data.get('width', 0)),
                height=int(data.get('height', 0)),
                created_at=int(data.get('created_at', 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Malformed stored record: {e}") from e
