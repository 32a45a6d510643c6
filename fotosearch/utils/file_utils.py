"""
File operation utilities
"""

import mimetypes
from pathlib import Path
from typing import List

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.gif', '.tiff', '.webp'}


def get_image_files(directory: str, recursive: bool = True) -> List[str]:
    """Get all image files in directory, sorted"""
    path = Path(directory)
    candidates = path.rglob('*') if recursive else path.glob('*')

    image_files = [
        f for f in candidates
        if f.is_file() and f.suffix.lower() in IMAGE_EXTENSIONS
    ]

    return sorted(str(f) for f in image_files)


def guess_media_type(file_path: str) -> str:
    """MIME type from the file extension, empty when unknown"""
    media_type, _ = mimetypes.guess_type(file_path)
    return media_type or ""


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"
