"""
Local file storage for job evidence (arrival selfies, before/after photos)

Files live under ``UPLOAD_BASE_DIR`` and are served by the static mount in
``gorepair.main``.
"""
import os
import uuid
import logging
from typing import Optional

from gorepair.config import settings

logger = logging.getLogger(__name__)


class FileStorageService:
    """Service for file storage on the local filesystem"""

    SUBDIRECTORY = "bookings"

    def __init__(self, base_dir: Optional[str] = None, static_url_prefix: Optional[str] = None):
        self.base_dir = base_dir or settings.UPLOAD_BASE_DIR
        self.static_url_prefix = static_url_prefix or settings.STATIC_URL_PREFIX

    def build_path(self, booking_number: str, kind: str, filename: str) -> str:
        """Relative path for a new upload, unique per call"""
        extension = os.path.splitext(filename or "")[1].lower() or ".jpg"
        return f"{booking_number}/{kind}-{uuid.uuid4().hex[:12]}{extension}"

    def upload_file(self, file_content: bytes, file_path: str, subdirectory: str = SUBDIRECTORY) -> str:
        """
        Write ``file_content`` and return its public URL

        Raises OSError when the file cannot be written; callers turn that
        into a 500 and nothing is left behind.
        """
        file_path = file_path.lstrip("/")
        full_path = os.path.join(self.base_dir, subdirectory, file_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)

        with open(full_path, "wb") as f:
            f.write(file_content)

        url = f"{self.static_url_prefix}/{subdirectory}/{file_path}"
        logger.info(f"File uploaded successfully: {full_path} -> {url}")
        return url

    def delete_file(self, file_path: str, subdirectory: str = SUBDIRECTORY) -> bool:
        """Remove a stored file; returns False if it was already gone"""
        file_path = file_path.lstrip("/")
        full_path = os.path.join(self.base_dir, subdirectory, file_path)

        if not os.path.exists(full_path):
            logger.warning(f"File not found for deletion: {full_path}")
            return False

        os.remove(full_path)
        logger.info(f"File deleted successfully: {full_path}")
        return True

    def file_exists(self, file_path: str, subdirectory: str = SUBDIRECTORY) -> bool:
        return os.path.exists(os.path.join(self.base_dir, subdirectory, file_path.lstrip("/")))


# Create global instance
file_storage_service = FileStorageService()
