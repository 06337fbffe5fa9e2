"""
Local filesystem storage provider for development and tests.
"""
from pathlib import Path
from typing import BinaryIO, Optional, Union

import structlog

from ..config import settings
from .provider import StorageProvider

logger = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    name = "local"
    container = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Filesystem path for ``key``; refuses keys escaping the storage directory."""
        clean_key = key.lstrip("/").replace("\\", "/")
        path = (self.base_dir / clean_key).resolve()
        if not str(path).startswith(str(self.base_dir.resolve())):
            raise ValueError(f"Invalid storage key '{key}'")
        return path

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        # no signed URLs on local disk; callers use the download route
        return None

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def copy_in(self, src: Union[bytes, BinaryIO], key: str, content_type: Optional[str] = None) -> None:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            if hasattr(src, "read"):
                f.write(src.read())
            else:
                f.write(src)

    def read(self, key: str) -> bytes:
        path = self._get_path(key)
        if not path.exists():
            raise FileNotFoundError(key)
        return path.read_bytes()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("local_file_missing_on_delete", key=key)
