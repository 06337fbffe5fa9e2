import os
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Union

from slugify import slugify

DOCUMENT_CATEGORIES = ("legal", "signature", "stamp", "other")


class StorageProvider:
    name = "base"
    container = ""

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def copy_in(self, src: Union[bytes, BinaryIO], key: str, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    def read(self, key: str) -> bytes:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


def company_prefix(company_id, category: Optional[str] = None) -> str:
    prefix = f"companies/{company_id}/"
    if category:
        prefix += f"{slugify(category)}/"
    return prefix


def company_key(company_id, category: str, original_name: str) -> str:
    """``companies/{company_id}/{category}/{timestamp}_{slug}{ext}``"""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    base, ext = os.path.splitext(original_name or "upload")
    safe_name = slugify(base) or "file"
    return f"{company_prefix(company_id, category)}{stamp}_{safe_name}{ext.lower()}"
