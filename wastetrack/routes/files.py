import hashlib
import uuid
from mimetypes import guess_type
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, is_admin
from ..config import settings
from ..db import get_db
from ..models.models import Company, FileObject, Profile
from ..schemas.files import FileObjectResponse
from ..services.audit import log_system_activity
from ..storage.blob_provider import BlobStorageProvider
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import DOCUMENT_CATEGORIES, StorageProvider, company_key

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


def get_storage() -> StorageProvider:
    """
    Storage provider from configuration.
    Azure Blob Storage when STORAGE_PROVIDER=blob, the local filesystem otherwise.
    """
    if settings.storage_provider == "blob":
        return BlobStorageProvider()
    return LocalStorageProvider()


def _check_company_access(db: Session, company_id: uuid.UUID, profile: Profile) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    if not is_admin(profile) and profile.company_id != company.id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return company


@router.post("/companies/{company_id}", response_model=FileObjectResponse, status_code=201)
async def upload_company_file(
    company_id: uuid.UUID,
    file: UploadFile = File(...),
    category: str = Form("legal"),
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    storage: StorageProvider = Depends(get_storage),
):
    """Store a legal document, signature or stamp under ``companies/{company_id}/{category}/``."""
    _check_company_access(db, company_id, profile)
    if category not in DOCUMENT_CATEGORIES:
        raise HTTPException(status_code=400, detail=f"category must be one of {', '.join(DOCUMENT_CATEGORIES)}")
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    original_name = file.filename or "upload"
    content_type = file.content_type or guess_type(original_name)[0] or "application/octet-stream"
    key = company_key(company_id, category, original_name)
    storage.copy_in(content, key, content_type=content_type)

    fo = FileObject(
        provider=storage.name,
        container=storage.container,
        key=key,
        original_name=original_name,
        size_bytes=len(content),
        content_type=content_type,
        checksum_sha256=hashlib.sha256(content).hexdigest(),
        company_id=company_id,
        category=category,
        created_by=profile.user_id,
    )
    db.add(fo)
    db.commit()
    db.refresh(fo)
    logger.info("company_file_uploaded", company_id=str(company_id), key=key, size=len(content))
    log_system_activity(db, "UPLOAD", "file", fo.id, {"key": key, "category": category},
                        user_id=profile.user_id, actor_role=profile.role)
    return fo


@router.get("/companies/{company_id}", response_model=List[FileObjectResponse])
def list_company_files(
    company_id: uuid.UUID,
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    _check_company_access(db, company_id, profile)
    query = db.query(FileObject).filter(FileObject.company_id == company_id)
    if category:
        query = query.filter(FileObject.category == category)
    return query.order_by(FileObject.created_at.desc()).all()


def _get_file(db: Session, file_id: uuid.UUID, profile: Profile) -> FileObject:
    fo = db.query(FileObject).filter(FileObject.id == file_id).first()
    if not fo:
        raise HTTPException(status_code=404, detail="File not found")
    if fo.company_id is not None:
        _check_company_access(db, fo.company_id, profile)
    elif not is_admin(profile):
        raise HTTPException(status_code=403, detail="Forbidden")
    return fo


@router.get("/{file_id}/download")
def download(file_id: uuid.UUID, db: Session = Depends(get_db), profile: Profile = Depends(get_current_profile),
             storage: StorageProvider = Depends(get_storage)):
    fo = _get_file(db, file_id, profile)
    try:
        content = storage.read(fo.key)
    except FileNotFoundError:
        logger.warning("file_missing_in_storage", file_id=str(fo.id), key=fo.key, provider=fo.provider)
        raise HTTPException(status_code=404, detail="File not found")
    filename = fo.key.rsplit("/", 1)[-1]
    return Response(
        content=content,
        media_type=fo.content_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{file_id}/url")
def download_url(file_id: uuid.UUID, expires_s: int = 900, db: Session = Depends(get_db),
                 profile: Profile = Depends(get_current_profile), storage: StorageProvider = Depends(get_storage)):
    """Short-lived direct URL where the provider can sign one, the download route otherwise."""
    fo = _get_file(db, file_id, profile)
    if not storage.exists(fo.key):
        raise HTTPException(status_code=404, detail="File not found")
    url = storage.get_download_url(fo.key, expires_s) or f"{settings.public_base_url}/files/{fo.id}/download"
    return {"url": url, "expires_s": expires_s}


@router.delete("/{file_id}", status_code=204)
def delete_file(file_id: uuid.UUID, db: Session = Depends(get_db), profile: Profile = Depends(get_current_profile),
                storage: StorageProvider = Depends(get_storage)):
    fo = _get_file(db, file_id, profile)
    storage.delete(fo.key)
    key = fo.key
    db.delete(fo)
    db.commit()
    log_system_activity(db, "DELETE", "file", file_id, {"key": key},
                        user_id=profile.user_id, actor_role=profile.role)
