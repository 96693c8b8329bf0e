"""
Drive API router: HTTP endpoints for listing, searching and reading Drive metadata.

Delegates business logic to services.drive_service. Every call resolves a
valid access token (refreshing it if needed); a user without a usable
connection gets NOT_CONNECTED, a token Google rejects gets TOKEN_EXPIRED.
Query parameter names follow the client (folderId, pageToken, mimeType).
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from security import get_current_user_id
from services import drive_service

router = APIRouter(prefix="/drive-api", tags=["drive-api"])


@router.get("/list")
def list_files(
    folder_id: str = Query("root", alias="folderId", max_length=255),
    page_token: str | None = Query(None, alias="pageToken"),
    q: str | None = Query(None, max_length=500),
    mime_type: str | None = Query(None, alias="mimeType"),
    page_size: int | None = Query(None, alias="pageSize"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """One page of a folder's children, folders first. Returns {files, nextPageToken?}."""
    return drive_service.list_files(
        db,
        user_id,
        folder_id,
        page_token=page_token,
        media_type=mime_type,
        text=q,
        page_size=page_size,
    )


@router.get("/search")
def search_files(
    q: str | None = Query(None, max_length=500),
    page_token: str | None = Query(None, alias="pageToken"),
    mime_type: str | None = Query(None, alias="mimeType"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Search by file name across the whole Drive."""
    return drive_service.search_files(
        db,
        user_id,
        q or "",
        page_token=page_token,
        media_type=mime_type,
    )


@router.get("/get")
def get_file(
    file_id: str | None = Query(None, alias="fileId", max_length=255),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Metadata of one file."""
    return drive_service.get_file(db, user_id, file_id or "")


@router.get("/status")
def status(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Connection status for display: {connected, email?, connectedAt?}."""
    return drive_service.connection_status(db, user_id)
