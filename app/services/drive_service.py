"""
Drive service: delegated Google Drive API calls on behalf of a connected user.

Business logic separated from HTTP layer. Every operation resolves a valid
access token through credential_service first and fails with NotConnected
before touching Drive when there is none. Drive responses are passed through
unmodified apart from the field projection requested here. Nothing is retried:
a 401 from Drive is reported as TokenExpired and the client calls again.
"""
import logging
from typing import Any
from urllib.parse import quote

import requests
from sqlalchemy.orm import Session

from config import (
    DRIVE_DEFAULT_PAGE_SIZE,
    DRIVE_FILES_URL,
    DRIVE_MAX_PAGE_SIZE,
    DRIVE_REQUEST_TIMEOUT,
)
from errors import ExternalApiFailure, InvalidArgument, NotConnected, TokenExpired
from services.credential_service import get_connection_info, get_valid_access_token
from services.drive_query import folder_listing_query, parse_media_type, search_query

logger = logging.getLogger(__name__)

FILE_FIELDS = "id, name, mimeType, size, thumbnailLink, webViewLink, webContentLink, iconLink, modifiedTime, parents"
LIST_FIELDS = f"nextPageToken, files({FILE_FIELDS})"
# Folders first, then alphabetical; Drive's default order is not this
LIST_ORDER_BY = "folder, name"
SEARCH_PAGE_SIZE = 50


def _provider_message(resp: requests.Response) -> str | None:
    """Pull Drive's human-readable error message out of an error response, if any."""
    try:
        body = resp.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message")
    if isinstance(error, str):
        return body.get("error_description") or error
    return None


def _drive_request(
    method: str,
    url: str,
    access_token: str,
    *,
    failure_msg: str,
    **kwargs: Any,
) -> dict:
    """Call Drive API with timeout; returns JSON. Maps HTTP and transport errors to DriveError."""
    headers = {"Authorization": f"Bearer {access_token}"}
    if "headers" in kwargs:
        headers.update(kwargs.pop("headers"))
    kwargs.setdefault("timeout", DRIVE_REQUEST_TIMEOUT)
    try:
        resp = requests.request(method, url, headers=headers, **kwargs)
    except requests.RequestException as e:
        logger.warning("Drive request failed: %s", e)
        raise ExternalApiFailure(failure_msg)

    if resp.status_code == 401:
        logger.info("Drive rejected access token (401)")
        raise TokenExpired()
    if not resp.ok:
        message = _provider_message(resp)
        logger.warning("Drive API error %s: %s", resp.status_code, message or resp.text[:500])
        raise ExternalApiFailure(message or failure_msg, status_code=resp.status_code)
    if resp.content:
        return resp.json()
    return {}


def _require_access_token(db: Session, user_id: str) -> str:
    access_token = get_valid_access_token(db, user_id)
    if not access_token:
        raise NotConnected()
    return access_token


def _clamp_page_size(page_size: int | None) -> int:
    if page_size is None:
        return DRIVE_DEFAULT_PAGE_SIZE
    return max(1, min(page_size, DRIVE_MAX_PAGE_SIZE))


def _listing_result(data: dict) -> dict:
    result = {"files": data.get("files", [])}
    if data.get("nextPageToken"):
        result["nextPageToken"] = data["nextPageToken"]
    return result


def list_files(
    db: Session,
    user_id: str,
    folder_id: str = "root",
    *,
    page_token: str | None = None,
    media_type: str | None = None,
    text: str | None = None,
    page_size: int | None = None,
) -> dict:
    """
    List one page of the children of folder_id, folders first then by name.
    Returns {"files": [...], "nextPageToken": ...}; nextPageToken is absent on
    the last page.
    """
    query = folder_listing_query(folder_id or "root", text, parse_media_type(media_type))
    access_token = _require_access_token(db, user_id)

    params = {
        "q": query,
        "pageSize": _clamp_page_size(page_size),
        "fields": LIST_FIELDS,
        "orderBy": LIST_ORDER_BY,
    }
    if page_token:
        params["pageToken"] = page_token
    data = _drive_request(
        "GET",
        DRIVE_FILES_URL,
        access_token,
        params=params,
        failure_msg="Failed to list files",
    )
    return _listing_result(data)


def search_files(
    db: Session,
    user_id: str,
    text: str,
    *,
    page_token: str | None = None,
    media_type: str | None = None,
) -> dict:
    """Search file names across the user's whole Drive (one page)."""
    query = search_query(text, parse_media_type(media_type))
    access_token = _require_access_token(db, user_id)

    params = {
        "q": query,
        "pageSize": SEARCH_PAGE_SIZE,
        "fields": LIST_FIELDS,
    }
    if page_token:
        params["pageToken"] = page_token
    data = _drive_request(
        "GET",
        DRIVE_FILES_URL,
        access_token,
        params=params,
        failure_msg="Search failed",
    )
    return _listing_result(data)


def get_file(db: Session, user_id: str, file_id: str) -> dict:
    """Metadata of a single file; Drive's 404 is passed through as a 404."""
    file_id = (file_id or "").strip()
    if not file_id:
        raise InvalidArgument("fileId is required")
    access_token = _require_access_token(db, user_id)
    return _drive_request(
        "GET",
        f"{DRIVE_FILES_URL}/{quote(file_id, safe='')}",
        access_token,
        params={"fields": FILE_FIELDS.replace(" ", "")},
        failure_msg="Failed to get file",
    )


def connection_status(db: Session, user_id: str) -> dict:
    """Whether the user has a stored connection; no token validation, no Google call."""
    info = get_connection_info(db, user_id)
    if info is None:
        return {"connected": False}
    return {
        "connected": True,
        "email": info["email"],
        "connectedAt": info["connected_at"].isoformat(),
    }
