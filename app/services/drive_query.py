"""
Builder for Drive's "q" filter language.

All user input reaches the query through quote_literal, which escapes the
characters that would otherwise end a string literal. Media-type filters are
a closed enum so every accepted value has a known clause.
"""
from enum import Enum

from errors import InvalidArgument

FOLDER_MIME = "application/vnd.google-apps.folder"


class MediaType(str, Enum):
    FOLDER = "folder"
    PDF = "pdf"
    DOCUMENT = "document"
    PRESENTATION = "presentation"
    IMAGE = "image"
    VIDEO = "video"


def quote_literal(value: str) -> str:
    """Return value as a single-quoted Drive string literal (backslash and quote escaped)."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _any_of(*mime_types: str) -> str:
    return "(" + " or ".join(f"mimeType = {quote_literal(m)}" for m in mime_types) + ")"


# Documents and presentations span the native Google format plus legacy and
# OOXML Office types
MEDIA_TYPE_CLAUSES = {
    MediaType.FOLDER: f"mimeType = {quote_literal(FOLDER_MIME)}",
    MediaType.PDF: "mimeType = 'application/pdf'",
    MediaType.DOCUMENT: _any_of(
        "application/vnd.google-apps.document",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ),
    MediaType.PRESENTATION: _any_of(
        "application/vnd.google-apps.presentation",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ),
    MediaType.IMAGE: "mimeType contains 'image/'",
    MediaType.VIDEO: "mimeType contains 'video/'",
}


def parse_media_type(value: str | None) -> MediaType | None:
    """Map the client's mimeType parameter to a MediaType; empty or "all" means no filter."""
    if value is None:
        return None
    value = value.strip().lower()
    if not value or value == "all":
        return None
    try:
        return MediaType(value)
    except ValueError:
        allowed = ", ".join(m.value for m in MediaType)
        raise InvalidArgument(f"Unsupported mimeType '{value}'; expected one of: {allowed}")


class DriveQuery:
    """Accumulates clauses and joins them with "and"."""

    def __init__(self):
        self._clauses: list[str] = []

    def in_parents(self, folder_id: str) -> "DriveQuery":
        self._clauses.append(f"{quote_literal(folder_id)} in parents")
        return self

    def not_trashed(self) -> "DriveQuery":
        self._clauses.append("trashed = false")
        return self

    def name_contains(self, text: str) -> "DriveQuery":
        self._clauses.append(f"name contains {quote_literal(text)}")
        return self

    def media_type(self, media_type: MediaType | None) -> "DriveQuery":
        if media_type is not None:
            self._clauses.append(MEDIA_TYPE_CLAUSES[media_type])
        return self

    def build(self) -> str:
        return " and ".join(self._clauses)


def folder_listing_query(
    folder_id: str,
    text: str | None = None,
    media_type: MediaType | None = None,
) -> str:
    """Children of folder_id that are not trashed, optionally narrowed by name and type."""
    query = DriveQuery().in_parents(folder_id).not_trashed()
    if text:
        query.name_contains(text)
    return query.media_type(media_type).build()


def search_query(text: str, media_type: MediaType | None = None) -> str:
    """Name search across the whole Drive; text is required."""
    if not text or not text.strip():
        raise InvalidArgument("Search query is required")
    return DriveQuery().name_contains(text).not_trashed().media_type(media_type).build()
