"""Wire types exchanged with the libra-link REST API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from libra_link.library.database import format_ts, parse_ts


@dataclass
class User:
    id: str
    email: str = ""
    username: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=str(data.get("id", "")),
            email=data.get("email") or "",
            username=data.get("username") or "",
        )


@dataclass
class Ebook:
    id: str
    title: str
    format: str = ""
    storage_key: str = ""
    description: str = ""
    language_code: str = ""
    owner_user_id: str = ""
    file_size_bytes: int = 0
    checksum_sha256: str = ""
    imported_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Ebook":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            format=data.get("format") or "",
            storage_key=data.get("storageKey") or "",
            description=data.get("description") or "",
            language_code=data.get("languageCode") or "",
            owner_user_id=data.get("ownerUserId") or "",
            file_size_bytes=int(data.get("fileSizeBytes") or 0),
            checksum_sha256=data.get("checksumSha256") or "",
            imported_at=parse_ts(data.get("importedAt")),
        )


@dataclass
class CreateEbookInput:
    title: str
    format: str
    storage_key: str
    file_size_bytes: int
    checksum_sha256: str
    description: str = ""
    language_code: str = ""
    imported_at: Optional[datetime] = None

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "title": self.title,
            "format": self.format,
            "storageKey": self.storage_key,
            "fileSizeBytes": self.file_size_bytes,
            "checksumSha256": self.checksum_sha256,
        }
        if self.description.strip():
            body["description"] = self.description
        if self.language_code.strip():
            body["languageCode"] = self.language_code
        if self.imported_at is not None:
            body["importedAt"] = format_ts(self.imported_at)
        return body


@dataclass
class Share:
    id: str
    ebook_id: str = ""
    owner_user_id: str = ""
    status: str = ""
    visibility: str = ""
    title: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Share":
        return cls(
            id=str(data.get("id", "")),
            ebook_id=data.get("ebookId") or "",
            owner_user_id=data.get("ownerUserId") or "",
            status=data.get("status") or "",
            visibility=data.get("visibility") or "",
            title=data.get("titleOverride") or "",
        )


@dataclass
class Preferences:
    user_id: str = ""
    reading_mode: str = "normal"
    zen_restore_on_open: bool = True
    theme_mode: str = "dark"
    theme_overrides: dict[str, str] = field(default_factory=dict)
    typography_profile: str = "comfortable"
    row_version: int = 1

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Preferences":
        return cls(
            user_id=data.get("userId") or "",
            reading_mode=data.get("readingMode") or "normal",
            zen_restore_on_open=bool(data.get("zenRestoreOnOpen", True)),
            theme_mode=data.get("themeMode") or "dark",
            theme_overrides=dict(data.get("themeOverrides") or {}),
            typography_profile=data.get("typographyProfile") or "comfortable",
            row_version=int(data.get("rowVersion") or 1),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "readingMode": self.reading_mode,
            "zenRestoreOnOpen": self.zen_restore_on_open,
            "themeMode": self.theme_mode,
            "themeOverrides": dict(self.theme_overrides),
            "typographyProfile": self.typography_profile,
        }


@dataclass
class ReaderState:
    user_id: str = ""
    current_ebook_id: str = ""
    current_location: str = ""
    reading_mode: str = "normal"
    row_version: int = 1
    last_opened_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "ReaderState":
        return cls(
            user_id=data.get("userId") or "",
            current_ebook_id=data.get("currentEbookId") or "",
            current_location=data.get("currentLocation") or "",
            reading_mode=data.get("readingMode") or "normal",
            row_version=int(data.get("rowVersion") or 1),
            last_opened_at=parse_ts(data.get("lastOpenedAt")),
        )


@dataclass
class SyncEvent:
    entity_type: str
    entity_id: str
    operation: str
    idempotency_key: str
    client_ts: datetime
    payload: Optional[dict[str, Any]] = None
    base_version: Optional[int] = None


@dataclass
class GoogleDeviceStart:
    device_code: str
    auth_url: str
    expires_at: Optional[datetime] = None
    interval_seconds: int = 0

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "GoogleDeviceStart":
        return cls(
            device_code=data.get("deviceCode") or "",
            auth_url=data.get("authUrl") or "",
            expires_at=parse_ts(data.get("expiresAt")),
            interval_seconds=int(data.get("intervalSeconds") or 0),
        )


@dataclass
class GoogleDevicePoll:
    status: str
    user: Optional[User] = None
    access_token: str = ""
    refresh_token: str = ""
