from __future__ import annotations
"""Data models describing upload attempts, access tokens and listings."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import mimetypes
from pathlib import Path
from typing import Iterable, Optional


class Permission(str, Enum):
    """Operations an access token may authorize."""

    READ = "r"
    WRITE = "w"
    DELETE = "d"
    LIST = "l"


PERMISSION_ORDER = (Permission.READ, Permission.WRITE, Permission.DELETE, Permission.LIST)


def encode_permissions(permissions: Iterable[Permission]) -> str:
    """Render a permission set in canonical ``rwdl`` order, e.g. ``{WRITE}`` -> ``"w"``."""

    wanted = set(permissions)
    return "".join(permission.value for permission in PERMISSION_ORDER if permission in wanted)


@dataclass(frozen=True)
class AccessToken:
    """A time-boxed capability URL for a single object."""

    target_object_key: str
    permissions: frozenset[Permission]
    expiry: datetime
    endpoint: str
    container_name: str = ""

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return current >= self.expiry


@dataclass(frozen=True)
class SourceFile:
    """Raw bytes selected for upload plus the name shown to the user."""

    name: str
    data: bytes = b""
    content_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def media_type(self) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.name)
        return guessed or "application/octet-stream"

    @classmethod
    def from_path(cls, path: str | Path) -> "SourceFile":
        source = Path(path)
        return cls(name=source.name, data=source.read_bytes())


@dataclass(frozen=True)
class ContainerListing:
    """Object addresses in a container, in the store's enumeration order."""

    container_name: str
    entries: tuple[str, ...] = ()


class UploadStatus(str, Enum):
    IDLE = "idle"
    TOKEN_REQUESTED = "token_requested"
    TOKEN_READY = "token_ready"
    TOKEN_FAILED = "token_failed"
    TRANSFERRING = "transferring"
    TRANSFER_SUCCEEDED = "transfer_succeeded"
    TRANSFER_FAILED = "transfer_failed"
    LISTING_REFRESHED = "listing_refreshed"


ALLOWED_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.IDLE: frozenset({UploadStatus.TOKEN_REQUESTED}),
    UploadStatus.TOKEN_REQUESTED: frozenset({UploadStatus.TOKEN_READY, UploadStatus.TOKEN_FAILED}),
    UploadStatus.TOKEN_FAILED: frozenset({UploadStatus.TOKEN_REQUESTED}),
    UploadStatus.TOKEN_READY: frozenset({UploadStatus.TRANSFERRING, UploadStatus.TOKEN_REQUESTED}),
    UploadStatus.TRANSFERRING: frozenset({UploadStatus.TRANSFER_SUCCEEDED, UploadStatus.TRANSFER_FAILED}),
    UploadStatus.TRANSFER_SUCCEEDED: frozenset({UploadStatus.LISTING_REFRESHED}),
    UploadStatus.TRANSFER_FAILED: frozenset({UploadStatus.TRANSFERRING, UploadStatus.TOKEN_REQUESTED}),
    UploadStatus.LISTING_REFRESHED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when an upload attempt is asked to move to a state it cannot reach."""

    def __init__(self, current: UploadStatus, requested: UploadStatus):
        super().__init__(f"Cannot move upload from '{current.value}' to '{requested.value}'")
        self.current = current
        self.requested = requested


@dataclass
class UploadAttempt:
    """State of one file selection from token request to listing refresh."""

    source_file: SourceFile
    token: Optional[AccessToken] = None
    status: UploadStatus = UploadStatus.IDLE
    status_text: str = ""
    status_detail: Optional[str] = None
    transfer_path: Optional[str] = None
    listing_error: Optional[str] = None
    history: list[UploadStatus] = field(default_factory=list)

    def can_advance(self, new_status: UploadStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def advance(self, new_status: UploadStatus, text: str | None = None, detail: str | None = None) -> None:
        if not self.can_advance(new_status):
            raise InvalidTransitionError(self.status, new_status)
        self.history.append(self.status)
        self.status = new_status
        if text is not None:
            self.status_text = text
            self.status_detail = detail

    def attach_token(self, token: AccessToken) -> None:
        self.token = token

    def discard_token(self) -> None:
        self.token = None
