from __future__ import annotations
"""UI-agnostic helpers for formatting upload results."""
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, metadata, version
from urllib.parse import urlsplit

from .models import UploadAttempt

DIST_NAME = "pyblobup"
IMAGE_SUFFIXES = (".jpg", ".png", ".jpeg", ".gif")


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str
    summary: str
    homepage: str | None


def load_package_info(dist_name: str = DIST_NAME) -> PackageInfo:
    try:
        distribution_metadata = metadata(dist_name)
        package_version = version(dist_name)
    except PackageNotFoundError:
        return PackageInfo(
            name="Blob Uploader",
            version="",
            summary="Upload files to object storage with short-lived access tokens.",
            homepage=None,
        )
    homepage = distribution_metadata.get("Home-page")
    for entry in distribution_metadata.get_all("Project-URL") or []:
        label, _, link = entry.partition(",")
        if label.strip().lower() == "homepage" and not homepage:
            homepage = link.strip()
    return PackageInfo(
        name=distribution_metadata.get("Name"),
        version=package_version,
        summary=distribution_metadata.get("Summary") or "",
        homepage=homepage or None,
    )


@dataclass(frozen=True)
class ListingTile:
    address: str
    kind: str


def entry_kind(address: str) -> str:
    """Return ``"image"`` for addresses that point at a picture, else ``"text"``."""

    path = urlsplit(address).path or address
    return "image" if path.lower().endswith(IMAGE_SUFFIXES) else "text"


def build_tiles(entries: tuple[str, ...] | list[str]) -> list[ListingTile]:
    return [ListingTile(address=entry, kind=entry_kind(entry)) for entry in entries]


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    suffixes = ["B", "KB", "MB", "GB", "TB"]
    value = float(max(size, 0))
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}" if suffix != "B" else f"{int(value)} {suffix}"
        value /= 1024
    return f"{size} B"


def format_status(attempt: UploadAttempt | None, *, include_detail: bool = False) -> str:
    if attempt is None:
        return ""
    lines = [attempt.status_text] if attempt.status_text else []
    if include_detail and attempt.status_detail:
        lines.append(attempt.status_detail)
    if attempt.listing_error:
        lines.append(f"Listing not refreshed: {attempt.listing_error}")
    return "\n".join(lines)
