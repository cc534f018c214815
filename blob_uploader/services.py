from __future__ import annotations
"""Remote operations behind an upload: tokens, transfers and listings."""
from datetime import datetime, timedelta, timezone
import logging
import traceback
from typing import Callable, Iterable, Optional, Protocol
from urllib.parse import parse_qs, quote, urlsplit, urlunsplit

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
import requests

from .models import (
    AccessToken,
    ContainerListing,
    Permission,
    SourceFile,
    encode_permissions,
)

LOGGER = logging.getLogger(__name__)

MAX_DIRECT_UPLOAD_BYTES = 256000
DEFAULT_TIMEOUT = 30.0
LIST_PAGE_SIZE = 1000
ERROR_BODY_LIMIT = 500

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadError(RuntimeError):
    """Base class for failures reported back to the person uploading."""

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class TokenIssuanceError(UploadError):
    """Raised when the credential authority does not hand out a token."""


class TransferError(UploadError):
    """Raised when bytes could not be written to the store."""

    def __init__(self, message: str, *, path: str = "", detail: str | None = None):
        super().__init__(message, detail=detail)
        self.path = path


class PayloadSizeError(TransferError):
    """Raised before any network call when a direct payload is empty or too large."""

    def __init__(self, size: int, *, path: str = "direct"):
        if size <= 0:
            reason = "empty"
            message = "File is empty; nothing to upload"
        else:
            reason = "too_large"
            message = (
                f"File is {size} bytes; direct uploads are limited to "
                f"{MAX_DIRECT_UPLOAD_BYTES} bytes"
            )
        super().__init__(message, path=path)
        self.reason = reason
        self.size = size


class TokenExpiredError(TransferError):
    """Raised when a transfer is attempted with a token past its expiry."""


class ListingError(UploadError):
    """Raised when the container listing could not be fetched."""


def format_trace(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).strip()


def redact_url(url: str) -> str:
    """Drop the query string so signatures never reach the logs."""

    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def scrub_signature(text: str, url: str) -> str:
    """Blank out the query string of ``url`` wherever it appears in ``text``."""

    for candidate in (url, requests.utils.requote_uri(url)):
        query = urlsplit(candidate).query
        if query:
            text = text.replace(query, "<redacted>")
    return text


def describe_response(response: requests.Response) -> str:
    text = (response.text or "").strip()
    if len(text) > ERROR_BODY_LIMIT:
        text = text[:ERROR_BODY_LIMIT] + "..."
    summary = f"{response.status_code} {response.reason or ''}".strip()
    return f"{summary}: {text}" if text else summary


def signed_expiry(url: str) -> datetime | None:
    """Read the expiry embedded in an Azure SAS or S3 presigned URL, if any."""

    query = parse_qs(urlsplit(url).query)
    try:
        if "se" in query:
            value = query["se"][0].replace("Z", "+00:00")
            expiry = datetime.fromisoformat(value)
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            return expiry
        if "X-Amz-Date" in query and "X-Amz-Expires" in query:
            signed_at = datetime.strptime(query["X-Amz-Date"][0], "%Y%m%dT%H%M%SZ")
            lifetime = int(query["X-Amz-Expires"][0])
            return signed_at.replace(tzinfo=timezone.utc) + timedelta(seconds=lifetime)
    except (ValueError, IndexError):
        LOGGER.debug("Ignoring unparseable expiry in %s", redact_url(url))
    return None


def validate_token_request(
    object_key: str,
    permissions: Iterable[Permission],
    ttl_minutes: int,
    container_name: str,
) -> frozenset[Permission]:
    if not object_key or not object_key.strip():
        raise ValueError("object_key cannot be empty")
    try:
        object_key.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError("object_key must be URL encodable") from exc
    if ttl_minutes <= 0:
        raise ValueError("ttl_minutes must be greater than zero")
    if not container_name or not container_name.strip():
        raise ValueError("container_name cannot be empty")
    requested = frozenset(Permission(permission) for permission in permissions)
    if not requested:
        raise ValueError("at least one permission is required")
    return requested


class TokenAuthority:
    """Requests capability URLs from the API server's ``/api/sas`` endpoint."""

    def __init__(
        self,
        api_server: str,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Clock | None = None,
    ):
        self._api_server = api_server.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock or _utcnow

    def issue_token(
        self,
        object_key: str,
        permissions: Iterable[Permission],
        ttl_minutes: int,
        container_name: str,
    ) -> AccessToken:
        """Return a token for ``object_key``.

        Raises:
            ValueError: when the request itself is malformed.
            TokenIssuanceError: when the authority cannot be reached or refuses.
        """
        requested = validate_token_request(object_key, permissions, ttl_minutes, container_name)
        params = {
            "file": object_key,
            "permission": encode_permissions(requested),
            "container": container_name,
            "timerange": str(ttl_minutes),
        }
        issued_at = self._clock()
        LOGGER.debug("Requesting '%s' token for '%s' in '%s'", params["permission"], object_key, container_name)
        try:
            response = self._session.post(
                f"{self._api_server}/api/sas",
                params=params,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TokenIssuanceError(f"Could not reach token service: {exc}", detail=format_trace(exc)) from exc
        if not response.ok:
            raise TokenIssuanceError(f"Token service returned {describe_response(response)}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenIssuanceError("Token service returned a non-JSON response", detail=format_trace(exc)) from exc
        url = payload.get("url") if isinstance(payload, dict) else None
        if not isinstance(url, str) or not url:
            raise TokenIssuanceError("Token service response did not include a url")

        expiry = signed_expiry(url) or issued_at + timedelta(minutes=ttl_minutes)
        LOGGER.debug("Received token for %s expiring at %s", redact_url(url), expiry.isoformat())
        return AccessToken(
            target_object_key=object_key,
            permissions=requested,
            expiry=expiry,
            endpoint=url,
            container_name=container_name,
        )


class S3Connection:
    """Credentials and client factory for talking to an S3-compatible store."""

    def __init__(
        self,
        *,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        region_name: str | None = None,
        client_factory: Callable[..., object] | None = None,
    ):
        self.endpoint_url = endpoint_url.rstrip("/")
        self._access_key = access_key
        self._secret_key = secret_key
        self._region_name = region_name or None
        self._client_factory = client_factory or boto3.client

    def create_client(self):
        config = Config(signature_version="s3v4")
        return self._client_factory(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self._access_key,
            aws_secret_access_key=self._secret_key,
            region_name=self._region_name,
            config=config,
        )


PRESIGN_METHODS = {
    Permission.READ: "get_object",
    Permission.WRITE: "put_object",
    Permission.DELETE: "delete_object",
}


class S3PresignTokenAuthority:
    """Mints presigned URLs locally when no token service is deployed."""

    def __init__(self, connection: S3Connection, *, clock: Clock | None = None):
        self._connection = connection
        self._clock = clock or _utcnow

    def issue_token(
        self,
        object_key: str,
        permissions: Iterable[Permission],
        ttl_minutes: int,
        container_name: str,
    ) -> AccessToken:
        requested = validate_token_request(object_key, permissions, ttl_minutes, container_name)
        if len(requested) != 1:
            raise TokenIssuanceError(
                f"Presigned URLs carry exactly one permission, got '{encode_permissions(requested)}'"
            )
        (permission,) = requested
        client_method = PRESIGN_METHODS.get(permission)
        if client_method is None:
            raise TokenIssuanceError(f"Presigned URLs cannot grant '{permission.value}' permission")

        issued_at = self._clock()
        try:
            client = self._connection.create_client()
            url = client.generate_presigned_url(
                client_method,
                Params={"Bucket": container_name, "Key": object_key},
                ExpiresIn=ttl_minutes * 60,
            )
        except (BotoCoreError, ClientError) as exc:
            raise TokenIssuanceError(f"Could not presign '{object_key}': {exc}", detail=format_trace(exc)) from exc
        LOGGER.debug("Presigned %s for %s", client_method, redact_url(url))
        return AccessToken(
            target_object_key=object_key,
            permissions=requested,
            expiry=issued_at + timedelta(minutes=ttl_minutes),
            endpoint=url,
            container_name=container_name,
        )


class TransferStrategy(Protocol):
    """One way of moving a selected file into the store."""

    name: str

    def transfer(self, source_file: SourceFile, token: AccessToken) -> None:
        ...


def _ensure_unexpired(token: AccessToken, path: str, now: datetime) -> None:
    if token.is_expired(now):
        raise TokenExpiredError(
            f"Access token for '{token.target_object_key}' expired at {token.expiry.isoformat()}",
            path=path,
        )


class DirectTransferPath:
    """Writes the file straight to the capability URL with a single PUT."""

    name = "direct"

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Clock | None = None,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock or _utcnow

    def transfer(self, source_file: SourceFile, token: AccessToken) -> None:
        size = source_file.size
        if size < 1 or size > MAX_DIRECT_UPLOAD_BYTES:
            raise PayloadSizeError(size, path=self.name)
        _ensure_unexpired(token, self.name, self._clock())

        headers = {
            "x-ms-blob-type": "BlockBlob",
            "Content-Type": source_file.media_type,
        }
        LOGGER.debug("PUT %d bytes to %s", size, redact_url(token.endpoint))
        try:
            response = self._session.put(
                token.endpoint,
                data=bytes(source_file.data),
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            reason = scrub_signature(str(exc), token.endpoint)
            raise TransferError(
                f"Could not reach store at {redact_url(token.endpoint)}: {reason}",
                path=self.name,
                detail=scrub_signature(format_trace(exc), token.endpoint),
            ) from exc
        if not response.ok:
            raise TransferError(f"Store rejected upload: {describe_response(response)}", path=self.name)


class ProxiedTransferPath:
    """Hands the file and capability URL to the proxy server, which writes it."""

    name = "server"

    def __init__(
        self,
        proxy_server: str,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Clock | None = None,
    ):
        self._proxy_server = proxy_server.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock or _utcnow

    def transfer(self, source_file: SourceFile, token: AccessToken) -> None:
        if not source_file.name:
            raise TransferError("File name is required for server-side upload", path=self.name)
        _ensure_unexpired(token, self.name, self._clock())

        files = {"file": (source_file.name, bytes(source_file.data), source_file.media_type)}
        data = {"sasTokenUrl": token.endpoint}
        LOGGER.debug("POST %d bytes of '%s' to %s/api/files", source_file.size, source_file.name, self._proxy_server)
        try:
            response = self._session.post(
                f"{self._proxy_server}/api/files",
                files=files,
                data=data,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransferError(
                f"Could not reach upload server: {scrub_signature(str(exc), token.endpoint)}",
                path=self.name,
                detail=scrub_signature(format_trace(exc), token.endpoint),
            ) from exc
        if not response.ok:
            raise TransferError(f"Upload server returned {describe_response(response)}", path=self.name)


class ListingService:
    """Fetches the object addresses of a container from ``/api/list``."""

    def __init__(
        self,
        api_server: str,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._api_server = api_server.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def list(self, container_name: str) -> ContainerListing:
        LOGGER.debug("Listing container '%s'", container_name)
        try:
            response = self._session.get(
                f"{self._api_server}/api/list",
                params={"container": container_name},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise ListingError(f"Could not reach listing service: {exc}", detail=format_trace(exc)) from exc
        if not response.ok:
            raise ListingError(f"Listing service returned {describe_response(response)}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ListingError("Listing service returned a non-JSON response", detail=format_trace(exc)) from exc

        entries = payload.get("list") if isinstance(payload, dict) else None
        if not isinstance(entries, (list, tuple)) or not all(isinstance(entry, str) for entry in entries):
            raise ListingError("Listing service response did not include a list of addresses")
        return ContainerListing(container_name=container_name, entries=tuple(entries))


class S3ListingService:
    """Enumerates a bucket directly and reports each key as an address."""

    def __init__(self, connection: S3Connection, *, page_size: int = LIST_PAGE_SIZE):
        self._connection = connection
        self._page_size = page_size

    def list(self, container_name: str) -> ContainerListing:
        entries: list[str] = []
        request_token: Optional[str] = None
        try:
            client = self._connection.create_client()
            while True:
                list_params = {"Bucket": container_name, "MaxKeys": self._page_size}
                if request_token:
                    list_params["ContinuationToken"] = request_token
                response = client.list_objects_v2(**list_params)
                entries.extend(self.address_for(container_name, obj["Key"]) for obj in response.get("Contents", []))
                request_token = response.get("NextContinuationToken")
                if not response.get("IsTruncated", False) or not request_token:
                    break
        except (ClientError, BotoCoreError) as exc:
            raise ListingError(f"Could not list bucket '{container_name}': {exc}", detail=format_trace(exc)) from exc
        return ContainerListing(container_name=container_name, entries=tuple(entries))

    def address_for(self, container_name: str, key: str) -> str:
        return f"{self._connection.endpoint_url}/{container_name}/{quote(key)}"
