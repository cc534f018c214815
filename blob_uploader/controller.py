from __future__ import annotations
"""Upload orchestration: token, transfer, then listing refresh."""
import logging
from typing import Optional

import requests

from .models import (
    ContainerListing,
    InvalidTransitionError,
    Permission,
    SourceFile,
    UploadAttempt,
    UploadStatus,
)
from .services import (
    DirectTransferPath,
    ListingError,
    ListingService,
    ProxiedTransferPath,
    S3Connection,
    S3ListingService,
    S3PresignTokenAuthority,
    TokenAuthority,
    TokenIssuanceError,
    TransferError,
    TransferStrategy,
)
from .settings import UploaderSettings

LOGGER = logging.getLogger(__name__)

SUCCESS_TEXT = "Successfully finished upload"


class NoFileSelectedError(RuntimeError):
    """Raised when an upload step is requested before a file is selected."""


class UploadOrchestrator:
    """Sequences token acquisition, one transfer and the listing refresh.

    Each :meth:`select_file` starts a new :class:`UploadAttempt`. Remote calls
    capture the attempt they were started for; if the file is reselected
    while a call is outstanding its outcome is dropped.
    """

    def __init__(
        self,
        settings: UploaderSettings,
        *,
        authority: TokenAuthority | S3PresignTokenAuthority,
        direct_path: TransferStrategy,
        server_path: TransferStrategy,
        listing_service: ListingService | S3ListingService,
    ):
        self._settings = settings
        self._authority = authority
        self._direct_path = direct_path
        self._server_path = server_path
        self._listing_service = listing_service
        self._attempt: Optional[UploadAttempt] = None
        self._listing: Optional[ContainerListing] = None

    @classmethod
    def from_settings(
        cls,
        settings: UploaderSettings,
        *,
        s3_secret_key: str = "",
        session: requests.Session | None = None,
    ) -> "UploadOrchestrator":
        session = session or requests.Session()
        timeout = settings.request_timeout
        if settings.token_authority == "s3":
            connection = S3Connection(
                endpoint_url=settings.s3_endpoint_url,
                access_key=settings.s3_access_key,
                secret_key=s3_secret_key,
                region_name=settings.s3_region,
            )
            authority = S3PresignTokenAuthority(connection)
            listing_service = S3ListingService(connection)
        else:
            authority = TokenAuthority(settings.api_server, session=session, timeout=timeout)
            listing_service = ListingService(settings.api_server, session=session, timeout=timeout)
        return cls(
            settings,
            authority=authority,
            direct_path=DirectTransferPath(session=session, timeout=timeout),
            server_path=ProxiedTransferPath(settings.proxy_server, session=session, timeout=timeout),
            listing_service=listing_service,
        )

    @property
    def attempt(self) -> Optional[UploadAttempt]:
        return self._attempt

    @property
    def listing(self) -> Optional[ContainerListing]:
        return self._listing

    def select_file(self, source_file: SourceFile) -> UploadAttempt:
        previous = self._attempt
        if previous is not None:
            previous.discard_token()
            LOGGER.debug("Discarding attempt for '%s' in state %s", previous.source_file.name, previous.status.value)
        self._attempt = UploadAttempt(source_file=source_file)
        LOGGER.debug("Selected '%s' (%d bytes)", source_file.name, source_file.size)
        return self._attempt

    def request_token(self) -> UploadAttempt:
        attempt = self._require_attempt()
        attempt.advance(UploadStatus.TOKEN_REQUESTED, "")
        attempt.discard_token()
        try:
            token = self._authority.issue_token(
                attempt.source_file.name,
                {Permission.WRITE},
                self._settings.token_ttl_minutes,
                self._settings.container_name,
            )
        except TokenIssuanceError as exc:
            if self._is_stale(attempt):
                return attempt
            LOGGER.debug("Token request for '%s' failed: %s", attempt.source_file.name, exc.message)
            attempt.advance(UploadStatus.TOKEN_FAILED, f"Error getting access token: {exc.message}", exc.detail)
            return attempt
        except ValueError as exc:
            if self._is_stale(attempt):
                return attempt
            attempt.advance(UploadStatus.TOKEN_FAILED, f"Error getting access token: {exc}")
            return attempt

        if self._is_stale(attempt):
            return attempt
        attempt.attach_token(token)
        attempt.advance(UploadStatus.TOKEN_READY, token.endpoint)
        return attempt

    def upload_direct(self) -> UploadAttempt:
        return self.upload(self._direct_path)

    def upload_via_server(self) -> UploadAttempt:
        return self.upload(self._server_path)

    def upload(self, strategy: TransferStrategy) -> UploadAttempt:
        attempt = self._require_attempt()
        if attempt.token is None or not attempt.can_advance(UploadStatus.TRANSFERRING):
            raise InvalidTransitionError(attempt.status, UploadStatus.TRANSFERRING)
        token = attempt.token
        attempt.advance(UploadStatus.TRANSFERRING, "")
        attempt.transfer_path = strategy.name
        attempt.listing_error = None
        LOGGER.debug("Uploading '%s' via %s path", attempt.source_file.name, strategy.name)
        try:
            strategy.transfer(attempt.source_file, token)
        except TransferError as exc:
            if self._is_stale(attempt):
                return attempt
            LOGGER.debug("Upload of '%s' via %s failed: %s", attempt.source_file.name, strategy.name, exc.message)
            attempt.advance(
                UploadStatus.TRANSFER_FAILED,
                f"Failed to finish upload with error: {exc.message}",
                exc.detail,
            )
            return attempt
        except Exception as exc:
            if not self._is_stale(attempt):
                attempt.advance(UploadStatus.TRANSFER_FAILED, f"Failed to finish upload with error: {exc}")
            raise

        if self._is_stale(attempt):
            return attempt
        attempt.advance(UploadStatus.TRANSFER_SUCCEEDED, SUCCESS_TEXT)
        self._refresh_after_transfer(attempt)
        return attempt

    def refresh_listing(self) -> ContainerListing:
        listing = self._listing_service.list(self._settings.container_name)
        self._listing = listing
        return listing

    def _refresh_after_transfer(self, attempt: UploadAttempt) -> None:
        try:
            listing = self._listing_service.list(self._settings.container_name)
        except ListingError as exc:
            LOGGER.warning("Upload of '%s' succeeded but listing failed: %s", attempt.source_file.name, exc.message)
            if not self._is_stale(attempt):
                attempt.listing_error = exc.message
            return
        if self._is_stale(attempt):
            return
        self._listing = listing
        attempt.advance(UploadStatus.LISTING_REFRESHED)

    def _require_attempt(self) -> UploadAttempt:
        if self._attempt is None:
            raise NoFileSelectedError("Select a file before uploading")
        return self._attempt

    def _is_stale(self, attempt: UploadAttempt) -> bool:
        if attempt is self._attempt:
            return False
        LOGGER.debug("Dropping result for superseded attempt '%s'", attempt.source_file.name)
        return True
