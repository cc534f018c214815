from __future__ import annotations
"""View-agnostic presenter that wraps orchestrator operations."""
import logging
import threading
from typing import Callable

from .controller import UploadOrchestrator
from .models import ContainerListing, SourceFile, UploadAttempt
from .services import UploadError
from .ui_utils import ListingTile, build_tiles, format_status


DispatchFn = Callable[[Callable[[], None]], None]
AttemptFn = Callable[[UploadAttempt], None]
ErrorFn = Callable[[str], None]
DoneFn = Callable[[], None]

LOGGER = logging.getLogger(__name__)


def _format_error(exc: Exception) -> str:
    return str(exc)


class UploadPresenter:
    """Runs upload steps in the background and returns results via callbacks."""

    def __init__(
        self,
        *,
        orchestrator: UploadOrchestrator,
        dispatch: DispatchFn | None = None,
        run_in_background: bool = True,
    ) -> None:
        self._orchestrator = orchestrator
        self._dispatch = dispatch or (lambda func: func())
        self._run_in_background = run_in_background

    @property
    def status_text(self) -> str:
        return format_status(self._orchestrator.attempt, include_detail=True)

    def tiles(self) -> list[ListingTile]:
        listing = self._orchestrator.listing
        return build_tiles(listing.entries) if listing else []

    def select_file(self, source_file: SourceFile) -> UploadAttempt:
        return self._orchestrator.select_file(source_file)

    def request_token(
        self,
        *,
        on_success: AttemptFn,
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        self._run("token request", self._orchestrator.request_token, on_success, on_error, on_done)

    def upload_direct(
        self,
        *,
        on_success: AttemptFn,
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        self._run("direct upload", self._orchestrator.upload_direct, on_success, on_error, on_done)

    def upload_via_server(
        self,
        *,
        on_success: AttemptFn,
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        self._run("server upload", self._orchestrator.upload_via_server, on_success, on_error, on_done)

    def refresh_listing(
        self,
        *,
        on_success: Callable[[list[ListingTile]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        def refresh() -> list[ListingTile]:
            listing: ContainerListing = self._orchestrator.refresh_listing()
            LOGGER.debug("Listing for '%s' returned %d entries", listing.container_name, len(listing.entries))
            return build_tiles(listing.entries)

        self._run("listing refresh", refresh, on_success, on_error, on_done)

    def _run(self, label: str, operation, on_success, on_error: ErrorFn, on_done: DoneFn | None) -> None:
        LOGGER.debug("Starting %s", label)

        def task() -> None:
            try:
                result = operation()
            except UploadError as exc:
                LOGGER.debug("%s failed: %s", label, exc.message)
                self._dispatch(lambda: on_error(exc.message))
            except Exception as exc:
                LOGGER.exception("Unexpected error during %s", label)
                self._dispatch(lambda: on_error(_format_error(exc)))
            else:
                self._dispatch(lambda: on_success(result))
            finally:
                if on_done:
                    self._dispatch(on_done)

        if self._run_in_background:
            threading.Thread(target=task, daemon=True).start()
        else:
            task()
