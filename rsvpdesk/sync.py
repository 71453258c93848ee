"""Live client-side mirrors of the RSVP collection and landing page settings.

``SyncLayer`` keeps ``rsvps`` and ``landing_page_settings`` current through two
store subscriptions and exposes the write-through mutations. Mutations return
once the store acknowledges the write; the mirrors change only when the next
snapshot arrives, so callers read the mirror separately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime

from .records import (
    BACKGROUNDS_PREFIX,
    LANDING_PAGE_PATH,
    RSVPS_PATH,
    LandingPageSettings,
    RSVPRecord,
    background_type_for,
    records_from_children,
    submission_value,
)
from .remote import BlobStore, RemoteStore, Snapshot
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

Listener = Callable[["SyncLayer"], None]


class SyncLayer:
    def __init__(
        self,
        store: RemoteStore,
        blobs: BlobStore,
        *,
        default_title: str = "Event RSVP",
    ):
        self._store = store
        self._blobs = blobs
        self._default_title = default_title
        self.rsvps: list[RSVPRecord] = []
        self.landing_page_settings: LandingPageSettings | None = None
        self.error: str | None = None
        self._pending_initial: set[str] = set()
        self._in_flight = 0
        self._unsubscribers: list[Callable[[], None]] = []
        self._listeners: list[Listener] = []
        self._loaded: asyncio.Event | None = None

    # -- state ------------------------------------------------------------------

    @property
    def loading(self) -> bool:
        """True until both mirrors received a first snapshot (or an error)."""
        return self._loaded is None or not self._loaded.is_set()

    @property
    def operation_in_flight(self) -> bool:
        return self._in_flight > 0

    @property
    def active(self) -> bool:
        return bool(self._unsubscribers)

    def effective_settings(self) -> LandingPageSettings:
        return self.landing_page_settings or LandingPageSettings.defaults(
            self._default_title
        )

    # -- lifecycle --------------------------------------------------------------

    def start(self) -> None:
        """Open both subscriptions; must run inside the event loop."""
        if self.active:
            raise RuntimeError("SyncLayer is already started")
        self._loaded = asyncio.Event()
        self._pending_initial = {RSVPS_PATH, LANDING_PAGE_PATH}
        self._unsubscribers = [
            self._store.on_value(RSVPS_PATH, self._on_rsvps, self._on_rsvps_error),
            self._store.on_value(
                LANDING_PAGE_PATH, self._on_settings, self._on_settings_error
            ),
        ]
        logger.info("Sync layer started")

    def stop(self) -> None:
        """Close both subscriptions. Presentation listeners stay registered."""
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        if unsubscribers:
            logger.info("Sync layer stopped")

    async def wait_until_loaded(self) -> None:
        if self._loaded is None:
            raise RuntimeError("SyncLayer has not been started")
        await self._loaded.wait()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(layer)`` after every mirror change."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -- subscription handlers ----------------------------------------------------

    def _on_rsvps(self, snapshot: Snapshot) -> None:
        self.rsvps = records_from_children(snapshot.children())
        self._mark_loaded(RSVPS_PATH)
        self._changed()

    def _on_rsvps_error(self, exc: BaseException) -> None:
        self.error = "Failed to fetch RSVPs"
        logger.error("Error fetching RSVPs: %s", exc)
        self._mark_loaded(RSVPS_PATH)
        self._changed()

    def _on_settings(self, snapshot: Snapshot) -> None:
        self.landing_page_settings = LandingPageSettings.from_value(snapshot.val())
        self._mark_loaded(LANDING_PAGE_PATH)
        self._changed()

    def _on_settings_error(self, exc: BaseException) -> None:
        self.error = "Failed to fetch landing page settings"
        logger.error("Error fetching landing page settings: %s", exc)
        self._mark_loaded(LANDING_PAGE_PATH)
        self._changed()

    def _mark_loaded(self, path: str) -> None:
        self._pending_initial.discard(path)
        if not self._pending_initial and self._loaded is not None:
            self._loaded.set()

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Mirror listener raised")

    # -- mutations ----------------------------------------------------------------

    @asynccontextmanager
    async def _operation(self, failure_message: str):
        self._in_flight += 1
        self.error = None
        try:
            yield
        except Exception:
            self.error = failure_message
            logger.exception(failure_message)
            raise
        finally:
            self._in_flight -= 1

    async def add_record(
        self,
        name: str,
        affiliation: str,
        guests: int,
        submitted_at: datetime | None = None,
    ) -> str:
        """Append one RSVP; returns the store-assigned id."""
        value = submission_value(
            name=name,
            affiliation=affiliation,
            guests=guests,
            submitted_at=submitted_at or utcnow(),
        )
        async with self._operation("Failed to add RSVP"):
            record_id = await self._store.push(RSVPS_PATH, value)
        logger.info("RSVP %s added (%d guests)", record_id, guests)
        return record_id

    async def delete_record(self, record_id: str) -> None:
        async with self._operation("Failed to delete RSVP"):
            await self._store.remove(f"{RSVPS_PATH}/{record_id}")
        logger.info("RSVP %s deleted", record_id)

    async def delete_all_records(self) -> None:
        async with self._operation("Failed to delete all RSVPs"):
            await self._store.remove(RSVPS_PATH)
        logger.info("All RSVPs deleted")

    async def update_settings(self, settings: LandingPageSettings) -> None:
        """Overwrite the landing page settings wholesale."""
        async with self._operation("Failed to update landing page"):
            await self._store.set(LANDING_PAGE_PATH, settings.to_value())
        logger.info("Landing page settings updated")

    async def fetch_settings(self) -> LandingPageSettings | None:
        """One-shot read that bypasses the mirror."""
        async with self._operation("Failed to fetch landing page settings"):
            snapshot = await self._store.get(LANDING_PAGE_PATH)
        return LandingPageSettings.from_value(snapshot.val())

    async def upload_asset(
        self, data: bytes, filename: str | None, content_type: str | None
    ) -> str:
        """Store a background file and point the landing page at it.

        The new background is merged into the current settings snapshot, so
        edits not yet saved elsewhere are overwritten.
        """
        background_type = background_type_for(content_type)
        blob_path = (
            f"{BACKGROUNDS_PREFIX}/"
            f"{self._blobs.disambiguated_name(filename, content_type)}"
        )
        async with self._operation("Failed to upload background"):
            await self._blobs.upload(blob_path, data, content_type)
            url = self._blobs.download_url(blob_path)
            updated = self.effective_settings().with_background(background_type, url)
            await self._store.set(LANDING_PAGE_PATH, updated.to_value())
        logger.info("Landing page background set to %s (%s)", url, background_type)
        return url
