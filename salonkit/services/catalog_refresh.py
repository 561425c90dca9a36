"""
Background refresh of the booking catalog (services, providers, settings).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Protocol

from ..domain.models import BookingSettings, Provider, Service
from ..domain.results import Err, Result
from ..utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


class CatalogSourceProtocol(Protocol):
    async def list_services(self) -> Result[List[Service]]:
        """Return active services."""

    async def list_providers(self) -> Result[List[Provider]]:
        """Return active providers."""

    async def get_booking_settings(self) -> Result[BookingSettings]:
        """Return opening hours and calendar behavior."""


@dataclass(frozen=True)
class CatalogSnapshot:
    services: List[Service] = field(default_factory=list)
    providers: List[Provider] = field(default_factory=list)
    settings: Optional[BookingSettings] = None

    @property
    def service_ids(self) -> FrozenSet[str]:
        return frozenset(service.id for service in self.services)

    @property
    def provider_ids(self) -> FrozenSet[str]:
        return frozenset(provider.id for provider in self.providers)

    def same_ids(self, other: Optional["CatalogSnapshot"]) -> bool:
        return (
            other is not None
            and self.service_ids == other.service_ids
            and self.provider_ids == other.provider_ids
        )


class CatalogRefresher:
    """
    Keeps a catalog snapshot fresh on a fixed interval.

    ``notify_visible`` and ``notify_focus`` trigger an immediate refresh.
    At most one refresh runs at a time, and ``on_change`` only fires when
    the set of service or provider ids differs from the previous snapshot.
    """

    def __init__(
        self,
        source: CatalogSourceProtocol,
        interval_seconds: float = 30.0,
        on_change: Optional[Callable[[CatalogSnapshot], None]] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than zero")

        self._source = source
        self.interval_seconds = interval_seconds
        self.on_change = on_change
        self.retry_policy = retry_policy or RetryPolicy()
        self.snapshot: Optional[CatalogSnapshot] = None
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._in_flight = False

    @classmethod
    def from_config(
        cls,
        source: CatalogSourceProtocol,
        config,
        on_change: Optional[Callable[[CatalogSnapshot], None]] = None,
    ) -> "CatalogRefresher":
        return cls(
            source,
            interval_seconds=config.booking.poll_interval_seconds,
            on_change=on_change,
            retry_policy=RetryPolicy.from_config(config.retry),
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the refresh loop on the running event loop."""
        if self.running:
            return self._task

        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="catalog-refresh")
        logger.info("Catalog refresh started (every %.0fs)", self.interval_seconds)
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Catalog refresh stopped")

    def notify_visible(self) -> None:
        """The page became visible again."""
        self._trigger("visible")

    def notify_focus(self) -> None:
        """The window regained focus."""
        self._trigger("focus")

    def _trigger(self, reason: str) -> None:
        if self._wake is None:
            return
        logger.debug("Catalog refresh requested (%s)", reason)
        self._wake.set()

    async def refresh(self) -> bool:
        """
        Fetch the catalog once.

        Returns:
            True when the service or provider id sets changed
        """
        if self._in_flight:
            logger.debug("Catalog refresh already in flight, skipping")
            return False

        self._in_flight = True
        try:
            services, providers, settings = await asyncio.gather(
                self.retry_policy.run(self._source.list_services, operation="services fetch"),
                self.retry_policy.run(self._source.list_providers, operation="providers fetch"),
                self.retry_policy.run(self._source.get_booking_settings, operation="settings fetch"),
            )

            if isinstance(services, Err) or isinstance(providers, Err):
                failed = services if isinstance(services, Err) else providers
                logger.warning("Catalog refresh failed, keeping previous snapshot: %s", failed.message)
                return False

            previous = self.snapshot
            if isinstance(settings, Err):
                logger.warning("Booking settings refresh failed: %s", settings.message)
                kept_settings = previous.settings if previous else None
            else:
                kept_settings = settings.value

            snapshot = CatalogSnapshot(
                services=services.value,
                providers=providers.value,
                settings=kept_settings,
            )
            self.snapshot = snapshot

            if snapshot.same_ids(previous):
                return False

            logger.info(
                "Catalog changed: %d services, %d providers",
                len(snapshot.services),
                len(snapshot.providers),
            )
            if self.on_change is not None:
                self.on_change(snapshot)
            return True
        finally:
            self._in_flight = False

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Catalog refresh raised")

            await self._wait_for_trigger()

    async def _wait_for_trigger(self) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()
