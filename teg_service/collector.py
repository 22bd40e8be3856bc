"""Concurrent collection of every endpoint into one :class:`Snapshot`."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from . import models
from .decoders import Instant
from .errors import CollectError, DecodeError, FetchCancelledError, SessionExpiredError
from .gateway_client import DEFAULT_ENDPOINTS, DecodeKind, EndpointDescriptor, EndpointFetcher
from .session import Session
from .vitals import VitalsReport, normalize_vitals

LOGGER = logging.getLogger("teg_service.collector")


@dataclass
class Snapshot:
    """Every endpoint's decoded record for one poll cycle.

    All attributes are required, so an instance only exists once every
    endpoint has been fetched and post-processed.
    """

    meters: models.MeterAggregates
    meters_status: models.MetersStatus
    operation: models.Operation
    powerwalls: models.Powerwalls
    site_info: models.SiteInfo
    sitemaster: models.Sitemaster
    solars: models.SolarList
    solar_powerwall: models.SolarPowerwall
    network_tests: models.NetworkConnectionTests
    status: models.Status
    system_testing: models.SystemTesting
    update_status: models.UpdateStatus
    system_status: models.SystemStatus
    grid_status: models.GridStatus
    soe: models.StateOfEnergy
    vitals: VitalsReport


class Collector:
    """Fan out one fetch per endpoint and fan the results back in."""

    def __init__(
        self,
        fetcher: EndpointFetcher,
        endpoints: Sequence[EndpointDescriptor] = DEFAULT_ENDPOINTS,
    ) -> None:
        if not endpoints:
            raise ValueError("at least one endpoint is required")
        self._fetcher = fetcher
        self._endpoints = tuple(endpoints)

    @property
    def endpoints(self) -> Sequence[EndpointDescriptor]:
        return self._endpoints

    def collect_all(self, session: Session, now: Optional[Instant] = None) -> Snapshot:
        """Fetch every endpoint concurrently and build a snapshot.

        Returns only after every worker has finished. The first failure sets
        the shared cancellation event so the remaining fetches stop early,
        and is raised as :class:`CollectError`; any later failures are only
        logged.

        Raises:
            SessionExpiredError: ``session`` is at or past its expiry.
            CollectError: an endpoint could not be fetched or decoded.
        """
        if session.is_expired(now):
            raise SessionExpiredError(f"session expired at {session.expires_at}")

        return Snapshot(**self.collect_results(session))

    def collect_results(self, session: Session) -> Dict[str, Any]:
        """Run every fetch and return the post-processed results keyed by endpoint name."""
        cancel = threading.Event()
        results: Dict[str, Any] = {}
        first_error: Optional[CollectError] = None

        with ThreadPoolExecutor(
            max_workers=len(self._endpoints),
            thread_name_prefix="teg-fetch",
        ) as executor:
            futures: Dict[Future, EndpointDescriptor] = {
                executor.submit(self._run_task, session, descriptor, cancel): descriptor
                for descriptor in self._endpoints
            }
            for future in as_completed(futures):
                descriptor = futures[future]
                try:
                    results[descriptor.name] = future.result()
                except Exception as exc:
                    if first_error is None:
                        cancel.set()
                        first_error = CollectError(descriptor.name, exc)
                    elif not isinstance(exc, FetchCancelledError):
                        LOGGER.debug("Additional failure on %s in the same cycle: %s", descriptor.name, exc)

        if first_error is not None:
            raise first_error
        return results

    def _run_task(self, session: Session, descriptor: EndpointDescriptor, cancel: threading.Event) -> Any:
        payload = self._fetcher.fetch(session, descriptor, cancel)
        captured_at = Instant.now()
        try:
            return postprocess(descriptor, payload, captured_at)
        except ValueError as exc:
            raise DecodeError(descriptor.name, exc) from exc


def postprocess(descriptor: EndpointDescriptor, payload: Any, captured_at: Instant) -> Any:
    """Stamp ``payload`` and parse its derived fields."""
    if descriptor.kind is DecodeKind.PROTOBUF:
        return normalize_vitals(payload, captured_at=captured_at)
    payload.captured_at = captured_at
    payload.finalize()
    return payload


__all__ = ["Collector", "Snapshot", "postprocess"]
