"""Asynchronous background service orchestrating gateway polling."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from .collector import Collector, Snapshot
from .config import ServiceConfig
from .decoders import Instant
from .errors import AuthError, CollectError, GatewayError, SinkError
from .gateway_client import DEFAULT_ENDPOINTS, EndpointFetcher
from .influx_writer import InfluxWriter
from .session import Credentials, Session, SessionManager, TransportConfig, is_transport_error

LOGGER = logging.getLogger("teg_service.service")


class SnapshotSink(Protocol):
    def write(self, snapshot: Snapshot) -> object: ...

    def flush(self) -> object: ...

    def close(self) -> None: ...


class SessionState(enum.Enum):
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


@dataclass
class PollingResult:
    timestamp: datetime
    duration: float
    snapshot: Optional[Snapshot]
    collect_error: Optional[CollectError] = None
    sink_error: Optional[str] = None
    written: bool = False

    @property
    def success(self) -> bool:
        return self.snapshot is not None and self.collect_error is None

    @property
    def failed_endpoint(self) -> Optional[str]:
        return self.collect_error.endpoint if self.collect_error is not None else None

    @property
    def gateway_unreachable(self) -> bool:
        """The cycle failed because the gateway could not be reached at all."""
        return self.collect_error is not None and is_transport_error(self.collect_error)


def transport_from_config(config: ServiceConfig, concurrency: int = len(DEFAULT_ENDPOINTS)) -> TransportConfig:
    """Gateway transport sized so every endpoint of a cycle keeps its own pooled connection."""
    return TransportConfig(
        base_url=config.gateway_url,
        verify_tls=config.gateway_verify_tls,
        timeout=config.request_timeout,
        pool_maxsize=concurrency,
    )


class GatewayService:
    """Drive authentication and collection on a fixed cadence."""

    def __init__(
        self,
        config: ServiceConfig,
        session_manager: Optional[SessionManager] = None,
        collector: Optional[Collector] = None,
        sink: Optional[SnapshotSink] = None,
        clock: Callable[[], Instant] = Instant.now,
    ) -> None:
        self._config = config
        transport = transport_from_config(config)
        self._session_manager = session_manager or SessionManager(
            transport, Credentials(config.gateway_email, config.gateway_password)
        )
        self._collector = collector or Collector(EndpointFetcher(transport))
        self._sink: SnapshotSink = sink if sink is not None else InfluxWriter(config)
        self._clock = clock

        self._session: Optional[Session] = None
        self._state = SessionState.REFRESHING

        self._poll_lock = asyncio.Lock()
        self._background_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

        self._last_result: Optional[PollingResult] = None
        self._consecutive_failures = 0
        self._fatal_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def fatal_error(self) -> Optional[BaseException]:
        """Why the loop ended on its own; ``None`` if it is running or was stopped."""
        return self._fatal_error

    def get_latest_result(self) -> Optional[PollingResult]:
        return self._last_result

    def is_running(self) -> bool:
        return self._background_task is not None and not self._background_task.done()

    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._fatal_error = None
        self._background_task = asyncio.create_task(self._run_loop(), name="teg-poller")

    async def wait(self) -> None:
        """Return once the polling loop has ended, on its own or through :meth:`stop`."""
        if self._background_task is not None:
            await asyncio.shield(self._background_task)

    async def stop(self) -> None:
        """Stop the loop after the current cycle, flush the sink and close every connection."""
        if self._background_task is not None:
            self._stop_event.set()
            try:
                await self._background_task
            finally:
                self._background_task = None
                self._stop_event = asyncio.Event()
        async with self._poll_lock:
            await asyncio.to_thread(self._shutdown_clients)

    # ------------------------------------------------------------------
    async def poll_once(self, *, push: bool = True, store_result: bool = True) -> PollingResult:
        """Run one cycle: refresh the session if needed, collect, hand the snapshot to the sink.

        Raises:
            AuthError: If the session could not be refreshed. No cycle can
                succeed without one, so callers should treat this as fatal.
        """
        async with self._poll_lock:
            result = await asyncio.to_thread(self._poll_once_blocking, push)
            if store_result:
                self._update_state(result)
            return result

    async def _run_loop(self) -> None:
        LOGGER.info("Starting background polling loop (interval=%ss)", self._config.poll_interval)
        try:
            while not self._stop_event.is_set():
                start = time.monotonic()
                cycle_time: Optional[float] = None
                try:
                    result = await self.poll_once()
                except AuthError as exc:
                    LOGGER.critical("Cannot authenticate with the gateway: %s", exc)
                    self._fatal_error = exc
                    break
                except Exception as exc:
                    LOGGER.exception("Background poll failed: %s", exc)
                    failure: Optional[BaseException] = exc
                    self._consecutive_failures += 1
                else:
                    failure = result.collect_error
                    cycle_time = result.duration

                if failure is not None and self._config.exit_on_failure:
                    LOGGER.error("Stopping after failed poll cycle: %s", failure)
                    self._fatal_error = failure
                    break

                # Login time does not count towards the interval.
                elapsed = cycle_time if cycle_time is not None else time.monotonic() - start
                sleep_for = max(0.0, self._config.poll_interval - elapsed)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_for)
                except asyncio.TimeoutError:
                    continue
        finally:
            LOGGER.info("Background polling loop stopped")

    def _ensure_session(self, now: Instant) -> Session:
        if self._session is not None and not self._session.is_expired(now):
            return self._session

        self._state = SessionState.REFRESHING
        if self._session is None:
            LOGGER.info("Logging in to gateway at %s", self._config.gateway_url)
        else:
            LOGGER.info("Session expired at %s; logging in again", self._session.expires_at)
        session = self._session_manager.authenticate()

        previous, self._session = self._session, session
        if previous is not None:
            previous.close()
        self._state = SessionState.AUTHENTICATED
        return session

    def _poll_once_blocking(self, push: bool) -> PollingResult:
        # One reading for both checks, so the session cannot expire between them.
        now = self._clock()
        session = self._ensure_session(now)
        # The cycle starts once a valid session is in hand.
        start = time.monotonic()
        timestamp = datetime.now(timezone.utc)

        snapshot: Optional[Snapshot] = None
        collect_error: Optional[CollectError] = None
        sink_error: Optional[str] = None
        written = False

        try:
            snapshot = self._collector.collect_all(session, now=now)
        except CollectError as exc:
            collect_error = exc
            LOGGER.warning(
                "Poll cycle failed on endpoint %s (failure %d%s): %s",
                exc.endpoint,
                self._consecutive_failures + 1,
                ", gateway unreachable" if is_transport_error(exc) else "",
                exc.cause,
            )
        else:
            if push:
                try:
                    self._sink.write(snapshot)
                    written = True
                except SinkError as exc:
                    sink_error = str(exc)
                    LOGGER.warning("Metrics sink write failed: %s", exc)

        return PollingResult(
            timestamp=timestamp,
            duration=time.monotonic() - start,
            snapshot=snapshot,
            collect_error=collect_error,
            sink_error=sink_error,
            written=written,
        )

    def _update_state(self, result: PollingResult) -> None:
        self._last_result = result
        if result.success:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1

    def _shutdown_clients(self) -> None:
        try:
            self._sink.flush()
        except GatewayError as exc:
            LOGGER.error("Final flush of the metrics sink failed: %s", exc)
        finally:
            self._sink.close()
            if self._session is not None:
                self._session.close()
                self._session = None
                self._state = SessionState.REFRESHING


__all__ = [
    "GatewayService",
    "PollingResult",
    "SessionState",
    "SnapshotSink",
    "transport_from_config",
]
