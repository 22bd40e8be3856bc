"""InfluxDB writer for gateway snapshots."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from typing import TYPE_CHECKING, Callable, Deque, Iterable, List, Optional

import requests
from requests import exceptions as requests_exceptions

from .config import ServiceConfig
from .errors import SinkError
from .metrics import Point, snapshot_points

if TYPE_CHECKING:
    from .collector import Snapshot

LOGGER = logging.getLogger("teg_service.influx_writer")

# Lines kept across failed flushes, as a multiple of the batch size.
_BUFFER_BATCHES = 20


class InfluxWriter:
    """Buffer snapshots as line protocol and write them to InfluxDB in batches."""

    def __init__(self, config: ServiceConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self._session = requests.Session()
        self._session.verify = config.influx_verify_tls
        self._write_url = f"{config.influx_url.rstrip('/')}/api/v2/write"
        self._lines: Deque[str] = deque(maxlen=config.batch_size * _BUFFER_BATCHES)
        self._lock = threading.Lock()
        self._last_flush = clock()

    @property
    def pending(self) -> int:
        return len(self._lines)

    @staticmethod
    def _escape(value: str) -> str:
        """Escape special characters in InfluxDB line protocol."""
        return (
            value.replace("\\", "\\\\")
            .replace(",", "\\,")
            .replace(" ", "\\ ")
            .replace("=", "\\=")
        )

    @staticmethod
    def _escape_str_field(value: str) -> str:
        """Escape string field values in InfluxDB line protocol."""
        return value.replace("\\", "\\\\").replace("\"", "\\\"")

    def build_line(self, point: Point) -> Optional[str]:
        """Format ``point`` as one line of line protocol.

        Empty tag values are omitted; ``None``, NaN and infinite field values
        are dropped. Returns ``None`` when no field is left.
        """
        measurement = self._escape(point.measurement)
        tags_part = "".join(
            f",{self._escape(key)}={self._escape(str(value))}"
            for key, value in sorted(point.tags.items())
            if value not in (None, "")
        )

        fields_parts: List[str] = []
        for name, value in point.fields.items():
            if value is None:
                continue
            key = self._escape(name)
            if isinstance(value, bool):
                fields_parts.append(f"{key}={'true' if value else 'false'}")
            elif isinstance(value, int):
                fields_parts.append(f"{key}={value}i")
            elif isinstance(value, float):
                if math.isnan(value) or math.isinf(value):
                    continue
                fields_parts.append(f"{key}={value}")
            else:
                fields_parts.append(f"{key}=\"{self._escape_str_field(str(value))}\"")

        if not fields_parts:
            return None
        return f"{measurement}{tags_part} {','.join(fields_parts)} {point.timestamp.unix_nano()}"

    def build_lines(self, points: Iterable[Point]) -> List[str]:
        lines = []
        for point in points:
            line = self.build_line(point)
            if line is not None:
                lines.append(line)
        return lines

    def write(self, snapshot: "Snapshot") -> int:
        """Buffer ``snapshot`` and flush when the batch size or flush interval is reached.

        Returns:
            Number of lines buffered for this snapshot

        Raises:
            SinkError: If a triggered flush fails (the lines stay buffered)
        """
        lines = self.build_lines(snapshot_points(snapshot, self._config.measurement_prefix))
        with self._lock:
            overflow = len(self._lines) + len(lines) - (self._lines.maxlen or 0)
            if overflow > 0:
                LOGGER.warning("Write buffer full; dropping %d oldest lines", overflow)
            self._lines.extend(lines)
        LOGGER.debug("Buffered %d lines (%d pending)", len(lines), self.pending)

        due = self._clock() - self._last_flush >= self._config.flush_interval
        if self.pending >= self._config.batch_size or due:
            self.flush()
        return len(lines)

    def flush(self) -> int:
        """Write every buffered line to InfluxDB.

        Returns:
            Number of lines written

        Raises:
            SinkError: If the write fails; buffered lines are kept for the next flush
        """
        with self._lock:
            if not self._lines:
                self._last_flush = self._clock()
                return 0
            lines = list(self._lines)
            self._post("\n".join(lines))
            self._lines.clear()
            self._last_flush = self._clock()
        LOGGER.debug("Flushed %d lines to InfluxDB", len(lines))
        return len(lines)

    def _post(self, body: str) -> None:
        headers = {
            "Authorization": f"Token {self._config.influx_auth}",
            "Content-Type": "text/plain; charset=utf-8",
        }
        params = {
            "org": self._config.influx_org,
            "bucket": self._config.influx_destination,
            "precision": "ns",
        }
        try:
            response = self._session.post(
                self._write_url,
                headers=headers,
                params=params,
                data=body.encode("utf-8"),
                timeout=self._config.influx_timeout,
            )
        except requests_exceptions.RequestException as exc:
            raise SinkError(f"InfluxDB write failed: {exc}") from exc
        if response.status_code >= 300:
            raise SinkError(
                f"InfluxDB write failed: {response.status_code} {response.text.strip()}"
            )

    def close(self) -> None:
        """Release the HTTP session. Call :meth:`flush` first to keep buffered lines."""
        if self._lines:
            LOGGER.warning("Closing InfluxDB writer with %d unsent lines", len(self._lines))
        self._session.close()
