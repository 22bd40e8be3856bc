"""Authenticated GET requests against the gateway's telemetry endpoints."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from google.protobuf.message import DecodeError as ProtobufDecodeError

from . import models, vitals_proto
from .errors import DecodeError, FetchCancelledError, FetchError, UnexpectedStatusError
from .session import TRANSPORT_ERRORS, Session, TransportConfig

LOGGER = logging.getLogger("teg_service.gateway_client")

_CHUNK_SIZE = 16 * 1024


class DecodeKind(enum.Enum):
    JSON = "json"
    PROTOBUF = "protobuf"


@dataclass(frozen=True)
class EndpointDescriptor:
    """One telemetry endpoint: where it lives and what its body decodes into.

    ``name`` is also the attribute of :class:`teg_service.collector.Snapshot`
    that receives the decoded record.
    """

    name: str
    path: str
    kind: DecodeKind
    shape: Any


DEFAULT_ENDPOINTS: Tuple[EndpointDescriptor, ...] = (
    EndpointDescriptor("meters", "/api/meters/aggregates", DecodeKind.JSON, models.MeterAggregates),
    EndpointDescriptor("meters_status", "/api/meters/status", DecodeKind.JSON, models.MetersStatus),
    EndpointDescriptor("operation", "/api/operation", DecodeKind.JSON, models.Operation),
    EndpointDescriptor("powerwalls", "/api/powerwalls", DecodeKind.JSON, models.Powerwalls),
    EndpointDescriptor("site_info", "/api/site_info", DecodeKind.JSON, models.SiteInfo),
    EndpointDescriptor("sitemaster", "/api/sitemaster", DecodeKind.JSON, models.Sitemaster),
    EndpointDescriptor("solars", "/api/solars", DecodeKind.JSON, models.SolarList),
    EndpointDescriptor("solar_powerwall", "/api/solar_powerwall", DecodeKind.JSON, models.SolarPowerwall),
    EndpointDescriptor(
        "network_tests", "/api/system/networks/conn_tests", DecodeKind.JSON, models.NetworkConnectionTests
    ),
    EndpointDescriptor("status", "/api/status", DecodeKind.JSON, models.Status),
    EndpointDescriptor("system_testing", "/api/system/testing", DecodeKind.JSON, models.SystemTesting),
    EndpointDescriptor("update_status", "/api/system/update/status", DecodeKind.JSON, models.UpdateStatus),
    EndpointDescriptor("system_status", "/api/system_status", DecodeKind.JSON, models.SystemStatus),
    EndpointDescriptor("grid_status", "/api/system_status/grid_status", DecodeKind.JSON, models.GridStatus),
    EndpointDescriptor("soe", "/api/system_status/soe", DecodeKind.JSON, models.StateOfEnergy),
    EndpointDescriptor("vitals", "/api/devices/vitals", DecodeKind.PROTOBUF, vitals_proto.DevicesWithVitals),
)


class EndpointFetcher:
    """Fetch and decode a single endpoint. Never retries."""

    def __init__(self, transport: TransportConfig) -> None:
        self._transport = transport

    def fetch(
        self,
        session: Session,
        descriptor: EndpointDescriptor,
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """GET ``descriptor.path`` and decode the body into ``descriptor.shape``.

        ``cancel`` is checked before the request is sent and between body
        chunks; once set, :class:`FetchCancelledError` is raised.
        """
        if cancel is not None and cancel.is_set():
            raise FetchCancelledError(descriptor.name)

        url = self._transport.url(descriptor.path)
        try:
            response = session.http.get(url, timeout=self._transport.timeout, stream=True)
        except TRANSPORT_ERRORS as exc:
            raise FetchError(descriptor.name, f"request to {url} failed: {exc}") from exc

        try:
            chunks = []
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if cancel is not None and cancel.is_set():
                    raise FetchCancelledError(descriptor.name)
                chunks.append(chunk)
            body = b"".join(chunks)
        except TRANSPORT_ERRORS as exc:
            raise FetchError(descriptor.name, f"reading {url} failed: {exc}") from exc
        finally:
            response.close()

        if response.status_code != 200:
            raise UnexpectedStatusError(descriptor.name, 200, response.status_code, body)

        LOGGER.debug("Fetched %s (%d bytes)", descriptor.path, len(body))
        return decode_body(descriptor, body)


def decode_body(descriptor: EndpointDescriptor, body: bytes) -> Any:
    """Decode ``body`` according to ``descriptor.kind``, keeping the raw body on failure."""
    if descriptor.kind is DecodeKind.PROTOBUF:
        message = descriptor.shape()
        try:
            message.ParseFromString(body)
        except ProtobufDecodeError as exc:
            raise DecodeError(descriptor.name, exc, body) from exc
        return message

    try:
        return descriptor.shape.model_validate_json(body)
    except ValueError as exc:
        raise DecodeError(descriptor.name, exc, body) from exc


__all__ = [
    "DEFAULT_ENDPOINTS",
    "DecodeKind",
    "EndpointDescriptor",
    "EndpointFetcher",
    "decode_body",
]
