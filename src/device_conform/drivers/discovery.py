"""Alpaca device discovery.

Alpaca servers answer a UDP broadcast of ``alpacadiscovery1`` on port
32227 with ``{"AlpacaPort": n}``. Each responder is then asked for its
configured devices over the management API so the CLI can list device
types and numbers.

``DiscoveryCache`` keeps the last result so repeated lookups during a
session do not re-broadcast.

Example:
    discoverer = AlpacaDiscoverer()
    for endpoint in discoverer.discover(timeout_s=2.0):
        print(endpoint.address, endpoint.port, endpoint.metadata)
"""

from __future__ import annotations

import json
import socket
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from device_conform.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "DISCOVERY_PORT",
    "DISCOVERY_MESSAGE",
    "Endpoint",
    "Discoverer",
    "DiscoveryCache",
    "server_key",
    "device_key",
    "AlpacaDiscoverer",
]

#: UDP port Alpaca servers listen on for discovery.
DISCOVERY_PORT = 32227

#: Discovery request payload.
DISCOVERY_MESSAGE = b"alpacadiscovery1"

# Largest discovery reply read from the socket.
_MAX_REPLY_BYTES = 1024


@dataclass(frozen=True)
class Endpoint:
    """A discovered Alpaca server, or one device on it.

    Attributes:
        address: Server IP address.
        port: Alpaca HTTP port.
        metadata: Extra details (DeviceType, DeviceNumber, UniqueID,
            DeviceName). Not part of equality.
    """

    address: str
    port: int
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def base_url(self) -> str:
        """HTTP root of the server."""
        return f"http://{self.address}:{self.port}"


class Discoverer(Protocol):  # pragma: no cover
    """Anything that can find endpoints."""

    def discover(self, timeout_s: float) -> list[Endpoint]:
        """Return the endpoints found within ``timeout_s``."""
        ...


def server_key(endpoint: Endpoint) -> Hashable:
    """Default de-duplication key: one entry per server."""
    return (endpoint.address, endpoint.port)


def device_key(endpoint: Endpoint) -> Hashable:
    """De-duplication key keeping every device of a server."""
    return (
        endpoint.address,
        endpoint.port,
        endpoint.metadata.get("DeviceType"),
        endpoint.metadata.get("DeviceNumber"),
    )


class DiscoveryCache:
    """Caches discovery results, de-duplicated by a key function.

    Usage:
        cache = DiscoveryCache(AlpacaDiscoverer())
        endpoints = cache.get(timeout_s=2.0)   # broadcasts
        endpoints = cache.get(timeout_s=2.0)   # cached
        endpoints = cache.refresh(timeout_s=2.0)
    """

    def __init__(
        self,
        discoverer: Discoverer,
        key: Callable[[Endpoint], Hashable] | None = None,
    ) -> None:
        self.discoverer = discoverer
        self.key = key or server_key
        self._endpoints: list[Endpoint] | None = None
        self._lock = threading.Lock()

    def get(self, timeout_s: float = 2.0) -> list[Endpoint]:
        """Cached endpoints, discovering on first use."""
        with self._lock:
            if self._endpoints is None:
                self._endpoints = self._discover(timeout_s)
            return list(self._endpoints)

    def refresh(self, timeout_s: float = 2.0) -> list[Endpoint]:
        """Discard the cache and discover again."""
        with self._lock:
            self._endpoints = self._discover(timeout_s)
            return list(self._endpoints)

    def _discover(self, timeout_s: float) -> list[Endpoint]:
        seen: dict[Hashable, Endpoint] = {}
        for endpoint in self.discoverer.discover(timeout_s):
            seen.setdefault(self.key(endpoint), endpoint)
        logger.info("Discovery finished", endpoints=len(seen))
        return list(seen.values())


class AlpacaDiscoverer:
    """UDP broadcast discovery plus a configured-devices query."""

    def __init__(
        self,
        port: int = DISCOVERY_PORT,
        broadcast: str = "255.255.255.255",
        client: httpx.Client | None = None,
    ) -> None:
        """Create the discoverer.

        Args:
            port: Discovery UDP port.
            broadcast: Broadcast address the request is sent to.
            client: HTTP client for the management API. A short-lived
                client is created per discovery when None.
        """
        self.port = port
        self.broadcast = broadcast
        self.client = client

    def discover(self, timeout_s: float = 2.0) -> list[Endpoint]:
        """Broadcast, collect replies until ``timeout_s`` and expand devices."""
        servers = self._broadcast(timeout_s)
        if self.client is not None:
            return self._expand(servers, self.client)
        with httpx.Client(timeout=timeout_s) as client:
            return self._expand(servers, client)

    def _broadcast(self, timeout_s: float) -> list[Endpoint]:
        servers: list[Endpoint] = []
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.settimeout(timeout_s)
            sock.sendto(DISCOVERY_MESSAGE, (self.broadcast, self.port))
            while True:
                try:
                    data, (address, _) = sock.recvfrom(_MAX_REPLY_BYTES)
                except TimeoutError:
                    break
                endpoint = self.parse_reply(address, data)
                if endpoint is not None and endpoint not in servers:
                    servers.append(endpoint)
        logger.debug("Discovery replies", servers=len(servers))
        return servers

    @staticmethod
    def parse_reply(address: str, data: bytes) -> Endpoint | None:
        """Endpoint for a discovery reply, or None when it is malformed.

        Example:
            >>> AlpacaDiscoverer.parse_reply("10.0.0.5", b'{"AlpacaPort": 11111}')
            Endpoint(address='10.0.0.5', port=11111, metadata={})
        """
        try:
            port = int(json.loads(data.decode("utf-8"))["AlpacaPort"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring malformed discovery reply", address=address, error=str(exc))
            return None
        return Endpoint(address, port)

    def _expand(self, servers: list[Endpoint], client: httpx.Client) -> list[Endpoint]:
        endpoints: list[Endpoint] = []
        for server in servers:
            try:
                response = client.get(f"{server.base_url}/management/v1/configureddevices")
                response.raise_for_status()
                devices = response.json().get("Value") or []
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "Configured devices query failed", server=server.base_url, error=str(exc)
                )
                endpoints.append(server)
                continue
            for device in devices:
                endpoints.append(
                    Endpoint(
                        server.address,
                        server.port,
                        {
                            "DeviceType": device.get("DeviceType"),
                            "DeviceNumber": device.get("DeviceNumber"),
                            "UniqueID": device.get("UniqueID"),
                            "DeviceName": device.get("DeviceName"),
                        },
                    )
                )
        return endpoints
