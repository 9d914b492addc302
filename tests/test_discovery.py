"""Tests for Alpaca discovery and the discovery cache."""

from __future__ import annotations

import httpx
import pytest

from device_conform.drivers.discovery import (
    AlpacaDiscoverer,
    DiscoveryCache,
    Endpoint,
    device_key,
    server_key,
)

SERVER_A = Endpoint("10.0.0.5", 11111)
SERVER_B = Endpoint("10.0.0.6", 11111)


class _StaticDiscoverer:
    """Discoverer returning a fixed list and counting calls."""

    def __init__(self, endpoints: list[Endpoint]) -> None:
        self.endpoints = endpoints
        self.calls = 0

    def discover(self, timeout_s: float) -> list[Endpoint]:
        self.calls += 1
        return list(self.endpoints)


def _management_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _devices_reply(request: httpx.Request) -> httpx.Response:
    if request.url.host == "10.0.0.6":
        return httpx.Response(500)
    return httpx.Response(
        200,
        json={
            "ErrorNumber": 0,
            "ErrorMessage": "",
            "Value": [
                {
                    "DeviceName": "Focuser",
                    "DeviceType": "Focuser",
                    "DeviceNumber": 0,
                    "UniqueID": "abc",
                },
                {
                    "DeviceName": "Monitor",
                    "DeviceType": "SafetyMonitor",
                    "DeviceNumber": 0,
                    "UniqueID": "def",
                },
            ],
        },
    )


class TestEndpoint:
    """Tests for Endpoint."""

    def test_base_url(self):
        """The base URL combines address and port."""
        assert SERVER_A.base_url == "http://10.0.0.5:11111"

    def test_metadata_not_part_of_equality(self):
        """Two endpoints on the same server compare equal."""
        assert Endpoint("10.0.0.5", 11111, {"DeviceType": "Focuser"}) == SERVER_A

    def test_keys(self):
        """server_key ignores devices, device_key keeps them apart."""
        focuser = Endpoint("10.0.0.5", 11111, {"DeviceType": "Focuser", "DeviceNumber": 0})
        monitor = Endpoint(
            "10.0.0.5", 11111, {"DeviceType": "SafetyMonitor", "DeviceNumber": 0}
        )

        assert server_key(focuser) == server_key(monitor)
        assert device_key(focuser) != device_key(monitor)


class TestParseReply:
    """Tests for AlpacaDiscoverer.parse_reply()."""

    def test_valid_reply(self):
        """The advertised port is taken from the reply."""
        assert AlpacaDiscoverer.parse_reply("10.0.0.5", b'{"AlpacaPort": 32323}') == (
            Endpoint("10.0.0.5", 32323)
        )

    @pytest.mark.parametrize(
        "data",
        [b"not json", b"{}", b'{"AlpacaPort": null}', b"\xff\xfe"],
    )
    def test_malformed_replies(self, data):
        """Malformed replies are ignored."""
        assert AlpacaDiscoverer.parse_reply("10.0.0.5", data) is None


class TestAlpacaDiscoverer:
    """Tests for AlpacaDiscoverer.discover()."""

    def test_expands_configured_devices(self, monkeypatch):
        """Verifies each responding server is expanded into its devices.

        Arrangement:
        1. Broadcast patched to return two servers.
        2. Management client where the second server fails.

        Action:
        Discovers.

        Assertion Strategy:
        - Two device endpoints for the first server, with metadata.
        - The failing server is still listed, without metadata.
        """
        discoverer = AlpacaDiscoverer(client=_management_client(_devices_reply))
        monkeypatch.setattr(discoverer, "_broadcast", lambda timeout_s: [SERVER_A, SERVER_B])

        endpoints = discoverer.discover(timeout_s=0.1)

        assert [e.metadata.get("DeviceType") for e in endpoints] == [
            "Focuser",
            "SafetyMonitor",
            None,
        ]
        assert endpoints[0].metadata["UniqueID"] == "abc"
        assert endpoints[2] == SERVER_B

    def test_requests_configured_devices_path(self, monkeypatch):
        """The management API path is queried on each server."""
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(str(request.url))
            return httpx.Response(200, json={"Value": []})

        discoverer = AlpacaDiscoverer(client=_management_client(handler))
        monkeypatch.setattr(discoverer, "_broadcast", lambda timeout_s: [SERVER_A])

        assert discoverer.discover(timeout_s=0.1) == []
        assert paths == ["http://10.0.0.5:11111/management/v1/configureddevices"]


class TestDiscoveryCache:
    """Tests for DiscoveryCache."""

    def test_results_are_cached(self):
        """get() discovers once and refresh() discovers again."""
        discoverer = _StaticDiscoverer([SERVER_A])
        cache = DiscoveryCache(discoverer)

        cache.get()
        cache.get()
        assert discoverer.calls == 1

        cache.refresh()
        assert discoverer.calls == 2

    def test_default_key_is_one_entry_per_server(self):
        """Devices of one server collapse to the first seen."""
        endpoints = [
            Endpoint("10.0.0.5", 11111, {"DeviceType": "Focuser", "DeviceNumber": 0}),
            Endpoint("10.0.0.5", 11111, {"DeviceType": "SafetyMonitor", "DeviceNumber": 0}),
            SERVER_B,
        ]

        result = DiscoveryCache(_StaticDiscoverer(endpoints)).get()

        assert len(result) == 2
        assert result[0].metadata["DeviceType"] == "Focuser"

    def test_device_key_keeps_every_device(self):
        """With device_key each device survives de-duplication."""
        endpoints = [
            Endpoint("10.0.0.5", 11111, {"DeviceType": "Focuser", "DeviceNumber": 0}),
            Endpoint("10.0.0.5", 11111, {"DeviceType": "SafetyMonitor", "DeviceNumber": 0}),
            Endpoint("10.0.0.5", 11111, {"DeviceType": "Focuser", "DeviceNumber": 0}),
        ]

        result = DiscoveryCache(_StaticDiscoverer(endpoints), key=device_key).get()

        assert len(result) == 2

    def test_get_returns_a_copy(self):
        """Callers cannot mutate the cached list."""
        cache = DiscoveryCache(_StaticDiscoverer([SERVER_A]))

        cache.get().clear()

        assert cache.get() == [SERVER_A]
