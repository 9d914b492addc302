"""FastAPI Alpaca server exposing digital twins.

Serves the Alpaca device API and management API for a set of
``DigitalTwinDevice`` objects, so the HTTP path of the harness can be
exercised end to end without hardware:

- ``GET/PUT /api/v1/{device_type}/{device_number}/{member}``
- ``GET /management/apiversions``
- ``GET /management/v1/description``
- ``GET /management/v1/configureddevices``

Device exceptions become Alpaca ``ErrorNumber`` / ``ErrorMessage``
pairs in an HTTP 200 response; malformed requests get HTTP 400 with a
plain-text reason, as the Alpaca API prescribes.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import parse_qs

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from device_conform.config import DEFAULT_ALPACA_PORT
from device_conform.drivers.alpaca import ALPACA_ERROR_BASE, API_VERSION
from device_conform.drivers.capabilities import table_for
from device_conform.drivers.exceptions import DriverError, MissingMemberError, NativeError
from device_conform.drivers.twin import DigitalTwinDevice, TwinConfig
from device_conform.drivers.types import DeviceCategory
from device_conform.observability import get_logger

logger = get_logger(__name__)

__all__ = ["DeviceMap", "default_devices", "create_app", "serve", "main"]

#: Twins served, keyed by (category, device number).
DeviceMap = Mapping[tuple[DeviceCategory, int], DigitalTwinDevice]

# Alpaca error number for an unexpected driver failure.
_UNEXPECTED_ERROR = 0x500

_SERVER_NAME = "device-conform twin server"

_COMMON_GETTERS = {
    "connected": lambda d: d.connected,
    "connecting": lambda d: d.connecting,
    "interfaceversion": lambda d: d.interface_version,
    "description": lambda d: d.description,
    "driverinfo": lambda d: d.driver_info,
    "driverversion": lambda d: d.driver_version,
    "name": lambda d: d.name,
    "supportedactions": lambda d: list(d.supported_actions),
    "devicestate": lambda d: [{"Name": s.name, "Value": s.value} for s in d.device_state],
}


def default_devices() -> dict[tuple[DeviceCategory, int], DigitalTwinDevice]:
    """One twin each of a focuser and a safety monitor, device number 0."""
    return {
        (DeviceCategory.FOCUSER, 0): DigitalTwinDevice(
            TwinConfig(category=DeviceCategory.FOCUSER, name="Twin Focuser")
        ),
        (DeviceCategory.SAFETY_MONITOR, 0): DigitalTwinDevice(
            TwinConfig(category=DeviceCategory.SAFETY_MONITOR, name="Twin Safety Monitor")
        ),
    }


def parse_value(text: str) -> Any:
    """Convert a form value to bool, int or float where it looks like one.

    Example:
        >>> parse_value("True"), parse_value("12"), parse_value("1.5")
        (True, 12, 1.5)
    """
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    for convert in (int, float):
        try:
            return convert(text)
        except ValueError:
            continue
    return text


def _alpaca_number(exc: BaseException) -> int:
    if isinstance(exc, DriverError):
        number = exc.number
    elif isinstance(exc, NativeError):
        number = exc.code
    else:
        return _UNEXPECTED_ERROR
    return number - ALPACA_ERROR_BASE if number >= ALPACA_ERROR_BASE else number


def _split_params(
    params: Mapping[str, str],
) -> tuple[int, int, dict[str, str]]:
    """Separate ClientID/ClientTransactionID from member parameters."""
    client_id = 0
    client_transaction = 0
    rest: dict[str, str] = {}
    for key, value in params.items():
        lowered = key.lower()
        if lowered == "clientid":
            client_id = int(value)
        elif lowered == "clienttransactionid":
            client_transaction = int(value)
        else:
            rest[key] = value
    return client_id, client_transaction, rest


def create_app(devices: DeviceMap | None = None) -> FastAPI:
    """Create the Alpaca twin server application.

    Args:
        devices: Twins to serve. ``default_devices()`` when None.

    Returns:
        FastAPI application ready for ``uvicorn.run()`` or TestClient.

    Example:
        >>> app = create_app()
        >>> uvicorn.run(app, host="127.0.0.1", port=11111)
    """
    served: dict[tuple[DeviceCategory, int], DigitalTwinDevice] = dict(
        devices if devices is not None else default_devices()
    )
    transactions = itertools.count(1)
    transaction_lock = threading.Lock()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Twin server starting", devices=len(served))
        yield
        logger.info("Twin server stopping")
        for device in served.values():
            device.close()

    app = FastAPI(
        title="device-conform twin server",
        description="Alpaca REST API backed by digital twins",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.devices = served

    def envelope(
        client_transaction: int, value: Any = None, exc: BaseException | None = None
    ) -> JSONResponse:
        with transaction_lock:
            server_transaction = next(transactions)
        body: dict[str, Any] = {
            "ClientTransactionID": client_transaction,
            "ServerTransactionID": server_transaction,
            "ErrorNumber": 0,
            "ErrorMessage": "",
        }
        if exc is not None:
            body["ErrorNumber"] = _alpaca_number(exc)
            body["ErrorMessage"] = str(exc) or type(exc).__name__
        elif value is not None:
            body["Value"] = value
        return JSONResponse(body)

    def lookup(device_type: str, device_number: int) -> DigitalTwinDevice | None:
        try:
            category = DeviceCategory.parse(device_type)
        except ValueError:
            return None
        return served.get((category, device_number))

    def member_name(device: DigitalTwinDevice, member: str) -> str | None:
        table = table_for(device.category)
        for name in table.properties | table.methods:
            if name.lower() == member:
                return name
        return None

    # =========================================================================
    # Management API
    # =========================================================================

    @app.get("/management/apiversions")
    async def api_versions() -> JSONResponse:
        return envelope(0, [API_VERSION])

    @app.get("/management/v1/description")
    async def description() -> JSONResponse:
        return envelope(
            0,
            {
                "ServerName": _SERVER_NAME,
                "Manufacturer": "device-conform",
                "ManufacturerVersion": "0.1.0",
                "Location": "In-process",
            },
        )

    @app.get("/management/v1/configureddevices")
    async def configured_devices() -> JSONResponse:
        return envelope(
            0,
            [
                {
                    "DeviceName": device.config.name,
                    "DeviceType": category.value,
                    "DeviceNumber": number,
                    "UniqueID": f"device-conform-{category.alpaca_name}-{number}",
                }
                for (category, number), device in sorted(
                    served.items(), key=lambda item: (item[0][0].value, item[0][1])
                )
            ],
        )

    # =========================================================================
    # Device API
    # =========================================================================

    @app.get("/api/v1/{device_type}/{device_number}/{member}")
    async def device_get(
        device_type: str, device_number: int, member: str, request: Request
    ) -> Response:
        device = lookup(device_type, device_number)
        if device is None:
            return PlainTextResponse(
                f"Device {device_type} {device_number} is not configured", status_code=400
            )
        try:
            _, client_transaction, params = _split_params(request.query_params)
        except ValueError:
            return PlainTextResponse("Invalid ClientID or ClientTransactionID", status_code=400)

        key = member.lower()
        try:
            if key in _COMMON_GETTERS:
                value = _COMMON_GETTERS[key](device)
            else:
                name = member_name(device, key)
                if name is None:
                    return PlainTextResponse(f"Unknown member {member}", status_code=400)
                if table_for(device.category).has_property(name):
                    value = device.read(name)
                else:
                    value = device.invoke(
                        name, **{k: parse_value(v) for k, v in params.items()}
                    )
        except MissingMemberError as exc:
            return PlainTextResponse(str(exc), status_code=400)
        except Exception as exc:
            logger.debug("Device GET raised", member=member, error=str(exc))
            return envelope(client_transaction, exc=exc)
        return envelope(client_transaction, value)

    @app.put("/api/v1/{device_type}/{device_number}/{member}")
    async def device_put(
        device_type: str, device_number: int, member: str, request: Request
    ) -> Response:
        device = lookup(device_type, device_number)
        if device is None:
            return PlainTextResponse(
                f"Device {device_type} {device_number} is not configured", status_code=400
            )
        form = {
            k: v[-1] for k, v in parse_qs((await request.body()).decode("utf-8")).items()
        }
        try:
            _, client_transaction, params = _split_params(form)
        except ValueError:
            return PlainTextResponse("Invalid ClientID or ClientTransactionID", status_code=400)
        lowered = {k.lower(): v for k, v in params.items()}

        key = member.lower()
        value: Any = None
        try:
            if key == "connected":
                if "connected" not in lowered:
                    return PlainTextResponse("Missing Connected parameter", status_code=400)
                device.connected = bool(parse_value(lowered["connected"]))
            elif key == "connect":
                device.connect()
            elif key == "disconnect":
                device.disconnect()
            elif key == "action":
                value = device.action(lowered.get("action", ""), lowered.get("parameters", ""))
            else:
                name = member_name(device, key)
                if name is None:
                    return PlainTextResponse(f"Unknown member {member}", status_code=400)
                if table_for(device.category).has_property(name):
                    if key not in lowered:
                        return PlainTextResponse(f"Missing {name} parameter", status_code=400)
                    device.write(name, parse_value(lowered[key]))
                else:
                    value = device.invoke(
                        name, **{k: parse_value(v) for k, v in params.items()}
                    )
        except MissingMemberError as exc:
            return PlainTextResponse(str(exc), status_code=400)
        except Exception as exc:
            logger.debug("Device PUT raised", member=member, error=str(exc))
            return envelope(client_transaction, exc=exc)
        return envelope(client_transaction, value)

    return app


def serve(
    host: str = "127.0.0.1",
    port: int = DEFAULT_ALPACA_PORT,
    devices: DeviceMap | None = None,
) -> None:
    """Run the twin server until interrupted."""
    logger.info("Serving digital twins", host=host, port=port)
    uvicorn.run(create_app(devices), host=host, port=port)


def main() -> None:
    """Run the twin server with default devices on the default Alpaca port."""
    serve()


if __name__ == "__main__":
    main()
