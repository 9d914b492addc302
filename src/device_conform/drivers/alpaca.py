"""Alpaca REST device adapter.

One ``AlpacaDevice`` class serves every device family. Members are
addressed by their contract name and validated against the category's
field table, so there is no hand-written client per device type.

Requests follow the Alpaca device API::

    GET  /api/v1/{device_type}/{device_number}/{member}?ClientID=..&ClientTransactionID=..
    PUT  /api/v1/{device_type}/{device_number}/{member}   (form encoded)

Every response carries ``Value``, ``ErrorNumber`` and ``ErrorMessage``.
A non-zero ``ErrorNumber`` is raised as the matching device exception;
transport failures are raised as ``DriverError`` so the classifier sees
them as ordinary device errors.

Example:
    device = AlpacaDevice(DeviceCategory.FOCUSER, 0, base_url="http://127.0.0.1:11111")
    device.connected = True
    print(device.read("MaxStep"))
    device.close()
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Sequence
from typing import Any

import httpx

from device_conform.drivers.capabilities import CategoryTable, table_for
from device_conform.drivers.exceptions import (
    ActionNotImplementedError,
    DriverError,
    InvalidOperationError,
    InvalidValueError,
    MissingMemberError,
    NotConnectedError,
    NotImplementedMemberError,
    OperationCancelledError,
    ParkedError,
    SlavedError,
    ValueNotSetError,
)
from device_conform.drivers.types import DeviceCategory, StateValue
from device_conform.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "API_VERSION",
    "ALPACA_ERROR_BASE",
    "AlpacaDevice",
    "alpaca_error",
    "format_value",
]

#: Alpaca device API version used in request paths.
API_VERSION = 1

#: Offset between Alpaca error numbers and native error numbers.
ALPACA_ERROR_BASE = 0x80040000

_ERROR_TYPES: dict[int, type[DriverError]] = {
    0x400: NotImplementedMemberError,
    0x401: InvalidValueError,
    0x402: ValueNotSetError,
    0x407: NotConnectedError,
    0x408: ParkedError,
    0x409: SlavedError,
    0x40B: InvalidOperationError,
    0x40C: ActionNotImplementedError,
    0x40E: OperationCancelledError,
}

# Contract methods that are read with GET because they only query state.
_GET_METHODS = frozenset(
    {
        "AxisRates",
        "CanAsync",
        "CanMoveAxis",
        "CanWrite",
        "DestinationSideOfPier",
        "GetSwitch",
        "GetSwitchDescription",
        "GetSwitchName",
        "GetSwitchValue",
        "MaxSwitchValue",
        "MinSwitchValue",
        "SensorDescription",
        "StateChangeComplete",
        "SwitchStep",
        "TimeSinceLastUpdate",
    }
)


def alpaca_error(number: int, message: str) -> DriverError:
    """Build the device exception for an Alpaca ``ErrorNumber``.

    Example:
        >>> type(alpaca_error(0x401, "Out of range")).__name__
        'InvalidValueError'
        >>> hex(alpaca_error(0x500, "Driver fault").number)
        '0x80040500'
    """
    error_type = _ERROR_TYPES.get(number)
    if error_type is not None:
        return error_type(message)
    return DriverError(message, ALPACA_ERROR_BASE + number)


def format_value(value: Any) -> str:
    """Render a parameter value the way Alpaca servers parse it."""
    if isinstance(value, bool):
        return "True" if value else "False"
    return str(value)


class AlpacaDevice:
    """Device handle talking to an Alpaca server over HTTP.

    Attributes:
        category: Device family.
        device_number: Alpaca device number.
        client_id: ClientID sent with every request.
    """

    def __init__(
        self,
        category: DeviceCategory,
        device_number: int = 0,
        base_url: str | None = None,
        client: httpx.Client | None = None,
        connection_timeout_s: float = 2.0,
        response_timeout_s: float = 10.0,
        client_id: int = 1,
    ) -> None:
        """Create the adapter.

        Args:
            category: Device family.
            device_number: Alpaca device number.
            base_url: Server root, e.g. ``http://127.0.0.1:11111``. Ignored
                when ``client`` is given.
            client: Pre-built client (tests pass a TestClient or a client
                with a MockTransport). Not closed by ``close()``.
            connection_timeout_s: Connection establishment limit.
            response_timeout_s: Response limit.
            client_id: ClientID sent with every request.

        Raises:
            ValueError: If neither ``base_url`` nor ``client`` is given.
        """
        if client is None and base_url is None:
            raise ValueError("AlpacaDevice needs a base_url or a client")
        self.category = category
        self.device_number = device_number
        self.client_id = client_id
        self._table: CategoryTable = table_for(category)
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url or "",
            timeout=httpx.Timeout(response_timeout_s, connect=connection_timeout_s),
        )
        self._transactions = itertools.count(1)
        self._transaction_lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"AlpacaDevice(category={self.category.value!r}, "
            f"device_number={self.device_number})"
        )

    # =========================================================================
    # Transport
    # =========================================================================

    def _path(self, member: str) -> str:
        return (
            f"/api/v{API_VERSION}/{self.category.alpaca_name}/"
            f"{self.device_number}/{member.lower()}"
        )

    def _next_transaction(self) -> int:
        with self._transaction_lock:
            return next(self._transactions)

    def _unpack(self, member: str, response: httpx.Response) -> Any:
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as exc:
            raise DriverError(f"{member}: response is not valid JSON: {exc}") from exc
        number = int(body.get("ErrorNumber", 0) or 0)
        if number != 0:
            raise alpaca_error(number, str(body.get("ErrorMessage", "")))
        return body.get("Value")

    def _get(self, member: str, **params: Any) -> Any:
        query = {
            **{k: format_value(v) for k, v in params.items()},
            "ClientID": str(self.client_id),
            "ClientTransactionID": str(self._next_transaction()),
        }
        logger.debug("Alpaca GET", member=member)
        try:
            response = self._client.get(self._path(member), params=query)
            return self._unpack(member, response)
        except httpx.HTTPError as exc:
            raise DriverError(f"{member}: {exc}") from exc

    def _put(self, member: str, **params: Any) -> Any:
        form = {
            **{k: format_value(v) for k, v in params.items()},
            "ClientID": str(self.client_id),
            "ClientTransactionID": str(self._next_transaction()),
        }
        logger.debug("Alpaca PUT", member=member)
        try:
            response = self._client.put(self._path(member), data=form)
            return self._unpack(member, response)
        except httpx.HTTPError as exc:
            raise DriverError(f"{member}: {exc}") from exc

    # =========================================================================
    # Common members
    # =========================================================================

    @property
    def connected(self) -> bool:
        return bool(self._get("Connected"))

    @connected.setter
    def connected(self, value: bool) -> None:
        self._put("Connected", Connected=value)

    @property
    def connecting(self) -> bool:
        return bool(self._get("Connecting"))

    def connect(self) -> None:
        self._put("Connect")

    def disconnect(self) -> None:
        self._put("Disconnect")

    @property
    def interface_version(self) -> int:
        return int(self._get("InterfaceVersion"))

    @property
    def description(self) -> str:
        return self._get("Description")

    @property
    def driver_info(self) -> str:
        return self._get("DriverInfo")

    @property
    def driver_version(self) -> str:
        return self._get("DriverVersion")

    @property
    def name(self) -> str:
        return self._get("Name")

    @property
    def supported_actions(self) -> Sequence[Any]:
        return self._get("SupportedActions") or []

    @property
    def device_state(self) -> Sequence[StateValue]:
        entries = self._get("DeviceState") or []
        return [StateValue(str(e.get("Name", "")), e.get("Value")) for e in entries]

    def action(self, action_name: str, parameters: str = "") -> str:
        return self._put("Action", Action=action_name, Parameters=parameters)

    # =========================================================================
    # Category members
    # =========================================================================

    def read(self, member: str) -> Any:
        """GET a category property by contract name.

        Raises:
            MissingMemberError: ``member`` is not a property of the category.
        """
        if not self._table.has_property(member):
            raise MissingMemberError(
                f"{member} is not a {self.category.value} property"
            )
        return self._get(member)

    def write(self, member: str, value: Any) -> None:
        """PUT a category property; the form field carries the member name."""
        if not self._table.has_property(member):
            raise MissingMemberError(
                f"{member} is not a {self.category.value} property"
            )
        self._put(member, **{member: value})

    def invoke(self, member: str, **params: Any) -> Any:
        """Call a category method. Query-style methods use GET, the rest PUT."""
        if not self._table.has_method(member):
            raise MissingMemberError(f"{member} is not a {self.category.value} method")
        if member in _GET_METHODS:
            return self._get(member, **params)
        return self._put(member, **params)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
