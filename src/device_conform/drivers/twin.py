"""Digital twin device for running conformance checks without hardware.

``DigitalTwinDevice`` implements the full ``DeviceHandle`` surface for
any device family. Its behaviour is driven by ``TwinConfig``: identity
strings, interface version, per-category field values, which members
are not implemented, and how long Connect()/Disconnect() and focuser
moves take on the injected clock. Faults can be switched on to exercise
the harness's failure paths.

Example:
    from device_conform.drivers.twin import DigitalTwinDevice, TwinConfig

    twin = DigitalTwinDevice(TwinConfig(category=DeviceCategory.FOCUSER))
    twin.connected = True
    twin.invoke("Move", Position=1200)
    print(twin.read("Position"))  # 1200
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from device_conform.conform.polling import SYSTEM_CLOCK, Clock
from device_conform.drivers.capabilities import (
    TIMESTAMP_STATE_KEY,
    expected_state_keys,
    supports_async_protocol,
    table_for,
)
from device_conform.drivers.exceptions import (
    ActionNotImplementedError,
    InvalidOperationError,
    InvalidValueError,
    MethodNotImplementedError,
    MissingMemberError,
    PropertyNotImplementedError,
)
from device_conform.drivers.types import DeviceCategory, StateValue
from device_conform.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_FIELDS",
    "TwinConfig",
    "DigitalTwinDevice",
]

DEFAULT_FIELDS: dict[DeviceCategory, dict[str, Any]] = {
    DeviceCategory.FOCUSER: {
        "Absolute": True,
        "IsMoving": False,
        "MaxIncrement": 10000,
        "MaxStep": 10000,
        "Position": 5000,
        "StepSize": 1.0,
        "TempComp": False,
        "TempCompAvailable": True,
        "Temperature": 20.0,
    },
    DeviceCategory.SAFETY_MONITOR: {"IsSafe": True},
    DeviceCategory.SWITCH: {"MaxSwitch": 2},
    DeviceCategory.FILTER_WHEEL: {
        "FocusOffsets": [0, 0, 0],
        "Names": ["Red", "Green", "Blue"],
        "Position": 0,
    },
}


@dataclass
class TwinConfig:
    """Configuration for digital twin behaviour.

    Attributes:
        category: Device family simulated.
        interface_version: Reported InterfaceVersion. None reports the
            first version with Connect()/DeviceState for the family.
        name: Name property.
        description: Description property.
        driver_info: DriverInfo property.
        driver_version: DriverVersion property.
        supported_actions: SupportedActions values, reported as given.
        state: DeviceState entries reported as given. None builds the
            snapshot from the family's operational fields.
        fields: Overrides merged over the family defaults.
        not_implemented: Members that raise the not-implemented error.
        connect_delay_s: Time Connecting stays True after Connect().
        move_time_s: Time a focuser reports IsMoving after Move().
        break_connected_readback: Connected always reads False.
        has_connecting: False makes the Connecting member absent.
        safe_when_disconnected: IsSafe reports its field value before
            connection instead of False.
    """

    category: DeviceCategory = DeviceCategory.FOCUSER
    interface_version: int | None = None
    name: str = "Digital Twin"
    description: str = "device-conform digital twin"
    driver_info: str = "In-process simulation for conformance testing"
    driver_version: str = "1.0"
    supported_actions: list[Any] = field(default_factory=list)
    state: list[StateValue] | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    not_implemented: frozenset[str] = frozenset()
    connect_delay_s: float = 0.0
    move_time_s: float = 0.0
    break_connected_readback: bool = False
    has_connecting: bool = True
    safe_when_disconnected: bool = False

    def __repr__(self) -> str:
        return (
            f"TwinConfig(category={self.category.value}, "
            f"interface_version={self.effective_interface_version}, "
            f"not_implemented={sorted(self.not_implemented)})"
        )

    @property
    def effective_interface_version(self) -> int:
        """Reported InterfaceVersion after defaulting."""
        if self.interface_version is not None:
            return self.interface_version
        return table_for(self.category).async_protocol_version


class DigitalTwinDevice:
    """In-process simulated device.

    Thread-safe: the twin server calls it from request worker threads.
    """

    def __init__(self, config: TwinConfig | None = None, clock: Clock = SYSTEM_CLOCK) -> None:
        """Create a twin.

        Args:
            config: Behaviour. Defaults to an absolute focuser.
            clock: Time source for connect and move latency.
        """
        self.config = config or TwinConfig()
        self.clock = clock
        self._table = table_for(self.config.category)
        self._fields: dict[str, Any] = {
            **copy.deepcopy(DEFAULT_FIELDS.get(self.config.category, {})),
            **self.config.fields,
        }
        self._lock = threading.RLock()
        self._connected = False
        self._connecting = False
        self._connect_target = False
        self._connect_done_at = 0.0
        self._move_done_at: float | None = None
        self.calls: list[str] = []

    def __repr__(self) -> str:
        return f"DigitalTwinDevice({self.config!r})"

    @property
    def category(self) -> DeviceCategory:
        return self.config.category

    # =========================================================================
    # Internals
    # =========================================================================

    def _require(self, member: str, kind: str = "property") -> None:
        if member in self.config.not_implemented:
            if kind == "method":
                raise MethodNotImplementedError(f"{member} is not implemented")
            raise PropertyNotImplementedError(f"{member} is not implemented")

    def _async_protocol(self) -> bool:
        return supports_async_protocol(
            self.config.category, self.config.effective_interface_version
        )

    def _settle(self) -> None:
        now = self.clock.monotonic()
        if self._connecting and now >= self._connect_done_at:
            self._connected = self._connect_target
            self._connecting = False
        if self._move_done_at is not None and now >= self._move_done_at:
            self._fields["IsMoving"] = False
            self._move_done_at = None

    def _start_transition(self, target: bool) -> None:
        with self._lock:
            self._connect_target = target
            self._connecting = True
            self._connect_done_at = self.clock.monotonic() + self.config.connect_delay_s
            self._settle()

    # =========================================================================
    # Connection
    # =========================================================================

    @property
    def connected(self) -> bool:
        self._require("Connected")
        with self._lock:
            self._settle()
            if self.config.break_connected_readback:
                return False
            return self._connected

    @connected.setter
    def connected(self, value: bool) -> None:
        self._require("Connected")
        with self._lock:
            self.calls.append(f"Connected={bool(value)}")
            self._connected = bool(value)
            self._connecting = False

    @property
    def connecting(self) -> bool:
        if not self.config.has_connecting:
            raise AttributeError("connecting")
        if not self._async_protocol():
            raise PropertyNotImplementedError("Connecting is not a member of this interface")
        with self._lock:
            self._settle()
            return self._connecting

    def connect(self) -> None:
        if not self._async_protocol():
            raise MethodNotImplementedError("Connect is not a member of this interface")
        self.calls.append("Connect")
        self._start_transition(True)

    def disconnect(self) -> None:
        if not self._async_protocol():
            raise MethodNotImplementedError("Disconnect is not a member of this interface")
        self.calls.append("Disconnect")
        self._start_transition(False)

    # =========================================================================
    # Common members
    # =========================================================================

    @property
    def interface_version(self) -> int:
        self._require("InterfaceVersion")
        return self.config.effective_interface_version

    @property
    def description(self) -> str:
        self._require("Description")
        return self.config.description

    @property
    def driver_info(self) -> str:
        self._require("DriverInfo")
        return self.config.driver_info

    @property
    def driver_version(self) -> str:
        self._require("DriverVersion")
        return self.config.driver_version

    @property
    def name(self) -> str:
        self._require("Name")
        return self.config.name

    @property
    def supported_actions(self) -> Sequence[Any]:
        self._require("SupportedActions")
        return list(self.config.supported_actions)

    @property
    def device_state(self) -> Sequence[StateValue]:
        self._require("DeviceState")
        if not self._async_protocol():
            raise PropertyNotImplementedError("DeviceState is not a member of this interface")
        if self.config.state is not None:
            return list(self.config.state)
        with self._lock:
            self._settle()
            return self._derived_state()

    def _derived_state(self) -> list[StateValue]:
        if self.config.category is DeviceCategory.SWITCH:
            max_switch = int(self._fields.get("MaxSwitch", 0))
            keys = expected_state_keys(self.config.category, max_switch=max_switch)
        else:
            keys = expected_state_keys(self.config.category)
        entries = []
        for key in keys:
            if key in self.config.not_implemented:
                continue
            if key.startswith("GetSwitchValue"):
                value: Any = self._fields.get(key, 0.0)
            elif key.startswith("GetSwitch"):
                value = self._fields.get(key, False)
            elif key in self._fields:
                value = self._fields[key]
            else:
                continue
            entries.append(StateValue(key, value))
        entries.append(StateValue(TIMESTAMP_STATE_KEY, "2026-01-01T00:00:00Z"))
        return entries

    def action(self, action_name: str, parameters: str = "") -> str:
        self._require("Action", "method")
        if action_name not in self.config.supported_actions:
            raise ActionNotImplementedError(f"Action {action_name} is not supported")
        self.calls.append(f"Action:{action_name}")
        return parameters

    # =========================================================================
    # Category members
    # =========================================================================

    def read(self, member: str) -> Any:
        """Return a field value, or raise the contract error for it."""
        if not self._table.has_property(member):
            raise MissingMemberError(f"{member} is not a {self.category.value} property")
        self._require(member)
        with self._lock:
            self._settle()
            if member == "IsSafe" and not self._connected:
                return bool(self._fields["IsSafe"]) and self.config.safe_when_disconnected
            if member == "Position" and self._fields.get("Absolute") is False:
                raise PropertyNotImplementedError(
                    "Position is not available for a relative focuser"
                )
            if member not in self._fields:
                raise PropertyNotImplementedError(f"{member} is not implemented")
            return self._fields[member]

    def write(self, member: str, value: Any) -> None:
        if not self._table.has_property(member):
            raise MissingMemberError(f"{member} is not a {self.category.value} property")
        self._require(member)
        with self._lock:
            if member == "TempComp" and not self._fields.get("TempCompAvailable", False):
                raise PropertyNotImplementedError("Temperature compensation is not available")
            if member not in self._fields:
                raise PropertyNotImplementedError(f"{member} is not implemented")
            self.calls.append(f"{member}={value}")
            self._fields[member] = value

    def invoke(self, member: str, **params: Any) -> Any:
        if not self._table.has_method(member):
            raise MissingMemberError(f"{member} is not a {self.category.value} method")
        self._require(member, "method")
        self.calls.append(member)
        with self._lock:
            if self.config.category is DeviceCategory.FOCUSER:
                if member == "Move":
                    self._move(params)
                elif member == "Halt":
                    self._fields["IsMoving"] = False
                    self._move_done_at = None
            elif self.config.category is DeviceCategory.SWITCH:
                return self._switch_method(member, params)
        return None

    def _move(self, params: dict[str, Any]) -> None:
        if "Position" not in params:
            raise InvalidValueError("Move requires a Position parameter")
        if self._fields.get("TempComp") and self.config.effective_interface_version < 3:
            raise InvalidOperationError("Move is not allowed while TempComp is True")
        requested = int(params["Position"])
        max_step = int(self._fields["MaxStep"])
        if self._fields.get("Absolute", True):
            target = requested
        else:
            target = int(self._fields["Position"]) + requested
        self._fields["Position"] = max(0, min(max_step, target))
        if self.config.move_time_s > 0:
            self._fields["IsMoving"] = True
            self._move_done_at = self.clock.monotonic() + self.config.move_time_s
        logger.debug("Twin focuser moved", position=self._fields["Position"])

    def _switch_method(self, member: str, params: dict[str, Any]) -> Any:
        switch = int(params.get("Id", 0))
        if not 0 <= switch < int(self._fields.get("MaxSwitch", 0)):
            raise InvalidValueError(f"Switch {switch} does not exist")
        if member == "GetSwitch":
            return bool(self._fields.get(f"GetSwitch{switch}", False))
        if member == "GetSwitchValue":
            return float(self._fields.get(f"GetSwitchValue{switch}", 0.0))
        if member == "SetSwitch":
            self._fields[f"GetSwitch{switch}"] = bool(params.get("State", False))
            return None
        if member == "GetSwitchName":
            return f"Switch {switch}"
        return None

    def close(self) -> None:
        logger.debug("Twin closed", category=self.category.value)
