"""Device handles for conformance runs.

Supports three ways of reaching a device:
- ALPACA: HTTP devices, through the generic ``AlpacaDevice`` adapter
- NATIVE / DRIVER_ACCESS: in-process objects from a ``module:factory`` path
- Digital twin: ``drivers.twin.DigitalTwinDevice`` for tests and demos

Handles are built by ``drivers.factory.create_device``; the twin and the
factory are imported from their modules because they depend on the
conformance core.

    from device_conform.drivers import AlpacaDevice, DeviceCategory
    device = AlpacaDevice(DeviceCategory.FOCUSER, base_url="http://127.0.0.1:11111")
"""

from device_conform.drivers import capabilities, exceptions
from device_conform.drivers.alpaca import AlpacaDevice
from device_conform.drivers.discovery import AlpacaDiscoverer, DiscoveryCache, Endpoint
from device_conform.drivers.types import (
    DeviceCategory,
    DeviceHandle,
    StateValue,
    Technology,
)

__all__ = [
    # Submodules
    "capabilities",
    "exceptions",
    # Types
    "DeviceCategory",
    "DeviceHandle",
    "StateValue",
    "Technology",
    # Transports
    "AlpacaDevice",
    "AlpacaDiscoverer",
    "DiscoveryCache",
    "Endpoint",
]
