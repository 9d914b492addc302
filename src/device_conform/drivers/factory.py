"""Device handle factory.

Builds the handle a conformance run talks to from the run
configuration:

- ``Technology.ALPACA``: an ``AlpacaDevice`` for the configured server.
- ``Technology.NATIVE`` / ``Technology.DRIVER_ACCESS``: an in-process
  object returned by a ``module:factory`` import path. The factory is
  called with the device category.

``twin_factory`` returns a factory that ignores the transport settings
and hands out a digital twin, for demos and tests.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING

from device_conform.conform.polling import SYSTEM_CLOCK, Clock
from device_conform.drivers.alpaca import AlpacaDevice
from device_conform.drivers.exceptions import DeviceCreationError
from device_conform.drivers.twin import DigitalTwinDevice, TwinConfig
from device_conform.drivers.types import DeviceHandle, Technology
from device_conform.observability import get_logger

if TYPE_CHECKING:
    from device_conform.config import ConformConfig

logger = get_logger(__name__)

__all__ = ["create_device", "load_native_factory", "twin_factory"]


def load_native_factory(path: str) -> Callable[..., object]:
    """Resolve a ``module:attribute`` path to a callable.

    Raises:
        DeviceCreationError: The path is malformed, the module cannot be
            imported or the attribute is missing or not callable.

    Example:
        >>> load_native_factory("my_drivers.focuser:create")
        <function create at 0x...>
    """
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise DeviceCreationError(
            f"Driver path must look like 'package.module:factory', got {path!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise DeviceCreationError(f"Cannot import driver module {module_name}: {exc}") from exc
    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise DeviceCreationError(f"{path} is not a callable driver factory")
    return factory


def create_device(config: ConformConfig) -> DeviceHandle:
    """Create the device handle described by ``config``.

    Args:
        config: Validated run configuration.

    Returns:
        A handle satisfying the DeviceHandle protocol.

    Raises:
        DeviceCreationError: The handle could not be built.
    """
    if config.category is None:
        raise DeviceCreationError("No device type has been selected")

    if config.technology is Technology.ALPACA:
        base_url = f"http://{config.alpaca_address}:{config.alpaca_port}"
        logger.info("Creating Alpaca device", base_url=base_url)
        return AlpacaDevice(
            config.category,
            config.device_number,
            base_url=base_url,
            connection_timeout_s=config.connection_timeout_s,
            response_timeout_s=config.response_timeout_s,
        )

    if not config.driver_path:
        raise DeviceCreationError("A native device requires a driver path (module:factory)")
    factory = load_native_factory(config.driver_path)
    logger.info("Creating native device", driver_path=config.driver_path)
    handle = factory(config.category)
    if not isinstance(handle, DeviceHandle):
        raise DeviceCreationError(
            f"{config.driver_path} returned {type(handle).__name__}, which does not "
            "implement the device handle interface"
        )
    return handle


def twin_factory(
    twin_config: TwinConfig | None = None, clock: Clock = SYSTEM_CLOCK
) -> Callable[[ConformConfig], DeviceHandle]:
    """Factory producing a fresh digital twin per run.

    The twin's category follows the run configuration, so one
    ``TwinConfig`` template can serve several device types.
    """

    def _create(config: ConformConfig) -> DeviceHandle:
        template = twin_config or TwinConfig()
        if config.category is not None and config.category is not template.category:
            template = replace(template, category=config.category)
        logger.info("Creating digital twin", category=template.category.value)
        return DigitalTwinDevice(template, clock=clock)

    return _create
