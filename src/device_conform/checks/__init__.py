"""Device-specific checks.

Example:
    from device_conform.checks import checks_for

    checks = checks_for(DeviceCategory.FOCUSER)(context)
    if checks.has_properties:
        checks.check_properties()
"""

from device_conform.checks.base import CheckContext, DeviceChecks
from device_conform.checks.focuser import FocuserChecks
from device_conform.checks.generic import GenericChecks
from device_conform.checks.safety_monitor import SafetyMonitorChecks
from device_conform.drivers.types import DeviceCategory

__all__ = [
    "CheckContext",
    "DeviceChecks",
    "FocuserChecks",
    "GenericChecks",
    "SafetyMonitorChecks",
    "checks_for",
]

_CHECKS: dict[DeviceCategory, type[DeviceChecks]] = {
    DeviceCategory.FOCUSER: FocuserChecks,
    DeviceCategory.SAFETY_MONITOR: SafetyMonitorChecks,
}


def checks_for(category: DeviceCategory) -> type[DeviceChecks]:
    """Check class for ``category``; GenericChecks when none is dedicated."""
    return _CHECKS.get(category, GenericChecks)
