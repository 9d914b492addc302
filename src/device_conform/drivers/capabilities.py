"""Per-category field tables.

One ``CategoryTable`` describes each device family: which members it
exposes, which interface version introduced the asynchronous
Connect()/Disconnect()/Connecting/DeviceState members, and which
operational properties a DeviceState snapshot must contain. The generic
Alpaca adapter, the digital twin and the DeviceState check all read the
same table, so there is no hand-written class per device type.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from device_conform.drivers.types import DeviceCategory

__all__ = [
    "CategoryTable",
    "TIMESTAMP_STATE_KEY",
    "TABLES",
    "table_for",
    "expected_state_keys",
    "supports_async_protocol",
]

#: DeviceState key every category may include in addition to its own.
TIMESTAMP_STATE_KEY = "TimeStamp"


@dataclass(frozen=True)
class CategoryTable:
    """Field table for one device category.

    Attributes:
        category: Device family.
        async_protocol_version: First interface version that carries
            Connect(), Disconnect(), Connecting and DeviceState.
        latest_legacy_version: Newest interface version without them.
        state_keys: Operational properties expected in DeviceState.
        properties: Category-specific property names.
        methods: Category-specific method names.
        description_limit: Maximum Description length, or None.
    """

    category: DeviceCategory
    async_protocol_version: int
    latest_legacy_version: int
    state_keys: tuple[str, ...]
    properties: frozenset[str] = field(default_factory=frozenset)
    methods: frozenset[str] = field(default_factory=frozenset)
    description_limit: int | None = None

    def has_property(self, member: str) -> bool:
        """True when ``member`` is a property of this category."""
        return member in self.properties

    def has_method(self, member: str) -> bool:
        """True when ``member`` is a method of this category."""
        return member in self.methods


def _names(text: str) -> frozenset[str]:
    return frozenset(text.split())


TABLES: dict[DeviceCategory, CategoryTable] = {
    DeviceCategory.CAMERA: CategoryTable(
        category=DeviceCategory.CAMERA,
        async_protocol_version=4,
        latest_legacy_version=3,
        state_keys=(
            "CameraState",
            "CCDTemperature",
            "CoolerPower",
            "HeatSinkTemperature",
            "ImageReady",
            "IsPulseGuiding",
            "PercentCompleted",
        ),
        properties=_names(
            "BayerOffsetX BayerOffsetY BinX BinY CameraState CameraXSize "
            "CameraYSize CanAbortExposure CanAsymmetricBin CanFastReadout "
            "CanGetCoolerPower CanPulseGuide CanSetCCDTemperature "
            "CanStopExposure CCDTemperature CoolerOn CoolerPower "
            "ElectronsPerADU ExposureMax ExposureMin ExposureResolution "
            "FastReadout FullWellCapacity Gain GainMax GainMin Gains HasShutter "
            "HeatSinkTemperature ImageReady IsPulseGuiding LastExposureDuration "
            "LastExposureStartTime MaxADU MaxBinX MaxBinY NumX NumY Offset "
            "OffsetMax OffsetMin Offsets PercentCompleted PixelSizeX PixelSizeY "
            "ReadoutMode ReadoutModes SensorName SensorType SetCCDTemperature "
            "StartX StartY SubExposureDuration"
        ),
        methods=_names("AbortExposure PulseGuide StartExposure StopExposure"),
        # FITS header card limit
        description_limit=68,
    ),
    DeviceCategory.COVER_CALIBRATOR: CategoryTable(
        category=DeviceCategory.COVER_CALIBRATOR,
        async_protocol_version=2,
        latest_legacy_version=1,
        state_keys=(
            "Brightness",
            "CalibratorState",
            "CoverState",
            "CalibratorChanging",
            "CoverMoving",
        ),
        properties=_names(
            "Brightness CalibratorState CoverState MaxBrightness "
            "CalibratorChanging CoverMoving"
        ),
        methods=_names("CalibratorOff CalibratorOn CloseCover HaltCover OpenCover"),
    ),
    DeviceCategory.DOME: CategoryTable(
        category=DeviceCategory.DOME,
        async_protocol_version=3,
        latest_legacy_version=2,
        state_keys=("Altitude", "AtHome", "AtPark", "Azimuth", "ShutterStatus", "Slewing"),
        properties=_names(
            "Altitude AtHome AtPark Azimuth CanFindHome CanPark CanSetAltitude "
            "CanSetAzimuth CanSetPark CanSetShutter CanSlave CanSyncAzimuth "
            "ShutterStatus Slaved Slewing"
        ),
        methods=_names(
            "AbortSlew CloseShutter FindHome OpenShutter Park SetPark "
            "SlewToAltitude SlewToAzimuth SyncToAzimuth"
        ),
    ),
    DeviceCategory.FILTER_WHEEL: CategoryTable(
        category=DeviceCategory.FILTER_WHEEL,
        async_protocol_version=3,
        latest_legacy_version=2,
        state_keys=("Position",),
        properties=_names("FocusOffsets Names Position"),
    ),
    DeviceCategory.FOCUSER: CategoryTable(
        category=DeviceCategory.FOCUSER,
        async_protocol_version=4,
        latest_legacy_version=3,
        state_keys=("IsMoving", "Position", "Temperature"),
        properties=_names(
            "Absolute IsMoving MaxIncrement MaxStep Position StepSize TempComp "
            "TempCompAvailable Temperature"
        ),
        methods=_names("Halt Move"),
    ),
    DeviceCategory.OBSERVING_CONDITIONS: CategoryTable(
        category=DeviceCategory.OBSERVING_CONDITIONS,
        async_protocol_version=2,
        latest_legacy_version=1,
        state_keys=(
            "CloudCover",
            "DewPoint",
            "Humidity",
            "Pressure",
            "RainRate",
            "SkyBrightness",
            "SkyQuality",
            "SkyTemperature",
            "StarFWHM",
            "Temperature",
            "WindDirection",
            "WindGust",
            "WindSpeed",
        ),
        properties=_names(
            "AveragePeriod CloudCover DewPoint Humidity Pressure RainRate "
            "SkyBrightness SkyQuality SkyTemperature StarFWHM Temperature "
            "WindDirection WindGust WindSpeed"
        ),
        methods=_names("Refresh SensorDescription TimeSinceLastUpdate"),
    ),
    DeviceCategory.ROTATOR: CategoryTable(
        category=DeviceCategory.ROTATOR,
        async_protocol_version=4,
        latest_legacy_version=3,
        state_keys=("IsMoving", "MechanicalPosition", "Position"),
        properties=_names(
            "CanReverse IsMoving MechanicalPosition Position Reverse StepSize "
            "TargetPosition"
        ),
        methods=_names("Halt Move MoveAbsolute MoveMechanical Sync"),
    ),
    DeviceCategory.SAFETY_MONITOR: CategoryTable(
        category=DeviceCategory.SAFETY_MONITOR,
        async_protocol_version=3,
        latest_legacy_version=1,
        state_keys=("IsSafe",),
        properties=_names("IsSafe"),
    ),
    DeviceCategory.SWITCH: CategoryTable(
        category=DeviceCategory.SWITCH,
        async_protocol_version=3,
        latest_legacy_version=2,
        # Generated from MaxSwitch, see expected_state_keys()
        state_keys=(),
        properties=_names("MaxSwitch"),
        methods=_names(
            "CanAsync CanWrite GetSwitch GetSwitchDescription GetSwitchName "
            "GetSwitchValue MaxSwitchValue MinSwitchValue SetAsync SetAsyncValue "
            "SetSwitch SetSwitchName SetSwitchValue StateChangeComplete SwitchStep"
        ),
    ),
    DeviceCategory.TELESCOPE: CategoryTable(
        category=DeviceCategory.TELESCOPE,
        async_protocol_version=4,
        latest_legacy_version=3,
        state_keys=(
            "Altitude",
            "AtHome",
            "AtPark",
            "Azimuth",
            "Declination",
            "IsPulseGuiding",
            "RightAscension",
            "SideOfPier",
            "SiderealTime",
            "Slewing",
            "Tracking",
            "UTCDate",
        ),
        properties=_names(
            "AlignmentMode Altitude ApertureArea ApertureDiameter AtHome AtPark "
            "Azimuth CanFindHome CanPark CanPulseGuide CanSetDeclinationRate "
            "CanSetGuideRates CanSetPark CanSetPierSide CanSetRightAscensionRate "
            "CanSetTracking CanSlew CanSlewAltAz CanSlewAltAzAsync CanSlewAsync "
            "CanSync CanSyncAltAz CanUnpark Declination DeclinationRate "
            "DoesRefraction EquatorialSystem FocalLength GuideRateDeclination "
            "GuideRateRightAscension IsPulseGuiding RightAscension "
            "RightAscensionRate SideOfPier SiderealTime SiteElevation "
            "SiteLatitude SiteLongitude Slewing SlewSettleTime "
            "TargetDeclination TargetRightAscension Tracking TrackingRate "
            "TrackingRates UTCDate"
        ),
        methods=_names(
            "AbortSlew AxisRates CanMoveAxis DestinationSideOfPier FindHome "
            "MoveAxis Park PulseGuide SetPark SlewToAltAz SlewToAltAzAsync "
            "SlewToCoordinates SlewToCoordinatesAsync SlewToTarget "
            "SlewToTargetAsync SyncToAltAz SyncToCoordinates SyncToTarget Unpark"
        ),
    ),
    DeviceCategory.VIDEO: CategoryTable(
        category=DeviceCategory.VIDEO,
        async_protocol_version=2,
        latest_legacy_version=1,
        state_keys=("CameraState",),
        properties=_names(
            "BitDepth CameraState CanConfigureDeviceProperties ExposureMax "
            "ExposureMin FrameRate Gain GainMax GainMin Gains Gamma GammaMax "
            "GammaMin Gammas Height IntegrationRate LastVideoFrame PixelSizeX "
            "PixelSizeY SensorName SensorType SupportedIntegrationRates "
            "VideoCaptureDeviceName VideoCodec VideoFileFormat "
            "VideoFramesBufferSize Width"
        ),
        methods=_names(
            "ConfigureDeviceProperties StartRecordingVideoFile StopRecordingVideoFile"
        ),
    ),
}


def table_for(category: DeviceCategory) -> CategoryTable:
    """Return the field table for ``category``."""
    return TABLES[category]


def expected_state_keys(
    category: DeviceCategory, max_switch: int | None = None
) -> tuple[str, ...]:
    """Operational properties a DeviceState snapshot must contain.

    Switch devices report ``GetSwitch{n}`` and ``GetSwitchValue{n}`` for
    every switch, so their key set depends on MaxSwitch.

    Args:
        category: Device family.
        max_switch: Number of switches, required for Switch devices.

    Returns:
        Expected keys in report order.

    Raises:
        ValueError: If ``category`` is Switch and ``max_switch`` is None.

    Example:
        >>> expected_state_keys(DeviceCategory.SWITCH, max_switch=2)
        ('GetSwitch0', 'GetSwitchValue0', 'GetSwitch1', 'GetSwitchValue1')
    """
    if category is DeviceCategory.SWITCH:
        if max_switch is None:
            raise ValueError("max_switch is required for Switch devices")
        keys: list[str] = []
        for index in range(max_switch):
            keys.extend((f"GetSwitch{index}", f"GetSwitchValue{index}"))
        return tuple(keys)
    return TABLES[category].state_keys


def supports_async_protocol(category: DeviceCategory, interface_version: int) -> bool:
    """True when the interface version carries Connect()/DeviceState."""
    return interface_version >= TABLES[category].async_protocol_version
