"""
Telemetry Enumerations
======================

Metric types, units, quality codes and alert vocabulary shared by the
ingestion pipeline, the alert engine and the storage layer.
"""

from enum import Enum


class MetricType(str, Enum):
    """Physical quantity measured by a sensor stream."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    CO2 = "co2"
    VPD = "vpd"
    LIGHT_PAR = "light_par"
    LIGHT_PPFD = "light_ppfd"
    EC = "ec"
    PH = "ph"
    DISSOLVED_OXYGEN = "dissolved_oxygen"
    WATER_TEMP = "water_temp"
    WATER_LEVEL = "water_level"
    SOIL_MOISTURE = "soil_moisture"
    SOIL_TEMP = "soil_temp"
    SOIL_EC = "soil_ec"
    PRESSURE = "pressure"
    FLOW_RATE = "flow_rate"
    FLOW_TOTAL = "flow_total"
    POWER = "power"
    ENERGY = "energy"

    def __str__(self) -> str:
        return self.value


class Unit(str, Enum):
    """Measurement units understood by the normalizer."""

    # Temperature
    DEG_F = "degF"
    DEG_C = "degC"
    KELVIN = "K"

    # Relative / concentration
    PERCENT = "pct"
    PPM = "ppm"
    PPB = "ppb"
    MG_PER_L = "mg_l"

    # Pressure
    KPA = "kPa"
    PSI = "psi"
    BAR = "bar"

    # Light
    UMOL = "umol"
    LUX = "lux"
    FOOTCANDLES = "footcandles"

    # Conductivity
    MICROSIEMENS = "uS"
    MS_PER_CM = "mS_cm"

    PH = "pH"

    # Volume
    LITERS = "L"
    MILLILITERS = "mL"
    GALLONS = "gal"

    # Flow
    GPM = "gpm"
    LPM = "lpm"
    GPH = "gph"
    LPH = "lph"

    # Distance
    CENTIMETERS = "cm"
    METERS = "m"
    INCHES = "in"
    FEET = "ft"

    # Power / energy
    WATTS = "W"
    KILOWATTS = "kW"
    HORSEPOWER = "hp"
    KWH = "kWh"
    WH = "Wh"
    JOULES = "J"

    def __str__(self) -> str:
        return self.value


class QualityCode(str, Enum):
    """Permanent judgment attached to a normalized reading."""

    GOOD = "good"
    BAD = "bad"
    BAD_OUT_OF_RANGE = "bad_out_of_range"
    BAD_FUTURE_TIMESTAMP = "bad_future_timestamp"
    BAD_STALE = "bad_stale"
    BAD_CONFIGURATION = "bad_configuration"

    @property
    def is_good(self) -> bool:
        return self is QualityCode.GOOD

    def __str__(self) -> str:
        return self.value


class AlertRuleType(str, Enum):
    """Condition family evaluated by an alert rule."""

    THRESHOLD_ABOVE = "threshold_above"
    THRESHOLD_BELOW = "threshold_below"
    THRESHOLD_RANGE = "threshold_range"
    RATE_OF_CHANGE = "rate_of_change"
    DEVIATION_ABSOLUTE = "deviation_absolute"
    DEVIATION_PERCENT = "deviation_percent"

    def __str__(self) -> str:
        return self.value


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    def __str__(self) -> str:
        return self.value


class IngestionProtocol(str, Enum):
    """Transport a telemetry-producing device connected through."""

    HTTP = "http"
    MQTT = "mqtt"
    SDI12 = "sdi12"
    MODBUS = "modbus"
    MANUAL = "manual"

    def __str__(self) -> str:
        return self.value


class IngestionErrorType(str, Enum):
    """Reason a single reading was rejected by the pipeline."""

    UNKNOWN_STREAM = "unknown_stream"
    SITE_MISMATCH = "site_mismatch"
    NORMALIZATION = "normalization"
    DUPLICATE = "duplicate"
    STORAGE = "storage"

    def __str__(self) -> str:
        return self.value


class EvaluationState(str, Enum):
    """Outcome of evaluating one rule against one stream's window."""

    BREACHED = "breached"
    NORMAL = "normal"
    NO_DATA = "no_data"


class AlertTransition(str, Enum):
    """What an evaluation did to the (rule, stream) alert instance."""

    FIRED = "fired"
    REFRESHED = "refreshed"
    CLEARED = "cleared"
    NOOP = "noop"
    ERROR = "error"
